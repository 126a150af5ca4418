import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from restaurant_ops.config import settings
from restaurant_ops.errors import RestaurantError
from restaurant_ops.metrics import get_metrics_bytes, get_metrics_content_type
from restaurant_ops.redis_client import close_redis, get_redis
from restaurant_ops.routes import auth, menu, orders, users
from restaurant_ops.store import close_store, get_store

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_store()
    await get_redis()
    logger.info("Store ready. Backend=%s", settings.store_backend)
    yield
    await close_redis()
    await close_store()


app = FastAPI(title="Restaurant Ops", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth.router)
app.include_router(menu.router)
app.include_router(orders.router)
app.include_router(users.router)


@app.exception_handler(RestaurantError)
async def restaurant_error_handler(request: Request, exc: RestaurantError) -> JSONResponse:
    logger.warning(
        "%s %s -> %d %s: %s",
        request.method, request.url.path, exc.status_code, type(exc).__name__, exc.message,
    )
    error = {
        "message": exc.message,
        "status": exc.status_code,
        "type": type(exc).__name__,
        "path": request.url.path,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if exc.retryable:
        error["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content={"error": error})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": {"message": "Something went wrong", "status": 500, "path": request.url.path}},
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: orders created, status transitions, access denials."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )


def run() -> None:
    import uvicorn
    uvicorn.run("restaurant_ops.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
