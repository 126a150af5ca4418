import redis.asyncio as redis

from restaurant_ops.config import settings

_redis: redis.Redis | None = None

PENDING = "pending"


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def idempotency_redis_key(scope: str, client_key: str) -> str:
    return f"idempotency:{scope}:{client_key}"


async def claim_idempotency_key(key: str, ttl_seconds: int | None = None) -> str | None:
    """
    Returns None if this key is new -> caller should proceed, then remember_idempotent_result.
    Returns the stored value if the key was already seen: PENDING while the first request
    is still running, otherwise the id of the resource it created.
    Uses SET NX: set if not exists. If we set it, we're first; if not, duplicate.
    The PENDING claim expires after idempotency_claim_ttl_seconds;
    remember_idempotent_result stores the result for idempotency_ttl_seconds.
    """
    r = await get_redis()
    ttl = ttl_seconds or settings.idempotency_claim_ttl_seconds
    was_set = await r.set(key, PENDING, nx=True, ex=ttl)
    if was_set:
        return None
    return await r.get(key) or PENDING


async def reclaim_idempotency_key(key: str, ttl_seconds: int | None = None) -> None:
    """Take over a key whose stored result no longer exists."""
    r = await get_redis()
    await r.set(key, PENDING, ex=ttl_seconds or settings.idempotency_claim_ttl_seconds)


async def remember_idempotent_result(key: str, resource_id: str, ttl_seconds: int | None = None) -> None:
    r = await get_redis()
    await r.set(key, resource_id, ex=ttl_seconds or settings.idempotency_ttl_seconds)


async def release_idempotency_key(key: str) -> None:
    """Forget a claimed key after the request failed, so the client can retry."""
    r = await get_redis()
    await r.delete(key)
