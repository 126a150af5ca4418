import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from restaurant_ops.auth import require_capabilities
from restaurant_ops.errors import MenuItemNotFound
from restaurant_ops.models import MenuCategory, MenuItem, StaffRecord, new_id, utcnow
from restaurant_ops.permissions import Capability
from restaurant_ops.store import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/menu", tags=["menu"])

manage_menu = require_capabilities(Capability.MANAGE_MENU)


class MenuItemBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    category: MenuCategory
    prep_time: int = Field(..., ge=1, description="Preparation time in minutes")
    allergens: list[str] = Field(default_factory=list)
    image_url: str | None = Field(default=None, pattern=r"^https?://.+")


class MenuItemUpdateBody(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, min_length=1, max_length=500)
    price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    category: MenuCategory | None = None
    prep_time: int | None = Field(default=None, ge=1)
    allergens: list[str] | None = None
    image_url: str | None = Field(default=None, pattern=r"^https?://.+")
    available: bool | None = None


def _item_json(item: MenuItem) -> dict:
    return item.model_dump(mode="json")


@router.get("")
async def list_menu_items(
    category: MenuCategory | None = Query(default=None),
    available: bool | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    store=Depends(get_store),
) -> JSONResponse:
    items = await store.list_menu_items(category=category, available=available, search=search)
    return JSONResponse(
        status_code=200,
        content={"success": True, "data": {"menu_items": [_item_json(i) for i in items], "count": len(items)}},
    )


@router.get("/categories")
async def list_categories() -> dict:
    return {"success": True, "data": {"categories": [c.value for c in MenuCategory]}}


@router.get("/{menu_item_id}")
async def get_menu_item(menu_item_id: str, store=Depends(get_store)) -> JSONResponse:
    item = await store.get_menu_item(menu_item_id)
    if item is None:
        raise MenuItemNotFound(menu_item_id)
    return JSONResponse(status_code=200, content={"success": True, "data": {"menu_item": _item_json(item)}})


@router.post("")
async def create_menu_item(
    body: MenuItemBody,
    user: StaffRecord = Depends(manage_menu),
    store=Depends(get_store),
) -> JSONResponse:
    now = utcnow()
    item = await store.add_menu_item(MenuItem(id=new_id(), created_at=now, updated_at=now, **body.model_dump()))
    logger.info("Menu item created menu_item_id=%s name=%s by=%s", item.id, item.name, user.id)
    return JSONResponse(
        status_code=201,
        content={"success": True, "message": "Menu item created successfully", "data": {"menu_item": _item_json(item)}},
    )


@router.put("/{menu_item_id}")
async def update_menu_item(
    menu_item_id: str,
    body: MenuItemUpdateBody,
    user: StaffRecord = Depends(manage_menu),
    store=Depends(get_store),
) -> JSONResponse:
    item = await store.update_menu_item(menu_item_id, body.model_dump(exclude_unset=True, exclude_none=True), updated_at=utcnow())
    if item is None:
        raise MenuItemNotFound(menu_item_id)
    logger.info("Menu item updated menu_item_id=%s name=%s by=%s", item.id, item.name, user.id)
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "Menu item updated successfully", "data": {"menu_item": _item_json(item)}},
    )


@router.delete("/{menu_item_id}")
async def delete_menu_item(
    menu_item_id: str,
    user: StaffRecord = Depends(manage_menu),
    store=Depends(get_store),
) -> JSONResponse:
    item = await store.delete_menu_item(menu_item_id)
    if item is None:
        raise MenuItemNotFound(menu_item_id)
    logger.info("Menu item deleted menu_item_id=%s name=%s by=%s", item.id, item.name, user.id)
    return JSONResponse(status_code=200, content={"success": True, "message": "Menu item deleted successfully"})


@router.patch("/{menu_item_id}/toggle")
async def toggle_availability(
    menu_item_id: str,
    user: StaffRecord = Depends(manage_menu),
    store=Depends(get_store),
) -> JSONResponse:
    current = await store.get_menu_item(menu_item_id)
    if current is None:
        raise MenuItemNotFound(menu_item_id)
    item = await store.update_menu_item(menu_item_id, {"available": not current.available}, updated_at=utcnow())
    if item is None:
        raise MenuItemNotFound(menu_item_id)
    logger.info("Menu item availability toggled menu_item_id=%s available=%s by=%s", item.id, item.available, user.id)
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": f"Menu item {'enabled' if item.available else 'disabled'} successfully",
            "data": {"menu_item": _item_json(item)},
        },
    )
