from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..core.permissions import require_manager
from ..models.menu import MenuItem
from ..services.catalog import MenuCatalog
from .deps import get_menu


class MenuItemCreate(BaseModel):
    name: str
    description: str = ""
    price: Decimal = Field(ge=0)
    category: str


class CategoryCreate(BaseModel):
    name: str


router = APIRouter(prefix="/menu", tags=["Menu"])


@router.get("/")
async def list_menu(
    category: Optional[str] = None,
    available_only: bool = False,
    menu: MenuCatalog = Depends(get_menu),
):
    return [i.model_dump(mode="json") for i in menu.list(category=category, available_only=available_only)]


@router.get("/grouped")
async def menu_by_category(available_only: bool = True, menu: MenuCatalog = Depends(get_menu)):
    """Customer menu page"""
    return {
        category: [i.model_dump(mode="json") for i in items if i.available or not available_only]
        for category, items in menu.grouped_by_category().items()
    }


@router.get("/categories")
async def list_categories(menu: MenuCatalog = Depends(get_menu)):
    return [c.model_dump() for c in menu.categories()]


@router.post("/categories", status_code=201)
async def add_category(
    payload: CategoryCreate,
    menu: MenuCatalog = Depends(get_menu),
    current_user: dict = Depends(require_manager),
):
    return menu.add_category(payload.name).model_dump()


@router.post("/", status_code=201)
async def add_menu_item(
    payload: MenuItemCreate,
    menu: MenuCatalog = Depends(get_menu),
    current_user: dict = Depends(require_manager),
):
    item = menu.add_item(payload.name, payload.price, payload.category, payload.description)
    return item.model_dump(mode="json")


@router.put("/{item_id}")
async def update_menu_item(
    item_id: str,
    payload: MenuItemCreate,
    menu: MenuCatalog = Depends(get_menu),
    current_user: dict = Depends(require_manager),
):
    current = menu.get(item_id)
    item = MenuItem(id=item_id, available=current.available, **payload.model_dump())
    return menu.update_item(item).model_dump(mode="json")


@router.delete("/{item_id}")
async def delete_menu_item(
    item_id: str,
    menu: MenuCatalog = Depends(get_menu),
    current_user: dict = Depends(require_manager),
):
    menu.delete_item(item_id)
    return {"message": "Menu item deleted"}


@router.post("/{item_id}/toggle")
async def toggle_availability(
    item_id: str,
    menu: MenuCatalog = Depends(get_menu),
    current_user: dict = Depends(require_manager),
):
    return menu.toggle_availability(item_id).model_dump(mode="json")
