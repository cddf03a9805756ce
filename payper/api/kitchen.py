from fastapi import APIRouter, Depends

from ..core.permissions import require_kitchen_staff
from ..services.catalog import TableRegistry
from ..services.order_store import OrderQuery, OrderStore
from .deps import get_engine, get_store, get_tables
from .kitchen_service import KITCHEN_STATUSES, KitchenService
from .orders import ItemStatusUpdate, order_response
from .orders_service import OrderLifecycleService

router = APIRouter(prefix="/kitchen", tags=["Kitchen"])


@router.get("/board")
def get_kitchen_board(
    store: OrderStore = Depends(get_store),
    tables: TableRegistry = Depends(get_tables),
    current_user: dict = Depends(require_kitchen_staff),
):
    """Printed items of every order in the kitchen, oldest first"""
    orders = store.query(OrderQuery(statuses=KITCHEN_STATUSES))
    return {"orders": KitchenService.kitchen_orders(orders, tables.names())}


@router.get("/dishes")
def get_dish_summary(
    store: OrderStore = Depends(get_store),
    current_user: dict = Depends(require_kitchen_staff),
):
    """Same dish across tickets, consolidated"""
    return {"dishes": KitchenService.dish_summary(store.query())}


@router.post("/orders/{order_id}/tickets/{kot_id}/status")
def advance_ticket_items(
    order_id: str,
    kot_id: str,
    payload: ItemStatusUpdate,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_kitchen_staff),
):
    order = engine.advance_item_status(
        order_id, kot_id, payload.status, item_ids=payload.item_ids, actor=current_user["id"]
    )
    return order_response(order)
