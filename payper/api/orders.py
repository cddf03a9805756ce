from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from ..core.activity_logger import ActivityLogger
from ..core.permissions import require_cashier_staff, require_floor_staff
from ..models.order import (
    CartLine,
    CustomerDetails,
    DiscountType,
    ItemStatus,
    OnlinePlatform,
    Order,
    OrderStatus,
    OrderType,
    PaymentMethod,
)
from ..services.catalog import TableRegistry
from ..services.order_store import OrderQuery
from ..utils.receipts import render_bill, render_kot
from .deps import get_activity, get_engine, get_tables
from .orders_service import (
    OrderLifecycleService,
    can_cancel_order,
    can_generate_bill,
    discount_amount,
    needs_kot_print,
)


class CartLineIn(BaseModel):
    menu_item_id: str
    quantity: int = Field(gt=0)
    notes: Optional[str] = None

    def to_cart_line(self) -> CartLine:
        return CartLine(menu_item_id=self.menu_item_id, quantity=self.quantity, notes=self.notes)


class DineInOrderCreate(BaseModel):
    table_id: str
    items: List[CartLineIn]


class OnlineOrderCreate(BaseModel):
    online_platform: OnlinePlatform
    platform_order_id: Optional[str] = None
    customer_details: CustomerDetails
    items: List[CartLineIn]


class ItemsAdd(BaseModel):
    items: List[CartLineIn]


class QuantityUpdate(BaseModel):
    quantity: int


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class ItemStatusUpdate(BaseModel):
    status: ItemStatus
    item_ids: Optional[List[str]] = None


class TableSwitch(BaseModel):
    new_table_id: str
    old_table_id: Optional[str] = None


class DiscountApply(BaseModel):
    value: Decimal = Field(ge=0)
    discount_type: DiscountType = DiscountType.PERCENTAGE


class PaymentMethodUpdate(BaseModel):
    method: Optional[PaymentMethod] = None


router = APIRouter(prefix="/orders", tags=["Orders"])


def order_response(order: Order) -> dict:
    """Order document plus the gates the screens use to enable actions."""
    data = order.model_dump(mode="json")
    data["gates"] = {
        "can_cancel": can_cancel_order(order),
        "can_generate_bill": can_generate_bill(order),
        "needs_kot_print": needs_kot_print(order),
    }
    data["discount_amount"] = str(discount_amount(order))
    return data


def _table_name(tables: TableRegistry, order: Order) -> Optional[str]:
    if not order.table_id:
        return None
    return tables.names().get(order.table_id)


@router.get("/")
def list_orders(
    status: Optional[List[OrderStatus]] = Query(None),
    table_id: Optional[str] = None,
    platform: Optional[OnlinePlatform] = None,
    order_type: Optional[OrderType] = None,
    active_only: bool = False,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    query = OrderQuery.build(statuses=status, table_id=table_id, platform=platform, order_type=order_type)
    orders = engine.list_orders(query)
    if active_only:
        orders = [o for o in orders if o.is_active]
    return [order_response(o) for o in orders]


@router.get("/{order_id}")
def get_order(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    return order_response(engine.get_order(order_id))


@router.post("/dine-in", status_code=201)
def create_dine_in_order(
    payload: DineInOrderCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    order = engine.place_order(
        [line.to_cart_line() for line in payload.items],
        current_user["id"],
        table_id=payload.table_id,
        idempotency_key=idempotency_key,
    )
    return order_response(order)


@router.post("/online", status_code=201)
def create_online_order(
    payload: OnlineOrderCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_cashier_staff),
):
    order = engine.place_order(
        [line.to_cart_line() for line in payload.items],
        current_user["id"],
        online_platform=payload.online_platform,
        platform_order_id=payload.platform_order_id,
        customer_details=payload.customer_details,
        idempotency_key=idempotency_key,
    )
    return order_response(order)


@router.post("/{order_id}/items")
def add_items(
    order_id: str,
    payload: ItemsAdd,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    order = engine.add_items_to_order(
        order_id,
        [line.to_cart_line() for line in payload.items],
        actor=current_user["id"],
        idempotency_key=idempotency_key,
    )
    return order_response(order)


@router.patch("/{order_id}/items/{menu_item_id}")
def update_item_quantity(
    order_id: str,
    menu_item_id: str,
    payload: QuantityUpdate,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    order = engine.update_item_quantity(order_id, menu_item_id, payload.quantity, actor=current_user["id"])
    return order_response(order)


@router.delete("/{order_id}/items/{menu_item_id}")
def remove_item(
    order_id: str,
    menu_item_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    return order_response(engine.remove_item(order_id, menu_item_id, actor=current_user["id"]))


@router.post("/{order_id}/confirm")
def confirm_order(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    return order_response(engine.confirm_order(order_id, actor=current_user["id"]))


@router.get("/{order_id}/kot")
def preview_kot(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    tables: TableRegistry = Depends(get_tables),
    current_user: dict = Depends(require_floor_staff),
):
    """Preview of the ticket the next send would print"""
    order = engine.get_order(order_id)
    return {"order_id": order.id, "kot": render_kot(order, _table_name(tables, order))}


@router.post("/{order_id}/kot")
def send_to_kitchen(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    tables: TableRegistry = Depends(get_tables),
    current_user: dict = Depends(require_floor_staff),
):
    before = engine.get_order(order_id)
    order = engine.send_to_kitchen(order_id, actor=current_user["id"])
    if order.kot_counter == before.kot_counter:
        return {"order": order_response(order), "kot_id": None, "kot": None}
    kot_id = f"KOT-{order.kot_counter}"
    if before.new_items:
        ticket = render_kot(before, _table_name(tables, order))
    else:
        ticket = render_kot(order, _table_name(tables, order), kot_id=kot_id)
    return {"order": order_response(order), "kot_id": kot_id, "kot": ticket}


@router.get("/{order_id}/kot/{kot_id}")
def reprint_kot(
    order_id: str,
    kot_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    tables: TableRegistry = Depends(get_tables),
    current_user: dict = Depends(require_floor_staff),
):
    order = engine.get_order(order_id)
    return {"order_id": order.id, "kot_id": kot_id, "kot": render_kot(order, _table_name(tables, order), kot_id=kot_id)}


@router.patch("/{order_id}/status")
def update_order_status(
    order_id: str,
    status_update: OrderStatusUpdate,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    return order_response(engine.update_order_status(order_id, status_update.status, actor=current_user["id"]))


@router.patch("/{order_id}/tickets/{kot_id}")
def serve_ticket_items(
    order_id: str,
    kot_id: str,
    payload: ItemStatusUpdate,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    """Captain side of item progression, typically Ready -> Served"""
    order = engine.advance_item_status(
        order_id, kot_id, payload.status, item_ids=payload.item_ids, actor=current_user["id"]
    )
    return order_response(order)


@router.post("/{order_id}/switch-table")
def switch_table(
    order_id: str,
    payload: TableSwitch,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    order = engine.switch_table(order_id, payload.new_table_id, payload.old_table_id, actor=current_user["id"])
    return order_response(order)


@router.delete("/{order_id}/switched-from")
def clear_switched_from(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    return order_response(engine.clear_switched_from(order_id, actor=current_user["id"]))


@router.post("/{order_id}/discount")
def apply_discount(
    order_id: str,
    payload: DiscountApply,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_cashier_staff),
):
    order = engine.apply_discount(order_id, payload.value, payload.discount_type, actor=current_user["id"])
    return order_response(order)


@router.put("/{order_id}/payment-method")
def set_payment_method(
    order_id: str,
    payload: PaymentMethodUpdate,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    """Staff acknowledge (clear) or record the customer's payment intent"""
    return order_response(engine.set_payment_method(order_id, payload.method, actor=current_user["id"]))


@router.get("/{order_id}/bill")
def preview_bill(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    tables: TableRegistry = Depends(get_tables),
    current_user: dict = Depends(require_cashier_staff),
):
    order = engine.get_order(order_id)
    return {
        "order_id": order.id,
        "can_generate_bill": can_generate_bill(order),
        "bill": render_bill(order, _table_name(tables, order)),
    }


@router.post("/{order_id}/bill")
def generate_bill(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    tables: TableRegistry = Depends(get_tables),
    current_user: dict = Depends(require_cashier_staff),
):
    before = engine.get_order(order_id)
    order = engine.generate_bill(order_id, actor=current_user["id"])
    return {
        "order": order_response(order),
        "duplicate": before.status == OrderStatus.BILLED,
        "bill": render_bill(order, _table_name(tables, order)),
    }


@router.post("/{order_id}/paid")
def mark_paid(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    return order_response(engine.mark_paid(order_id, actor=current_user["id"]))


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    current_user: dict = Depends(require_floor_staff),
):
    return order_response(engine.cancel_order(order_id, actor=current_user["id"]))


@router.get("/{order_id}/activity")
def order_activity(
    order_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    activity: ActivityLogger = Depends(get_activity),
    current_user: dict = Depends(require_cashier_staff),
):
    engine.get_order(order_id)
    return [a.model_dump(mode="json") for a in activity.for_resource(order_id)]
