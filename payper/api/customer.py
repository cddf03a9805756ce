"""Customer ordering at the table, gated by a time-boxed session lease."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel

from ..core.exceptions import NotFoundError, ValidationError
from ..core.session import SessionManager
from ..models.order import OrderStatus, OrderType, PaymentMethod
from ..services.order_store import OrderQuery
from .deps import get_engine, get_session_manager
from .orders import CartLineIn
from .orders_service import OrderLifecycleService, can_proceed_to_pay, discount_amount


class SessionStart(BaseModel):
    table_id: str


class CustomerOrderCreate(BaseModel):
    session_id: str
    items: List[CartLineIn]


class PaymentIntent(BaseModel):
    session_id: str
    method: Optional[PaymentMethod] = None


router = APIRouter(prefix="/customer", tags=["Customer"])


def _lease_table(sessions: SessionManager, engine: OrderLifecycleService, session_id: str) -> str:
    lease = sessions.get_customer_session(session_id)
    if not lease:
        raise ValidationError("no ordering session, scan the table QR code")
    table_id = lease["table_id"]
    has_active_order = engine.active_order_for_table(table_id) is not None
    if not sessions.is_customer_session_valid(session_id, table_id, has_active_order):
        raise ValidationError("session expired, scan the table QR code again")
    return table_id


@router.post("/sessions", status_code=201)
def start_session(
    payload: SessionStart,
    engine: OrderLifecycleService = Depends(get_engine),
    sessions: SessionManager = Depends(get_session_manager),
):
    table = engine.tables.get(payload.table_id)
    lease = sessions.start_customer_session(table.id)
    return {**lease, "table_name": table.name, "timeout_ms": sessions.timeout_ms}


@router.get("/sessions/{session_id}")
def get_session(
    session_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Lease state; follows the order if staff moved it to another table."""
    lease = sessions.get_customer_session(session_id)
    if not lease:
        raise NotFoundError("Session not found")

    redirect_to = None
    active = [o for o in engine.list_orders(OrderQuery(order_type=OrderType.DINE_IN)) if o.is_active]
    moved = next((o for o in active if o.switched_from == lease["table_id"]), None)
    if moved is not None and all(o.table_id != lease["table_id"] for o in active):
        lease = sessions.rebind_customer_session(session_id, moved.table_id)
        engine.clear_switched_from(moved.id, actor=session_id)
        redirect_to = moved.table_id

    has_active_order = engine.active_order_for_table(lease["table_id"]) is not None
    return {
        **lease,
        "valid": sessions.is_customer_session_valid(session_id, lease["table_id"], has_active_order),
        "redirect_to": redirect_to,
    }


@router.get("/sessions/{session_id}/order")
def get_table_order(
    session_id: str,
    engine: OrderLifecycleService = Depends(get_engine),
    sessions: SessionManager = Depends(get_session_manager),
):
    lease = sessions.get_customer_session(session_id)
    if not lease:
        raise NotFoundError("Session not found")
    order = engine.active_order_for_table(lease["table_id"])
    if order is None:
        return {"order": None}
    return {
        "order": {
            "id": order.id,
            "status": order.status.value,
            "items": [
                {
                    "name": i.menu_item.name,
                    "quantity": i.quantity,
                    "price": str(i.menu_item.price),
                    "kot_status": i.kot_status.value,
                    "item_status": i.item_status.value,
                }
                for i in order.items
            ],
            "total": str(order.total),
            "discount_amount": str(discount_amount(order)),
            "payment_method": order.payment_method.value if order.payment_method else None,
        },
        "can_proceed_to_pay": can_proceed_to_pay(order),
    }


@router.post("/orders", status_code=201)
def place_order(
    payload: CustomerOrderCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    engine: OrderLifecycleService = Depends(get_engine),
    sessions: SessionManager = Depends(get_session_manager),
):
    table_id = _lease_table(sessions, engine, payload.session_id)
    order = engine.place_or_add_for_table(
        table_id,
        [line.to_cart_line() for line in payload.items],
        user_id=payload.session_id,
        session_id=payload.session_id,
        idempotency_key=idempotency_key,
    )
    return {"order_id": order.id, "status": order.status.value, "total": str(order.total)}


@router.put("/orders/payment-method")
def request_bill(
    payload: PaymentIntent,
    engine: OrderLifecycleService = Depends(get_engine),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Tell the captain how the table wants to pay"""
    lease = sessions.get_customer_session(payload.session_id)
    if not lease:
        raise ValidationError("no ordering session, scan the table QR code")
    order = engine.active_order_for_table(lease["table_id"])
    if order is None or order.status in (OrderStatus.CANCELLED, OrderStatus.PAID):
        raise NotFoundError("No running order at this table")
    order = engine.set_payment_method(order.id, payload.method, actor=payload.session_id)
    return {"order_id": order.id, "payment_method": order.payment_method.value if order.payment_method else None}
