"""Order lifecycle engine.

Every command reads the order, applies a transform to a private copy and
writes it back conditioned on the version it read. A lost race surfaces as
ConflictError inside the store; ``with_optimistic_retry`` then runs the whole
command again, so each precondition is checked against the fresh document.
"""
import logging
import uuid
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ..core.activity_logger import ActivityLogger
from ..core.exceptions import NotFoundError, PersistenceError, StateConflictError, ValidationError
from ..core.optimistic_lock import with_optimistic_retry
from ..models.menu import MenuItem
from ..models.order import (
    ITEM_FLOW,
    CartLine,
    CustomerDetails,
    DiscountType,
    ItemStatus,
    KotStatus,
    OnlinePlatform,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentMethod,
)
from ..services.catalog import MenuCatalog, TableRegistry
from ..services.order_store import OrderQuery, OrderStore
from ..utils.clock import get_local_time, now_ms
from ..utils.money import to_money

logger = logging.getLogger(__name__)


# Derived gates. The engine enforces them; the UI may also read them to hide actions.

def can_cancel_order(order: Order) -> bool:
    return not any(i.kot_status == KotStatus.PRINTED for i in order.items)


def can_generate_bill(order: Order) -> bool:
    if order.new_items:
        return False
    if order.status == OrderStatus.BILLED:
        return True
    printed = order.printed_items
    return bool(printed) and all(i.item_status == ItemStatus.SERVED for i in printed)


def needs_kot_print(order: Order) -> bool:
    return order.status == OrderStatus.CONFIRMED and bool(order.new_items)


def can_proceed_to_pay(order: Order) -> bool:
    """Customer side: everything sent to the kitchen has been served."""
    if order.new_items:
        return False
    printed = order.printed_items
    return bool(printed) and all(i.item_status == ItemStatus.SERVED for i in printed)


def items_subtotal(items: List[OrderItem]) -> Decimal:
    return to_money(sum((i.line_total for i in items), Decimal("0")))


def recover_original_total(order: Order) -> Decimal:
    """Undiscounted subtotal, reverse-derived for orders saved without one."""
    if order.original_total is not None:
        return to_money(order.original_total)
    discount = Decimal(str(order.discount or 0))
    if not discount:
        return to_money(order.total)
    if order.discount_type == DiscountType.AMOUNT:
        return to_money(order.total + discount)
    if discount >= 100:
        return items_subtotal(order.items)
    return to_money(order.total / (1 - discount / 100))


def discount_amount(order: Order) -> Decimal:
    if not order.discount:
        return Decimal("0.00")
    subtotal = recover_original_total(order)
    if order.discount_type == DiscountType.PERCENTAGE:
        return to_money(subtotal * order.discount / 100)
    return to_money(order.discount)


def _reprice(order: Order):
    """Item ledger changed: subtotal recomputed, any discount forfeited."""
    subtotal = items_subtotal(order.items)
    order.original_total = subtotal
    order.total = subtotal
    order.discount = Decimal("0")


def _placeholder_kot_id(menu_item_id: str, n: int) -> str:
    return f"temp-{now_ms()}-{menu_item_id}-{n}"


def _new_row(menu_item: MenuItem, quantity: int, notes: Optional[str], n: int) -> OrderItem:
    return OrderItem(
        id=uuid.uuid4().hex,
        menu_item=menu_item,
        quantity=quantity,
        kot_status=KotStatus.NEW,
        item_status=ItemStatus.PENDING,
        kot_id=_placeholder_kot_id(menu_item.id, n),
        notes=notes,
    )


def _require_ledger_open(order: Order):
    if order.is_terminal or order.status == OrderStatus.BILLED:
        raise StateConflictError(f"cannot change items: order is {order.status.value}")
    if order.order_type == OrderType.ONLINE and order.status != OrderStatus.NEW:
        raise StateConflictError("cannot change items: online order already accepted")


class OrderLifecycleService:
    def __init__(
        self,
        store: OrderStore,
        menu: MenuCatalog,
        tables: TableRegistry,
        activity: ActivityLogger = None,
    ):
        self.store = store
        self.menu = menu
        self.tables = tables
        self.activity = activity or ActivityLogger()

    # Reads

    def get_order(self, order_id: str) -> Order:
        return self.store.get(order_id)

    def list_orders(self, query: OrderQuery) -> List[Order]:
        return self.store.query(query)

    def active_order_for_table(self, table_id: str, exclude_order_id: str = None) -> Optional[Order]:
        for order in self.store.query(OrderQuery(table_id=table_id, order_type=OrderType.DINE_IN)):
            if order.is_active and order.id != exclude_order_id:
                return order
        return None

    # Internals

    def _audit(self, actor: str, action: str, order_id: str, details: dict = None):
        """Audit a committed change. A failed write is logged, the command still succeeded."""
        try:
            self.activity.log_activity(actor, action, order_id, details)
        except PersistenceError as e:
            logger.error("Order %s %s committed without an audit entry: %s", order_id, action, e)

    def _resolve_cart(self, cart: List[CartLine]) -> List[Dict]:
        """Validate cart lines against the catalog and snapshot their menu items."""
        if not cart:
            raise ValidationError("cart is empty")
        merged: Dict[str, Dict] = {}
        for line in cart:
            if line.quantity < 1:
                raise ValidationError(f"quantity for {line.menu_item_id} must be at least 1")
            if line.menu_item_id in merged:
                merged[line.menu_item_id]["quantity"] += line.quantity
                continue
            menu_item = self.menu.get(line.menu_item_id)
            if not menu_item.available:
                raise ValidationError(f"{menu_item.name} is not available")
            merged[line.menu_item_id] = {"menu_item": menu_item, "quantity": line.quantity, "notes": line.notes}
        return list(merged.values())

    def _build_rows(self, lines: List[Dict], order_type: OrderType) -> List[OrderItem]:
        rows = []
        for line in lines:
            if order_type == OrderType.DINE_IN:
                # one row per physical unit
                rows.extend(
                    _new_row(line["menu_item"], 1, line["notes"], n) for n in range(line["quantity"])
                )
            else:
                rows.append(_new_row(line["menu_item"], line["quantity"], line["notes"], 0))
        return rows

    def _mutate(
        self,
        order_id: str,
        action: str,
        actor: str,
        transform: Callable[[Order], Optional[Order]],
        details: dict = None,
    ) -> Order:
        current = self.store.get(order_id)
        changed = transform(current.model_copy(deep=True))
        if changed is None:
            return current
        changed.updated_at = get_local_time()
        saved = self.store.update(changed, current.version)
        self._audit(actor, action, order_id, details)
        return saved

    # Placement

    def place_order(
        self,
        cart: List[CartLine],
        user_id: str,
        table_id: str = None,
        online_platform: OnlinePlatform = None,
        platform_order_id: str = None,
        customer_details: CustomerDetails = None,
        session_id: str = None,
        idempotency_key: str = None,
    ) -> Order:
        if not user_id:
            raise ValidationError("cannot place order: no authenticated session")
        if table_id and online_platform:
            raise ValidationError("an order is either dine-in or online, not both")
        if not table_id and not online_platform:
            raise ValidationError("cannot place order: no table or platform selected")
        lines = self._resolve_cart(cart)

        if idempotency_key:
            existing = self.store.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info("Replayed placement %s -> order %s", idempotency_key, existing.id)
                return existing

        if table_id:
            order_type = OrderType.DINE_IN
            table = self.tables.get(table_id)
            if self.active_order_for_table(table_id) is not None:
                raise StateConflictError(f"{table.name} already has an active order")
        else:
            order_type = OrderType.ONLINE
            if customer_details is None:
                raise ValidationError("online orders need customer details")

        items = self._build_rows(lines, order_type)
        subtotal = items_subtotal(items)
        order = Order(
            id=uuid.uuid4().hex,
            user_id=user_id,
            order_type=order_type,
            table_id=table_id,
            session_id=session_id,
            online_platform=online_platform,
            platform_order_id=platform_order_id,
            customer_details=customer_details,
            items=items,
            status=OrderStatus.NEW,
            timestamp=now_ms(),
            created_at=get_local_time(),
            total=subtotal,
            original_total=subtotal,
            kot_counter=0,
            idempotency_keys=[idempotency_key] if idempotency_key else [],
        )
        created = self.store.create(order)
        self._audit(
            user_id, "place", created.id,
            {"order_type": order_type.value, "items": len(items), "total": str(subtotal)},
        )
        return created

    def place_or_add_for_table(
        self,
        table_id: str,
        cart: List[CartLine],
        user_id: str,
        session_id: str = None,
        idempotency_key: str = None,
    ) -> Order:
        """Customer checkout: join the table's running order if there is one."""
        active = self.active_order_for_table(table_id)
        if active is not None:
            return self.add_items_to_order(active.id, cart, actor=user_id, idempotency_key=idempotency_key)
        return self.place_order(
            cart, user_id, table_id=table_id, session_id=session_id, idempotency_key=idempotency_key
        )

    # Item ledger

    @with_optimistic_retry()
    def add_items_to_order(
        self, order_id: str, cart: List[CartLine], actor: str = "system", idempotency_key: str = None
    ) -> Order:
        lines = self._resolve_cart(cart)

        def transform(order: Order):
            if idempotency_key and idempotency_key in order.idempotency_keys:
                return None
            _require_ledger_open(order)
            order.items = order.items + self._build_rows(lines, order.order_type)
            _reprice(order)
            # additions go back through captain confirmation
            order.status = OrderStatus.NEW
            order.timestamp = now_ms()
            if idempotency_key:
                order.idempotency_keys = order.idempotency_keys + [idempotency_key]
            return order

        return self._mutate(order_id, "add_items", actor, transform, {"lines": len(lines)})

    @with_optimistic_retry()
    def update_item_quantity(
        self, order_id: str, menu_item_id: str, new_quantity: int, actor: str = "system"
    ) -> Order:
        target = max(new_quantity, 0)

        def transform(order: Order):
            _require_ledger_open(order)
            pending = [
                i for i in order.items
                if i.menu_item.id == menu_item_id and i.kot_status == KotStatus.NEW
            ]
            current = sum(i.quantity for i in pending)
            delta = target - current
            if delta == 0:
                return None
            template = next((i for i in order.items if i.menu_item.id == menu_item_id), None)
            if template is None:
                raise NotFoundError(f"Menu item {menu_item_id} is not on order {order.id}")

            if order.order_type == OrderType.ONLINE:
                # online rows carry the full quantity on a single line
                pending_ids = {i.id for i in pending}
                kept = [i for i in order.items if i.id not in pending_ids]
                if target:
                    kept.append(_new_row(template.menu_item, target, template.notes, 0))
                order.items = kept
            elif delta > 0:
                order.items = order.items + [
                    _new_row(template.menu_item, 1, template.notes, n) for n in range(delta)
                ]
            else:
                to_remove = -delta
                kept = []
                for item in order.items:
                    if to_remove and item.menu_item.id == menu_item_id and item.kot_status == KotStatus.NEW:
                        to_remove -= 1
                        continue
                    kept.append(item)
                order.items = kept
            _reprice(order)
            return order

        return self._mutate(
            order_id, "update_quantity", actor, transform,
            {"menu_item_id": menu_item_id, "quantity": target},
        )

    @with_optimistic_retry()
    def remove_item(self, order_id: str, menu_item_id: str, actor: str = "system") -> Order:
        def transform(order: Order):
            _require_ledger_open(order)
            kept = [
                i for i in order.items
                if not (i.menu_item.id == menu_item_id and i.kot_status == KotStatus.NEW)
            ]
            if len(kept) == len(order.items):
                return None
            order.items = kept
            _reprice(order)
            return order

        return self._mutate(order_id, "remove_item", actor, transform, {"menu_item_id": menu_item_id})

    # Kitchen

    @with_optimistic_retry()
    def send_to_kitchen(self, order_id: str, actor: str = "system") -> Order:
        """Issue one ticket for every New row. No New rows, no ticket."""

        def transform(order: Order):
            if order.order_type == OrderType.ONLINE:
                raise StateConflictError("online orders are sent to the kitchen when accepted")
            if order.is_terminal or order.status == OrderStatus.BILLED:
                raise StateConflictError(f"cannot send to kitchen: order is {order.status.value}")
            if not order.new_items:
                return None
            counter = order.kot_counter + 1
            kot_id = f"KOT-{counter}"
            for item in order.items:
                if item.kot_status == KotStatus.NEW:
                    item.kot_status = KotStatus.PRINTED
                    item.item_status = ItemStatus.PENDING
                    item.kot_id = kot_id
            order.kot_counter = counter
            order.status = OrderStatus.CONFIRMED
            return order

        return self._mutate(order_id, "send_to_kitchen", actor, transform)

    @with_optimistic_retry()
    def advance_item_status(
        self,
        order_id: str,
        kot_id: str,
        new_status: ItemStatus,
        item_ids: List[str] = None,
        actor: str = "system",
    ) -> Order:
        """Move every row of a ticket (or the given rows of it) one step forward.

        Only the next status in Pending -> Preparing -> Ready -> Served is
        accepted. Rows already at ``new_status`` are left alone so a retried
        request is harmless.
        """
        new_status = ItemStatus(new_status)
        wanted = set(item_ids) if item_ids else None

        def transform(order: Order):
            if order.is_terminal:
                raise StateConflictError(f"cannot update items: order is {order.status.value}")
            rows = [
                i for i in order.items
                if i.kot_id == kot_id and i.kot_status == KotStatus.PRINTED
                and (wanted is None or i.id in wanted)
            ]
            if not rows:
                raise NotFoundError(f"Ticket {kot_id} has no matching items on order {order.id}")
            changed = False
            for item in rows:
                if item.item_status == new_status:
                    continue
                if ITEM_FLOW.index(new_status) != ITEM_FLOW.index(item.item_status) + 1:
                    raise StateConflictError(
                        f"cannot move {item.menu_item.name} from {item.item_status.value} to {new_status.value}"
                    )
                item.item_status = new_status
                changed = True
            return order if changed else None

        return self._mutate(
            order_id, "advance_item_status", actor, transform,
            {"kot_id": kot_id, "status": new_status.value},
        )

    # Order status

    @with_optimistic_retry()
    def confirm_order(self, order_id: str, actor: str = "system") -> Order:
        def transform(order: Order):
            if order.status == OrderStatus.CONFIRMED:
                return None
            if order.status != OrderStatus.NEW:
                raise StateConflictError(f"cannot confirm: order is {order.status.value}")
            order.status = OrderStatus.CONFIRMED
            return order

        return self._mutate(order_id, "confirm", actor, transform)

    def update_order_status(self, order_id: str, status: OrderStatus, actor: str = "system") -> Order:
        status = OrderStatus(status)
        if status == OrderStatus.BILLED:
            return self.generate_bill(order_id, actor=actor)
        if status == OrderStatus.PAID:
            return self.mark_paid(order_id, actor=actor)
        if status == OrderStatus.CANCELLED:
            return self.cancel_order(order_id, actor=actor)
        return self._advance_order_status(order_id, status, actor)

    @with_optimistic_retry()
    def _advance_order_status(self, order_id: str, status: OrderStatus, actor: str) -> Order:
        def transform(order: Order):
            if order.status == status:
                return None
            if order.is_terminal:
                raise StateConflictError(f"cannot change status: order is {order.status.value}")
            flow = order.flow
            if status not in flow:
                raise StateConflictError(f"{status.value} is not a status of {order.order_type.value} orders")
            if flow.index(status) <= flow.index(order.status):
                raise StateConflictError(f"cannot move order from {order.status.value} back to {status.value}")

            if order.order_type == OrderType.ONLINE:
                if order.status == OrderStatus.NEW and status != OrderStatus.ACCEPTED:
                    raise StateConflictError("online order must be accepted first")
                if status == OrderStatus.ACCEPTED:
                    # acceptance prints the whole order as a single ticket
                    counter = order.kot_counter + 1
                    for item in order.items:
                        item.kot_status = KotStatus.PRINTED
                        item.item_status = ItemStatus.PENDING
                        item.kot_id = f"KOT-{counter}"
                    order.kot_counter = counter
            order.status = status
            return order

        return self._mutate(order_id, "status", actor, transform, {"status": status.value})

    # Table

    @with_optimistic_retry()
    def switch_table(
        self, order_id: str, new_table_id: str, old_table_id: str = None, actor: str = "system"
    ) -> Order:
        new_table = self.tables.get(new_table_id)

        def transform(order: Order):
            if order.order_type != OrderType.DINE_IN:
                raise StateConflictError("only dine-in orders sit at a table")
            if not order.is_active:
                raise StateConflictError(f"cannot switch table: order is {order.status.value}")
            if old_table_id and order.table_id != old_table_id:
                raise StateConflictError(f"order is no longer at table {old_table_id}")
            if order.table_id == new_table_id:
                return None
            if self.active_order_for_table(new_table_id, exclude_order_id=order.id) is not None:
                raise StateConflictError(f"{new_table.name} is occupied")
            order.switched_from = order.table_id
            order.table_id = new_table_id
            return order

        return self._mutate(order_id, "switch_table", actor, transform, {"table_id": new_table_id})

    @with_optimistic_retry()
    def clear_switched_from(self, order_id: str, actor: str = "system") -> Order:
        def transform(order: Order):
            if order.switched_from is None:
                return None
            order.switched_from = None
            return order

        return self._mutate(order_id, "clear_switched_from", actor, transform)

    # Billing

    @with_optimistic_retry()
    def apply_discount(
        self, order_id: str, value, discount_type: DiscountType, actor: str = "system"
    ) -> Order:
        value = Decimal(str(value))
        discount_type = DiscountType(discount_type)
        if value < 0:
            raise ValidationError("discount cannot be negative")
        if discount_type == DiscountType.PERCENTAGE and value > 100:
            raise ValidationError("percentage discount cannot exceed 100")

        def transform(order: Order):
            if order.is_terminal:
                raise StateConflictError(f"cannot discount: order is {order.status.value}")
            original = recover_original_total(order)
            if discount_type == DiscountType.PERCENTAGE:
                amount = original * value / 100
            else:
                amount = value
            order.original_total = original
            order.total = max(Decimal("0.00"), to_money(original - amount))
            order.discount = value
            order.discount_type = discount_type
            return order

        return self._mutate(
            order_id, "discount", actor, transform,
            {"value": str(value), "type": discount_type.value},
        )

    @with_optimistic_retry()
    def set_payment_method(self, order_id: str, method: Optional[PaymentMethod], actor: str = "system") -> Order:
        method = PaymentMethod(method) if method else None

        def transform(order: Order):
            if order.payment_method == method:
                return None
            if method is not None and order.is_terminal:
                raise StateConflictError(f"cannot request payment: order is {order.status.value}")
            order.payment_method = method
            return order

        return self._mutate(
            order_id, "payment_method", actor, transform,
            {"method": method.value if method else None},
        )

    @with_optimistic_retry()
    def generate_bill(self, order_id: str, actor: str = "system") -> Order:
        """Billed once; calling again returns the order for a duplicate print."""

        def transform(order: Order):
            if order.status == OrderStatus.BILLED:
                return None
            if order.order_type != OrderType.DINE_IN:
                raise StateConflictError("online orders are settled by their platform")
            if order.is_terminal:
                raise StateConflictError(f"cannot bill: order is {order.status.value}")
            if order.new_items:
                raise StateConflictError("cannot bill: items not yet sent to the kitchen")
            if not can_generate_bill(order):
                raise StateConflictError("cannot bill: not every item has been served")
            order.status = OrderStatus.BILLED
            order.billed_at = get_local_time()
            return order

        return self._mutate(order_id, "bill", actor, transform)

    @with_optimistic_retry()
    def mark_paid(self, order_id: str, actor: str = "system") -> Order:
        def transform(order: Order):
            if order.status == OrderStatus.PAID:
                return None
            if order.status != OrderStatus.BILLED:
                raise StateConflictError(f"cannot mark paid: order is {order.status.value}, not Billed")
            order.status = OrderStatus.PAID
            order.paid_at = get_local_time()
            return order

        return self._mutate(order_id, "paid", actor, transform)

    @with_optimistic_retry()
    def cancel_order(self, order_id: str, actor: str = "system") -> Order:
        def transform(order: Order):
            if order.status == OrderStatus.CANCELLED:
                return None
            if order.is_terminal or order.status == OrderStatus.BILLED:
                raise StateConflictError(f"cannot cancel: order is {order.status.value}")
            if not can_cancel_order(order):
                raise StateConflictError("cannot cancel: kitchen ticket already issued")
            order.status = OrderStatus.CANCELLED
            order.cancelled_at = get_local_time()
            return order

        return self._mutate(order_id, "cancel", actor, transform)
