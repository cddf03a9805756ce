"""Supabase-backed order repository.

Rows of the ``orders`` table mirror ``Order`` field by field; ``items`` and
``customer_details`` are JSON columns. The version check is a conditional
update, so the database itself rejects a stale write. Table exclusivity rests
on a partial unique index:

    create unique index orders_one_active_per_table on orders (table_id)
    where order_type = 'dine-in' and status not in ('Paid', 'Cancelled');
"""
import logging
from typing import List, Optional

from ..core.exceptions import ConflictError, NotFoundError, PayperError, PersistenceError, StateConflictError
from ..models.order import Order
from .order_store import ALL_ORDERS, OrderQuery, OrderStore

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class SupabaseOrderStore(OrderStore):
    TABLE = "orders"

    def __init__(self, client):
        super().__init__()
        self.client = client

    def _execute(self, action: str, request):
        try:
            return request.execute()
        except PayperError:
            raise
        except Exception as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise StateConflictError(f"table already has an active order: {e}") from e
            logger.error("Supabase %s failed: %s", action, e)
            raise PersistenceError(f"Order store {action} failed: {e}") from e

    def create(self, order: Order) -> Order:
        result = self._execute("insert", self.client.table(self.TABLE).insert(order.model_dump(mode="json")))
        if not result.data:
            raise PersistenceError(f"Order store insert returned no row for {order.id}")
        created = Order.model_validate(result.data[0])
        self._notify(None, created)
        return created

    def get(self, order_id: str) -> Order:
        result = self._execute("read", self.client.table(self.TABLE).select("*").eq("id", order_id))
        if not result.data:
            raise NotFoundError(f"Order {order_id} not found")
        return Order.model_validate(result.data[0])

    def update(self, order: Order, expected_version: int) -> Order:
        before = self.get(order.id)
        payload = order.model_copy(update={"version": expected_version + 1}).model_dump(mode="json")
        result = self._execute(
            "update",
            self.client.table(self.TABLE).update(payload).eq("id", order.id).eq("version", expected_version),
        )
        if not result.data:
            current = self.get(order.id)
            raise ConflictError(
                f"Order {order.id} changed (version {current.version}, expected {expected_version})",
                current_version=current.version,
            )
        updated = Order.model_validate(result.data[0])
        self._notify(before, updated)
        return updated

    def query(self, query: OrderQuery = ALL_ORDERS) -> List[Order]:
        request = self.client.table(self.TABLE).select("*")
        if query.statuses is not None:
            request = request.in_("status", [s.value for s in query.statuses])
        if query.table_id is not None:
            request = request.eq("table_id", query.table_id)
        if query.platform is not None:
            request = request.eq("online_platform", query.platform.value)
        if query.order_type is not None:
            request = request.eq("order_type", query.order_type.value)
        result = self._execute("query", request.order("timestamp"))
        return [Order.model_validate(row) for row in result.data]

    def find_by_idempotency_key(self, key: str) -> Optional[Order]:
        result = self._execute(
            "read",
            self.client.table(self.TABLE).select("*").contains("idempotency_keys", [key]).limit(1),
        )
        if not result.data:
            return None
        return Order.model_validate(result.data[0])
