"""Order repository: the only code that reads or writes the order collection.

Writes are conditional on the version the caller read (``expected_version``),
so two operators editing the same order cannot silently overwrite each other.
Listeners register an ``OrderQuery`` and receive an immutable snapshot (a
tuple of order copies) right away and after every change touching the query.
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from ..core.exceptions import ConflictError, NotFoundError, StateConflictError
from ..models.order import Order, OrderStatus, OrderType, OnlinePlatform

logger = logging.getLogger(__name__)

Snapshot = Tuple[Order, ...]
Listener = Callable[[Snapshot], None]


@dataclass(frozen=True)
class OrderQuery:
    statuses: Optional[FrozenSet[OrderStatus]] = None
    table_id: Optional[str] = None
    platform: Optional[OnlinePlatform] = None
    order_type: Optional[OrderType] = None

    @classmethod
    def build(cls, statuses=None, table_id=None, platform=None, order_type=None) -> "OrderQuery":
        return cls(
            statuses=frozenset(OrderStatus(s) for s in statuses) if statuses is not None else None,
            table_id=table_id,
            platform=OnlinePlatform(platform) if platform else None,
            order_type=OrderType(order_type) if order_type else None,
        )

    def matches(self, order: Order) -> bool:
        if self.statuses is not None and order.status not in self.statuses:
            return False
        if self.table_id is not None and order.table_id != self.table_id:
            return False
        if self.platform is not None and order.online_platform != self.platform:
            return False
        if self.order_type is not None and order.order_type != self.order_type:
            return False
        return True


ALL_ORDERS = OrderQuery()


class OrderStore(ABC):
    def __init__(self):
        self._listeners: Dict[str, Tuple[OrderQuery, Listener]] = {}
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def create(self, order: Order) -> Order:
        ...

    @abstractmethod
    def get(self, order_id: str) -> Order:
        """Return the stored order or raise NotFoundError."""

    @abstractmethod
    def update(self, order: Order, expected_version: int) -> Order:
        """Replace the stored order if its version still equals ``expected_version``.

        The returned copy carries ``expected_version + 1``. Raises ConflictError
        when another writer got there first.
        """

    @abstractmethod
    def query(self, query: OrderQuery = ALL_ORDERS) -> List[Order]:
        """Matching orders, oldest ``timestamp`` first."""

    @abstractmethod
    def find_by_idempotency_key(self, key: str) -> Optional[Order]:
        ...

    def subscribe(self, query: OrderQuery, listener: Listener) -> Callable[[], None]:
        token = uuid.uuid4().hex
        with self._listeners_lock:
            self._listeners[token] = (query, listener)
        listener(tuple(self.query(query)))

        def unsubscribe():
            with self._listeners_lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def _notify(self, before: Optional[Order], after: Order):
        with self._listeners_lock:
            listeners = list(self._listeners.values())
        for query, listener in listeners:
            if query.matches(after) or (before is not None and query.matches(before)):
                try:
                    listener(tuple(self.query(query)))
                except Exception:
                    logger.exception("Order listener failed for order %s", after.id)


class InMemoryOrderStore(OrderStore):
    def __init__(self):
        super().__init__()
        self._orders: Dict[str, Order] = {}
        self._lock = threading.RLock()

    def _check_table_free(self, order: Order):
        """One active dine-in order per table. Caller holds ``_lock``."""
        if order.order_type != OrderType.DINE_IN or not order.table_id or not order.is_active:
            return
        for other in self._orders.values():
            if (
                other.id != order.id
                and other.order_type == OrderType.DINE_IN
                and other.table_id == order.table_id
                and other.is_active
            ):
                raise StateConflictError(f"table {order.table_id} already has an active order")

    def create(self, order: Order) -> Order:
        with self._lock:
            if order.id in self._orders:
                raise ConflictError(f"Order {order.id} already exists")
            self._check_table_free(order)
            stored = order.model_copy(deep=True)
            self._orders[order.id] = stored
        self._notify(None, stored)
        return stored.model_copy(deep=True)

    def get(self, order_id: str) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            return order.model_copy(deep=True)

    def update(self, order: Order, expected_version: int) -> Order:
        with self._lock:
            current = self._orders.get(order.id)
            if current is None:
                raise NotFoundError(f"Order {order.id} not found")
            if current.version != expected_version:
                raise ConflictError(
                    f"Order {order.id} changed (version {current.version}, expected {expected_version})",
                    current_version=current.version,
                )
            self._check_table_free(order)
            stored = order.model_copy(update={"version": expected_version + 1}, deep=True)
            self._orders[order.id] = stored
        self._notify(current, stored)
        return stored.model_copy(deep=True)

    def query(self, query: OrderQuery = ALL_ORDERS) -> List[Order]:
        with self._lock:
            matching = [o.model_copy(deep=True) for o in self._orders.values() if query.matches(o)]
        return sorted(matching, key=lambda o: o.timestamp)

    def find_by_idempotency_key(self, key: str) -> Optional[Order]:
        with self._lock:
            for order in self._orders.values():
                if key in order.idempotency_keys:
                    return order.model_copy(deep=True)
        return None
