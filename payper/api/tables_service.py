from typing import Any, Dict, Iterable, List, Optional, Set

from ..models.order import Order, OrderStatus, OrderType
from ..models.table import Table
from ..utils.clock import now_ms
from .orders_service import needs_kot_print

VACANT = "Vacant"
RUNNING = "Running"
KOT_PRINTED = "KOT Printed"
BILLED = "Billed"


def occupied_table_ids(orders: Iterable[Order], exclude_order_id: Optional[str] = None) -> Set[str]:
    occupied = set()
    for order in orders:
        if order.id == exclude_order_id:
            continue
        if order.order_type == OrderType.DINE_IN and order.table_id and order.is_active:
            occupied.add(order.table_id)
    return occupied


def vacant_tables(tables: Iterable[Table], orders: Iterable[Order], exclude_order_id: Optional[str] = None) -> List[Table]:
    """Tables free to take an order, or to receive ``exclude_order_id`` in a switch."""
    occupied = occupied_table_ids(orders, exclude_order_id)
    return sorted((t for t in tables if t.id not in occupied), key=Table.sort_key)


def table_state(order: Optional[Order]) -> str:
    if order is None:
        return VACANT
    if order.status == OrderStatus.BILLED:
        return BILLED
    if order.printed_items:
        return KOT_PRINTED
    return RUNNING


def table_grid(tables: Iterable[Table], orders: Iterable[Order], now: Optional[int] = None) -> List[Dict[str, Any]]:
    now = now if now is not None else now_ms()
    by_table: Dict[str, Order] = {}
    for order in orders:
        if order.order_type == OrderType.DINE_IN and order.table_id and order.is_active:
            by_table[order.table_id] = order

    grid = []
    for table in sorted(tables, key=Table.sort_key):
        order = by_table.get(table.id)
        grid.append({
            "table_id": table.id,
            "name": table.name,
            "status": table_state(order),
            "order_id": order.id if order else None,
            "order_status": order.status.value if order else None,
            "total": str(order.total) if order else None,
            "elapsed_minutes": (now - order.timestamp) // 60000 if order else None,
            "needs_kot_print": needs_kot_print(order) if order else False,
            "payment_method": order.payment_method.value if order and order.payment_method else None,
        })
    return grid
