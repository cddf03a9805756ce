from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from ..models.order import ItemStatus, KotStatus, Order, OrderStatus

# Orders whose printed items are still on the kitchen screen
KITCHEN_STATUSES = frozenset({
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.BILLED,
    OrderStatus.ACCEPTED,
    OrderStatus.FOOD_READY,
})

ITEM_ACTIONS = {
    ItemStatus.PENDING: {"next": ItemStatus.PREPARING, "label": "Start Preparing"},
    ItemStatus.PREPARING: {"next": ItemStatus.READY, "label": "Mark as Ready"},
    ItemStatus.READY: None,
    ItemStatus.SERVED: None,
}


def next_item_action(status: ItemStatus) -> Optional[Dict[str, Any]]:
    return ITEM_ACTIONS[ItemStatus(status)]


def _row(order: Order, item) -> Dict[str, Any]:
    row = item.model_dump(mode="json")
    row["order_id"] = order.id
    action = next_item_action(item.item_status)
    row["next_action"] = {"status": action["next"].value, "label": action["label"]} if action else None
    return row


class KitchenService:
    """Kitchen display projections. Pure functions of an order snapshot."""

    @staticmethod
    def kitchen_orders(orders: Iterable[Order], table_names: Dict[str, str] = None) -> List[Dict[str, Any]]:
        """Per order, its printed rows grouped by dish, oldest order first."""
        table_names = table_names or {}
        board = []
        for order in orders:
            if order.status not in KITCHEN_STATUSES:
                continue
            grouped: Dict[str, List] = defaultdict(list)
            for item in order.printed_items:
                grouped[item.menu_item.id].append(item)
            if not grouped:
                continue
            board.append({
                "order_id": order.id,
                "order_type": order.order_type.value,
                "table_id": order.table_id,
                "table_name": table_names.get(order.table_id) if order.table_id else None,
                "platform": order.online_platform.value if order.online_platform else None,
                "platform_order_id": order.platform_order_id,
                "order_timestamp": order.timestamp,
                "items": [
                    {
                        "menu_item_id": menu_item_id,
                        "name": rows[0].menu_item.name,
                        "quantity": sum(r.quantity for r in rows),
                        "items": [_row(order, r) for r in rows],
                    }
                    for menu_item_id, rows in grouped.items()
                ],
            })
        board.sort(key=lambda o: o["order_timestamp"])
        return board

    @staticmethod
    def dish_summary(orders: Iterable[Order]) -> List[Dict[str, Any]]:
        """Every printed row across active orders, consolidated per dish.

        Lets the kitchen cook "5 of X" at once while still completing each
        ticket row on its own.
        """
        dishes: Dict[str, Dict[str, Any]] = {}
        for order in sorted(orders, key=lambda o: o.timestamp):
            if not order.is_active:
                continue
            for item in order.items:
                if item.kot_status != KotStatus.PRINTED:
                    continue
                dish = dishes.setdefault(item.menu_item.id, {
                    "menu_item_id": item.menu_item.id,
                    "name": item.menu_item.name,
                    "quantity": 0,
                    "by_status": {s.value: 0 for s in ItemStatus},
                    "tickets": [],
                })
                dish["quantity"] += item.quantity
                dish["by_status"][item.item_status.value] += item.quantity
                dish["tickets"].append({
                    "order_id": order.id,
                    "table_id": order.table_id,
                    "kot_id": item.kot_id,
                    "item_id": item.id,
                    "quantity": item.quantity,
                    "item_status": item.item_status.value,
                    "notes": item.notes,
                })
        return sorted(dishes.values(), key=lambda d: (-d["quantity"], d["name"]))
