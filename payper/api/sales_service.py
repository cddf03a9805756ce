from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from ..models.order import Order, OrderStatus
from ..utils.clock import RESTAURANT_TZ, from_ms
from ..utils.money import to_money

REVENUE_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.DELIVERED})


def order_day(order: Order) -> date:
    """Restaurant-local day the order was placed. ``timestamp`` moves when items
    are added, so it is only the fallback for rows saved without ``created_at``."""
    if order.created_at is None:
        return from_ms(order.timestamp).date()
    created = order.created_at
    if created.tzinfo is None:
        return created.date()
    return created.astimezone(RESTAURANT_TZ).date()


class SalesService:
    """Sales analytics over settled orders"""

    @staticmethod
    def sales_analytics(
        orders: Iterable[Order],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Dict[str, Any]:
        settled = []
        for order in orders:
            if order.status not in REVENUE_STATUSES:
                continue
            order_date = order_day(order)
            if date_from and order_date < date_from:
                continue
            if date_to and order_date > date_to:
                continue
            settled.append((order_date, order))

        total_revenue = sum((o.total for _, o in settled), Decimal("0"))
        total_orders = len(settled)
        average_order_value = total_revenue / total_orders if total_orders else Decimal("0")

        item_sales = defaultdict(lambda: {"name": "", "quantity": 0, "revenue": Decimal("0")})
        daily = defaultdict(lambda: {"orders": 0, "revenue": Decimal("0")})
        for order_date, order in settled:
            for item in order.items:
                entry = item_sales[item.menu_item.id]
                entry["name"] = item.menu_item.name
                entry["quantity"] += item.quantity
                entry["revenue"] += item.line_total
            daily[order_date.isoformat()]["orders"] += 1
            daily[order_date.isoformat()]["revenue"] += order.total

        items = [
            {"menu_item_id": k, "name": v["name"], "quantity": v["quantity"], "revenue": float(to_money(v["revenue"]))}
            for k, v in item_sales.items()
        ]
        items.sort(key=lambda x: x["quantity"], reverse=True)
        top_by_revenue = sorted(items, key=lambda x: x["revenue"], reverse=True)[:5]

        return {
            "summary": {
                "total_revenue": float(to_money(total_revenue)),
                "total_orders": total_orders,
                "average_order_value": float(to_money(average_order_value)),
            },
            "item_sales": items,
            "top_items_by_revenue": top_by_revenue,
            "daily_breakdown": [
                {"date": day, "orders": data["orders"], "revenue": float(to_money(data["revenue"]))}
                for day, data in sorted(daily.items())
            ],
        }
