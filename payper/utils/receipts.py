"""Plain-text KOT and bill previews. "Printing" is the caller's business."""
from collections import OrderedDict
from typing import List, Optional

from ..api.orders_service import discount_amount, recover_original_total
from ..config import settings
from ..core.exceptions import NotFoundError, StateConflictError
from ..models.order import DiscountType, Order, OrderItem
from .clock import from_ms
from .money import format_currency, to_money

WIDTH = 40


def _rule(char: str = "-") -> str:
    return char * WIDTH


def _split(left: str, right: str) -> str:
    gap = max(WIDTH - len(left) - len(right), 1)
    return f"{left}{' ' * gap}{right}"


def _origin_line(order: Order, table_name: Optional[str]) -> str:
    if order.table_id:
        return f"Table: {table_name or order.table_id}"
    platform = order.online_platform.value if order.online_platform else "Online"
    return f"{platform} #{order.platform_order_id or '-'}"


def _group_for_ticket(items: List[OrderItem]):
    grouped = OrderedDict()
    for item in items:
        key = (item.menu_item.id, item.notes or "")
        if key not in grouped:
            grouped[key] = {"name": item.menu_item.name, "notes": item.notes, "quantity": 0}
        grouped[key]["quantity"] += item.quantity
    return list(grouped.values())


def render_kot(order: Order, table_name: Optional[str] = None, kot_id: Optional[str] = None) -> str:
    """Ticket for the rows about to be sent, or a reprint of ``kot_id``."""
    if kot_id:
        items = [i for i in order.items if i.kot_id == kot_id]
        if not items:
            raise NotFoundError(f"Ticket {kot_id} not found on order {order.id}")
        title = f"KOT {kot_id} (REPRINT)"
    else:
        items = order.new_items
        if not items:
            raise StateConflictError("nothing to print: no new items on this order")
        title = f"KOT {order.kot_counter + 1}"

    when = from_ms(order.timestamp)
    lines = [
        title.center(WIDTH),
        _rule(),
        _split(_origin_line(order, table_name), when.strftime("%H:%M")),
        f"Order: {order.id}",
        _rule(),
        _split("Item", "Qty"),
        _rule(),
    ]
    for entry in _group_for_ticket(items):
        lines.append(_split(entry["name"], str(entry["quantity"])))
        if entry["notes"]:
            lines.append(f"  * {entry['notes']}")
    lines.append(_rule())
    return "\n".join(lines)


def render_bill(order: Order, table_name: Optional[str] = None) -> str:
    subtotal = recover_original_total(order)
    discount = min(discount_amount(order), subtotal)
    grand_total = to_money(subtotal - discount)
    when = from_ms(order.timestamp)

    lines = [
        settings.RESTAURANT_NAME.center(WIDTH),
        settings.RESTAURANT_TAGLINE.center(WIDTH),
        "Bill / Invoice".center(WIDTH),
        _rule(),
        _split(f"Order ID: {order.id[:12]}", _origin_line(order, table_name)),
        _split(f"Date: {when.strftime('%d/%m/%Y')}", f"Time: {when.strftime('%H:%M')}"),
        _rule(),
        f"{'#':>2} {'Item':<18}{'Qty':>4}{'Rate':>7}{'Amount':>8}",
        _rule(),
    ]
    for index, item in enumerate(order.items, start=1):
        lines.append(
            f"{index:>2} {item.menu_item.name[:18]:<18}{item.quantity:>4}"
            f"{to_money(item.menu_item.price):>7}{to_money(item.line_total):>8}"
        )
    lines.append(_rule())
    lines.append(_split("Subtotal", format_currency(subtotal)))
    if discount > 0:
        if order.discount_type == DiscountType.PERCENTAGE:
            label = f"Discount ({order.discount.normalize():f}%)"
        else:
            label = f"Discount ({format_currency(order.discount)})"
        lines.append(_split(label, f"- {format_currency(discount)}"))
    lines.append(_split("Taxes (0%)", format_currency(0)))
    lines.append(_rule("="))
    lines.append(_split("GRAND TOTAL", format_currency(grand_total)))
    return "\n".join(lines)
