import csv
import io
import logging
from datetime import date
from typing import Iterable, Optional

from celery import Celery

from ..api.sales_service import REVENUE_STATUSES, SalesService, order_day
from ..config import settings
from ..models.order import Order

logger = logging.getLogger(__name__)

celery_app = Celery(
    "payper",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)


def sales_report_csv(orders: Iterable[Order], date_from: Optional[date] = None, date_to: Optional[date] = None) -> str:
    """One row per settled order, followed by the item totals"""
    orders = list(orders)
    analytics = SalesService.sales_analytics(orders, date_from, date_to)

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["Order ID", "Date", "Type", "Table/Platform", "Status", "Discount", "Total", "Items"])

    for order in orders:
        if order.status not in REVENUE_STATUSES:
            continue
        order_date = order_day(order)
        if date_from and order_date < date_from:
            continue
        if date_to and order_date > date_to:
            continue
        items = ", ".join(f"{i.menu_item.name} x{i.quantity}" for i in order.items)
        writer.writerow([
            order.id,
            order_date.isoformat(),
            order.order_type.value,
            order.table_id or order.online_platform.value,
            order.status.value,
            str(order.discount),
            str(order.total),
            items,
        ])

    writer.writerow([])
    writer.writerow(["Item", "Quantity", "Revenue"])
    for row in analytics["item_sales"]:
        writer.writerow([row["name"], row["quantity"], f"{row['revenue']:.2f}"])
    summary = analytics["summary"]
    writer.writerow(["Total", summary["total_orders"], f"{summary['total_revenue']:.2f}"])

    return output.getvalue()


@celery_app.task
def generate_sales_report(date_from: Optional[str] = None, date_to: Optional[str] = None, requested_by: str = None):
    from ..database import build_order_store

    store = build_order_store()
    start = date.fromisoformat(date_from) if date_from else None
    end = date.fromisoformat(date_to) if date_to else None
    csv_content = sales_report_csv(store.query(), start, end)
    logger.info("Sales report %s..%s generated for %s", date_from, date_to, requested_by)
    return csv_content


celery_app.conf.timezone = settings.TIMEZONE
