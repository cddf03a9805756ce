from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..core.exceptions import ValidationError
from ..core.permissions import require_manager
from ..services.celery import generate_sales_report
from ..services.order_store import OrderQuery, OrderStore
from .deps import get_store
from .sales_service import REVENUE_STATUSES, SalesService


class ReportRequest(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None


router = APIRouter(prefix="/sales", tags=["Sales"])


def _check_range(date_from: Optional[date], date_to: Optional[date]):
    if date_from and date_to:
        if date_from > date_to:
            raise ValidationError("Start date must be before end date")
        if (date_to - date_from).days > 365:
            raise ValidationError("Maximum 365 days range allowed")


@router.get("/analytics")
def get_sales_analytics(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    store: OrderStore = Depends(get_store),
    current_user: dict = Depends(require_manager),
):
    """Revenue, item sales and daily breakdown of settled orders"""
    _check_range(date_from, date_to)
    orders = store.query(OrderQuery(statuses=REVENUE_STATUSES))
    return SalesService.sales_analytics(orders, date_from, date_to)


@router.post("/reports", status_code=202)
def queue_sales_report(
    payload: ReportRequest,
    current_user: dict = Depends(require_manager),
):
    _check_range(payload.date_from, payload.date_to)
    task = generate_sales_report.delay(
        payload.date_from.isoformat() if payload.date_from else None,
        payload.date_to.isoformat() if payload.date_to else None,
        current_user["id"],
    )
    return {"message": "Report generation queued", "task_id": task.id}
