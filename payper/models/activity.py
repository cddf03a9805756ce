from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ActivityLog(BaseModel):
    id: Optional[str] = None
    user_id: str
    user_role: Optional[str] = None
    action: str  # "place", "add_items", "send_to_kitchen", "discount", "bill", "paid", ...
    resource: str = "order"
    resource_id: Optional[str] = None
    details: Optional[dict] = None
    created_at: Optional[datetime] = None
