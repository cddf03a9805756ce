from enum import Enum
from typing import Optional

from pydantic import BaseModel


class UserRole(str, Enum):
    MANAGER = "manager"
    CAPTAIN = "captain"
    CHEF = "chef"
    CASHIER = "cashier"


class StaffUser(BaseModel):
    id: str
    email: str
    role: UserRole
    is_active: bool = True
    full_name: Optional[str] = None
