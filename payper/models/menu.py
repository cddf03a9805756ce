from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class MenuItem(BaseModel):
    id: str
    name: str
    description: str = ""
    price: Decimal = Field(ge=0)
    category: str
    available: bool = True


class MenuCategory(BaseModel):
    id: Optional[str] = None
    name: str
