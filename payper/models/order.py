from enum import Enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field, model_validator

from .menu import MenuItem


class OrderType(str, Enum):
    DINE_IN = "dine-in"
    ONLINE = "online"


class OrderStatus(str, Enum):
    NEW = "New"
    CONFIRMED = "Confirmed"
    PREPARING = "Preparing"
    READY = "Ready"
    SERVED = "Served"
    BILLED = "Billed"
    PAID = "Paid"
    CANCELLED = "Cancelled"
    # online lineage
    ACCEPTED = "Accepted"
    FOOD_READY = "Food Ready"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"


class KotStatus(str, Enum):
    NEW = "New"
    PRINTED = "Printed"


class ItemStatus(str, Enum):
    PENDING = "Pending"
    PREPARING = "Preparing"
    READY = "Ready"
    SERVED = "Served"


class OnlinePlatform(str, Enum):
    ZOMATO = "Zomato"
    SWIGGY = "Swiggy"
    OTHERS = "Others"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    AMOUNT = "amount"


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH_QR = "cash_qr"


DINE_IN_FLOW = [
    OrderStatus.NEW,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.SERVED,
    OrderStatus.BILLED,
    OrderStatus.PAID,
]

ONLINE_FLOW = [
    OrderStatus.NEW,
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.FOOD_READY,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]

ITEM_FLOW = [ItemStatus.PENDING, ItemStatus.PREPARING, ItemStatus.READY, ItemStatus.SERVED]

TERMINAL_STATUSES = {OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.DELIVERED}
CLOSED_STATUSES = {OrderStatus.PAID, OrderStatus.CANCELLED}


class CustomerDetails(BaseModel):
    name: str
    phone: str
    address: str = ""


class CartLine(BaseModel):
    menu_item_id: str
    quantity: int
    notes: Optional[str] = None


class OrderItem(BaseModel):
    id: str
    menu_item: MenuItem
    quantity: int = Field(default=1, ge=1)
    kot_status: KotStatus = KotStatus.NEW
    item_status: ItemStatus = ItemStatus.PENDING
    kot_id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.menu_item.price * self.quantity


class Order(BaseModel):
    id: str
    user_id: str
    order_type: OrderType = OrderType.DINE_IN

    # dine-in
    table_id: Optional[str] = None
    session_id: Optional[str] = None

    # online
    online_platform: Optional[OnlinePlatform] = None
    platform_order_id: Optional[str] = None
    customer_details: Optional[CustomerDetails] = None

    items: List[OrderItem] = []
    status: OrderStatus = OrderStatus.NEW
    timestamp: int
    created_at: Optional[datetime] = None

    total: Decimal = Decimal("0")
    original_total: Optional[Decimal] = None
    discount: Decimal = Decimal("0")
    discount_type: DiscountType = DiscountType.PERCENTAGE

    kot_counter: int = 0
    switched_from: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None

    version: int = 0
    idempotency_keys: List[str] = []

    updated_at: Optional[datetime] = None
    billed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_origin_fields(self):
        if self.order_type == OrderType.DINE_IN:
            if not self.table_id:
                raise ValueError("dine-in orders need a table_id")
            if self.online_platform or self.customer_details:
                raise ValueError("dine-in orders cannot carry online platform details")
        else:
            if not self.online_platform or not self.customer_details:
                raise ValueError("online orders need a platform and customer details")
            if self.table_id:
                raise ValueError("online orders cannot occupy a table")
        return self

    @property
    def is_active(self) -> bool:
        return self.status not in CLOSED_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def new_items(self) -> List[OrderItem]:
        return [i for i in self.items if i.kot_status == KotStatus.NEW]

    @property
    def printed_items(self) -> List[OrderItem]:
        return [i for i in self.items if i.kot_status == KotStatus.PRINTED]

    @property
    def flow(self) -> List[OrderStatus]:
        return DINE_IN_FLOW if self.order_type == OrderType.DINE_IN else ONLINE_FLOW
