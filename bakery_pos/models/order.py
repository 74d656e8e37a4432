# bakery_pos/models/order.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field
from .base import TimeStampedModel, Pagination

class OrderStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)

class OrderLineRequest(BaseModel):
    """A requested cart line"""
    price_id: int = Field(..., ge=1)
    quantity: int = Field(..., ge=1)
    option: Optional[str] = Field(None, max_length=500)

class PricedLine(BaseModel):
    """A cart line with its unit price captured from the catalog"""
    price_id: int
    product_name: str
    size_name: str
    unit_price: Decimal
    quantity: int
    option: Optional[str] = None
    line_total: Decimal

class OrderLine(PricedLine):
    order_line_id: Optional[int] = None

class MembershipDiscount(BaseModel):
    """Automatic tier discount; derived from the customer, never stored as a coupon row"""
    kind: Literal["membership"] = "membership"
    membership_type_id: int
    name: str
    percentage: Decimal
    amount: Decimal

class CouponDiscount(BaseModel):
    """A coupon applied to an order with the amount computed at application time"""
    kind: Literal["coupon"] = "coupon"
    discount_id: int
    name: str
    percentage: Optional[Decimal] = None
    amount: Decimal

DiscountApplication = Annotated[
    Union[MembershipDiscount, CouponDiscount], Field(discriminator="kind")
]

class PricingResult(BaseModel):
    """Authoritative price of a cart"""
    lines: List[PricedLine]
    discounts: List[DiscountApplication] = []
    subtotal: Decimal
    total_discount: Decimal
    final_total: Decimal

    @property
    def membership(self) -> Optional[MembershipDiscount]:
        for application in self.discounts:
            if isinstance(application, MembershipDiscount):
                return application
        return None

    @property
    def membership_amount(self) -> Decimal:
        membership = self.membership
        return membership.amount if membership else Decimal(0)

    @property
    def coupons(self) -> List[CouponDiscount]:
        return [d for d in self.discounts if isinstance(d, CouponDiscount)]

class Order(TimeStampedModel):
    """Order model for bakery purchases"""
    order_id: int
    employee_id: int
    customer_id: Optional[int] = None
    note: Optional[str] = None
    status: OrderStatus
    subtotal: Decimal
    membership_discount: Decimal = Decimal(0)
    final_total: Decimal
    order_time: datetime
    lines: List[OrderLine] = []
    discounts: List[CouponDiscount] = []

class OrderPage(BaseModel):
    data: List[Order]
    pagination: Pagination

class OrderCreate(BaseModel):
    """Body of ``POST /orders``"""
    employee_id: int
    customer_id: Optional[int] = None
    lines: List[OrderLineRequest] = Field(..., min_length=1)
    discount_ids: List[int] = []
    note: Optional[str] = Field(None, max_length=1000)

class OrderUpdate(BaseModel):
    """Body of ``PATCH /orders/{id}``; only the fields sent are applied"""
    employee_id: Optional[int] = None
    customer_id: Optional[int] = None
    lines: Optional[List[OrderLineRequest]] = None
    discount_ids: Optional[List[int]] = None
    note: Optional[str] = Field(None, max_length=1000)

class OrderQuoteRequest(BaseModel):
    """Body of ``POST /orders/calculate``"""
    lines: List[OrderLineRequest] = Field(..., min_length=1)
    customer_id: Optional[int] = None
    discount_ids: List[int] = []
