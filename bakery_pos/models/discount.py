# bakery_pos/models/discount.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
from .base import TimeStampedModel

class DiscountCheck(str, Enum):
    """Outcome of a discount eligibility check"""
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    TOO_FEW_LINES = "TOO_FEW_LINES"
    GLOBALLY_EXHAUSTED = "GLOBALLY_EXHAUSTED"
    PER_CUSTOMER_EXHAUSTED = "PER_CUSTOMER_EXHAUSTED"

class Discount(TimeStampedModel):
    """Coupon-style percentage promotion"""
    discount_id: int
    name: str
    discount_value: Decimal  # percentage
    min_required_order_value: Decimal = Decimal(0)
    max_discount_amount: Decimal
    min_required_product: Optional[int] = None  # line-count floor
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    max_uses: Optional[int] = None
    max_uses_per_customer: Optional[int] = None
    current_uses: int = 0

class DiscountValidation(BaseModel):
    """Result of validating one discount against a cart"""
    discount_id: int
    discount_name: str = ""
    ok: bool
    reason: DiscountCheck
    amount: Decimal = Decimal(0)
    message: str
    percentage: Optional[Decimal] = None

class DiscountQuoteSummary(BaseModel):
    total_checked: int
    valid_count: int
    invalid_count: int
    total_discount_amount: Decimal

class DiscountQuote(BaseModel):
    """Per-discount verdicts for the validate-discounts endpoint"""
    valid_discounts: List[DiscountValidation]
    invalid_discounts: List[DiscountValidation]
    summary: DiscountQuoteSummary

class DiscountValidationRequest(BaseModel):
    """Body of ``POST /orders/validate-discounts``"""
    discount_ids: List[int] = Field(..., min_length=1)
    total_amount: Decimal = Field(..., ge=0)
    product_count: int = Field(0, ge=0)
    customer_id: Optional[int] = None
