# bakery_pos/models/payment.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from .base import Pagination

class PaymentStatus(str, Enum):
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"

class PaymentMethodCode(str, Enum):
    CASH = "CASH"
    VNPAY = "VNPAY"

class PaymentMethod(BaseModel):
    """Static payment method lookup"""
    payment_method_id: int
    code: str
    name: str
    is_gateway: bool = False

class Payment(BaseModel):
    """Payment recorded against an order"""
    payment_id: int
    order_id: int
    payment_method_id: int
    method_code: Optional[str] = None
    amount_paid: Decimal
    change_amount: Decimal = Decimal(0)
    status: PaymentStatus
    payment_time: datetime
    gateway_txn_ref: Optional[str] = None
    gateway_transaction_no: Optional[str] = None
    gateway_response_code: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class GatewayResult(BaseModel):
    """Verified outcome reported by the payment gateway"""
    order_id: int
    txn_ref: str
    amount: Decimal
    response_code: str
    transaction_status: Optional[str] = None
    transaction_no: Optional[str] = None
    bank_code: Optional[str] = None
    pay_date: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.response_code == "00" and self.transaction_status == "00"

    @property
    def is_pending(self) -> bool:
        # querydr reports "01" while the customer has not finished paying
        return self.transaction_status == "01"

    @property
    def payment_status(self) -> PaymentStatus:
        if self.success:
            return PaymentStatus.PAID
        if self.is_pending:
            return PaymentStatus.PROCESSING
        return PaymentStatus.CANCELLED

class GatewaySettlement(BaseModel):
    """What reconciling one gateway result did"""
    payment: Payment
    success: bool
    newly_paid: bool
    message: str

class PaymentPage(BaseModel):
    data: List[Payment]
    pagination: Pagination

class CashPaymentCreate(BaseModel):
    """Body of ``POST /payments``"""
    order_id: int
    amount_paid: Decimal = Field(..., ge=0)
    payment_time: Optional[datetime] = None

class VNPayCreateRequest(BaseModel):
    order_id: int
    return_url: Optional[str] = None
    order_info: Optional[str] = Field(None, max_length=255)

class VNPayQueryRequest(BaseModel):
    txn_ref: str
