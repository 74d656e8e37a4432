# bakery_pos/models/catalog.py
"""Read-only views of collaborator data: catalog prices, customers and tiers."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict

class PriceRef(BaseModel):
    """A priced catalog variant (product + size)"""
    price_id: int
    product_id: int
    product_name: str
    size_name: str
    unit_price: Decimal
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)

class MembershipTier(BaseModel):
    """Customer membership tier carrying an automatic percentage discount"""
    membership_type_id: int
    name: str
    discount_value: Decimal
    is_active: bool = True
    valid_until: Optional[datetime] = None

    def is_applicable(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        return self.valid_until is None or now <= self.valid_until

class Customer(BaseModel):
    customer_id: int
    name: Optional[str] = None
    phone: Optional[str] = None
    membership: Optional[MembershipTier] = None
