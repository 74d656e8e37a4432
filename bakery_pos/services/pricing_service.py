# bakery_pos/services/pricing_service.py
from decimal import Decimal
from typing import List, Sequence
from pydantic import BaseModel
from ..exceptions import InvalidLineItem, UnknownPriceRef
from ..models.order import OrderLineRequest, PricedLine
from ..utils.money import to_money

class PricedCart(BaseModel):
    lines: List[PricedLine]
    subtotal: Decimal

    @property
    def line_count(self) -> int:
        return len(self.lines)

class PricingCalculator:
    """Resolve unit prices for cart lines and compute the subtotal.

    ``catalog`` is any object exposing ``get_price_refs(ids)``; during order
    creation it is the unit of work of the same transaction that persists the
    order, so prices cannot drift between calculation and commit.
    """

    def __init__(self, catalog):
        self.catalog = catalog

    async def calculate(self, lines: Sequence[OrderLineRequest]) -> PricedCart:
        """Price every line; the subtotal is the exact sum of line totals"""
        if not lines:
            raise InvalidLineItem("Order must contain at least one product.")

        price_refs = await self.catalog.get_price_refs(line.price_id for line in lines)

        priced_lines = []
        subtotal = Decimal(0)

        for line in lines:
            if line.quantity < 1:
                raise InvalidLineItem(
                    f"Quantity for price {line.price_id} must be at least 1."
                )

            price_ref = price_refs.get(line.price_id)
            if not price_ref:
                raise UnknownPriceRef(f"Product price with ID {line.price_id} not found.")

            if not price_ref.is_active:
                raise InvalidLineItem(f"Product price with ID {line.price_id} is not active.")

            unit_price = to_money(price_ref.unit_price)
            line_total = unit_price * line.quantity
            subtotal += line_total

            priced_lines.append(PricedLine(
                price_id=line.price_id,
                product_name=price_ref.product_name,
                size_name=price_ref.size_name,
                unit_price=unit_price,
                quantity=line.quantity,
                option=line.option,
                line_total=line_total
            ))

        return PricedCart(lines=priced_lines, subtotal=subtotal)
