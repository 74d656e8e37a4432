# bakery_pos/services/discount_service.py
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from ..models.discount import (
    Discount, DiscountCheck, DiscountValidation, DiscountQuote, DiscountQuoteSummary
)
from ..utils.formatters import format_price
from ..utils.money import percent_of, to_money

def discount_amount(discount: Discount, subtotal: Decimal) -> Decimal:
    """Percentage of the subtotal, capped at the discount's maximum"""
    amount = percent_of(subtotal, discount.discount_value)
    return min(amount, to_money(discount.max_discount_amount))

def check_discount(discount: Discount, subtotal: Decimal, line_count: int,
                   now: datetime, customer_uses: Optional[int] = None,
                   held: bool = False) -> Tuple[DiscountCheck, str]:
    """Apply the eligibility rules in order and stop at the first failure.

    ``customer_uses`` is the number of the customer's live orders already
    carrying this discount; pass ``None`` when no customer is involved.
    ``held`` marks a discount the order already carries, whose use is
    included in ``current_uses``.
    """
    name = discount.name

    if (not discount.is_active
            or (discount.valid_until and now > discount.valid_until)
            or (discount.valid_from and now < discount.valid_from)):
        return (DiscountCheck.EXPIRED,
                f"Discount '{name}' is no longer valid or not yet active.")

    if subtotal < discount.min_required_order_value:
        return (DiscountCheck.BELOW_MINIMUM,
                f"Order total ({format_price(subtotal)}) does not meet the minimum "
                f"required value ({format_price(discount.min_required_order_value)}) "
                f"to apply discount '{name}'.")

    if discount.min_required_product and line_count < discount.min_required_product:
        return (DiscountCheck.TOO_FEW_LINES,
                f"Order has {line_count} products, but a minimum of "
                f"{discount.min_required_product} is required to apply discount '{name}'.")

    current_uses = discount.current_uses - 1 if held else discount.current_uses
    if discount.max_uses is not None and current_uses >= discount.max_uses:
        return (DiscountCheck.GLOBALLY_EXHAUSTED,
                f"Discount '{name}' has reached its maximum usage limit "
                f"({discount.max_uses} times).")

    if (customer_uses is not None
            and discount.max_uses_per_customer is not None
            and customer_uses >= discount.max_uses_per_customer):
        return (DiscountCheck.PER_CUSTOMER_EXHAUSTED,
                f"Customer has reached the maximum usage limit "
                f"({discount.max_uses_per_customer} times) for discount '{name}'.")

    return DiscountCheck.OK, f"Discount '{name}' can be applied."

class DiscountValidator:
    """Read-only discount eligibility and amount calculation.

    Never changes ``current_uses``; the order service increments it inside
    the transaction that commits the order.
    """

    def __init__(self, source):
        self.source = source
        self.logger = logging.getLogger(__name__)

    async def validate(self, discount_id: int, subtotal: Decimal, line_count: int,
                       customer_id: Optional[int] = None,
                       exclude_order_id: Optional[int] = None,
                       discount: Optional[Discount] = None,
                       held: bool = False,
                       now: Optional[datetime] = None) -> DiscountValidation:
        """Validate one discount against a cart.

        ``discount`` may be passed when the caller already holds the row
        (locked for update); otherwise it is fetched from the source.
        """
        now = now or datetime.now(timezone.utc)

        if discount is None:
            discounts = await self.source.get_discounts([discount_id])
            discount = discounts.get(discount_id)

        if not discount:
            return DiscountValidation(
                discount_id=discount_id,
                ok=False,
                reason=DiscountCheck.NOT_FOUND,
                message=f"Discount with ID {discount_id} not found."
            )

        reason, message = check_discount(discount, subtotal, line_count, now, held=held)

        if (reason == DiscountCheck.OK
                and customer_id is not None
                and discount.max_uses_per_customer is not None):
            customer_uses = await self.source.count_customer_discount_uses(
                discount_id, customer_id, exclude_order_id
            )
            reason, message = check_discount(
                discount, subtotal, line_count, now, customer_uses, held
            )

        if reason != DiscountCheck.OK:
            self.logger.debug(f"Discount {discount_id} rejected: {reason.value}")
            return DiscountValidation(
                discount_id=discount_id,
                discount_name=discount.name,
                ok=False,
                reason=reason,
                message=message,
                percentage=discount.discount_value
            )

        amount = discount_amount(discount, subtotal)
        return DiscountValidation(
            discount_id=discount_id,
            discount_name=discount.name,
            ok=True,
            reason=reason,
            amount=amount,
            message=(f"Discount '{discount.name}' can be applied, "
                     f"reducing the total by {format_price(amount)}."),
            percentage=discount.discount_value
        )

    async def validate_many(self, discount_ids: Iterable[int], subtotal: Decimal,
                            line_count: int,
                            customer_id: Optional[int] = None) -> DiscountQuote:
        """Validate each discount independently for display purposes"""
        discount_ids = list(discount_ids)
        discounts = await self.source.get_discounts(discount_ids)
        now = datetime.now(timezone.utc)

        valid, invalid = [], []
        total = Decimal(0)

        for discount_id in discount_ids:
            result = await self.validate(
                discount_id, subtotal, line_count, customer_id,
                discount=discounts.get(discount_id), now=now
            )
            if result.ok:
                valid.append(result)
                total += result.amount
            else:
                invalid.append(result)

        return DiscountQuote(
            valid_discounts=valid,
            invalid_discounts=invalid,
            summary=DiscountQuoteSummary(
                total_checked=len(discount_ids),
                valid_count=len(valid),
                invalid_count=len(invalid),
                total_discount_amount=total
            )
        )
