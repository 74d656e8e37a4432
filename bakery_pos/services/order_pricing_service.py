# bakery_pos/services/order_pricing_service.py
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from ..exceptions import DiscountInvalid, InvalidError
from ..models.catalog import MembershipTier
from ..models.discount import Discount
from ..models.order import (
    CouponDiscount, MembershipDiscount, Order, OrderLineRequest, PricedLine, PricingResult
)
from ..utils.money import clamp_non_negative, percent_of, to_money
from .discount_service import DiscountValidator
from .pricing_service import PricingCalculator

class OrderPricingEngine:
    """Turn a cart, a membership tier and requested coupons into a final total.

    Membership and coupons are independent percentages of the original
    subtotal. Coupons are all-or-nothing: the first invalid one aborts the
    whole pricing with ``DiscountInvalid``.
    """

    def __init__(self, source):
        self.source = source
        self.calculator = PricingCalculator(source)
        self.validator = DiscountValidator(source)
        self.logger = logging.getLogger(__name__)

    async def price(self, lines: Sequence[OrderLineRequest],
                    membership: Optional[MembershipTier] = None,
                    discount_ids: Iterable[int] = (),
                    customer_id: Optional[int] = None,
                    exclude_order_id: Optional[int] = None,
                    held_ids: Iterable[int] = (),
                    lock_discounts: bool = False,
                    now: Optional[datetime] = None) -> PricingResult:
        """Price a cart.

        With ``lock_discounts`` the requested discount rows are read
        ``FOR UPDATE`` so their usage counters cannot move until the
        surrounding transaction ends.

        ``held_ids`` are coupons the order already carries; their own earlier
        use does not count against the global cap.
        """
        now = now or datetime.now(timezone.utc)
        discount_ids = self.unique_discount_ids(discount_ids)

        cart = await self.calculator.calculate(lines)
        membership_discount = self.membership_discount(membership, cart.subtotal, now)
        coupons = await self.apply_coupons(
            discount_ids, cart.subtotal, cart.line_count, customer_id,
            exclude_order_id=exclude_order_id,
            held_ids=held_ids,
            lock_discounts=lock_discounts,
            now=now
        )

        return self.build_result(cart.lines, cart.subtotal, membership_discount, coupons)

    async def apply_coupons(self, discount_ids: List[int], subtotal: Decimal,
                            line_count: int, customer_id: Optional[int] = None,
                            exclude_order_id: Optional[int] = None,
                            held_ids: Iterable[int] = (),
                            lock_discounts: bool = False,
                            now: Optional[datetime] = None) -> List[CouponDiscount]:
        """Validate every coupon against the original subtotal, in request order"""
        if not discount_ids:
            return []

        now = now or datetime.now(timezone.utc)
        held_ids = set(held_ids)
        discounts: Dict[int, Discount] = await self.source.get_discounts(
            discount_ids, for_update=lock_discounts
        )

        coupons = []
        for discount_id in discount_ids:
            result = await self.validator.validate(
                discount_id, subtotal, line_count, customer_id,
                exclude_order_id=exclude_order_id,
                discount=discounts.get(discount_id),
                held=discount_id in held_ids,
                now=now
            )
            if not result.ok:
                self.logger.warning(
                    f"Discount {discount_id} rejected ({result.reason.value}): {result.message}"
                )
                raise DiscountInvalid(result.reason.value, result.message, discount_id)

            coupons.append(CouponDiscount(
                discount_id=discount_id,
                name=result.discount_name,
                percentage=result.percentage,
                amount=result.amount
            ))

        return coupons

    async def reprice_order(self, order: Order,
                            membership: Optional[MembershipTier] = None) -> PricingResult:
        """Strict re-evaluation of a stored order at current prices and eligibility"""
        discount_ids = [d.discount_id for d in order.discounts]
        lines = [
            OrderLineRequest(price_id=line.price_id, quantity=line.quantity, option=line.option)
            for line in order.lines
        ]
        return await self.price(
            lines,
            membership=membership,
            discount_ids=discount_ids,
            customer_id=order.customer_id,
            exclude_order_id=order.order_id,
            held_ids=discount_ids
        )

    @staticmethod
    def unique_discount_ids(discount_ids: Iterable[int]) -> List[int]:
        discount_ids = list(discount_ids)
        if len(set(discount_ids)) != len(discount_ids):
            raise InvalidError("The same discount cannot be applied twice to one order.")
        return discount_ids

    @staticmethod
    def membership_discount(membership: Optional[MembershipTier], subtotal: Decimal,
                            now: datetime) -> Optional[MembershipDiscount]:
        """Uncapped tier discount, if the tier is active and not expired"""
        if not membership or not membership.is_applicable(now):
            return None

        return MembershipDiscount(
            membership_type_id=membership.membership_type_id,
            name=membership.name,
            percentage=membership.discount_value,
            amount=percent_of(subtotal, membership.discount_value)
        )

    @staticmethod
    def build_result(lines: List[PricedLine], subtotal: Decimal,
                     membership: Optional[MembershipDiscount],
                     coupons: List[CouponDiscount]) -> PricingResult:
        """Assemble totals; the final total never drops below zero"""
        applications = ([membership] if membership else []) + list(coupons)
        total_discount = sum((a.amount for a in applications), Decimal(0))

        return PricingResult(
            lines=lines,
            discounts=applications,
            subtotal=to_money(subtotal),
            total_discount=to_money(total_discount),
            final_total=clamp_non_negative(to_money(subtotal - total_discount))
        )
