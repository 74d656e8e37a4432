# bakery_pos/services/order_service.py
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence
from ..exceptions import AlreadyTerminal, InvalidLineItem, NotFoundError
from ..models.base import Pagination
from ..models.catalog import MembershipTier
from ..models.discount import DiscountQuote
from ..models.order import (
    Order, OrderLineRequest, OrderPage, OrderStatus, OrderUpdate, PricingResult
)
from .discount_service import DiscountValidator
from .order_pricing_service import OrderPricingEngine

class OrderService:
    """Order lifecycle: create, update, cancel and delete, plus pricing quotes.

    Every mutation runs inside one database transaction with the order row
    (and any requested discount rows) locked, so usage counters and totals
    commit together or not at all.
    """

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def create_order(self, employee_id: int, lines: Sequence[OrderLineRequest],
                           customer_id: Optional[int] = None,
                           discount_ids: Sequence[int] = (),
                           note: Optional[str] = None) -> Order:
        """Price and persist a new PROCESSING order"""
        if not lines:
            raise InvalidLineItem("Order must contain at least one line.")

        async with self.db.transaction() as uow:
            await self._require_employee(uow, employee_id)
            membership = await self._membership_for(uow, customer_id)

            pricing = await OrderPricingEngine(uow).price(
                lines,
                membership=membership,
                discount_ids=discount_ids,
                customer_id=customer_id,
                lock_discounts=True
            )

            order_id = await uow.insert_order(
                employee_id=employee_id,
                customer_id=customer_id,
                note=note,
                subtotal=pricing.subtotal,
                membership_discount=pricing.membership_amount,
                final_total=pricing.final_total
            )
            await uow.insert_order_lines(order_id, pricing.lines)

            coupons = pricing.coupons
            if coupons:
                await uow.insert_order_discounts(order_id, coupons)
                await uow.increment_discount_uses(c.discount_id for c in coupons)

            order = await uow.get_order(order_id)

        self.logger.info(
            f"[Order: {order_id}] Created by employee {employee_id}, "
            f"total {order.final_total} ({len(coupons)} coupons)"
        )
        return order

    async def update_order(self, order_id: int, changes: OrderUpdate) -> Order:
        """Apply the fields present in ``changes`` to a PROCESSING order.

        Omitted ``discount_ids`` keep the stored coupon amounts as they are;
        a supplied list replaces them and is validated against the new
        subtotal.
        """
        fields = changes.model_fields_set

        async with self.db.transaction() as uow:
            order = await self._require_order(uow, order_id, for_update=True)
            if order.status.is_terminal:
                raise AlreadyTerminal(
                    f"Order {order_id} is {order.status.value} and can no longer be modified."
                )

            updates = {}

            if "employee_id" in fields and changes.employee_id is not None:
                await self._require_employee(uow, changes.employee_id)
                updates["employee_id"] = changes.employee_id

            customer_id = order.customer_id
            if "customer_id" in fields:
                customer_id = changes.customer_id
                updates["customer_id"] = customer_id
            membership = await self._membership_for(uow, customer_id)

            if "note" in fields:
                updates["note"] = changes.note

            engine = OrderPricingEngine(uow)
            now = datetime.now(timezone.utc)

            replace_lines = "lines" in fields and changes.lines is not None
            if replace_lines:
                if not changes.lines:
                    raise InvalidLineItem("Order must contain at least one line.")
                cart = await engine.calculator.calculate(changes.lines)
                lines, subtotal, line_count = cart.lines, cart.subtotal, cart.line_count
            else:
                lines, subtotal, line_count = order.lines, order.subtotal, len(order.lines)

            replace_discounts = "discount_ids" in fields and changes.discount_ids is not None
            added_ids: List[int] = []
            if replace_discounts:
                discount_ids = engine.unique_discount_ids(changes.discount_ids)
                previous = {d.discount_id for d in order.discounts}
                coupons = await engine.apply_coupons(
                    discount_ids, subtotal, line_count, customer_id,
                    exclude_order_id=order_id,
                    held_ids=previous,
                    lock_discounts=True,
                    now=now
                )
                added_ids = [c.discount_id for c in coupons if c.discount_id not in previous]
            else:
                coupons = order.discounts

            pricing = engine.build_result(
                lines, subtotal, engine.membership_discount(membership, subtotal, now), coupons
            )

            if replace_lines:
                await uow.delete_order_lines(order_id)
                await uow.insert_order_lines(order_id, pricing.lines)

            if replace_discounts:
                await uow.delete_order_discounts(order_id)
                if coupons:
                    await uow.insert_order_discounts(order_id, coupons)
                await uow.increment_discount_uses(added_ids)

            updates.update(
                subtotal=pricing.subtotal,
                membership_discount=pricing.membership_amount,
                final_total=pricing.final_total
            )
            await uow.update_order(order_id, updates)

            order = await uow.get_order(order_id)

        self.logger.info(
            f"[Order: {order_id}] Updated ({', '.join(sorted(fields)) or 'no fields'}), "
            f"total {order.final_total}"
        )
        return order

    async def cancel_order(self, order_id: int) -> Order:
        """PROCESSING -> CANCELLED"""
        async with self.db.transaction() as uow:
            order = await self._require_order(uow, order_id, for_update=True)

            if order.status == OrderStatus.CANCELLED:
                raise AlreadyTerminal("Order has already been cancelled.")
            if order.status == OrderStatus.COMPLETED:
                raise AlreadyTerminal("Cannot cancel a completed order.")

            await uow.set_order_status(order_id, OrderStatus.CANCELLED, expected=OrderStatus.PROCESSING)
            order = await uow.get_order(order_id)

        self.logger.info(f"[Order: {order_id}] Cancelled")
        return order

    async def delete_order(self, order_id: int) -> Order:
        """Hard delete; lines, coupon applications and payments cascade"""
        async with self.db.transaction() as uow:
            order = await self._require_order(uow, order_id, for_update=True)
            await uow.delete_order(order_id)

        self.logger.info(f"[Order: {order_id}] Deleted (status was {order.status.value})")
        return order

    async def get_order(self, order_id: int) -> Order:
        async with self.db.session() as uow:
            return await self._require_order(uow, order_id)

    async def list_orders(self, customer_id: Optional[int] = None,
                          employee_id: Optional[int] = None,
                          status: Optional[OrderStatus] = None,
                          page: int = 1, limit: int = 10) -> OrderPage:
        """Paginated order headers, newest first"""
        filters = {
            "customer_id": customer_id,
            "employee_id": employee_id,
            "status": status,
        }
        async with self.db.session() as uow:
            orders, total = await uow.list_orders(filters, limit, (page - 1) * limit)

        return OrderPage(data=orders, pagination=Pagination.build(page, limit, total))

    async def calculate(self, lines: Sequence[OrderLineRequest],
                        customer_id: Optional[int] = None,
                        discount_ids: Sequence[int] = ()) -> PricingResult:
        """Price a cart without persisting anything"""
        async with self.db.session() as uow:
            membership = await self._membership_for(uow, customer_id)
            return await OrderPricingEngine(uow).price(
                lines,
                membership=membership,
                discount_ids=discount_ids,
                customer_id=customer_id
            )

    async def recalculate_order(self, order_id: int) -> PricingResult:
        """Re-evaluate a stored order at current prices and discount eligibility"""
        async with self.db.session() as uow:
            order = await self._require_order(uow, order_id)
            membership = await self._membership_for(uow, order.customer_id)
            return await OrderPricingEngine(uow).reprice_order(order, membership)

    async def validate_discounts(self, discount_ids: Sequence[int], total_amount: Decimal,
                                 product_count: int = 0,
                                 customer_id: Optional[int] = None) -> DiscountQuote:
        async with self.db.session() as uow:
            return await DiscountValidator(uow).validate_many(
                discount_ids, total_amount, product_count, customer_id
            )

    async def _require_order(self, uow, order_id: int, for_update: bool = False) -> Order:
        order = await uow.get_order(order_id, for_update=for_update)
        if not order:
            raise NotFoundError(f"Order with ID {order_id} not found.")
        return order

    async def _require_employee(self, uow, employee_id: int):
        if not await uow.employee_exists(employee_id):
            raise NotFoundError(f"Employee with ID {employee_id} not found.")

    async def _membership_for(self, uow, customer_id: Optional[int]) -> Optional[MembershipTier]:
        if customer_id is None:
            return None
        customer = await uow.get_customer(customer_id)
        if not customer:
            raise NotFoundError(f"Customer with ID {customer_id} not found.")
        return customer.membership
