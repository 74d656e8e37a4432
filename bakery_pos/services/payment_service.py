# bakery_pos/services/payment_service.py
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from ..config import Config
from ..exceptions import (
    AlreadyTerminal, AmountMismatch, GatewayUnavailable, InsufficientPayment,
    InvalidError, InvalidSignature, NotFoundError, PosError
)
from ..models.base import Pagination
from ..models.order import Order, OrderStatus
from ..models.payment import (
    GatewayResult, GatewaySettlement, Payment, PaymentMethod, PaymentMethodCode,
    PaymentPage, PaymentStatus
)
from ..utils.money import clamp_non_negative, to_money

WEBHOOK_SUCCESS = {"RspCode": "00", "Message": "Confirm Success"}
WEBHOOK_ORDER_NOT_FOUND = {"RspCode": "01", "Message": "Order not found"}
WEBHOOK_INVALID_AMOUNT = {"RspCode": "04", "Message": "Invalid amount"}
WEBHOOK_INVALID_SIGNATURE = {"RspCode": "97", "Message": "Invalid signature"}
WEBHOOK_UNKNOWN_ERROR = {"RspCode": "99", "Message": "Unknown error"}

class PaymentService:
    """Record cash settlements and reconcile VNPay outcomes with orders"""

    def __init__(self, db, gateway, invoice_service):
        self.db = db
        self.gateway = gateway
        self.invoice_service = invoice_service
        self.logger = logging.getLogger(__name__)

    async def settle_cash(self, order_id: int, amount_paid: Decimal,
                          payment_time: Optional[datetime] = None) -> Payment:
        """Record a cash payment with change and complete the order"""
        amount_paid = to_money(amount_paid)
        if amount_paid < 0:
            raise InvalidError("Amount paid cannot be negative.")

        async with self.db.transaction() as uow:
            order = await self._require_order(uow, order_id)
            if order.status.is_terminal:
                raise AlreadyTerminal(
                    f"Order {order_id} is {order.status.value} and cannot be paid."
                )

            if amount_paid < order.final_total:
                self.logger.warning(
                    f"[Order: {order_id}] Cash {amount_paid} below total {order.final_total}"
                )
                raise InsufficientPayment(
                    f"Amount paid ({amount_paid}) is less than the order total "
                    f"({order.final_total})."
                )

            method = await self._require_method(uow, PaymentMethodCode.CASH)
            payment = await uow.insert_payment(
                order_id=order_id,
                payment_method_id=method.payment_method_id,
                amount_paid=amount_paid,
                change_amount=clamp_non_negative(amount_paid - order.final_total),
                status=PaymentStatus.PAID,
                payment_time=payment_time or datetime.now(timezone.utc)
            )
            await uow.set_order_status(order_id, OrderStatus.COMPLETED, expected=OrderStatus.PROCESSING)

        self.logger.info(
            f"[Order: {order_id}] Cash payment {payment.payment_id} recorded, "
            f"change {payment.change_amount}"
        )
        return payment

    async def initiate_redirect(self, order_id: int, ip_addr: str,
                                return_url: Optional[str] = None,
                                order_info: Optional[str] = None) -> str:
        """Signed VNPay URL for an unpaid order; no payment row is created"""
        async with self.db.session() as uow:
            order = await self._require_order(uow, order_id, for_update=False)

        if order.status.is_terminal:
            raise AlreadyTerminal(f"Order {order_id} is {order.status.value} and cannot be paid.")
        if order.final_total <= 0:
            raise InvalidError("Payment amount must be greater than 0.")

        try:
            return self.gateway.build_payment_url(
                order_id=order_id,
                amount=order.final_total,
                order_info=order_info or f"Thanh toan don hang {order_id}",
                return_url=return_url or Config.VNP_RETURN_URL,
                ip_addr=ip_addr
            )
        except PosError:
            raise
        except Exception as e:
            self.logger.error(f"[Order: {order_id}] Could not build VNPay URL: {e}", exc_info=True)
            raise GatewayUnavailable("Could not create VNPay payment URL.") from e

    async def handle_callback(self, params: Mapping[str, Any]) -> GatewaySettlement:
        """Browser return from VNPay"""
        return await self.record_gateway_result(params, source="callback")

    async def handle_webhook(self, params: Mapping[str, Any]) -> Dict[str, str]:
        """VNPay IPN; never raises, answers with a VNPay response code"""
        try:
            await self.record_gateway_result(params, source="webhook")
        except InvalidSignature:
            self.logger.warning("VNPay webhook rejected: invalid signature")
            return WEBHOOK_INVALID_SIGNATURE
        except AmountMismatch as e:
            self.logger.warning(f"VNPay webhook rejected: {e.message}")
            return WEBHOOK_INVALID_AMOUNT
        except (NotFoundError, InvalidError) as e:
            self.logger.warning(f"VNPay webhook rejected: {e.message}")
            return WEBHOOK_ORDER_NOT_FOUND
        except Exception as e:
            self.logger.error(f"VNPay webhook failed: {e}", exc_info=True)
            return WEBHOOK_UNKNOWN_ERROR

        return WEBHOOK_SUCCESS

    async def record_gateway_result(self, params: Mapping[str, Any],
                                    source: str = "webhook") -> GatewaySettlement:
        """Verify a gateway payload and reconcile it with its order"""
        result = self.gateway.parse_callback(params)
        return await self.apply_gateway_result(result, source)

    async def query_gateway_payment(self, txn_ref: str, ip_addr: str) -> GatewaySettlement:
        """Re-query VNPay for a transaction and reconcile the answer"""
        result = await self.gateway.query_transaction(txn_ref, ip_addr)
        return await self.apply_gateway_result(result, source="query")

    async def apply_gateway_result(self, result: GatewayResult,
                                   source: str) -> GatewaySettlement:
        """Upsert the single gateway payment of the order; the last outcome wins"""
        order_id = result.order_id

        async with self.db.transaction() as uow:
            order = await self._require_order(uow, order_id)

            if result.amount != order.final_total:
                raise AmountMismatch(
                    f"Gateway amount {result.amount} does not match order total "
                    f"{order.final_total} for order {order_id}."
                )

            method = await self._require_method(uow, PaymentMethodCode.VNPAY)
            previous = await uow.get_gateway_payment(order_id, method.payment_method_id)
            status = result.payment_status

            payment = await uow.upsert_gateway_payment(
                order_id=order_id,
                payment_method_id=method.payment_method_id,
                amount_paid=result.amount,
                status=status,
                payment_time=result.pay_date or datetime.now(timezone.utc),
                txn_ref=result.txn_ref,
                transaction_no=result.transaction_no,
                response_code=result.response_code
            )

            newly_paid = status == PaymentStatus.PAID and (
                previous is None or previous.status != PaymentStatus.PAID
            )
            if newly_paid:
                completed = await uow.set_order_status(
                    order_id, OrderStatus.COMPLETED, expected=OrderStatus.PROCESSING
                )
                if not completed:
                    self.logger.warning(
                        f"[Order: {order_id}] Paid via VNPay while {order.status.value}, "
                        f"order status left unchanged"
                    )
            elif previous is not None and previous.status == PaymentStatus.PAID:
                self.logger.warning(
                    f"[Order: {order_id}] VNPay {source} overwrote a PAID payment with {status.value}"
                )

        self.logger.info(
            f"[Order: {order_id}] VNPay {source}: {result.txn_ref} -> {status.value} "
            f"(code {result.response_code})"
        )

        if newly_paid:
            await self._request_invoice(order_id)

        return GatewaySettlement(
            payment=payment,
            success=result.success,
            newly_paid=newly_paid,
            message=("Payment successful." if result.success
                     else f"Payment not completed (code {result.response_code}).")
        )

    async def get_payment(self, payment_id: int) -> Payment:
        async with self.db.session() as uow:
            payment = await uow.get_payment(payment_id)
        if not payment:
            raise NotFoundError(f"Payment with ID {payment_id} not found.")
        return payment

    async def list_payments(self, order_id: Optional[int] = None,
                            page: int = 1, limit: int = 10) -> PaymentPage:
        async with self.db.session() as uow:
            payments, total = await uow.list_payments(order_id, limit, (page - 1) * limit)

        return PaymentPage(data=payments, pagination=Pagination.build(page, limit, total))

    async def _request_invoice(self, order_id: int):
        try:
            await self.invoice_service.request_invoice(order_id)
        except Exception as e:
            self.logger.error(f"[Order: {order_id}] Invoice request failed: {e}", exc_info=True)

    async def _require_order(self, uow, order_id: int, for_update: bool = True) -> Order:
        order = await uow.get_order(order_id, for_update=for_update)
        if not order:
            raise NotFoundError(f"Order with ID {order_id} not found.")
        return order

    async def _require_method(self, uow, code: PaymentMethodCode) -> PaymentMethod:
        method = await uow.get_payment_method_by_code(code.value)
        if not method:
            raise NotFoundError(f"Payment method {code.value} not found.")
        return method
