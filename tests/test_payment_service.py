# tests/test_payment_service.py
import asyncio
from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit
import pytest
from bakery_pos.exceptions import (
    AlreadyTerminal, GatewayUnavailable, InsufficientPayment,
    InvalidError, InvalidSignature, NotFoundError
)
from bakery_pos.models.order import OrderLineRequest, OrderStatus
from bakery_pos.models.payment import GatewayResult, PaymentStatus
from bakery_pos.services.payment_service import PaymentService
from bakery_pos.utils.security import sign_params
from .conftest import CAKE, CROISSANT, EMPLOYEE_ID, HASH_SECRET
from .fakes import RecordingInvoiceService, gateway_params


@pytest.fixture
async def cake_order(order_service):
    return await order_service.create_order(
        EMPLOYEE_ID, [OrderLineRequest(price_id=CAKE, quantity=1)]
    )


def signed(order_id, amount=80000, **kwargs):
    return gateway_params(HASH_SECRET, order_id, amount, **kwargs)


async def test_cash_settlement_returns_change(payment_service, order_service, cake_order):
    payment = await payment_service.settle_cash(cake_order.order_id, Decimal(100000))

    assert payment.amount_paid == Decimal(100000)
    assert payment.change_amount == Decimal(20000)
    assert payment.status == PaymentStatus.PAID
    assert payment.method_code == "CASH"

    order = await order_service.get_order(cake_order.order_id)
    assert order.status == OrderStatus.COMPLETED


async def test_exact_cash_has_no_change(payment_service, cake_order):
    payment = await payment_service.settle_cash(cake_order.order_id, Decimal(80000))
    assert payment.change_amount == Decimal(0)


async def test_insufficient_cash_writes_nothing(payment_service, order_service, cake_order, db):
    with pytest.raises(InsufficientPayment):
        await payment_service.settle_cash(cake_order.order_id, Decimal(50000))

    assert db.payments_for(cake_order.order_id) == []
    order = await order_service.get_order(cake_order.order_id)
    assert order.status == OrderStatus.PROCESSING


async def test_cash_on_cancelled_order_rejected(payment_service, order_service, cake_order):
    await order_service.cancel_order(cake_order.order_id)

    with pytest.raises(AlreadyTerminal):
        await payment_service.settle_cash(cake_order.order_id, Decimal(100000))


async def test_cash_twice_rejected(payment_service, cake_order):
    await payment_service.settle_cash(cake_order.order_id, Decimal(80000))

    with pytest.raises(AlreadyTerminal):
        await payment_service.settle_cash(cake_order.order_id, Decimal(80000))


async def test_cash_unknown_order(payment_service):
    with pytest.raises(NotFoundError):
        await payment_service.settle_cash(404, Decimal(1))


async def test_initiate_redirect_builds_signed_url(payment_service, gateway, cake_order, db):
    url = await payment_service.initiate_redirect(cake_order.order_id, "10.0.0.7")

    params = dict(parse_qsl(urlsplit(url).query))
    assert url.startswith(gateway.payment_url)
    assert params["vnp_Amount"] == "8000000"
    assert params["vnp_TxnRef"].startswith(f"ORDER_{cake_order.order_id}_")
    assert params["vnp_IpAddr"] == "10.0.0.7"
    assert gateway.verify(params)
    assert db.payments_for(cake_order.order_id) == []


async def test_initiate_redirect_requires_positive_total(payment_service, order_service, db):
    db.add_discount(1, discount_value=Decimal(100))
    order = await order_service.create_order(
        EMPLOYEE_ID, [OrderLineRequest(price_id=CROISSANT, quantity=1)], discount_ids=[1]
    )
    assert order.final_total == Decimal(0)

    with pytest.raises(InvalidError):
        await payment_service.initiate_redirect(order.order_id, "127.0.0.1")


async def test_initiate_redirect_on_terminal_order(payment_service, order_service, cake_order):
    await order_service.cancel_order(cake_order.order_id)

    with pytest.raises(AlreadyTerminal):
        await payment_service.initiate_redirect(cake_order.order_id, "127.0.0.1")


async def test_initiate_redirect_wraps_adapter_failures(db, invoice_service, cake_order):
    class BrokenGateway:
        def build_payment_url(self, **kwargs):
            raise RuntimeError("boom")

    service = PaymentService(db, BrokenGateway(), invoice_service)
    with pytest.raises(GatewayUnavailable):
        await service.initiate_redirect(cake_order.order_id, "127.0.0.1")


async def test_webhook_success_completes_order_and_requests_invoice(
        payment_service, order_service, invoice_service, cake_order, db):
    response = await payment_service.handle_webhook(signed(cake_order.order_id))

    assert response == {"RspCode": "00", "Message": "Confirm Success"}
    rows = db.payments_for(cake_order.order_id)
    assert len(rows) == 1
    assert rows[0]["status"] == PaymentStatus.PAID
    assert rows[0]["gateway_transaction_no"] == "14000001"
    assert (await order_service.get_order(cake_order.order_id)).status == OrderStatus.COMPLETED
    assert invoice_service.requested == [cake_order.order_id]


async def test_duplicate_webhook_is_idempotent(payment_service, invoice_service, cake_order, db):
    params = signed(cake_order.order_id)

    assert (await payment_service.handle_webhook(params))["RspCode"] == "00"
    assert (await payment_service.handle_webhook(params))["RspCode"] == "00"

    assert len(db.payments_for(cake_order.order_id)) == 1
    assert invoice_service.requested == [cake_order.order_id]


async def test_out_of_order_deliveries_keep_last_outcome(payment_service, order_service, cake_order, db):
    declined = signed(cake_order.order_id, response_code="24", transaction_status="02")
    paid = signed(cake_order.order_id)

    await payment_service.handle_webhook(declined)
    rows = db.payments_for(cake_order.order_id)
    assert [r["status"] for r in rows] == [PaymentStatus.CANCELLED]
    assert (await order_service.get_order(cake_order.order_id)).status == OrderStatus.PROCESSING

    await payment_service.handle_webhook(paid)
    rows = db.payments_for(cake_order.order_id)
    assert [r["status"] for r in rows] == [PaymentStatus.PAID]

    await payment_service.handle_webhook(declined)
    rows = db.payments_for(cake_order.order_id)
    assert [r["status"] for r in rows] == [PaymentStatus.CANCELLED]
    assert (await order_service.get_order(cake_order.order_id)).status == OrderStatus.COMPLETED


async def test_webhook_invalid_signature(payment_service, cake_order, db):
    params = signed(cake_order.order_id)
    params["vnp_Amount"] = "100"

    response = await payment_service.handle_webhook(params)

    assert response["RspCode"] == "97"
    assert db.payments_for(cake_order.order_id) == []


async def test_webhook_unknown_order(payment_service):
    assert (await payment_service.handle_webhook(signed(404)))["RspCode"] == "01"


async def test_webhook_malformed_reference(payment_service, cake_order):
    params = signed(cake_order.order_id, txn_ref="not-a-ref")
    assert (await payment_service.handle_webhook(params))["RspCode"] == "01"


async def test_webhook_amount_mismatch(payment_service, cake_order, db):
    response = await payment_service.handle_webhook(signed(cake_order.order_id, amount=70000))

    assert response["RspCode"] == "04"
    assert db.payments_for(cake_order.order_id) == []


async def test_webhook_malformed_amount(payment_service, cake_order, db):
    params = signed(cake_order.order_id)
    params["vnp_Amount"] = "80k"
    params["vnp_SecureHash"] = sign_params(params, HASH_SECRET)

    assert (await payment_service.handle_webhook(params))["RspCode"] == "04"
    assert db.payments_for(cake_order.order_id) == []


async def test_webhook_unexpected_error(payment_service, cake_order, monkeypatch):
    async def explode(result, source):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(payment_service, "apply_gateway_result", explode)

    assert (await payment_service.handle_webhook(signed(cake_order.order_id)))["RspCode"] == "99"


async def test_invoice_failure_does_not_undo_payment(db, gateway, order_service, cake_order):
    service = PaymentService(db, gateway, RecordingInvoiceService(fail=True))

    settlement = await service.handle_callback(signed(cake_order.order_id))

    assert settlement.success
    assert settlement.newly_paid
    assert db.payments_for(cake_order.order_id)[0]["status"] == PaymentStatus.PAID


async def test_callback_declined(payment_service, order_service, cake_order):
    settlement = await payment_service.handle_callback(
        signed(cake_order.order_id, response_code="24", transaction_status="02")
    )

    assert not settlement.success
    assert settlement.payment.status == PaymentStatus.CANCELLED
    assert (await order_service.get_order(cake_order.order_id)).status == OrderStatus.PROCESSING


async def test_callback_invalid_signature_raises(payment_service, cake_order):
    params = signed(cake_order.order_id)
    params["vnp_SecureHash"] = "0" * 128

    with pytest.raises(InvalidSignature):
        await payment_service.handle_callback(params)


async def test_callback_and_webhook_share_one_row(payment_service, cake_order, db):
    params = signed(cake_order.order_id)

    await payment_service.handle_callback(params)
    await payment_service.handle_webhook(params)

    assert len(db.payments_for(cake_order.order_id)) == 1


async def test_concurrent_callback_and_webhook_pay_once(
        payment_service, order_service, invoice_service, cake_order, db):
    params = signed(cake_order.order_id)

    settlement, response = await asyncio.gather(
        payment_service.handle_callback(params),
        payment_service.handle_webhook(params)
    )

    assert settlement.success
    assert response["RspCode"] == "00"
    assert len(db.payments_for(cake_order.order_id)) == 1
    assert invoice_service.requested == [cake_order.order_id]
    assert (await order_service.get_order(cake_order.order_id)).status == OrderStatus.COMPLETED


async def test_gateway_payment_on_cancelled_order_is_recorded(payment_service, order_service, cake_order, db):
    await order_service.cancel_order(cake_order.order_id)

    response = await payment_service.handle_webhook(signed(cake_order.order_id))

    assert response["RspCode"] == "00"
    assert db.payments_for(cake_order.order_id)[0]["status"] == PaymentStatus.PAID
    assert (await order_service.get_order(cake_order.order_id)).status == OrderStatus.CANCELLED


async def test_query_reconciles_pending_transaction(payment_service, gateway, cake_order, db, monkeypatch):
    async def fake_query(txn_ref, ip_addr):
        return GatewayResult(
            order_id=cake_order.order_id,
            txn_ref=txn_ref,
            amount=Decimal(80000),
            response_code="00",
            transaction_status="01"
        )

    monkeypatch.setattr(gateway, "query_transaction", fake_query)

    settlement = await payment_service.query_gateway_payment(
        f"ORDER_{cake_order.order_id}_1700000000000", "127.0.0.1"
    )

    assert not settlement.success
    assert settlement.payment.status == PaymentStatus.PROCESSING
    assert len(db.payments_for(cake_order.order_id)) == 1


async def test_get_and_list_payments(payment_service, cake_order):
    payment = await payment_service.settle_cash(cake_order.order_id, Decimal(90000))

    assert (await payment_service.get_payment(payment.payment_id)).change_amount == Decimal(10000)

    page = await payment_service.list_payments(order_id=cake_order.order_id)
    assert [p.payment_id for p in page.data] == [payment.payment_id]
    assert page.pagination.total == 1

    with pytest.raises(NotFoundError):
        await payment_service.get_payment(999)
