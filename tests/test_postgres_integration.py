# tests/test_postgres_integration.py
"""Runs the services against a real PostgreSQL when TEST_DATABASE_URL is set."""
import asyncio
import os
from decimal import Decimal
import pytest
from bakery_pos.database import Database
from bakery_pos.exceptions import DiscountInvalid, InsufficientPayment
from bakery_pos.models.order import OrderLineRequest, OrderStatus
from bakery_pos.models.payment import PaymentStatus
from bakery_pos.services.order_service import OrderService
from bakery_pos.services.payment_service import PaymentService
from .conftest import HASH_SECRET
from .fakes import RecordingInvoiceService, gateway_params

DSN = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not DSN, reason="TEST_DATABASE_URL not set")


@pytest.fixture
async def pg():
    database = Database(DSN)
    await database.connect()
    seeded = {"orders": []}

    async with database.pool.acquire() as conn:
        seeded["employee_id"] = await conn.fetchval(
            "INSERT INTO employees (full_name) VALUES ('Integration Tester') RETURNING employee_id"
        )
        product_id = await conn.fetchval(
            "INSERT INTO products (name) VALUES ('Integration cake') RETURNING product_id"
        )
        size_id = await conn.fetchval(
            "INSERT INTO product_sizes (name) VALUES ('20cm') RETURNING size_id"
        )
        seeded["price_id"] = await conn.fetchval("""
            INSERT INTO product_prices (product_id, size_id, price)
            VALUES ($1, $2, 80000) RETURNING price_id
        """, product_id, size_id)
        seeded["discount_id"] = await conn.fetchval("""
            INSERT INTO discounts (name, discount_value, max_discount_amount, max_uses)
            VALUES ('Integration single use', 10, 100000, 1) RETURNING discount_id
        """)
        seeded["product_id"], seeded["size_id"] = product_id, size_id

    yield database, seeded

    async with database.pool.acquire() as conn:
        await conn.execute(
            "DELETE FROM orders WHERE employee_id = $1", seeded["employee_id"]
        )
        await conn.execute("DELETE FROM discounts WHERE discount_id = $1", seeded["discount_id"])
        await conn.execute("DELETE FROM product_prices WHERE price_id = $1", seeded["price_id"])
        await conn.execute("DELETE FROM product_sizes WHERE size_id = $1", seeded["size_id"])
        await conn.execute("DELETE FROM products WHERE product_id = $1", seeded["product_id"])
        await conn.execute("DELETE FROM employees WHERE employee_id = $1", seeded["employee_id"])
    await database.close()


async def test_order_and_cash_settlement(pg):
    database, seeded = pg
    orders = OrderService(database)
    payments = PaymentService(database, None, RecordingInvoiceService())

    order = await orders.create_order(
        seeded["employee_id"], [OrderLineRequest(price_id=seeded["price_id"], quantity=1)]
    )
    assert order.final_total == Decimal(80000)

    with pytest.raises(InsufficientPayment):
        await payments.settle_cash(order.order_id, Decimal(50000))

    payment = await payments.settle_cash(order.order_id, Decimal(100000))
    assert payment.change_amount == Decimal(20000)
    assert (await orders.get_order(order.order_id)).status == OrderStatus.COMPLETED


async def test_single_use_coupon_under_concurrency(pg):
    database, seeded = pg
    orders = OrderService(database)
    cart = [OrderLineRequest(price_id=seeded["price_id"], quantity=1)]

    results = await asyncio.gather(
        orders.create_order(seeded["employee_id"], cart, discount_ids=[seeded["discount_id"]]),
        orders.create_order(seeded["employee_id"], cart, discount_ids=[seeded["discount_id"]]),
        return_exceptions=True
    )

    assert sum(isinstance(r, DiscountInvalid) for r in results) == 1
    async with database.session() as uow:
        discounts = await uow.get_discounts([seeded["discount_id"]])
    assert discounts[seeded["discount_id"]].current_uses == 1


async def test_webhook_upsert_keeps_one_row(pg, gateway):
    database, seeded = pg
    orders = OrderService(database)
    payments = PaymentService(database, gateway, RecordingInvoiceService())

    order = await orders.create_order(
        seeded["employee_id"], [OrderLineRequest(price_id=seeded["price_id"], quantity=1)]
    )
    paid = gateway_params(HASH_SECRET, order.order_id, 80000)
    declined = gateway_params(HASH_SECRET, order.order_id, 80000,
                              response_code="24", transaction_status="02")

    for params in (paid, paid, declined):
        assert (await payments.handle_webhook(params))["RspCode"] == "00"

    page = await payments.list_payments(order_id=order.order_id)
    assert page.pagination.total == 1
    assert page.data[0].status == PaymentStatus.CANCELLED


async def test_concurrent_callback_and_webhook(pg, gateway):
    database, seeded = pg
    orders = OrderService(database)
    invoices = RecordingInvoiceService()
    payments = PaymentService(database, gateway, invoices)

    order = await orders.create_order(
        seeded["employee_id"], [OrderLineRequest(price_id=seeded["price_id"], quantity=1)]
    )
    params = gateway_params(HASH_SECRET, order.order_id, 80000)

    settlement, response = await asyncio.gather(
        payments.handle_callback(params),
        payments.handle_webhook(params)
    )

    assert settlement.success
    assert response["RspCode"] == "00"
    page = await payments.list_payments(order_id=order.order_id)
    assert page.pagination.total == 1
    assert page.data[0].status == PaymentStatus.PAID
    assert invoices.requested == [order.order_id]
    assert (await orders.get_order(order.order_id)).status == OrderStatus.COMPLETED
