# tests/conftest.py
from decimal import Decimal
import pytest
from bakery_pos.config import Config
from bakery_pos.models.catalog import MembershipTier
from bakery_pos.services.order_service import OrderService
from bakery_pos.services.payment_service import PaymentService
from bakery_pos.services.vnpay_gateway import VNPayGateway
from .fakes import FakeDatabase, RecordingInvoiceService

HASH_SECRET = "TESTSECRET0123456789"
TMN_CODE = "TESTTMN"

EMPLOYEE_ID = 1
CUSTOMER_ID = 10
MEMBER_ID = 11

CROISSANT = 1      # 30 000
BAGUETTE = 2       # 25 000
RETIRED = 3        # inactive
CAKE = 4           # 80 000


@pytest.fixture
def db():
    database = FakeDatabase()
    database.add_employee(EMPLOYEE_ID)
    database.add_customer(CUSTOMER_ID)
    database.add_customer(MEMBER_ID, membership=MembershipTier(
        membership_type_id=1, name="Gold", discount_value=Decimal(10)
    ))
    database.add_price(CROISSANT, 30000, product_name="Croissant")
    database.add_price(BAGUETTE, 25000, product_name="Baguette", size_name="L")
    database.add_price(RETIRED, 15000, product_name="Pain au raisin", is_active=False)
    database.add_price(CAKE, 80000, product_name="Birthday cake", size_name="20cm")
    return database


@pytest.fixture
def gateway():
    return VNPayGateway(
        TMN_CODE, HASH_SECRET,
        payment_url="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
        api_url="https://sandbox.vnpayment.vn/merchant_webapi/api/transaction",
        timeout=1,
        expire_minutes=15
    )


@pytest.fixture
def invoice_service():
    return RecordingInvoiceService()


@pytest.fixture
def order_service(db):
    return OrderService(db)


@pytest.fixture
def payment_service(db, gateway, invoice_service):
    return PaymentService(db, gateway, invoice_service)


@pytest.fixture(autouse=True)
def store_settings(monkeypatch):
    monkeypatch.setattr(Config, "TIMEZONE", "Asia/Ho_Chi_Minh")
    monkeypatch.setattr(Config, "CURRENCY_DECIMALS", 0)
    monkeypatch.setattr(Config, "POS_URL", "http://pos.test")
