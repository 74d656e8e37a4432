# bakery_pos/handlers/base_handler.py
from fastapi import Request
from ..services.order_service import OrderService
from ..services.payment_service import PaymentService

def get_order_service(request: Request) -> OrderService:
    """Order service bound to the application's database"""
    return OrderService(request.app.state.db)

def get_payment_service(request: Request) -> PaymentService:
    """Payment service bound to the database, gateway and invoice client"""
    state = request.app.state
    return PaymentService(state.db, state.gateway, state.invoice_service)

def client_ip(request: Request) -> str:
    """Caller address, preferring the first X-Forwarded-For hop"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"
