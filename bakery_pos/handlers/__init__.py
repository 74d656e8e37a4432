# bakery_pos/handlers/__init__.py
"""HTTP routers"""
from .order_handlers import router as order_router
from .payment_handlers import router as payment_router

__all__ = [
    'order_router',
    'payment_router',
]
