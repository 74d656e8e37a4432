# bakery_pos/handlers/order_handlers.py
from typing import Optional
from fastapi import APIRouter, Depends, Query
from ..models.discount import DiscountQuote, DiscountValidationRequest
from ..models.order import (
    Order, OrderCreate, OrderPage, OrderQuoteRequest, OrderStatus, OrderUpdate, PricingResult
)
from ..services.order_service import OrderService
from .base_handler import get_order_service

router = APIRouter(prefix="/orders", tags=["orders"])

@router.post("/calculate", response_model=PricingResult)
async def calculate_order(body: OrderQuoteRequest,
                          service: OrderService = Depends(get_order_service)):
    """Price a cart without creating an order"""
    return await service.calculate(body.lines, body.customer_id, body.discount_ids)

@router.post("/validate-discounts", response_model=DiscountQuote)
async def validate_discounts(body: DiscountValidationRequest,
                             service: OrderService = Depends(get_order_service)):
    return await service.validate_discounts(
        body.discount_ids, body.total_amount, body.product_count, body.customer_id
    )

@router.post("", response_model=Order, status_code=201)
async def create_order(body: OrderCreate,
                       service: OrderService = Depends(get_order_service)):
    return await service.create_order(
        employee_id=body.employee_id,
        lines=body.lines,
        customer_id=body.customer_id,
        discount_ids=body.discount_ids,
        note=body.note
    )

@router.get("", response_model=OrderPage)
async def list_orders(customer_id: Optional[int] = None,
                      employee_id: Optional[int] = None,
                      status: Optional[OrderStatus] = None,
                      page: int = Query(1, ge=1),
                      limit: int = Query(10, ge=1, le=100),
                      service: OrderService = Depends(get_order_service)):
    return await service.list_orders(customer_id, employee_id, status, page, limit)

@router.get("/{order_id}", response_model=Order)
async def get_order(order_id: int, service: OrderService = Depends(get_order_service)):
    return await service.get_order(order_id)

@router.get("/{order_id}/recalculate", response_model=PricingResult)
async def recalculate_order(order_id: int,
                            service: OrderService = Depends(get_order_service)):
    """Re-price a stored order at current prices and discount eligibility"""
    return await service.recalculate_order(order_id)

@router.patch("/{order_id}", response_model=Order)
async def update_order(order_id: int, body: OrderUpdate,
                       service: OrderService = Depends(get_order_service)):
    return await service.update_order(order_id, body)

@router.patch("/{order_id}/cancel", response_model=Order)
async def cancel_order(order_id: int, service: OrderService = Depends(get_order_service)):
    return await service.cancel_order(order_id)

@router.delete("/{order_id}", response_model=Order)
async def delete_order(order_id: int, service: OrderService = Depends(get_order_service)):
    return await service.delete_order(order_id)
