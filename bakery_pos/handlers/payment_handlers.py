# bakery_pos/handlers/payment_handlers.py
import logging
from typing import Optional
from urllib.parse import urlencode
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from ..config import Config
from ..exceptions import PosError
from ..models.payment import (
    CashPaymentCreate, GatewaySettlement, Payment, PaymentPage,
    VNPayCreateRequest, VNPayQueryRequest
)
from ..services.payment_service import PaymentService
from .base_handler import client_ip, get_payment_service

router = APIRouter(prefix="/payments", tags=["payments"])
logger = logging.getLogger(__name__)

@router.post("", response_model=Payment, status_code=201)
async def create_cash_payment(body: CashPaymentCreate,
                              service: PaymentService = Depends(get_payment_service)):
    """Settle an order in cash"""
    return await service.settle_cash(body.order_id, body.amount_paid, body.payment_time)

@router.get("", response_model=PaymentPage)
async def list_payments(order_id: Optional[int] = None,
                        page: int = Query(1, ge=1),
                        limit: int = Query(10, ge=1, le=100),
                        service: PaymentService = Depends(get_payment_service)):
    return await service.list_payments(order_id, page, limit)

@router.post("/vnpay/create")
async def create_vnpay_payment(body: VNPayCreateRequest, request: Request,
                               service: PaymentService = Depends(get_payment_service)):
    url = await service.initiate_redirect(
        body.order_id, client_ip(request), body.return_url, body.order_info
    )
    return {"paymentUrl": url}

@router.get("/vnpay/callback")
async def vnpay_callback(request: Request,
                         service: PaymentService = Depends(get_payment_service)):
    """Browser return from VNPay; redirects back to the POS"""
    params = dict(request.query_params)
    try:
        settlement = await service.handle_callback(params)
    except PosError as e:
        logger.warning(f"VNPay callback rejected: {e.message}")
        return _redirect("failure", message=e.message)
    except Exception as e:
        logger.error(f"VNPay callback failed: {e}", exc_info=True)
        return _redirect("failure", message="Payment could not be processed.")

    if settlement.success:
        return _redirect("success", orderId=settlement.payment.order_id)
    return _redirect("failure", message=settlement.message)

@router.get("/vnpay/webhook")
async def vnpay_webhook_get(request: Request,
                            service: PaymentService = Depends(get_payment_service)):
    return await service.handle_webhook(dict(request.query_params))

@router.post("/vnpay/webhook")
async def vnpay_webhook_post(request: Request,
                             service: PaymentService = Depends(get_payment_service)):
    try:
        params = await request.json()
    except ValueError:
        params = {}
    if not isinstance(params, dict):
        params = {}
    return await service.handle_webhook(params)

@router.post("/vnpay/query", response_model=GatewaySettlement)
async def query_vnpay_payment(body: VNPayQueryRequest, request: Request,
                              service: PaymentService = Depends(get_payment_service)):
    """Ask VNPay for the state of a transaction and reconcile it"""
    return await service.query_gateway_payment(body.txn_ref, client_ip(request))

@router.get("/{payment_id}", response_model=Payment)
async def get_payment(payment_id: int, service: PaymentService = Depends(get_payment_service)):
    return await service.get_payment(payment_id)

def _redirect(outcome: str, **params) -> RedirectResponse:
    return RedirectResponse(
        f"{Config.POS_URL}/payment/{outcome}?{urlencode(params)}", status_code=302
    )
