# bakery_pos/services/vnpay_gateway.py
import asyncio
import logging
import re
import time
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote_plus
import aiohttp
from ..config import Config
from ..exceptions import (
    AmountMismatch, GatewayUnavailable, InvalidError, InvalidSignature, NotFoundError
)
from ..models.payment import GatewayResult
from ..utils.formatters import format_gateway_date, parse_gateway_date
from ..utils.money import from_gateway_amount, to_gateway_amount
from ..utils.security import canonical_query, sign_fields, sign_params, verify_params

TXN_REF_PATTERN = re.compile(r"^ORDER_(\d+)_(\d+)$")

QUERY_RESPONSE_FIELDS = (
    "vnp_ResponseId", "vnp_Command", "vnp_ResponseCode", "vnp_Message",
    "vnp_TmnCode", "vnp_TxnRef", "vnp_Amount", "vnp_BankCode", "vnp_PayDate",
    "vnp_TransactionNo", "vnp_TransactionType", "vnp_TransactionStatus",
    "vnp_OrderInfo", "vnp_PromotionCode", "vnp_PromotionAmount",
)

def build_txn_ref(order_id: int, timestamp_ms: Optional[int] = None) -> str:
    """Transaction reference ``ORDER_{order_id}_{epoch_ms}``"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"ORDER_{order_id}_{timestamp_ms}"

def parse_txn_ref(txn_ref: Optional[str]) -> int:
    """Order id embedded in a transaction reference"""
    match = TXN_REF_PATTERN.match(txn_ref or "")
    if not match:
        raise InvalidError(f"Invalid transaction reference: {txn_ref!r}")
    return int(match.group(1))

def txn_ref_time(txn_ref: str) -> datetime:
    """Creation time encoded in a transaction reference"""
    match = TXN_REF_PATTERN.match(txn_ref or "")
    if not match:
        raise InvalidError(f"Invalid transaction reference: {txn_ref!r}")
    return datetime.fromtimestamp(int(match.group(2)) / 1000, tz=timezone.utc)

class VNPayGateway:
    """VNPay adapter: signed payment URLs, callback verification and querydr"""

    VERSION = "2.1.0"

    def __init__(self, tmn_code: str, hash_secret: str,
                 payment_url: str = Config.VNP_PAYMENT_URL,
                 api_url: str = Config.VNP_API_URL,
                 timeout: float = Config.VNP_TIMEOUT_SECONDS,
                 expire_minutes: int = Config.VNP_EXPIRE_MINUTES):
        if not tmn_code or not hash_secret:
            raise ValueError("VNP_TMN_CODE and VNP_HASH_SECRET must be configured")
        self.tmn_code = tmn_code
        self.hash_secret = hash_secret
        self.payment_url = payment_url
        self.api_url = api_url
        self.timeout = timeout
        self.expire_minutes = expire_minutes
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls) -> "VNPayGateway":
        return cls(Config.VNP_TMN_CODE, Config.VNP_HASH_SECRET)

    def build_payment_url(self, order_id: int, amount: Decimal, order_info: str,
                          return_url: str, ip_addr: str,
                          now: Optional[datetime] = None) -> str:
        """Signed redirect URL for the VNPay payment page"""
        now = now or datetime.now(timezone.utc)
        txn_ref = build_txn_ref(order_id, int(now.timestamp() * 1000))

        params = {
            "vnp_Version": self.VERSION,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.tmn_code,
            "vnp_Amount": to_gateway_amount(amount),
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": txn_ref,
            "vnp_OrderInfo": order_info,
            "vnp_OrderType": "other",
            "vnp_Locale": "vn",
            "vnp_ReturnUrl": return_url,
            "vnp_IpAddr": ip_addr,
            "vnp_CreateDate": format_gateway_date(now),
            "vnp_ExpireDate": format_gateway_date(now + timedelta(minutes=self.expire_minutes)),
        }
        secure_hash = sign_params(params, self.hash_secret)

        self.logger.info(f"[Order: {order_id}] VNPay payment URL created ({txn_ref})")
        return f"{self.payment_url}?{canonical_query(params)}&vnp_SecureHash={quote_plus(secure_hash)}"

    def verify(self, params: Mapping[str, Any]) -> bool:
        return verify_params(params, self.hash_secret)

    def parse_callback(self, params: Mapping[str, Any]) -> GatewayResult:
        """Verify a redirect/IPN payload and extract the outcome"""
        if not self.verify(params):
            raise InvalidSignature("Invalid VNPay signature.")

        txn_ref = params.get("vnp_TxnRef")
        order_id = parse_txn_ref(txn_ref)

        try:
            amount = from_gateway_amount(params.get("vnp_Amount"))
        except (ArithmeticError, TypeError, ValueError):
            raise AmountMismatch(f"Invalid VNPay amount: {params.get('vnp_Amount')!r}")

        return GatewayResult(
            order_id=order_id,
            txn_ref=txn_ref,
            amount=amount,
            response_code=str(params.get("vnp_ResponseCode", "")),
            transaction_status=params.get("vnp_TransactionStatus"),
            transaction_no=params.get("vnp_TransactionNo"),
            bank_code=params.get("vnp_BankCode"),
            pay_date=parse_gateway_date(params.get("vnp_PayDate"))
        )

    async def query_transaction(self, txn_ref: str, ip_addr: str,
                                now: Optional[datetime] = None) -> GatewayResult:
        """Ask VNPay for the current state of a transaction (querydr)"""
        order_id = parse_txn_ref(txn_ref)
        now = now or datetime.now(timezone.utc)

        payload = {
            "vnp_RequestId": uuid.uuid4().hex[:32],
            "vnp_Version": self.VERSION,
            "vnp_Command": "querydr",
            "vnp_TmnCode": self.tmn_code,
            "vnp_TxnRef": txn_ref,
            "vnp_OrderInfo": f"Truy van giao dich {txn_ref}",
            "vnp_TransactionDate": format_gateway_date(txn_ref_time(txn_ref)),
            "vnp_CreateDate": format_gateway_date(now),
            "vnp_IpAddr": ip_addr,
        }
        payload["vnp_SecureHash"] = sign_fields(
            [payload[key] for key in (
                "vnp_RequestId", "vnp_Version", "vnp_Command", "vnp_TmnCode",
                "vnp_TxnRef", "vnp_TransactionDate", "vnp_CreateDate",
                "vnp_IpAddr", "vnp_OrderInfo",
            )],
            self.hash_secret
        )

        data = await self._post_with_retry(payload, order_id)

        expected = sign_fields([data.get(key, "") for key in QUERY_RESPONSE_FIELDS], self.hash_secret)
        if str(data.get("vnp_SecureHash", "")).lower() != expected:
            raise InvalidSignature("Invalid VNPay query response signature.")

        response_code = str(data.get("vnp_ResponseCode", ""))
        if response_code == "91":
            raise NotFoundError(f"VNPay has no transaction {txn_ref}.")
        if response_code != "00":
            raise GatewayUnavailable(
                f"VNPay query failed with code {response_code}: {data.get('vnp_Message')}"
            )

        return GatewayResult(
            order_id=order_id,
            txn_ref=txn_ref,
            amount=from_gateway_amount(data.get("vnp_Amount", 0)),
            response_code=response_code,
            transaction_status=data.get("vnp_TransactionStatus"),
            transaction_no=data.get("vnp_TransactionNo"),
            bank_code=data.get("vnp_BankCode"),
            pay_date=parse_gateway_date(data.get("vnp_PayDate"))
        )

    async def _post_with_retry(self, payload: Dict[str, Any], order_id: int) -> Dict[str, Any]:
        """POST to the VNPay API with a bounded timeout and a single retry"""
        last_error: Optional[BaseException] = None

        for attempt in (1, 2):
            try:
                return await self._post_json(payload)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                self.logger.warning(
                    f"[Order: {order_id}] VNPay API attempt {attempt} failed: {e!r}"
                )

        self.logger.error(f"[Order: {order_id}] VNPay API unavailable after retry")
        raise GatewayUnavailable("VNPay is unavailable, please retry later.") from last_error

    async def _post_json(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.api_url, json=payload) as response:
                response.raise_for_status()
                return await response.json(content_type=None)
