# bakery_pos/services/invoice_service.py
import logging
from typing import Optional
import aiohttp
from ..config import Config

class InvoiceService:
    """Client for the external invoice service"""

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls) -> "InvoiceService":
        return cls(Config.INVOICE_SERVICE_URL, Config.VNP_TIMEOUT_SECONDS)

    async def request_invoice(self, order_id: int) -> bool:
        """Ask the invoice service to issue an invoice for a paid order"""
        if not self.base_url:
            self.logger.info(f"[Order: {order_id}] Invoice service not configured, skipping")
            return False

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                f"{self.base_url}/invoices", json={"order_id": order_id}
            ) as response:
                response.raise_for_status()

        self.logger.info(f"[Order: {order_id}] Invoice requested")
        return True
