# bakery_pos/app.py
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from .database import Database
from .exceptions import PosError
from .handlers import order_router, payment_router
from .services.invoice_service import InvoiceService
from .services.vnpay_gateway import VNPayGateway

logger = logging.getLogger(__name__)

def create_app(db=None, gateway=None, invoice_service=None) -> FastAPI:
    """Build the POS API; collaborators default to the configured ones"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.db.connect()
        logger.info("POS API started")
        try:
            yield
        finally:
            await app.state.db.close()
            logger.info("POS API stopped")

    app = FastAPI(title="Bakery POS", lifespan=lifespan)
    app.state.db = db or Database()
    app.state.gateway = gateway or VNPayGateway.from_config()
    app.state.invoice_service = invoice_service or InvoiceService.from_config()

    @app.exception_handler(PosError)
    async def pos_error_handler(request: Request, exc: PosError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "Internal server error."}
        )

    app.include_router(order_router)
    app.include_router(payment_router)

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    return app
