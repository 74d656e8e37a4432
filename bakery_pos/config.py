# bakery_pos/config.py
import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from typing import Optional

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

class Config:
    """Configuration settings for the POS backend"""

    # Database settings
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    DB_POOL_MIN_SIZE: int = int(os.getenv("DB_POOL_MIN_SIZE", "2"))
    DB_POOL_MAX_SIZE: int = int(os.getenv("DB_POOL_MAX_SIZE", "10"))

    # Money settings (VND has no minor unit in circulation)
    CURRENCY_DECIMALS: int = int(os.getenv("CURRENCY_DECIMALS", "0"))

    # VNPay settings
    VNP_TMN_CODE: str = os.getenv("VNP_TMN_CODE", "")
    VNP_HASH_SECRET: str = os.getenv("VNP_HASH_SECRET", "")
    VNP_PAYMENT_URL: str = os.getenv(
        "VNP_PAYMENT_URL", "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    )
    VNP_API_URL: str = os.getenv(
        "VNP_API_URL", "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction"
    )
    VNP_RETURN_URL: str = os.getenv(
        "VNP_RETURN_URL", "http://localhost:8000/payments/vnpay/callback"
    )
    VNP_TIMEOUT_SECONDS: float = float(os.getenv("VNP_TIMEOUT_SECONDS", "10"))
    VNP_EXPIRE_MINUTES: int = int(os.getenv("VNP_EXPIRE_MINUTES", "15"))

    # Collaborators
    POS_URL: str = os.getenv("POS_URL", "http://localhost:3001")
    INVOICE_SERVICE_URL: Optional[str] = os.getenv("INVOICE_SERVICE_URL") or None

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "Asia/Ho_Chi_Minh")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Paths
    LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "logs")))

def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    Config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = Config.LOG_DIR / "pos.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    # Reduce verbosity from external libraries
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
