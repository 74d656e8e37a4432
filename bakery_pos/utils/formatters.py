# bakery_pos/utils/formatters.py
from datetime import datetime
from typing import Optional
import pytz
from decimal import Decimal
from ..config import Config

GATEWAY_DATE_FORMAT = "%Y%m%d%H%M%S"

def format_price(amount: Decimal) -> str:
    """Format a price with thousands separators"""
    return f"{amount:,.{Config.CURRENCY_DECIMALS}f}"

def to_local_time(dt: datetime) -> datetime:
    """Convert to the store timezone, treating naive values as UTC"""
    local_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(local_tz)

def format_gateway_date(dt: datetime) -> str:
    """yyyyMMddHHmmss in the store timezone, as VNPay expects"""
    return to_local_time(dt).strftime(GATEWAY_DATE_FORMAT)

def parse_gateway_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a VNPay timestamp back into an aware datetime"""
    if not value:
        return None
    local_tz = pytz.timezone(Config.TIMEZONE)
    try:
        naive = datetime.strptime(value, GATEWAY_DATE_FORMAT)
    except ValueError:
        return None
    return local_tz.localize(naive)
