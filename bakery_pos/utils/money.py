# bakery_pos/utils/money.py
"""Decimal helpers for every monetary value handled by the POS core.

Amounts are always ``Decimal`` quantised to the smallest currency unit with
banker's rounding. Floats are refused outright.
"""
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Union
from ..config import Config

MoneyLike = Union[Decimal, int, str]

ZERO = Decimal(0)
HUNDRED = Decimal(100)
GATEWAY_MINOR_UNITS = 100


def money_quantum() -> Decimal:
    """Smallest currency unit, e.g. Decimal('1') for VND or Decimal('0.01')"""
    return Decimal(1).scaleb(-Config.CURRENCY_DECIMALS)


def to_decimal(value: MoneyLike) -> Decimal:
    """Convert to Decimal without rounding"""
    if isinstance(value, float):
        raise TypeError("float values are not accepted for money")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value: MoneyLike) -> Decimal:
    """Convert and round half-even to the smallest currency unit"""
    return to_decimal(value).quantize(money_quantum(), rounding=ROUND_HALF_EVEN)


def percent_of(amount: MoneyLike, percentage: MoneyLike) -> Decimal:
    """``amount * percentage / 100`` rounded to the smallest currency unit"""
    return to_money(to_decimal(amount) * to_decimal(percentage) / HUNDRED)


def clamp_non_negative(amount: Decimal) -> Decimal:
    return amount if amount > ZERO else to_money(ZERO)


def to_gateway_amount(amount: MoneyLike) -> int:
    """Amount in the gateway's minor-unit convention (VNPay multiplies by 100)"""
    scaled = to_decimal(amount) * GATEWAY_MINOR_UNITS
    return int(scaled.to_integral_value(rounding=ROUND_HALF_EVEN))


def from_gateway_amount(raw: Union[str, int]) -> Decimal:
    return to_money(Decimal(str(raw)) / GATEWAY_MINOR_UNITS)
