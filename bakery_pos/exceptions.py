# bakery_pos/exceptions.py
from typing import Optional


class PosError(Exception):
    """Base class for errors surfaced to POS clients"""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class NotFoundError(PosError):
    """A referenced order, discount, price, customer, employee or payment is missing"""

    status_code = 404
    code = "not_found"


class InvalidError(PosError):
    """The request is well-formed but violates a business rule"""

    status_code = 422
    code = "invalid"


class InvalidLineItem(InvalidError):
    code = "invalid_line_item"


class UnknownPriceRef(InvalidLineItem, NotFoundError):
    """A line references a price that does not exist in the catalog"""

    status_code = 404
    code = "unknown_price_ref"


class InvalidSignature(InvalidError):
    status_code = 400
    code = "invalid_signature"


class InsufficientPayment(InvalidError):
    code = "insufficient_payment"


class AmountMismatch(InvalidError):
    code = "amount_mismatch"


class ConflictError(PosError):
    """The request conflicts with the current state of a resource"""

    status_code = 409
    code = "conflict"


class AlreadyTerminal(ConflictError):
    code = "already_terminal"


class GatewayError(PosError):
    """The payment gateway could not be reached; safe to retry"""

    status_code = 503
    code = "gateway_error"


class GatewayUnavailable(GatewayError):
    code = "gateway_unavailable"


class DiscountInvalid(PosError):
    """A requested discount failed validation.

    The HTTP status follows the failing check: a missing discount is a 404,
    exhausted usage caps are conflicts, every other rule is a 422.
    """

    _STATUS_BY_REASON = {
        "NOT_FOUND": 404,
        "GLOBALLY_EXHAUSTED": 409,
        "PER_CUSTOMER_EXHAUSTED": 409,
    }

    def __init__(self, reason: str, message: str, discount_id: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.discount_id = discount_id
        self.status_code = self._STATUS_BY_REASON.get(reason, 422)
        self.code = f"discount_{reason.lower()}"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["discount_id"] = self.discount_id
        return data
