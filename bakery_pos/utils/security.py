# bakery_pos/utils/security.py
import hashlib
import hmac
from typing import Dict, Iterable, Mapping
from urllib.parse import quote_plus

SIGNATURE_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")


def hmac_sha512(secret: str, data: str) -> str:
    """HMAC-SHA512 hex digest"""
    return hmac.new(
        secret.encode(),
        data.encode(),
        hashlib.sha512
    ).hexdigest()


def canonical_query(params: Mapping[str, object]) -> str:
    """Sorted ``key=value`` pairs joined with ``&``, values quote_plus-encoded"""
    return "&".join(
        f"{key}={quote_plus(str(value))}"
        for key, value in sorted(params.items())
        if value is not None
    )


def signable_params(params: Mapping[str, object]) -> Dict[str, object]:
    """Keep the ``vnp_`` parameters covered by the secure hash"""
    return {
        key: value for key, value in params.items()
        if key.startswith("vnp_") and key not in SIGNATURE_FIELDS
    }


def sign_params(params: Mapping[str, object], secret: str) -> str:
    """Secure hash over the canonical query of the signable parameters"""
    return hmac_sha512(secret, canonical_query(signable_params(params)))


def verify_params(params: Mapping[str, object], secret: str) -> bool:
    """Check ``vnp_SecureHash`` against the other parameters"""
    received = params.get("vnp_SecureHash")
    if not received:
        return False

    expected = sign_params(params, secret)
    return hmac.compare_digest(str(received).lower(), expected.lower())


def sign_fields(values: Iterable[object], secret: str) -> str:
    """Secure hash over pipe-joined values, as used by the querydr API"""
    return hmac_sha512(secret, "|".join("" if v is None else str(v) for v in values))
