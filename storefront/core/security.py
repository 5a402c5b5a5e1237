import hashlib
import hmac
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from storefront.core.config import get_settings

SESSION_MAX_AGE_SECONDS = 7 * 24 * 3600


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="storefront-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def load_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    """Verify a session cookie issued by the auth service; None if forged or expired."""
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=SESSION_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired):
        return None


def compute_signature(message: bytes, secret: str | bytes) -> str:
    """HMAC-SHA256 of message, lowercase hex (Razorpay's format)."""
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def verify_signature(message: bytes, secret: str | bytes, provided_digest: str) -> bool:
    """
    Constant-time check of provided_digest against HMAC-SHA256(secret, message).
    Any malformed input is reported as a mismatch, never raised.
    """
    if not secret or not provided_digest or not isinstance(provided_digest, str):
        return False
    if not isinstance(message, (bytes, bytearray)):
        return False
    try:
        expected = compute_signature(bytes(message), secret)
        return hmac.compare_digest(expected, provided_digest)
    except (TypeError, ValueError, AttributeError):
        # compare_digest rejects non-ASCII str
        return False


def confirmation_message(provider_order_id: str, provider_payment_id: str) -> bytes:
    """Checkout confirmation payload: "{order_id}|{payment_id}"."""
    return f"{provider_order_id}|{provider_payment_id}".encode("utf-8")


def verify_payment_confirmation(
    provider_order_id: str,
    provider_payment_id: str,
    signature: str,
    key_secret: str,
) -> bool:
    if not isinstance(provider_order_id, str) or not isinstance(provider_payment_id, str):
        return False
    if not provider_order_id or not provider_payment_id:
        return False
    return verify_signature(confirmation_message(provider_order_id, provider_payment_id), key_secret, signature)


def verify_razorpay_webhook(payload: bytes, signature: str, secret: str) -> bool:
    """Webhook signature is computed over the raw body, byte for byte."""
    return verify_signature(payload, secret, signature)
