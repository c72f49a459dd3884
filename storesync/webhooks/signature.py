import hashlib
import hmac
from typing import Optional

from ..common.errors import SignatureInvalid


def sign(secret: str, raw_body: bytes) -> str:
    """Hex-encoded HMAC-SHA256 of ``raw_body``."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify(secret: str, raw_body: Optional[bytes], signature: Optional[str]) -> None:
    if raw_body is None or not signature:
        raise SignatureInvalid("Missing body or signature")
    if not secret:
        raise SignatureInvalid("No webhook secret configured")
    expected = sign(secret, raw_body)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        raise SignatureInvalid("Signature mismatch")
