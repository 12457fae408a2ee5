"""
Webhook signature computation and verification.

Supported algorithms (see SignatureAlgorithm):
- hmac_sha256: hex HMAC-SHA256 of the raw body; "sha256=" / "sha256:" prefixes accepted
- hmac_sha1: hex HMAC-SHA1 of the raw body; "sha1=" / "sha1:" prefixes accepted
- twilio: base64 HMAC-SHA1 of url + body, url taken from X-Forwarded-Url or Host

All comparisons use hmac.compare_digest.
"""

import base64
import hashlib
import hmac
import logging
from typing import Mapping, Optional, Union

from app.models.webhook_security import SignatureAlgorithm

logger = logging.getLogger(__name__)

# First non-empty header wins
SIGNATURE_HEADERS = [
    "x-signature",
    "x-webhook-signature",
    "x-hub-signature-256",
    "x-twilio-signature",
    "authorization",
]

HMAC_PREFIXES = {
    SignatureAlgorithm.HMAC_SHA256.value: "sha256",
    SignatureAlgorithm.HMAC_SHA1.value: "sha1",
}


class UnsupportedAlgorithmError(ValueError):
    """Raised when a setting names a signature algorithm we don't implement."""


def _lower_headers(headers: Mapping[str, str]) -> dict:
    return {str(k).lower(): v for k, v in headers.items()}


def extract_signature(headers: Mapping[str, str]) -> Optional[str]:
    """
    Pull the signature out of the request headers.

    Authorization headers have a leading "Bearer " stripped.

    Returns:
        Signature string, or None if no signature header is present
    """
    lowered = _lower_headers(headers)
    for name in SIGNATURE_HEADERS:
        value = lowered.get(name)
        if not value:
            continue
        if name == "authorization":
            value = value.replace("Bearer ", "", 1)
            if not value:
                continue
        return value
    return None


def _to_bytes(body: Union[bytes, str, None]) -> bytes:
    if body is None:
        return b""
    if isinstance(body, str):
        return body.encode("utf-8")
    return body


def compute_signature(
    body: Union[bytes, str, None],
    secret: str,
    algorithm: str,
    headers: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Compute the expected signature for a request body.

    Args:
        body: Raw request body
        secret: Decrypted shared secret
        algorithm: SignatureAlgorithm value
        headers: Request headers (only needed for twilio)

    Returns:
        Hex digest for HMAC algorithms, base64 digest for twilio

    Raises:
        UnsupportedAlgorithmError: unknown algorithm
    """
    key = secret.encode("utf-8")
    payload = _to_bytes(body)

    if algorithm == SignatureAlgorithm.HMAC_SHA256.value:
        return hmac.new(key, payload, hashlib.sha256).hexdigest()

    if algorithm == SignatureAlgorithm.HMAC_SHA1.value:
        return hmac.new(key, payload, hashlib.sha1).hexdigest()

    if algorithm == SignatureAlgorithm.TWILIO.value:
        lowered = _lower_headers(headers or {})
        url = lowered.get("x-forwarded-url") or lowered.get("host") or ""
        mac = hmac.new(key, url.encode("utf-8") + payload, hashlib.sha1)
        return base64.b64encode(mac.digest()).decode("utf-8")

    raise UnsupportedAlgorithmError(f"Unsupported signature algorithm: {algorithm}")


def verify_signature(
    body: Union[bytes, str, None],
    signature: Optional[str],
    secret: str,
    algorithm: str,
    headers: Optional[Mapping[str, str]] = None,
) -> bool:
    """
    Verify a provided signature against the expected one.

    Unknown algorithms never verify. Twilio signatures must match exactly;
    HMAC signatures may carry an algorithm prefix.

    Example:
        >>> body = b'{"event": "call.completed"}'
        >>> sig = compute_signature(body, "s3cret", "hmac_sha256")
        >>> verify_signature(body, f"sha256={sig}", "s3cret", "hmac_sha256")
        True
    """
    if not signature or not secret:
        return False

    try:
        expected = compute_signature(body, secret, algorithm, headers)
    except UnsupportedAlgorithmError:
        logger.warning(f"Rejecting webhook with unsupported algorithm: {algorithm}")
        return False

    candidates = [expected]
    prefix = HMAC_PREFIXES.get(algorithm)
    if prefix:
        candidates += [f"{prefix}={expected}", f"{prefix}:{expected}"]

    provided = signature.encode("utf-8")
    matched = False
    # Compare against every candidate so timing doesn't leak which form matched
    for candidate in candidates:
        if hmac.compare_digest(candidate.encode("utf-8"), provided):
            matched = True
    return matched
