"""
Webhook signatures.

A signature header has the literal form ``t=<unix-seconds>,v1=<hex>`` where
``<hex>`` is the HMAC-SHA256 of ``"<timestamp>.<payload>"`` keyed with the
signing secret. Receivers verify it with :func:`verify`:

    from hookrelay.signature import verify

    if not verify(request_body, headers["Hookrelay-Signature"], secret):
        return 400
"""

import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Optional, Union

DEFAULT_TOLERANCE_SECONDS = 300

TIMESTAMP_PREFIX = "t="
SIGNATURE_PREFIX = "v1="

BytesLike = Union[bytes, str]


@dataclass(frozen=True)
class SignatureRecord:
    """A timestamp and the hex digest signed at that timestamp."""

    timestamp: int
    signature: str

    @property
    def header(self) -> str:
        return format_header(self.timestamp, self.signature)


def _to_bytes(value: BytesLike) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def format_header(timestamp: int, signature: str) -> str:
    """Render a signature header in its wire format."""
    return f"{TIMESTAMP_PREFIX}{timestamp},{SIGNATURE_PREFIX}{signature}"


def sign(
    payload: BytesLike, secret: BytesLike, timestamp: Optional[int] = None
) -> SignatureRecord:
    """
    Sign a payload.

    Args:
        payload: Raw body exactly as the receiver will see it
        secret: Signing secret (whsec_... value)
        timestamp: Unix seconds; defaults to the current time

    Returns:
        SignatureRecord whose ``header`` is ready to send
    """
    ts = int(time.time()) if timestamp is None else int(timestamp)
    signed_payload = f"{ts}.".encode("ascii") + _to_bytes(payload)
    digest = hmac.new(_to_bytes(secret), signed_payload, hashlib.sha256).hexdigest()
    return SignatureRecord(timestamp=ts, signature=digest)


def parse_header(header) -> Optional[SignatureRecord]:
    """
    Parse a ``t=...,v1=...`` header.

    Element order does not matter. When a prefix appears more than once the
    first occurrence is used. Returns None for anything that is not a
    well-formed header; never raises.
    """
    if not isinstance(header, str):
        return None

    timestamp_value = None
    signature_value = None

    for element in header.split(","):
        element = element.strip()
        if timestamp_value is None and element.startswith(TIMESTAMP_PREFIX):
            timestamp_value = element[len(TIMESTAMP_PREFIX):]
        elif signature_value is None and element.startswith(SIGNATURE_PREFIX):
            signature_value = element[len(SIGNATURE_PREFIX):]

    if timestamp_value is None or not signature_value:
        return None

    try:
        timestamp = int(timestamp_value)
    except ValueError:
        return None

    return SignatureRecord(timestamp=timestamp, signature=signature_value)


def verify(
    payload: BytesLike,
    header: str,
    secret: BytesLike,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> bool:
    """
    Verify a signature header against a payload.

    Rejects unparsable headers, timestamps further than ``tolerance_seconds``
    from ``now`` in either direction, and digests that do not match. The
    digest comparison is constant-time.
    """
    parsed = parse_header(header)
    if parsed is None:
        return False

    current = int(time.time()) if now is None else int(now)
    if abs(current - parsed.timestamp) > tolerance_seconds:
        return False

    expected = sign(payload, secret, parsed.timestamp)

    try:
        received = parsed.signature.encode("ascii")
    except UnicodeEncodeError:
        return False

    return hmac.compare_digest(received, expected.signature.encode("ascii"))
