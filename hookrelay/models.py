"""
Data models for hookrelay.

This module defines the structures passed between the relay components:
- Notification: One webhook occurrence received from the event stream
- DeliveryAttempt / DeliveryResult: Outcome of forwarding a Notification
- ListenerSession: A registered relay session
- StreamEvent: An item drained from the stream client's queue
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, List

from hookrelay.exceptions import MalformedNotificationError, RegistrationError
from hookrelay.signature import SignatureRecord, format_header

# Lone UTF-16 surrogates cannot be encoded as UTF-8; JSON.stringify escapes them
_SURROGATE = re.compile("[\ud800-\udfff]")


class JsonNumber(float):
    """A decoded JSON number that keeps its source literal."""

    def __new__(cls, literal: str):
        number = super().__new__(cls, literal)
        number.literal = literal
        return number


def loads(text: str) -> Any:
    """Decode JSON, keeping the literal text of every non-integer number."""
    return json.loads(text, parse_float=JsonNumber)


def _render_string(value: str) -> str:
    text = json.dumps(value, ensure_ascii=False)
    return _SURROGATE.sub(lambda m: f"\\u{ord(m.group()):04x}", text)


def render_json(value: Any) -> str:
    """
    Render a decoded JSON value compactly.

    Numbers decoded by :func:`loads` are written back exactly as received, so
    a payload that went through loads() renders to the bytes it was signed as.

    Raises:
        TypeError: For values JSON cannot represent
        ValueError: For NaN or infinite floats that were not decoded from text
    """
    if isinstance(value, JsonNumber):
        return value.literal
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    if isinstance(value, str):
        return _render_string(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return json.dumps(value, allow_nan=False)
    if isinstance(value, dict):
        items = []
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Keys must be str, not {type(key).__name__}")
            items.append(f"{_render_string(key)}:{render_json(item)}")
        return "{" + ",".join(items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(render_json(item) for item in value) + "]"
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


@dataclass
class Notification:
    """A webhook event delivered by the remote stream."""

    id: str
    type: str
    payload: Dict[str, Any]
    signature: SignatureRecord
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Notification":
        """
        Decode a Notification from its wire format.

        Raises:
            MalformedNotificationError: If a required field is missing or ill-typed
        """
        if not isinstance(data, dict):
            raise MalformedNotificationError(
                f"Expected object, got {type(data).__name__}"
            )

        event_id = data.get("id")
        event_type = data.get("type")
        payload = data.get("payload")
        signature = data.get("signature")

        if not isinstance(event_id, str) or not event_id:
            raise MalformedNotificationError("Notification missing 'id'")
        if not isinstance(event_type, str) or not event_type:
            raise MalformedNotificationError(f"Notification {event_id} missing 'type'")
        if not isinstance(payload, dict):
            raise MalformedNotificationError(
                f"Notification {event_id} has non-object 'payload'"
            )
        if not isinstance(signature, dict):
            raise MalformedNotificationError(
                f"Notification {event_id} missing 'signature'"
            )

        timestamp = signature.get("t")
        digest = signature.get("v1")
        # bool is an int subclass
        if isinstance(timestamp, bool) or not isinstance(timestamp, int):
            raise MalformedNotificationError(
                f"Notification {event_id} has invalid signature timestamp"
            )
        if not isinstance(digest, str) or not digest:
            raise MalformedNotificationError(
                f"Notification {event_id} has invalid signature value"
            )

        created_at = data.get("createdAt")

        return cls(
            id=event_id,
            type=event_type,
            payload=payload,
            signature=SignatureRecord(timestamp=timestamp, signature=digest),
            created_at=created_at if isinstance(created_at, str) else None,
        )

    @classmethod
    def from_json(cls, text: str) -> "Notification":
        """
        Decode a Notification from the JSON text of a stream event.

        Payload numbers keep their source literals so payload_bytes()
        reproduces the signed form.

        Raises:
            ValueError: If the text is not JSON (MalformedNotificationError
                is a ValueError too)
        """
        return cls.from_dict(loads(text))

    @property
    def signature_header(self) -> str:
        return format_header(self.signature.timestamp, self.signature.signature)

    def payload_bytes(self) -> bytes:
        """
        Serialize the payload in the compact form the remote side signs.

        Raises:
            TypeError: If the payload holds a value JSON cannot represent
            ValueError: If the payload holds a NaN or infinite float
        """
        return render_json(self.payload).encode("utf-8")


@dataclass
class DeliveryAttempt:
    """One POST try for one Notification."""

    attempt_index: int
    started_at: datetime
    duration_ms: float = 0.0
    status_code: Optional[int] = None
    response_body_prefix: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class DeliveryResult:
    """Result of forwarding a Notification."""

    success: bool
    duration_ms: float = 0.0
    status_code: Optional[int] = None
    response_body_prefix: Optional[str] = None
    error: Optional[str] = None
    attempts: List[DeliveryAttempt] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


@dataclass
class ListenerSession:
    """A dev listener session registered with the webhook service."""

    session_id: str
    dev_webhook_secret: str
    stream_url: str
    expires_at: Optional[str] = None
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: Any) -> "ListenerSession":
        """Create a session from the registration response body."""
        if not isinstance(data, dict):
            raise RegistrationError("Registration response is not a JSON object")

        missing = [
            key
            for key in ("sessionId", "devWebhookSecret", "streamUrl")
            if not isinstance(data.get(key), str) or not data.get(key)
        ]
        if missing:
            raise RegistrationError(
                f"Registration response missing fields: {', '.join(missing)}"
            )

        return cls(
            session_id=data["sessionId"],
            dev_webhook_secret=data["devWebhookSecret"],
            stream_url=data["streamUrl"],
            expires_at=data.get("expiresAt"),
        )


class StreamEventKind(Enum):
    """Kinds of items the stream client emits."""

    CONNECTED = "connected"
    WEBHOOK = "webhook"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamEvent:
    """An item produced by the stream client, consumed in arrival order."""

    kind: StreamEventKind
    notification: Optional[Notification] = None
    error: Optional[Exception] = None
    attempt: Optional[int] = None
    terminal: bool = False
