"""
Delivery Forwarder for hookrelay.

POSTs each Notification to the local endpoint:
- Fixed retry delay table for server errors and transport failures
- No retry on client errors (permanent rejection)
- Outcomes returned as DeliveryResult values, never raised
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Sequence

import aiohttp

from hookrelay.models import DeliveryAttempt, DeliveryResult, Notification

logger = logging.getLogger(__name__)

EVENT_ID_HEADER = "Hookrelay-Event-Id"
EVENT_TYPE_HEADER = "Hookrelay-Event-Type"
SIGNATURE_HEADER = "Hookrelay-Signature"
ATTEMPT_HEADER = "Hookrelay-Delivery-Attempt"

# Seconds to wait after attempt N fails; attempts past the end reuse the last entry
RETRY_DELAYS = (0.25, 1.0, 3.0)

DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_SECONDS = 30.0
RESPONSE_BODY_PREFIX_BYTES = 500
ERROR_BODY_PREFIX_CHARS = 200


def retry_delay(attempt: int, delays: Sequence[float] = RETRY_DELAYS) -> float:
    """Delay after the 0-based ``attempt`` fails, clamped to the last table entry."""
    if not delays:
        return 0.0
    return delays[min(max(attempt, 0), len(delays) - 1)]


@dataclass
class DeliveryStats:
    """Cumulative delivery counters for one relay run."""

    delivered: int = 0
    failed: int = 0
    attempts: int = 0

    def record(self, result: DeliveryResult) -> None:
        self.attempts += result.attempt_count
        if result.success:
            self.delivered += 1
        else:
            self.failed += 1


class DeliveryForwarder:
    """
    Forwards notifications to a local HTTP endpoint.

    One forward() call is a bounded sequential loop: at most
    ``max_retries + 1`` POSTs, stopping at the first 2xx or 4xx response.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        verify_ssl: bool = True,
    ):
        """
        Initialize forwarder.

        Args:
            timeout_seconds: Hard timeout for each attempt
            retry_delays: Per-attempt delay table in seconds
            verify_ssl: Verify certificates of https targets
        """
        self.timeout_seconds = timeout_seconds
        self.retry_delays = tuple(retry_delays)
        self.verify_ssl = verify_ssl
        self.stats = DeliveryStats()
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Open the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            logger.debug("Delivery forwarder started")

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.debug("Delivery forwarder stopped")

    async def __aenter__(self) -> "DeliveryForwarder":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _build_headers(self, notification: Notification, attempt: int) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            EVENT_ID_HEADER: notification.id,
            EVENT_TYPE_HEADER: notification.type,
            SIGNATURE_HEADER: notification.signature_header,
            ATTEMPT_HEADER: str(attempt + 1),
        }

    async def forward(
        self,
        target_url: str,
        notification: Notification,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> DeliveryResult:
        """
        Deliver a notification with retries.

        Args:
            target_url: Local endpoint to POST to
            notification: The notification to deliver
            max_retries: Retries allowed after the first attempt

        Returns:
            DeliveryResult describing the final outcome
        """
        await self.start()
        try:
            body = notification.payload_bytes()
        except (TypeError, ValueError, RecursionError) as e:
            logger.error(f"Cannot serialize payload of {notification.id}: {e}")
            return DeliveryResult(success=False, error=f"Invalid payload: {e}")
        attempts = []
        max_retries = max(max_retries, 0)

        for attempt in range(max_retries + 1):
            record = await self._attempt(target_url, notification, body, attempt)
            attempts.append(record)

            status = record.status_code
            if status is not None and 200 <= status < 300:
                return DeliveryResult(
                    success=True,
                    status_code=status,
                    duration_ms=record.duration_ms,
                    response_body_prefix=record.response_body_prefix,
                    attempts=attempts,
                )

            if status is not None and status < 500:
                logger.warning(
                    f"Client error {status} for {notification.id}, not retrying"
                )
                return DeliveryResult(
                    success=False,
                    status_code=status,
                    duration_ms=record.duration_ms,
                    response_body_prefix=record.response_body_prefix,
                    error=record.error_message,
                    attempts=attempts,
                )

            if attempt < max_retries:
                delay = retry_delay(attempt, self.retry_delays)
                logger.debug(
                    f"Attempt {attempt + 1} for {notification.id} failed "
                    f"({record.error_message}), retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        last = attempts[-1]
        return DeliveryResult(
            success=False,
            status_code=last.status_code,
            duration_ms=last.duration_ms,
            response_body_prefix=last.response_body_prefix,
            error=last.error_message or "Max retries exceeded",
            attempts=attempts,
        )

    async def _attempt(
        self, target_url: str, notification: Notification, body: bytes, attempt: int
    ) -> DeliveryAttempt:
        """Make a single POST and record what happened."""
        record = DeliveryAttempt(
            attempt_index=attempt, started_at=datetime.now(timezone.utc)
        )
        start = time.monotonic()

        try:
            async with self._session.post(
                target_url,
                data=body,
                headers=self._build_headers(notification, attempt),
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ssl=self.verify_ssl,
            ) as response:
                raw = await response.read()
                record.status_code = response.status
                text = raw[:RESPONSE_BODY_PREFIX_BYTES].decode("utf-8", errors="replace")
                record.response_body_prefix = text
                if not 200 <= response.status < 300:
                    record.error_message = (
                        text[:ERROR_BODY_PREFIX_CHARS] or f"HTTP {response.status}"
                    )

        except asyncio.TimeoutError:
            record.error_message = "Request timeout"
            logger.warning(f"Attempt {attempt + 1} timeout for {notification.id}")

        except aiohttp.ClientError as e:
            record.error_message = str(e) or type(e).__name__
            logger.warning(f"Attempt {attempt + 1} failed for {notification.id}: {e}")

        except Exception as e:
            record.error_message = str(e) or type(e).__name__
            logger.error(f"Unexpected error on attempt {attempt + 1}: {e}")

        record.duration_ms = round((time.monotonic() - start) * 1000, 1)
        return record

    def get_stats(self) -> Dict[str, Any]:
        """Get delivery statistics."""
        return {
            "delivered": self.stats.delivered,
            "failed": self.stats.failed,
            "attempts": self.stats.attempts,
        }
