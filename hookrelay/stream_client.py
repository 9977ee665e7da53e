"""
Stream Client for hookrelay.

Consumes the server-sent event stream of a listener session. Provides
automatic reconnection with exponential backoff and resumes from the last
received event via the Last-Event-ID header.

Received items are queued and drained with ``events()``:

    client = SSEClient(session.stream_url, headers)
    client.start()
    async for event in client.events():
        ...
    await client.close()
"""

import asyncio
import codecs
import logging
import random
import time
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Dict, Optional

import aiohttp

from hookrelay.exceptions import (
    MaxReconnectAttemptsError,
    StreamClosedError,
    StreamConnectionError,
)
from hookrelay.models import Notification, StreamEvent, StreamEventKind

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection state enumeration."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class SSEClient:
    """Server-Sent Events client with resumable reconnection."""

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        last_event_id: Optional[str] = None,
        max_reconnect_attempts: int = 10,
        reconnect_base_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
        reconnect_jitter: float = 1.0,
        connection_timeout: float = 30.0,
        verify_ssl: bool = True,
        heartbeat_timeout: Optional[float] = 60.0,
        max_queue_size: int = 1000,
    ):
        """
        Initialize stream client.

        Args:
            url: Event stream URL
            headers: Static headers sent on every connection attempt
            last_event_id: Resume cursor to start from, if any
            max_reconnect_attempts: Consecutive failures tolerated before giving up
            reconnect_base_delay: Delay before the first reconnect, in seconds
            max_reconnect_delay: Upper bound for any reconnect delay
            reconnect_jitter: Upper bound of the random term added to each delay
            connection_timeout: Timeout for establishing the TCP connection
            verify_ssl: Verify the server certificate
            heartbeat_timeout: Drop a connection that delivers nothing for this
                many seconds; None disables the watchdog
            max_queue_size: Events buffered before the reader waits for the consumer
        """
        self.url = url
        self.headers = dict(headers or {})
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.reconnect_jitter = reconnect_jitter
        self.connection_timeout = connection_timeout
        self.verify_ssl = verify_ssl
        self.heartbeat_timeout = heartbeat_timeout

        self.state = ConnectionState.IDLE
        self.reconnect_attempts = 0
        self.last_heartbeat: Optional[datetime] = None
        self._last_event_id = last_event_id
        self._last_activity = time.monotonic()
        self._stale = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._stop_event = asyncio.Event()
        self._session: Optional[aiohttp.ClientSession] = None
        self._response: Optional[aiohttp.ClientResponse] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def last_event_id(self) -> Optional[str]:
        """Resume cursor sent on the next connection attempt."""
        return self._last_event_id

    @property
    def closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def reconnect_delay(self, attempt: int) -> float:
        """Delay in seconds before reconnect attempt ``attempt`` (1-based)."""
        exponent = max(attempt - 1, 0)
        delay = self.reconnect_base_delay * (2 ** exponent)
        delay += random.uniform(0, self.reconnect_jitter)
        return min(delay, self.max_reconnect_delay)

    def start(self) -> asyncio.Task:
        """Start the read/reconnect loop in the background."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self._task

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield stream events in arrival order until the client is closed."""
        while True:
            # The close sentinel is dropped when the queue is full
            if self.closed and self._queue.empty():
                return
            event = await self._queue.get()
            if event is None:
                return
            yield event

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events()

    async def close(self) -> None:
        """Close the stream and stop reconnecting. Safe to call more than once."""
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSED
        self._stop_event.set()

        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass
        logger.debug("Stream client closed")

    async def _emit(self, event: StreamEvent) -> None:
        await self._queue.put(event)
        self._last_activity = time.monotonic()

    async def _run(self) -> None:
        """Connect, read until the stream drops, back off, repeat."""
        while not self._stop_event.is_set():
            self.state = ConnectionState.CONNECTING
            error: Optional[Exception] = None

            try:
                await self.connect()
                error = StreamClosedError("Stream closed by server")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e

            if self._stop_event.is_set():
                break

            self.state = ConnectionState.DISCONNECTED
            logger.warning(f"Stream disconnected: {error}")
            await self._emit(StreamEvent(StreamEventKind.DISCONNECTED, error=error))

            if self.reconnect_attempts >= self.max_reconnect_attempts:
                logger.error(
                    f"Giving up after {self.reconnect_attempts} reconnect attempts"
                )
                await self._emit(
                    StreamEvent(
                        StreamEventKind.DISCONNECTED,
                        error=MaxReconnectAttemptsError(
                            "Max reconnection attempts reached"
                        ),
                        terminal=True,
                    )
                )
                return

            self.reconnect_attempts += 1
            await self._emit(
                StreamEvent(
                    StreamEventKind.RECONNECTING, attempt=self.reconnect_attempts
                )
            )

            delay = self.reconnect_delay(self.reconnect_attempts)
            logger.info(
                f"Reconnecting in {delay:.1f} seconds "
                f"({self.reconnect_attempts}/{self.max_reconnect_attempts})..."
            )
            if await self._wait_for_stop(delay):
                break

    async def _wait_for_stop(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; return True early if closed meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for connection."""
        headers = dict(self.headers)
        headers.setdefault("Accept", "text/event-stream")
        headers["Cache-Control"] = "no-cache"
        if self._last_event_id:
            headers["Last-Event-ID"] = self._last_event_id
        return headers

    async def connect(self) -> None:
        """
        Open the stream once and read it until it ends.

        Raises:
            StreamConnectionError: If the server answers with a non-200 status
            aiohttp.ClientError: On transport failures
        """
        headers = self._get_headers()

        session = aiohttp.ClientSession()
        self._session = session

        try:
            async with session.get(
                self.url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(
                    total=None, sock_connect=self.connection_timeout
                ),
                ssl=self.verify_ssl,
            ) as response:
                if response.status != 200:
                    raise StreamConnectionError(
                        f"SSE connection failed with status {response.status}"
                    )

                if self._stop_event.is_set():
                    return

                self._response = response
                self.state = ConnectionState.CONNECTED
                self.reconnect_attempts = 0
                logger.info(f"SSE connected to {self.url}")
                await self._emit(StreamEvent(StreamEventKind.CONNECTED))

                self._last_activity = time.monotonic()
                self._stale = False
                monitor = None
                if self.heartbeat_timeout:
                    monitor = asyncio.create_task(self._monitor_heartbeat(response))

                try:
                    await self._sse_loop(response)
                except aiohttp.ClientError:
                    # Closing a stale response fails the pending read
                    if not self._stale:
                        raise
                finally:
                    if monitor:
                        monitor.cancel()
                        try:
                            await monitor
                        except asyncio.CancelledError:
                            pass

                if self._stale:
                    raise StreamClosedError(
                        f"Heartbeat timeout: no data for {self.heartbeat_timeout}s"
                    )

        finally:
            if not session.closed:
                await session.close()
            self._session = None
            self._response = None

    async def _monitor_heartbeat(self, response: aiohttp.ClientResponse) -> None:
        """Close the response when the stream goes quiet for too long."""
        while not self._stop_event.is_set():
            await asyncio.sleep(self.heartbeat_timeout / 2)
            if self._queue.full():
                # The reader is waiting on the consumer, not the server
                continue
            elapsed = time.monotonic() - self._last_activity
            if elapsed > self.heartbeat_timeout:
                logger.warning(
                    f"Heartbeat timeout ({elapsed:.1f}s > {self.heartbeat_timeout}s)"
                )
                self._stale = True
                response.close()
                break

    async def _sse_loop(self, response: aiohttp.ClientResponse) -> None:
        """Process SSE events."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        event_type = ""
        data_lines = []
        event_id: Optional[str] = None

        async for chunk in response.content.iter_any():
            if self._stop_event.is_set():
                break

            # Comment pings count as activity too
            self._last_activity = time.monotonic()
            buffer += decoder.decode(chunk)
            lines = buffer.split("\n")
            buffer = lines.pop()  # Keep incomplete line in buffer

            for line in lines:
                line = line.rstrip("\r")

                if line == "":
                    # End of event
                    if data_lines:
                        try:
                            await self._handle_sse_event(
                                event_type or "message", "\n".join(data_lines), event_id
                            )
                        except Exception as e:
                            logger.error(f"Error handling SSE event: {e}")
                    event_type = ""
                    data_lines = []
                    event_id = None
                    continue

                if line.startswith(":"):
                    continue

                name, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]

                if name == "event":
                    event_type = value
                elif name == "data":
                    data_lines.append(value)
                elif name == "id":
                    if "\x00" not in value:
                        event_id = value
                # "retry" and unknown fields are ignored

    async def _handle_sse_event(
        self, event_type: str, data: str, event_id: Optional[str] = None
    ) -> None:
        """Handle an SSE event."""
        if event_type == "heartbeat":
            self.last_heartbeat = datetime.now(timezone.utc)
            logger.debug("Received heartbeat")
            return

        if event_type == "connected":
            logger.debug(f"Stream acknowledged connection: {data}")
            return

        if event_type == "error":
            logger.error(f"SSE error: {data}")
            return

        if event_type != "webhook":
            logger.debug(f"Ignoring SSE event type: {event_type}")
            return

        try:
            notification = Notification.from_json(data)
        except (ValueError, RecursionError) as e:
            logger.error(f"Failed to parse webhook message: {e}")
            return

        self._last_event_id = event_id or notification.id
        await self._emit(StreamEvent(StreamEventKind.WEBHOOK, notification=notification))
