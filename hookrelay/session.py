"""
Relay session controller.

Orchestrates one relay run: registers a listener session, drains the event
stream into the forwarder, keeps the session alive, and shuts everything
down in order when the shutdown event is set.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from hookrelay.api_client import ListenerApiClient
from hookrelay.config import RelayConfig, get_environment, validate_api_key
from hookrelay.credentials import CredentialStore
from hookrelay.exceptions import AuthenticationError
from hookrelay.forwarder import DeliveryForwarder
from hookrelay.models import ListenerSession, Notification, StreamEvent, StreamEventKind
from hookrelay.stream_client import SSEClient

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    """Resolved credentials for one run."""

    token: str
    method: str  # "api_key" or "cli_token"
    account_id: Optional[str] = None
    environment: Optional[str] = None


def resolve_auth(
    config: RelayConfig, store: Optional[CredentialStore] = None
) -> AuthContext:
    """
    Pick the credentials for this run.

    An explicit API key wins over stored CLI credentials.

    Raises:
        AuthenticationError: If the API key is malformed or nothing is available
    """
    if config.api_key:
        if not validate_api_key(config.api_key):
            raise AuthenticationError(
                "Invalid API key format. API key must start with sk_test_ or sk_live_."
            )
        return AuthContext(
            token=config.api_key,
            method="api_key",
            account_id=config.account_id,
            environment=get_environment(config.api_key),
        )

    store = store or CredentialStore(config.credentials_path)
    credentials = store.load()
    if credentials:
        return AuthContext(
            token=credentials.cli_token,
            method="cli_token",
            account_id=credentials.account_id,
        )

    raise AuthenticationError(
        "Not authenticated. Log in first or provide --api-key."
    )


@dataclass
class RelayStats:
    """Final statistics of a relay run."""

    delivered: int = 0
    failed: int = 0
    session_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delivered": self.delivered,
            "failed": self.failed,
            "session_id": self.session_id,
        }


class RelaySession:
    """
    One relay run.

    The stream client, the heartbeat and the delivery loop are separate
    asyncio tasks. Deliveries happen one at a time in stream order.
    """

    def __init__(
        self,
        config: RelayConfig,
        api_client: ListenerApiClient,
        forwarder: Optional[DeliveryForwarder] = None,
        client_factory: Callable[..., SSEClient] = SSEClient,
    ):
        """
        Initialize the session controller.

        Args:
            config: Relay configuration
            api_client: Client for the listener API, already authenticated
            forwarder: Forwarder to use; one is built from config if omitted
            client_factory: Callable building the stream client
        """
        self.config = config
        self.api_client = api_client
        self.forwarder = forwarder or DeliveryForwarder(
            timeout_seconds=config.forward_timeout, verify_ssl=config.verify_ssl
        )
        self.client_factory = client_factory

        self.session: Optional[ListenerSession] = None
        self.client: Optional[SSEClient] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._accepting = False
        self._stopped = False
        self._start_time: Optional[datetime] = None

    @property
    def stats(self) -> RelayStats:
        return RelayStats(
            delivered=self.forwarder.stats.delivered,
            failed=self.forwarder.stats.failed,
            session_id=self.session.session_id if self.session else None,
        )

    async def run(self, shutdown_event: asyncio.Event) -> RelayStats:
        """
        Run until ``shutdown_event`` is set.

        Raises:
            RegistrationError: If the listener session cannot be created
        """
        self._start_time = datetime.now(timezone.utc)

        logger.info("Registering dev listener...")
        self.session = await self.api_client.register(
            self.config.forward_to, self.config.events
        )
        self._log_ready()

        try:
            await self.forwarder.start()
            self._accepting = True

            if self.config.heartbeat_enabled:
                self._heartbeat_task = asyncio.create_task(
                    self._heartbeat_loop(shutdown_event)
                )

            self.client = self.client_factory(
                url=self.session.stream_url,
                headers=self.api_client.stream_headers(),
                max_reconnect_attempts=self.config.max_reconnect_attempts,
                reconnect_base_delay=self.config.reconnect_base_delay,
                max_reconnect_delay=self.config.max_reconnect_delay,
                reconnect_jitter=self.config.reconnect_jitter,
                connection_timeout=self.config.connection_timeout,
                heartbeat_timeout=self.config.heartbeat_timeout,
                max_queue_size=self.config.max_queue_size,
                verify_ssl=self.config.verify_ssl,
            )
            self.client.start()
            self._drain_task = asyncio.create_task(self._drain(self.client))

            await shutdown_event.wait()
        finally:
            await self.shutdown()

        return self.stats

    async def shutdown(self) -> None:
        """Stop heartbeat, close the stream, unregister and report. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self._accepting = False

        logger.info("Shutting down...")

        if self._heartbeat_task and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass

        if self.client:
            await self.client.close()

        if self._drain_task and not self._drain_task.done():
            done, _ = await asyncio.wait(
                {self._drain_task}, timeout=self.config.shutdown_grace_period
            )
            if not done:
                logger.warning("Abandoning in-flight delivery")
                self._drain_task.cancel()
                try:
                    await self._drain_task
                except asyncio.CancelledError:
                    pass

        await self.forwarder.stop()

        if self.session:
            if await self.api_client.unregister(self.session.session_id):
                logger.info("Session unregistered.")

        await self.api_client.close()

        stats = self.stats
        logger.info(f"Statistics: {stats.delivered} delivered, {stats.failed} failed")

    async def _drain(self, client: SSEClient) -> None:
        """Consume stream events one at a time, in order."""
        async for event in client.events():
            if not self._accepting:
                break
            try:
                await self._handle_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error handling stream event {event.kind.value}: {e}")

    async def _handle_event(self, event: StreamEvent) -> None:
        if event.kind == StreamEventKind.WEBHOOK:
            await self._deliver(event.notification)

        elif event.kind == StreamEventKind.CONNECTED:
            logger.info("Connected to webhook stream")

        elif event.kind == StreamEventKind.RECONNECTING:
            logger.warning(
                f"Reconnecting... ({event.attempt}/{self.config.max_reconnect_attempts})"
            )

        elif event.kind == StreamEventKind.DISCONNECTED:
            if event.terminal:
                logger.error(
                    f"Disconnected: {event.error}. Press Ctrl+C to stop listening."
                )
            elif event.error:
                logger.warning(f"Disconnected: {event.error}")

    async def _deliver(self, notification: Notification) -> None:
        result = await self.forwarder.forward(
            self.config.forward_to, notification, max_retries=self.config.max_retries
        )
        self.forwarder.stats.record(result)

        if result.success:
            logger.info(
                f"delivered {notification.id} {notification.type} -> "
                f"{result.status_code} ({result.duration_ms:.0f}ms)"
            )
        else:
            status = result.status_code if result.status_code is not None else "ERR"
            error = f" [{result.error[:50]}]" if result.error else ""
            logger.error(
                f"failed {notification.id} {notification.type} -> "
                f"{status} ({result.duration_ms:.0f}ms, "
                f"{result.attempt_count} attempts){error}"
            )

    async def _heartbeat_loop(self, shutdown_event: asyncio.Event) -> None:
        """Send a keep-alive every heartbeat_interval seconds until shutdown."""
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    shutdown_event.wait(), timeout=self.config.heartbeat_interval
                )
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.api_client.heartbeat(self.session.session_id)
            except Exception as e:
                logger.warning(f"Heartbeat failed: {e}")

    def _log_ready(self) -> None:
        events = ", ".join(self.config.events) if self.config.events else "all"
        logger.info("Ready! Listening for webhook events...")
        logger.info(f"  Forward URL: {self.config.forward_to}")
        logger.info(f"  Events:      {events}")
        logger.info(f"  Session:     {self.session.session_id}")
        logger.info(
            f"  Your local webhook signing secret is: {self.session.dev_webhook_secret}"
        )
        logger.info("  Use this secret to verify webhook signatures locally.")
        logger.info("  Press Ctrl+C to stop listening.")

    def get_status(self) -> Dict[str, Any]:
        """Get session status."""
        return {
            "session_id": self.session.session_id if self.session else None,
            "stream_state": self.client.state.value if self.client else None,
            "last_event_id": self.client.last_event_id if self.client else None,
            "last_heartbeat": (
                self.client.last_heartbeat.isoformat()
                if self.client and self.client.last_heartbeat
                else None
            ),
            "uptime_seconds": (
                (datetime.now(timezone.utc) - self._start_time).total_seconds()
                if self._start_time
                else 0
            ),
            "delivery_stats": self.forwarder.get_stats(),
            "config": self.config.to_dict(),
        }
