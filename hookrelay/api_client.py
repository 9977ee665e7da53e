"""
Client for the webhook service's dev listener API.

    POST   /v1/dev/listeners                       register a session
    POST   /v1/dev/listeners/{session_id}/heartbeat keep it alive
    DELETE /v1/dev/listeners/{session_id}          unregister
"""

import asyncio
import logging
from typing import Dict, List, Optional
from urllib.parse import quote

import aiohttp

from hookrelay.exceptions import HeartbeatError, RegistrationError
from hookrelay.models import ListenerSession

logger = logging.getLogger(__name__)


class ListenerApiClient:
    """Talks to the webhook service on behalf of one relay run."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        account_id: Optional[str] = None,
        timeout: float = 15.0,
        verify_ssl: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.account_id = account_id
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "ListenerApiClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Authorization": f"ApiKey {self.api_key}"}
        if self.account_id:
            headers["X-Account-Id"] = self.account_id
        return headers

    def stream_headers(self) -> Dict[str, str]:
        """Headers for the event stream connection."""
        headers = self._get_headers()
        headers["Accept"] = "text/event-stream"
        return headers

    def _session_url(self, session_id: str) -> str:
        return f"{self.base_url}/v1/dev/listeners/{quote(session_id, safe='')}"

    async def register(self, forward_to: str, events: List[str]) -> ListenerSession:
        """
        Register a dev listener session.

        Raises:
            RegistrationError: If the service rejects the request or is unreachable
        """
        await self.start()
        headers = self._get_headers()
        headers["Content-Type"] = "application/json"

        try:
            async with self._session.post(
                f"{self.base_url}/v1/dev/listeners",
                json={"forwardTo": forward_to, "events": list(events)},
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                ssl=self.verify_ssl,
            ) as response:
                if not 200 <= response.status < 300:
                    body = await response.text()
                    raise RegistrationError(
                        f"Failed to register dev listener: {response.status} {body[:200]}",
                        status_code=response.status,
                    )
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise RegistrationError(f"Invalid registration response: {e}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RegistrationError(f"Failed to reach webhook service: {e}") from e

        session = ListenerSession.from_dict(data)
        logger.debug(f"Registered listener session {session.session_id}")
        return session

    async def heartbeat(self, session_id: str) -> None:
        """
        Keep a session alive.

        Raises:
            HeartbeatError: On any non-2xx status or transport failure
        """
        await self.start()
        try:
            async with self._session.post(
                f"{self._session_url(session_id)}/heartbeat",
                headers=self._get_headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                ssl=self.verify_ssl,
            ) as response:
                if not 200 <= response.status < 300:
                    raise HeartbeatError(f"Heartbeat failed: {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HeartbeatError(f"Heartbeat failed: {e}") from e

        logger.debug(f"Heartbeat sent for {session_id}")

    async def unregister(self, session_id: str) -> bool:
        """Unregister a session. Best effort; returns False instead of raising."""
        try:
            await self.start()
            async with self._session.delete(
                self._session_url(session_id),
                headers=self._get_headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                ssl=self.verify_ssl,
            ) as response:
                return 200 <= response.status < 300
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError) as e:
            logger.debug(f"Unregister failed for {session_id}: {e}")
            return False
