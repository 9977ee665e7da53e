"""
Utility servers for integration tests.

FakeWebhookService speaks the dev listener API and streams scripted
notifications over SSE. LocalReceiver plays the developer's local endpoint.
Both run in-process on an ephemeral loopback port.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from aiohttp import web
from aiohttp.test_utils import TestServer as AiohttpTestServer

from hookrelay.forwarder import ATTEMPT_HEADER, EVENT_ID_HEADER, SIGNATURE_HEADER
from hookrelay.signature import sign

DEV_SECRET = "whsec_dev_x"
SESSION_ID = "sess_1"


def notification(
    event_id: str,
    event_type: str = "payment.succeeded",
    payload_text: str = '{"amount":1000}',
    secret=DEV_SECRET,
) -> str:
    """
    Build a stream notification as JSON text.

    ``payload_text`` is embedded verbatim and is exactly what gets signed,
    the way the service signs its own serialization of the payload.
    """
    record = sign(payload_text, secret)
    return (
        f'{{"id":{json.dumps(event_id)},"type":{json.dumps(event_type)},'
        f'"payload":{payload_text},'
        f'"signature":{{"t":{record.timestamp},"v1":"{record.signature}"}}}}'
    )


def sse_frame(event_type: str, data: Any, event_id: Optional[str] = None) -> bytes:
    lines = []
    if event_id:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event_type}")
    text = data if isinstance(data, str) else json.dumps(data)
    lines.extend(f"data: {line}" for line in text.split("\n"))
    return ("\n".join(lines) + "\n\n").encode("utf-8")


async def wait_until(condition, timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll ``condition`` until it is truthy or raise asyncio.TimeoutError."""

    async def poll():
        while not condition():
            await asyncio.sleep(interval)

    await asyncio.wait_for(poll(), timeout=timeout)


class FakeWebhookService:
    """
    In-process dev listener API.

    ``connections`` scripts the stream: entry N lists the notifications sent
    on the Nth stream connection. Connections with ``close_after`` set end
    right after their script; the last connection stays open.
    """

    def __init__(
        self,
        connections: Optional[List[List[str]]] = None,
        register_status: int = 201,
        heartbeat_status: int = 204,
        close_after: bool = True,
    ):
        self.connections = connections or [[]]
        self.register_status = register_status
        self.heartbeat_status = heartbeat_status
        self.close_after = close_after

        self.registrations: List[Dict[str, Any]] = []
        self.heartbeats: List[str] = []
        self.unregistered: List[str] = []
        self.stream_requests: List[Dict[str, Optional[str]]] = []

        self._stopping = False
        self._server: Optional[AiohttpTestServer] = None

    @property
    def url(self) -> str:
        return str(self._server.make_url("/")).rstrip("/")

    async def start(self) -> None:
        app = web.Application()
        app.router.add_post("/v1/dev/listeners", self._register)
        app.router.add_post("/v1/dev/listeners/{session_id}/heartbeat", self._heartbeat)
        app.router.add_delete("/v1/dev/listeners/{session_id}", self._unregister)
        app.router.add_get("/v1/dev/listeners/{session_id}/stream", self._stream)
        self._server = AiohttpTestServer(app)
        await self._server.start_server()

    async def close(self) -> None:
        self._stopping = True
        if self._server:
            await self._server.close()

    async def _register(self, request: web.Request) -> web.Response:
        self.registrations.append(
            {
                "authorization": request.headers.get("Authorization"),
                "body": await request.json(),
            }
        )
        if self.register_status >= 300:
            return web.json_response({"error": "Invalid API key"}, status=self.register_status)
        return web.json_response(
            {
                "sessionId": SESSION_ID,
                "devWebhookSecret": DEV_SECRET,
                "streamUrl": f"{self.url}/v1/dev/listeners/{SESSION_ID}/stream",
                "expiresAt": "2099-01-01T00:00:00Z",
            },
            status=self.register_status,
        )

    async def _heartbeat(self, request: web.Request) -> web.Response:
        self.heartbeats.append(request.match_info["session_id"])
        return web.Response(status=self.heartbeat_status)

    async def _unregister(self, request: web.Request) -> web.Response:
        self.unregistered.append(request.match_info["session_id"])
        return web.Response(status=204)

    async def _stream(self, request: web.Request) -> web.StreamResponse:
        index = len(self.stream_requests)
        self.stream_requests.append(
            {
                "authorization": request.headers.get("Authorization"),
                "last_event_id": request.headers.get("Last-Event-ID"),
            }
        )

        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        script = self.connections[index] if index < len(self.connections) else []
        is_last = index >= len(self.connections) - 1

        try:
            await response.write(sse_frame("connected", {"sessionId": SESSION_ID}))
            for item in script:
                await response.write(sse_frame("webhook", item))

            if self.close_after and not is_last:
                return response

            while not self._stopping:
                await asyncio.sleep(0.05)
                await response.write(b": ping\n\n")
        except ConnectionResetError:
            pass
        return response


class LocalReceiver:
    """Local webhook endpoint answering with ``statuses`` in order."""

    def __init__(self, statuses=(200,), body: str = "ok"):
        self.statuses = list(statuses)
        self.body = body
        self.requests: List[Dict[str, Any]] = []
        self._server: Optional[AiohttpTestServer] = None

    @property
    def url(self) -> str:
        return str(self._server.make_url("/webhooks"))

    async def start(self) -> None:
        app = web.Application()
        app.router.add_post("/webhooks", self._handle)
        self._server = AiohttpTestServer(app)
        await self._server.start_server()

    async def close(self) -> None:
        if self._server:
            await self._server.close()

    async def _handle(self, request: web.Request) -> web.Response:
        self.requests.append(
            {
                "body": await request.read(),
                "event_id": request.headers.get(EVENT_ID_HEADER),
                "signature": request.headers.get(SIGNATURE_HEADER),
                "attempt": request.headers.get(ATTEMPT_HEADER),
            }
        )
        status = self.statuses[min(len(self.requests), len(self.statuses)) - 1]
        return web.Response(status=status, text=self.body)

    def delivered_ids(self) -> List[str]:
        return [r["event_id"] for r in self.requests]
