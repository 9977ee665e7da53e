"""Tests for hookrelay/api_client.py against a local fake webhook service."""

import socket
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as AiohttpTestServer

from hookrelay.api_client import ListenerApiClient
from hookrelay.exceptions import HeartbeatError, RegistrationError

REGISTRATION = {
    "sessionId": "sess_1",
    "devWebhookSecret": "whsec_dev_x",
    "streamUrl": "https://webhook.example.com/v1/dev/listeners/sess_1/stream",
    "expiresAt": "2026-10-19T00:00:00Z",
}


@asynccontextmanager
async def fake_service(register_status=201, register_body=None, heartbeat_status=204, delete_status=204):
    """Run a fake listener API; yields (base_url, recorded requests)."""
    requests = []

    async def register(request):
        requests.append(
            {
                "route": "register",
                "headers": dict(request.headers),
                "json": await request.json(),
            }
        )
        if register_status >= 300:
            return web.json_response({"error": "nope"}, status=register_status)
        return web.json_response(register_body or REGISTRATION, status=register_status)

    async def heartbeat(request):
        requests.append({"route": "heartbeat", "session_id": request.match_info["session_id"]})
        return web.Response(status=heartbeat_status)

    async def unregister(request):
        requests.append({"route": "unregister", "session_id": request.match_info["session_id"]})
        return web.Response(status=delete_status)

    app = web.Application()
    app.router.add_post("/v1/dev/listeners", register)
    app.router.add_post("/v1/dev/listeners/{session_id}/heartbeat", heartbeat)
    app.router.add_delete("/v1/dev/listeners/{session_id}", unregister)
    server = AiohttpTestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url("/")).rstrip("/"), requests
    finally:
        await server.close()


def _unused_url():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"http://127.0.0.1:{port}"


class TestHeaders:
    @pytest.mark.asyncio
    async def test_api_key_header(self):
        client = ListenerApiClient("https://svc", "sk_test_123")
        assert client._get_headers() == {"Authorization": "ApiKey sk_test_123"}

    @pytest.mark.asyncio
    async def test_account_id_header(self):
        client = ListenerApiClient("https://svc", "cli_tok", account_id="acct_1")
        assert client._get_headers()["X-Account-Id"] == "acct_1"

    @pytest.mark.asyncio
    async def test_stream_headers(self):
        headers = ListenerApiClient("https://svc", "sk_test_123").stream_headers()
        assert headers["Accept"] == "text/event-stream"
        assert headers["Authorization"] == "ApiKey sk_test_123"

    @pytest.mark.asyncio
    async def test_base_url_trailing_slash_stripped(self):
        client = ListenerApiClient("https://svc/", "k")
        assert client._session_url("sess_1") == "https://svc/v1/dev/listeners/sess_1"

    @pytest.mark.asyncio
    async def test_session_id_is_quoted(self):
        client = ListenerApiClient("https://svc", "k")
        assert client._session_url("a/b") == "https://svc/v1/dev/listeners/a%2Fb"


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_success(self):
        async with fake_service() as (base_url, requests):
            async with ListenerApiClient(base_url, "sk_test_123") as client:
                session = await client.register(
                    "http://localhost:3000/webhooks", ["payment.succeeded"]
                )

        assert session.session_id == "sess_1"
        assert session.dev_webhook_secret == "whsec_dev_x"
        assert session.stream_url == REGISTRATION["streamUrl"]
        assert requests[0]["json"] == {
            "forwardTo": "http://localhost:3000/webhooks",
            "events": ["payment.succeeded"],
        }
        assert requests[0]["headers"]["Authorization"] == "ApiKey sk_test_123"

    @pytest.mark.asyncio
    async def test_register_empty_events_means_all(self):
        async with fake_service() as (base_url, requests):
            async with ListenerApiClient(base_url, "sk_test_123") as client:
                await client.register("http://localhost:3000/webhooks", [])
        assert requests[0]["json"]["events"] == []

    @pytest.mark.asyncio
    async def test_register_rejected(self):
        async with fake_service(register_status=401) as (base_url, _):
            async with ListenerApiClient(base_url, "sk_test_bad") as client:
                with pytest.raises(RegistrationError) as exc_info:
                    await client.register("http://localhost:3000/webhooks", [])

        assert exc_info.value.status_code == 401
        assert "401" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_register_incomplete_response(self):
        async with fake_service(register_body={"sessionId": "sess_1"}) as (base_url, _):
            async with ListenerApiClient(base_url, "sk_test_123") as client:
                with pytest.raises(RegistrationError, match="missing fields"):
                    await client.register("http://localhost:3000/webhooks", [])

    @pytest.mark.asyncio
    async def test_register_unreachable(self):
        async with ListenerApiClient(_unused_url(), "sk_test_123", timeout=2) as client:
            with pytest.raises(RegistrationError, match="Failed to reach"):
                await client.register("http://localhost:3000/webhooks", [])


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_heartbeat_success(self):
        async with fake_service() as (base_url, requests):
            async with ListenerApiClient(base_url, "sk_test_123") as client:
                await client.heartbeat("sess_1")
        assert requests == [{"route": "heartbeat", "session_id": "sess_1"}]

    @pytest.mark.asyncio
    async def test_heartbeat_error_status(self):
        async with fake_service(heartbeat_status=500) as (base_url, _):
            async with ListenerApiClient(base_url, "sk_test_123") as client:
                with pytest.raises(HeartbeatError, match="500"):
                    await client.heartbeat("sess_1")

    @pytest.mark.asyncio
    async def test_heartbeat_unreachable(self):
        async with ListenerApiClient(_unused_url(), "sk_test_123", timeout=2) as client:
            with pytest.raises(HeartbeatError):
                await client.heartbeat("sess_1")


class TestUnregister:
    @pytest.mark.asyncio
    async def test_unregister_success(self):
        async with fake_service() as (base_url, requests):
            async with ListenerApiClient(base_url, "sk_test_123") as client:
                assert await client.unregister("sess_1") is True
        assert requests == [{"route": "unregister", "session_id": "sess_1"}]

    @pytest.mark.asyncio
    async def test_unregister_error_status_returns_false(self):
        async with fake_service(delete_status=404) as (base_url, _):
            async with ListenerApiClient(base_url, "sk_test_123") as client:
                assert await client.unregister("sess_1") is False

    @pytest.mark.asyncio
    async def test_unregister_unreachable_never_raises(self):
        async with ListenerApiClient(_unused_url(), "sk_test_123", timeout=2) as client:
            assert await client.unregister("sess_1") is False


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = ListenerApiClient("https://svc", "k")
        await client.start()
        await client.close()
        await client.close()
        assert client._session is None

    @pytest.mark.asyncio
    async def test_calls_start_session_lazily(self):
        async with fake_service() as (base_url, _):
            client = ListenerApiClient(base_url, "sk_test_123")
            try:
                assert await client.unregister("sess_1") is True
            finally:
                await client.close()
