"""
Pytest configuration and fixtures for integration tests.

This module provides fixtures for:
- A fake webhook service and a local receiver on loopback ports
- A relay configuration pointed at both with fast reconnect timings
"""

import pytest
import pytest_asyncio

from hookrelay.config import RelayConfig
from tests.integration.utils import FakeWebhookService, LocalReceiver


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end tests over loopback HTTP")


@pytest_asyncio.fixture
async def receiver():
    receiver = LocalReceiver()
    await receiver.start()
    yield receiver
    await receiver.close()


@pytest_asyncio.fixture
async def start_service():
    """Factory starting FakeWebhookService instances; all are closed afterwards."""
    services = []

    async def _start(**kwargs) -> FakeWebhookService:
        service = FakeWebhookService(**kwargs)
        await service.start()
        services.append(service)
        return service

    yield _start

    for service in services:
        await service.close()


@pytest.fixture
def make_config():
    def _make(service: FakeWebhookService, receiver: LocalReceiver, **overrides) -> RelayConfig:
        defaults = dict(
            api_key="sk_test_123",
            webhook_service_url=service.url,
            forward_to=receiver.url,
            heartbeat_enabled=False,
            reconnect_base_delay=0.01,
            max_reconnect_delay=0.05,
            reconnect_jitter=0.0,
            shutdown_grace_period=2.0,
        )
        defaults.update(overrides)
        return RelayConfig(**defaults)

    return _make
