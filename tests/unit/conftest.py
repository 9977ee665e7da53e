"""
Pytest configuration and shared fixtures for unit tests.
"""
import pytest

from hookrelay.models import Notification


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: Slow tests that should not run by default (deselect with '-m \"not slow\"')"
    )


def notification_dict(event_id="evt_1", event_type="payment.succeeded", payload=None):
    """Wire-format notification as the stream sends it."""
    return {
        "id": event_id,
        "type": event_type,
        "createdAt": "2026-10-18T12:00:00Z",
        "payload": payload if payload is not None else {"amount": 1000},
        "signature": {"t": 1700000000, "v1": "abc"},
    }


@pytest.fixture
def make_notification():
    """Factory for Notification objects."""

    def _make(event_id="evt_1", event_type="payment.succeeded", payload=None):
        return Notification.from_dict(notification_dict(event_id, event_type, payload))

    return _make


@pytest.fixture
def make_wire_notification():
    """Factory for wire-format notification dicts."""
    return notification_dict


def wire_text(payload_text, event_id="evt_1", event_type="payment.succeeded"):
    """Stream event JSON with ``payload_text`` embedded exactly as given."""
    return (
        f'{{"id":"{event_id}","type":"{event_type}","payload":{payload_text},'
        f'"signature":{{"t":1700000000,"v1":"abc"}}}}'
    )


@pytest.fixture
def make_wire_text():
    """Factory for stream event JSON text with a verbatim payload."""
    return wire_text
