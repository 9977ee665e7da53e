"""
hookrelay: relay webhooks from a remote event stream to a local endpoint.

Usage:
    # From the command line
    hookrelay listen --forward-to http://localhost:3000/webhooks

    # Programmatically
    from hookrelay import RelayConfig, RelaySession, ListenerApiClient

    config = RelayConfig.load("hookrelay.yaml")
    async with ListenerApiClient(config.webhook_service_url, api_key) as api:
        await RelaySession(config, api).run(shutdown_event)

    # Verifying signatures in a receiver
    from hookrelay import verify
"""

from hookrelay.__version__ import __version__

# Only import modules without external dependencies eagerly
from hookrelay.config import RelayConfig
from hookrelay.signature import SignatureRecord, parse_header, sign, verify


# Lazy imports for components that require aiohttp
def __getattr__(name):
    """Lazy import for components that require aiohttp."""
    if name in ("SSEClient", "ConnectionState"):
        from hookrelay.stream_client import SSEClient, ConnectionState

        return {"SSEClient": SSEClient, "ConnectionState": ConnectionState}[name]
    elif name in ("DeliveryForwarder", "RETRY_DELAYS"):
        from hookrelay.forwarder import DeliveryForwarder, RETRY_DELAYS

        return {"DeliveryForwarder": DeliveryForwarder, "RETRY_DELAYS": RETRY_DELAYS}[
            name
        ]
    elif name == "ListenerApiClient":
        from hookrelay.api_client import ListenerApiClient

        return ListenerApiClient
    elif name in ("RelaySession", "resolve_auth"):
        from hookrelay.session import RelaySession, resolve_auth

        return {"RelaySession": RelaySession, "resolve_auth": resolve_auth}[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "RelayConfig",
    "SignatureRecord",
    "sign",
    "verify",
    "parse_header",
    "SSEClient",
    "ConnectionState",
    "DeliveryForwarder",
    "RETRY_DELAYS",
    "ListenerApiClient",
    "RelaySession",
    "resolve_auth",
]
