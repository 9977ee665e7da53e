"""
Exception hierarchy for hookrelay.

Only authentication and registration failures end a relay run. Everything
else is raised at a component seam and recovered by its caller.
"""


class HookRelayError(Exception):
    """Base class for all hookrelay errors."""


class AuthenticationError(HookRelayError):
    """Missing or malformed credentials."""


class RegistrationError(HookRelayError):
    """The webhook service refused to create a listener session."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class HeartbeatError(HookRelayError):
    """A keep-alive request was not acknowledged."""


class StreamConnectionError(HookRelayError):
    """The event stream could not be opened."""


class StreamClosedError(HookRelayError):
    """The event stream ended while the client still wanted it."""


class MaxReconnectAttemptsError(HookRelayError):
    """Reconnect attempts are exhausted; the stream stays disconnected."""


class MalformedNotificationError(HookRelayError, ValueError):
    """A stream event body could not be decoded into a Notification."""
