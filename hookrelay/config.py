"""
Configuration for hookrelay.

Supports loading configuration from:
- YAML/JSON files
- Environment variables
- Command line arguments
"""

import os
import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from pathlib import Path
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_SERVICE_URL = "https://webhook.hookrelay.dev"
DEFAULT_CREDENTIALS_PATH = str(Path.home() / ".hookrelay" / "credentials.json")

API_KEY_PREFIXES = ("sk_test_", "sk_live_")


def validate_api_key(api_key: str) -> bool:
    """Check that an API key has a recognised prefix."""
    return isinstance(api_key, str) and api_key.startswith(API_KEY_PREFIXES)


def get_environment(api_key: str) -> str:
    """Return 'test' or 'live' depending on the API key prefix."""
    return "test" if api_key.startswith("sk_test_") else "live"


def _parse_events(value: str) -> List[str]:
    return [event.strip() for event in value.split(",") if event.strip()]


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RelayConfig:
    """
    Relay configuration.

    Configuration priority (highest to lowest):
    1. Command line arguments
    2. Environment variables (prefixed with HOOKRELAY_)
    3. Configuration file (hookrelay.json or hookrelay.yaml)
    4. Default values

    Environment variables:
        HOOKRELAY_API_KEY: API key (sk_test_... or sk_live_...)
        HOOKRELAY_SECRET_KEY: Fallback for HOOKRELAY_API_KEY
        HOOKRELAY_ACCOUNT_ID: Account identifier sent with API requests
        HOOKRELAY_WEBHOOK_SERVICE_URL: Webhook service base URL
        HOOKRELAY_FORWARD_TO: Local URL webhooks are forwarded to
        HOOKRELAY_EVENTS: Comma-separated event types to subscribe to
        HOOKRELAY_HEARTBEAT_ENABLED: Send keep-alive requests (true/false)
        HOOKRELAY_MAX_RETRIES: Forward retries after the first attempt
        HOOKRELAY_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    """

    # Authentication
    api_key: Optional[str] = None
    account_id: Optional[str] = None
    credentials_path: str = DEFAULT_CREDENTIALS_PATH

    # Remote service
    webhook_service_url: str = DEFAULT_WEBHOOK_SERVICE_URL
    api_timeout: float = 15.0

    # Forwarding
    forward_to: str = ""
    events: List[str] = field(default_factory=list)
    max_retries: int = 3
    forward_timeout: float = 30.0

    # Keep-alive
    heartbeat_enabled: bool = True
    heartbeat_interval: float = 25.0

    # Stream connection
    max_reconnect_attempts: int = 10
    reconnect_base_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    reconnect_jitter: float = 1.0
    connection_timeout: float = 30.0
    heartbeat_timeout: float = 60.0
    max_queue_size: int = 1000
    verify_ssl: bool = True

    # Shutdown
    shutdown_grace_period: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def from_file(cls, path: str) -> "RelayConfig":
        """Load configuration from a file."""
        file_path = Path(path)

        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(file_path, "r") as f:
            if file_path.suffix in [".yaml", ".yml"]:
                import yaml

                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ValueError(f"Invalid YAML in {path}: {e}") from e
            else:
                data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayConfig":
        """Create configuration from a dictionary."""
        if not isinstance(data, dict):
            raise TypeError(f"Expected dict, got {type(data).__name__}")

        config = cls()

        # Field name -> expected type(s) for validation
        _FIELD_TYPES: Dict[str, type] = {
            "api_key": str,
            "account_id": str,
            "credentials_path": str,
            "webhook_service_url": str,
            "api_timeout": (int, float),
            "forward_to": str,
            "events": list,
            "max_retries": int,
            "forward_timeout": (int, float),
            "heartbeat_enabled": bool,
            "heartbeat_interval": (int, float),
            "max_reconnect_attempts": int,
            "reconnect_base_delay": (int, float),
            "max_reconnect_delay": (int, float),
            "reconnect_jitter": (int, float),
            "connection_timeout": (int, float),
            "heartbeat_timeout": (int, float),
            "max_queue_size": int,
            "verify_ssl": bool,
            "shutdown_grace_period": (int, float),
            "log_level": str,
            "log_format": str,
        }

        for field_name, expected_type in _FIELD_TYPES.items():
            if field_name in data:
                value = data[field_name]
                if value is not None and not isinstance(value, expected_type):
                    raise TypeError(
                        f"Config field '{field_name}' expected {expected_type}, "
                        f"got {type(value).__name__}"
                    )
                if value is not None:
                    setattr(config, field_name, value)

        return config

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Create configuration from environment variables."""
        config = cls()

        # Map environment variables to config fields
        env_mapping = {
            "HOOKRELAY_SECRET_KEY": "api_key",
            "HOOKRELAY_API_KEY": "api_key",
            "HOOKRELAY_ACCOUNT_ID": "account_id",
            "HOOKRELAY_CREDENTIALS_PATH": "credentials_path",
            "HOOKRELAY_WEBHOOK_SERVICE_URL": "webhook_service_url",
            "HOOKRELAY_FORWARD_TO": "forward_to",
            "HOOKRELAY_EVENTS": ("events", _parse_events),
            "HOOKRELAY_MAX_RETRIES": ("max_retries", int),
            "HOOKRELAY_FORWARD_TIMEOUT": ("forward_timeout", float),
            "HOOKRELAY_HEARTBEAT_ENABLED": ("heartbeat_enabled", _parse_bool),
            "HOOKRELAY_HEARTBEAT_INTERVAL": ("heartbeat_interval", float),
            "HOOKRELAY_MAX_RECONNECT_ATTEMPTS": ("max_reconnect_attempts", int),
            "HOOKRELAY_CONNECTION_TIMEOUT": ("connection_timeout", float),
            "HOOKRELAY_HEARTBEAT_TIMEOUT": ("heartbeat_timeout", float),
            "HOOKRELAY_VERIFY_SSL": ("verify_ssl", _parse_bool),
            "HOOKRELAY_LOG_LEVEL": "log_level",
        }

        # HOOKRELAY_API_KEY is listed after HOOKRELAY_SECRET_KEY so it wins
        env_fields = set()
        for env_var, field_info in env_mapping.items():
            value = os.environ.get(env_var)
            if value:
                if isinstance(field_info, tuple):
                    field_name, converter = field_info
                    setattr(config, field_name, converter(value))
                else:
                    field_name = field_info
                    setattr(config, field_name, value)
                env_fields.add(field_name)

        config._env_fields = env_fields
        return config

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "RelayConfig":
        """
        Load configuration with proper precedence.

        1. Start with defaults
        2. Override with file config (if provided)
        3. Override with environment variables
        """
        config = cls()

        if config_path:
            config = cls.from_file(config_path)

        env_config = cls.from_env()

        # Merge environment overrides (only fields actually set via env vars)
        for field_name in getattr(env_config, "_env_fields", set()):
            setattr(config, field_name, getattr(env_config, field_name))

        return config

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.forward_to:
            errors.append("forward_to is required")
        elif urlparse(self.forward_to).scheme not in ("http", "https"):
            errors.append("forward_to must be an http:// or https:// URL")

        if not self.webhook_service_url:
            errors.append("webhook_service_url is required")
        elif urlparse(self.webhook_service_url).scheme not in ("http", "https"):
            errors.append("webhook_service_url must be an http:// or https:// URL")

        if any(not isinstance(event, str) or not event for event in self.events):
            errors.append("events must be non-empty strings")

        if self.max_retries < 0:
            errors.append("max_retries must be >= 0")

        if self.forward_timeout <= 0:
            errors.append("forward_timeout must be positive")

        if self.heartbeat_interval <= 0:
            errors.append("heartbeat_interval must be positive")

        if self.max_reconnect_attempts < 0:
            errors.append("max_reconnect_attempts must be >= 0")

        if self.reconnect_base_delay <= 0:
            errors.append("reconnect_base_delay must be positive")

        if self.max_reconnect_delay < self.reconnect_base_delay:
            errors.append("max_reconnect_delay must be >= reconnect_base_delay")

        if self.reconnect_jitter < 0:
            errors.append("reconnect_jitter must be >= 0")

        if self.heartbeat_timeout <= 0:
            errors.append("heartbeat_timeout must be positive")

        if self.max_queue_size < 1:
            errors.append("max_queue_size must be >= 1")

        if self.shutdown_grace_period < 0:
            errors.append("shutdown_grace_period must be >= 0")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (excluding sensitive data)."""
        return {
            "webhook_service_url": self.webhook_service_url,
            "forward_to": self.forward_to,
            "events": list(self.events),
            "max_retries": self.max_retries,
            "forward_timeout": self.forward_timeout,
            "heartbeat_enabled": self.heartbeat_enabled,
            "heartbeat_interval": self.heartbeat_interval,
            "max_reconnect_attempts": self.max_reconnect_attempts,
            "reconnect_base_delay": self.reconnect_base_delay,
            "max_reconnect_delay": self.max_reconnect_delay,
            "connection_timeout": self.connection_timeout,
            "heartbeat_timeout": self.heartbeat_timeout,
            "max_queue_size": self.max_queue_size,
            "verify_ssl": self.verify_ssl,
            "log_level": self.log_level,
            "has_api_key": bool(self.api_key),
            "account_id": self.account_id,
        }
