"""
Stored CLI credentials.

The login flow writes a short-lived CLI token to disk; the relay only reads
it back when no API key is given.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from hookrelay.config import DEFAULT_CREDENTIALS_PATH

logger = logging.getLogger(__name__)


@dataclass
class StoredCredentials:
    """Credentials persisted by a previous login."""

    cli_token: str
    account_id: str
    expires_at: str
    account_service_url: Optional[str] = None
    webhook_service_url: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether the token has expired. Unparsable dates count as expired."""
        try:
            expires = datetime.fromisoformat(self.expires_at.replace("Z", "+00:00"))
        except (AttributeError, ValueError):
            return True
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires <= (now or datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "cliToken": self.cli_token,
            "accountId": self.account_id,
            "expiresAt": self.expires_at,
            "accountServiceUrl": self.account_service_url,
            "webhookServiceUrl": self.webhook_service_url,
        }


class CredentialStore:
    """Reads and writes the credentials file."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or DEFAULT_CREDENTIALS_PATH)

    def load(self) -> Optional[StoredCredentials]:
        """
        Load stored credentials.

        Returns:
            StoredCredentials, or None if absent, unreadable or expired.
            Expired credentials are deleted.
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            credentials = StoredCredentials(
                cli_token=data["cliToken"],
                account_id=data["accountId"],
                expires_at=data["expiresAt"],
                account_service_url=data.get("accountServiceUrl"),
                webhook_service_url=data.get("webhookServiceUrl"),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug(f"Ignoring unreadable credentials at {self.path}: {e}")
            return None

        if credentials.is_expired():
            logger.info("Stored credentials have expired")
            self.delete()
            return None

        return credentials

    def save(self, credentials: StoredCredentials) -> None:
        """Write credentials readable only by the current user."""
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(credentials.to_dict(), f, indent=2)

    def delete(self) -> None:
        """Remove the credentials file if present."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
