"""Vault credential storage.

Stored as JSON (default ~/.pcrm/vault.json) with 0600 permissions. The
derived key seed is sensitive; the file is never written world-readable.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .config import settings

logger = logging.getLogger(__name__)


@dataclass
class VaultConfig:
    """Per-device vault credentials."""

    server: str = ""
    user_id: str = ""
    device_id: str = ""
    token: str = ""
    refresh_token: str = ""
    token_expires: str = ""  # RFC 3339
    derived_key: str = ""  # hex seed for payload encryption
    auto_sync: bool = False

    @property
    def is_configured(self) -> bool:
        return bool(self.server and self.user_id and self.device_id and self.derived_key)

    @property
    def can_sync(self) -> bool:
        return self.is_configured and bool(self.token)

    @property
    def expires_at(self) -> datetime | None:
        if not self.token_expires:
            return None
        try:
            parsed = datetime.fromisoformat(self.token_expires.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def needs_refresh(self, window_seconds: int | None = None, now: datetime | None = None) -> bool:
        """True if the token expires within the refresh window (unknown expiry counts)."""
        if not self.refresh_token:
            return False
        expires = self.expires_at
        if expires is None:
            return True
        window = settings.vault_token_refresh_window_seconds if window_seconds is None else window_seconds
        now = now or datetime.now(timezone.utc)
        return now >= expires - timedelta(seconds=window)

    def update_tokens(self, token: str, refresh_token: str, expires_at: datetime) -> None:
        self.token = token
        self.refresh_token = refresh_token
        self.token_expires = expires_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VaultConfig:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def load_vault_config(path: Path | str | None = None) -> VaultConfig:
    """Load credentials; a missing or unreadable file yields an empty config."""
    path = Path(path) if path else settings.vault_config_file
    if not path.exists():
        return VaultConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise TypeError("vault config must be a JSON object")
        return VaultConfig.from_dict(data)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("Could not load vault config %s: %s", path, e)
        return VaultConfig()


def save_vault_config(config: VaultConfig, path: Path | str | None = None) -> Path:
    path = Path(path) if path else settings.vault_config_file
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(config.to_dict(), indent=2)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    # Set restrictive permissions (covers pre-existing files)
    os.chmod(path, 0o600)
    return path
