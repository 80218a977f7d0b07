"""Personal CRM configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class PCRMSettings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///pcrm.db"
    echo_sql: bool = False

    # Vault sync (remote encrypted change log)
    vault_config_path: str = "~/.pcrm/vault.json"
    vault_server: str = "https://vault.example.com"
    vault_app_id: str = "e9240d3f-967d-485e-8c63-e0adf7eecca0"
    vault_request_timeout_seconds: float = 30.0
    vault_push_batch_size: int = 100
    vault_pull_limit: int = 500
    vault_token_refresh_window_seconds: int = 300
    # Run a sync cycle after every local mutation. Off while the vault
    # migration is rolling out; writes still land in the outbox.
    auto_sync_on_write: bool = False

    # External providers (calendar, contacts, mail)
    provider_page_size: int = 250
    provider_initial_window_months: int = 6
    provider_request_timeout_seconds: float = 30.0
    google_calendar_id: str = "primary"
    mail_self_address: str | None = None
    matcher_snapshot_limit: int = 10000

    model_config = {"env_prefix": "PCRM_", "env_file": ".env", "extra": "ignore"}

    @property
    def vault_config_file(self) -> Path:
        return Path(self.vault_config_path).expanduser()


settings = PCRMSettings()
