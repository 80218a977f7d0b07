"""Sync result and transport exchange schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from .payloads import Change


class SyncResult(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = []


class VaultSyncResult(BaseModel):
    """Outcome of one vault cycle.

    ``cancelled`` means the pull stopped between changes. The cursor is
    committed per pulled batch, so only the batch in progress when the
    cancel arrived is left unacknowledged; earlier batches stay applied.
    """

    pushed: int = 0
    pulled: int = 0
    applied: int = 0
    last_synced_seq: int = 0
    cancelled: bool = False
    errors: list[str] = []

    @property
    def ok(self) -> bool:
        return not self.errors


class SyncEvent(BaseModel):
    """Progress notification passed to the ``on_progress`` observer."""

    phase: str  # auth | push | pull | cursor
    kind: str  # start | end | item | error
    detail: str = ""
    seq: int | None = None


class PullBatch(BaseModel):
    changes: list[Change] = []
    has_more: bool = False


class TokenGrant(BaseModel):
    token: str
    refresh_token: str
    expires_at: datetime


class PageRequest(BaseModel):
    """Either a time-window request (time_min set) or a token request (sync_token set)."""

    time_min: datetime | None = None
    time_max: datetime | None = None
    sync_token: str | None = None
    page_token: str | None = None
    page_size: int = 250

    @property
    def is_token_request(self) -> bool:
        return self.sync_token is not None


class ProviderPage(BaseModel):
    """One page from an external provider list call."""

    items: list[dict] = []
    next_page_token: str | None = None
    next_sync_token: str | None = None
