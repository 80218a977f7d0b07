"""Provider sync state and import log helpers.

No commit is performed in this module; the pull cycle decides when to commit.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.provider_sync import ProviderSyncLog, ProviderSyncState


async def get_state(db: AsyncSession, service_name: str) -> ProviderSyncState:
    """Load the state row for a provider, creating an idle one if missing."""
    state = await db.get(ProviderSyncState, service_name)
    if state is None:
        state = ProviderSyncState(service_name=service_name, status="idle")
        db.add(state)
    return state


def mark_syncing(state: ProviderSyncState) -> None:
    state.status = "syncing"
    state.error_message = None


def mark_idle(state: ProviderSyncState) -> None:
    state.status = "idle"
    state.error_message = None


def mark_error(state: ProviderSyncState, message: str) -> None:
    state.status = "error"
    state.error_message = message or "unknown error"


def record_sync_token(state: ProviderSyncState, token: str | None, at: datetime) -> None:
    """Persist a newly issued sync token and stamp the time it was issued."""
    if not token:
        return
    state.last_sync_token = token
    state.last_sync_time = at


async def find_log(
    db: AsyncSession, service_name: str, external_id: str
) -> ProviderSyncLog | None:
    stmt = select(ProviderSyncLog).where(
        ProviderSyncLog.source_service == service_name,
        ProviderSyncLog.source_external_id == external_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


def log_import(
    db: AsyncSession,
    service_name: str,
    external_id: str,
    entity_type: str,
    entity_id: uuid.UUID,
    metadata: dict | None = None,
) -> ProviderSyncLog:
    entry = ProviderSyncLog(
        id=uuid.uuid4(),
        source_service=service_name,
        source_external_id=external_id,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata_json=metadata,
    )
    db.add(entry)
    return entry
