"""Suggestion service."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import commit, flush
from ..models.suggestion import Suggestion
from ..schemas.payloads import ENTITY_SUGGESTION, OP_UPSERT
from ..sync.change_queue import ChangeQueue, suggestion_payload


async def create_suggestion(
    db: AsyncSession,
    suggestion_type: str,
    content: str,
    *,
    confidence: float = 0.0,
    source_service: str = "",
    queue: ChangeQueue | None = None,
) -> Suggestion:
    """Create a pending suggestion. It is queued for backup but never applied remotely."""
    suggestion = Suggestion(
        id=uuid.uuid4(),
        type=suggestion_type,
        content=content,
        confidence=confidence,
        source_service=source_service,
        status="pending",
    )
    db.add(suggestion)
    await flush(db)
    if queue:
        await queue.record(
            db, ENTITY_SUGGESTION, suggestion.id, OP_UPSERT, suggestion_payload(suggestion)
        )
    await commit(db)
    if queue:
        await queue.after_commit()
    return suggestion


async def list_suggestions(db: AsyncSession, *, status: str | None = "pending") -> list[Suggestion]:
    stmt = select(Suggestion)
    if status:
        stmt = stmt.where(Suggestion.status == status)
    stmt = stmt.order_by(Suggestion.confidence.desc())
    return list((await db.execute(stmt)).scalars().all())
