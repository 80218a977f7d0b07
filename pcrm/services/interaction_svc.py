"""Interaction service - interaction logging and follow-up cadence."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import commit, flush
from ..models.base import utcnow
from ..models.contact import Contact
from ..models.interaction import (
    DEFAULT_CADENCE_DAYS,
    INTERACTION_TYPES,
    RELATIONSHIP_STRENGTHS,
    SENTIMENTS,
    ContactCadence,
    InteractionLog,
)
from ..schemas.payloads import ENTITY_CONTACT_CADENCE, ENTITY_INTERACTION_LOG, OP_UPSERT
from ..sync.change_queue import ChangeQueue, cadence_payload, interaction_payload
from .contact_svc import bump_last_contacted


def _advance_cadence(cadence: ContactCadence, at: datetime) -> None:
    if cadence.last_interaction_date is None or at > cadence.last_interaction_date:
        cadence.last_interaction_date = at
    cadence.next_followup_date = cadence.last_interaction_date + timedelta(days=cadence.cadence_days)


async def get_cadence(db: AsyncSession, contact_id: uuid.UUID) -> ContactCadence | None:
    return await db.get(ContactCadence, contact_id)


async def record_interaction(
    db: AsyncSession, contact: Contact, log: InteractionLog
) -> InteractionLog:
    """Insert-or-update a log by id and advance the contact and its cadence.

    No commit is performed here; callers batch commits.
    """
    existing = await db.get(InteractionLog, log.id) if log.id else None
    if existing:
        existing.contact_id = contact.id
        existing.interaction_type = log.interaction_type
        existing.interacted_at = log.interacted_at
        existing.sentiment = log.sentiment
        existing.metadata_json = log.metadata_json
        log = existing
    else:
        log.contact_id = contact.id
        db.add(log)

    bump_last_contacted(contact, log.interacted_at)
    cadence = await get_cadence(db, contact.id)
    if cadence is None:
        cadence = ContactCadence(
            contact_id=contact.id,
            cadence_days=DEFAULT_CADENCE_DAYS,
            relationship_strength="medium",
        )
        db.add(cadence)
    _advance_cadence(cadence, log.interacted_at)
    await flush(db)
    return log


async def list_interactions(
    db: AsyncSession, contact_id: uuid.UUID, *, limit: int = 50
) -> list[InteractionLog]:
    stmt = (
        select(InteractionLog)
        .where(InteractionLog.contact_id == contact_id)
        .order_by(InteractionLog.interacted_at.desc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def log_interaction(
    db: AsyncSession,
    contact_id: uuid.UUID,
    interaction_type: str,
    *,
    interacted_at: datetime | None = None,
    sentiment: str | None = None,
    metadata: dict | None = None,
    queue: ChangeQueue | None = None,
) -> InteractionLog:
    if interaction_type not in INTERACTION_TYPES:
        raise ValueError(f"Invalid interaction type: {interaction_type!r}")
    if sentiment is not None and sentiment not in SENTIMENTS:
        raise ValueError(f"Invalid sentiment: {sentiment!r}")
    contact = await db.get(Contact, contact_id)
    if not contact:
        raise ValueError(f"Contact not found: {contact_id}")

    log = InteractionLog(
        id=uuid.uuid4(),
        interaction_type=interaction_type,
        interacted_at=interacted_at or utcnow(),
        sentiment=sentiment,
        metadata_json=metadata,
    )
    log = await record_interaction(db, contact, log)
    if queue:
        await queue.record(
            db, ENTITY_INTERACTION_LOG, log.id, OP_UPSERT, interaction_payload(log, contact.name)
        )
    await commit(db)
    if queue:
        await queue.after_commit()
    return log


async def set_contact_cadence(
    db: AsyncSession,
    contact_id: uuid.UUID,
    *,
    cadence_days: int = DEFAULT_CADENCE_DAYS,
    relationship_strength: str = "medium",
    queue: ChangeQueue | None = None,
) -> ContactCadence:
    if cadence_days <= 0:
        raise ValueError("cadence_days must be positive")
    if relationship_strength not in RELATIONSHIP_STRENGTHS:
        raise ValueError(f"Invalid relationship strength: {relationship_strength!r}")
    contact = await db.get(Contact, contact_id)
    if not contact:
        raise ValueError(f"Contact not found: {contact_id}")

    cadence = await get_cadence(db, contact_id)
    if cadence is None:
        cadence = ContactCadence(contact_id=contact_id)
        db.add(cadence)
    cadence.cadence_days = cadence_days
    cadence.relationship_strength = relationship_strength
    if cadence.last_interaction_date is not None:
        _advance_cadence(cadence, cadence.last_interaction_date)
    await flush(db)
    if queue:
        await queue.record(
            db, ENTITY_CONTACT_CADENCE, contact_id, OP_UPSERT, cadence_payload(cadence, contact.name)
        )
    await commit(db)
    if queue:
        await queue.after_commit()
    return cadence
