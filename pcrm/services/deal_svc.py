"""Deal service - CRUD and deal notes."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import commit, flush
from ..models.base import utcnow
from ..models.company import Company
from ..models.contact import Contact
from ..models.deal import DEAL_STAGES, Deal, DealNote
from ..schemas.payloads import ENTITY_DEAL, ENTITY_DEAL_NOTE, OP_DELETE, OP_UPSERT
from ..sync.change_queue import ChangeQueue, deal_note_payload, deal_payload
from .contact_svc import bump_last_contacted


async def get_deal(db: AsyncSession, deal_id: uuid.UUID) -> Deal | None:
    return await db.get(Deal, deal_id)


async def list_deal_notes(db: AsyncSession, deal_id: uuid.UUID) -> list[DealNote]:
    stmt = select(DealNote).where(DealNote.deal_id == deal_id).order_by(DealNote.created_at)
    return list((await db.execute(stmt)).scalars().all())


async def _names_for(db: AsyncSession, deal: Deal) -> tuple[str, str]:
    company = await db.get(Company, deal.company_id) if deal.company_id else None
    contact = await db.get(Contact, deal.contact_id) if deal.contact_id else None
    return (company.name if company else "", contact.name if contact else "")


def touch_deal(deal: Deal, at: datetime | None = None) -> None:
    """Advance last_activity_at (monotonic)."""
    at = at or utcnow()
    if deal.last_activity_at is None or at > deal.last_activity_at:
        deal.last_activity_at = at


async def append_deal_note(db: AsyncSession, deal: Deal, note: DealNote) -> DealNote:
    """Attach a note and bump the deal and its contact to the note's time.

    No commit is performed here; callers batch commits.
    """
    note.deal_id = deal.id
    if note.created_at is None:
        note.created_at = utcnow()
    db.add(note)
    touch_deal(deal, note.created_at)
    if deal.contact_id:
        contact = await db.get(Contact, deal.contact_id)
        if contact:
            bump_last_contacted(contact, note.created_at)
    await flush(db)
    return note


async def create_deal(
    db: AsyncSession, *, queue: ChangeQueue | None = None, **kwargs
) -> Deal:
    stage = kwargs.setdefault("stage", "prospecting")
    if stage not in DEAL_STAGES:
        raise ValueError(f"Invalid deal stage: {stage!r}")
    if not kwargs.get("company_id") or not await db.get(Company, kwargs["company_id"]):
        raise ValueError("Deal requires an existing company")
    now = utcnow()
    deal = Deal(
        id=kwargs.pop("id", None) or uuid.uuid4(),
        created_at=now,
        last_activity_at=now,
        **kwargs,
    )
    db.add(deal)
    await flush(db)
    if queue:
        payload = deal_payload(deal, *await _names_for(db, deal))
        await queue.record(db, ENTITY_DEAL, deal.id, OP_UPSERT, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return deal


async def update_deal(
    db: AsyncSession, deal_id: uuid.UUID, *, queue: ChangeQueue | None = None, **kwargs
) -> Deal | None:
    """Update a deal; any update counts as activity."""
    deal = await get_deal(db, deal_id)
    if not deal:
        return None
    if "stage" in kwargs and kwargs["stage"] not in DEAL_STAGES:
        raise ValueError(f"Invalid deal stage: {kwargs['stage']!r}")
    for key, value in kwargs.items():
        setattr(deal, key, value)
    touch_deal(deal)
    await flush(db)
    if queue:
        payload = deal_payload(deal, *await _names_for(db, deal))
        await queue.record(db, ENTITY_DEAL, deal.id, OP_UPSERT, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return deal


async def delete_deal(
    db: AsyncSession, deal_id: uuid.UUID, *, queue: ChangeQueue | None = None
) -> bool:
    deal = await get_deal(db, deal_id)
    if not deal:
        return False
    payload = deal_payload(deal, *await _names_for(db, deal))
    await db.delete(deal)
    await flush(db)
    if queue:
        await queue.record(db, ENTITY_DEAL, deal_id, OP_DELETE, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return True


async def add_deal_note(
    db: AsyncSession,
    deal_id: uuid.UUID,
    content: str,
    *,
    queue: ChangeQueue | None = None,
    created_at: datetime | None = None,
) -> DealNote | None:
    """Append a note to a deal. Returns None if the deal does not exist."""
    deal = await get_deal(db, deal_id)
    if not deal:
        return None
    note = DealNote(id=uuid.uuid4(), content=content, created_at=created_at or utcnow())
    await append_deal_note(db, deal, note)
    if queue:
        company_name, _ = await _names_for(db, deal)
        payload = deal_note_payload(note, deal, company_name)
        await queue.record(db, ENTITY_DEAL_NOTE, note.id, OP_UPSERT, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return note
