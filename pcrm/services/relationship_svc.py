"""Relationship service - contact pairs stored in canonical orientation."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import commit, flush
from ..models.contact import Contact
from ..models.relationship import Relationship
from ..schemas.payloads import ENTITY_RELATIONSHIP, OP_DELETE, OP_UPSERT
from ..sync.change_queue import ChangeQueue, relationship_payload

DEFAULT_RELATIONSHIP_TYPE = "knows"


def canonical_pair(a: uuid.UUID, b: uuid.UUID) -> tuple[uuid.UUID, uuid.UUID]:
    """Order a pair by canonical text form so (a, b) and (b, a) store alike."""
    if str(a) > str(b):
        return b, a
    return a, b


async def find_relationship(
    db: AsyncSession, a: uuid.UUID, b: uuid.UUID, relationship_type: str
) -> Relationship | None:
    c1, c2 = canonical_pair(a, b)
    stmt = select(Relationship).where(
        Relationship.contact_id_1 == c1,
        Relationship.contact_id_2 == c2,
        Relationship.relationship_type == relationship_type,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_relationships(db: AsyncSession, contact_id: uuid.UUID) -> list[Relationship]:
    stmt = select(Relationship).where(
        (Relationship.contact_id_1 == contact_id) | (Relationship.contact_id_2 == contact_id)
    )
    return list((await db.execute(stmt)).scalars().all())


async def _names(db: AsyncSession, rel: Relationship) -> tuple[str, str]:
    c1 = await db.get(Contact, rel.contact_id_1)
    c2 = await db.get(Contact, rel.contact_id_2)
    return (c1.name if c1 else "", c2.name if c2 else "")


async def create_relationship(
    db: AsyncSession,
    contact_a: uuid.UUID,
    contact_b: uuid.UUID,
    *,
    relationship_type: str = DEFAULT_RELATIONSHIP_TYPE,
    context: str = "",
    queue: ChangeQueue | None = None,
) -> Relationship:
    """Create a relationship. At most one per type per unordered pair."""
    if contact_a == contact_b:
        raise ValueError("A contact cannot have a relationship with itself")
    for contact_id in (contact_a, contact_b):
        if not await db.get(Contact, contact_id):
            raise ValueError(f"Contact not found: {contact_id}")
    if await find_relationship(db, contact_a, contact_b, relationship_type):
        raise ValueError(f"Relationship {relationship_type!r} already exists for this pair")

    c1, c2 = canonical_pair(contact_a, contact_b)
    rel = Relationship(
        id=uuid.uuid4(),
        contact_id_1=c1,
        contact_id_2=c2,
        relationship_type=relationship_type,
        context=context,
    )
    db.add(rel)
    await flush(db)
    if queue:
        payload = relationship_payload(rel, *await _names(db, rel))
        await queue.record(db, ENTITY_RELATIONSHIP, rel.id, OP_UPSERT, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return rel


async def delete_relationship(
    db: AsyncSession, relationship_id: uuid.UUID, *, queue: ChangeQueue | None = None
) -> bool:
    rel = await db.get(Relationship, relationship_id)
    if not rel:
        return False
    payload = relationship_payload(rel, *await _names(db, rel))
    await db.delete(rel)
    await flush(db)
    if queue:
        await queue.record(db, ENTITY_RELATIONSHIP, relationship_id, OP_DELETE, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return True
