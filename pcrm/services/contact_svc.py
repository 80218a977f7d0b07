"""Contact service - CRUD, identity lookups, last-contacted bookkeeping."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import commit, flush
from ..models.base import normalize_email, normalize_name
from ..models.company import Company
from ..models.contact import Contact
from ..schemas.payloads import ENTITY_CONTACT, OP_DELETE, OP_UPSERT
from ..sync.change_queue import ChangeQueue, contact_payload


def bump_last_contacted(contact: Contact, at: datetime | None) -> bool:
    """Advance last_contacted_at to ``at`` if later. Returns True if changed."""
    if at is None:
        return False
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    if contact.last_contacted_at is None or at > contact.last_contacted_at:
        contact.last_contacted_at = at
        return True
    return False


async def get_contact(db: AsyncSession, contact_id: uuid.UUID) -> Contact | None:
    return await db.get(Contact, contact_id)


async def find_contact_by_email(db: AsyncSession, email: str | None) -> Contact | None:
    key = normalize_email(email)
    if not key:
        return None
    stmt = select(Contact).where(Contact.email_key == key)
    return (await db.execute(stmt)).scalars().first()


async def find_contact_by_name(db: AsyncSession, name: str | None) -> Contact | None:
    """Oldest contact whose normalized name matches."""
    key = normalize_name(name)
    if not key:
        return None
    stmt = (
        select(Contact)
        .where(Contact.name_key == key)
        .order_by(Contact.created_at, Contact.id)
    )
    return (await db.execute(stmt)).scalars().first()


async def company_name_for(db: AsyncSession, contact: Contact) -> str:
    if not contact.company_id:
        return ""
    company = await db.get(Company, contact.company_id)
    return company.name if company else ""


def _clean_email(email: str | None) -> str | None:
    email = normalize_email(email)
    return email or None


async def create_contact(
    db: AsyncSession, *, queue: ChangeQueue | None = None, **kwargs
) -> Contact:
    """Create a contact and queue it for the vault in one transaction."""
    kwargs["email"] = _clean_email(kwargs.get("email"))
    if kwargs["email"] and await find_contact_by_email(db, kwargs["email"]):
        raise ValueError(f"Contact with email {kwargs['email']!r} already exists")
    contact = Contact(id=kwargs.pop("id", None) or uuid.uuid4(), **kwargs)
    db.add(contact)
    await flush(db)
    if queue:
        payload = contact_payload(contact, await company_name_for(db, contact))
        await queue.record(db, ENTITY_CONTACT, contact.id, OP_UPSERT, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return contact


async def update_contact(
    db: AsyncSession, contact_id: uuid.UUID, *, queue: ChangeQueue | None = None, **kwargs
) -> Contact | None:
    """Update an existing contact."""
    contact = await get_contact(db, contact_id)
    if not contact:
        return None
    if "email" in kwargs:
        kwargs["email"] = _clean_email(kwargs["email"])
        other = await find_contact_by_email(db, kwargs["email"])
        if other and other.id != contact.id:
            raise ValueError(f"Contact with email {kwargs['email']!r} already exists")
    for key, value in kwargs.items():
        setattr(contact, key, value)
    await flush(db)
    if queue:
        payload = contact_payload(contact, await company_name_for(db, contact))
        await queue.record(db, ENTITY_CONTACT, contact.id, OP_UPSERT, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return contact


async def delete_contact(
    db: AsyncSession, contact_id: uuid.UUID, *, queue: ChangeQueue | None = None
) -> bool:
    """Delete a contact. Returns True if found and deleted."""
    contact = await get_contact(db, contact_id)
    if not contact:
        return False
    payload = contact_payload(contact, await company_name_for(db, contact))
    await db.delete(contact)
    await flush(db)
    if queue:
        await queue.record(db, ENTITY_CONTACT, contact_id, OP_DELETE, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return True
