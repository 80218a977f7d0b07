"""Contacts importer - Google People connections into local contacts."""

from __future__ import annotations

import logging
import uuid

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import flush
from ..models.contact import Contact
from ..schemas.payloads import ENTITY_COMPANY, ENTITY_CONTACT, OP_UPSERT
from ..schemas.sync import SyncResult
from ..services.company_svc import ensure_company_by_name
from ..services.contact_svc import company_name_for
from .change_queue import ChangeQueue, company_payload, contact_payload
from .google_client import PeopleClient
from .matcher import build_matcher, normalize_email
from .provider_pull import run_pull_cycle

logger = logging.getLogger(__name__)

SERVICE_NAME = "contacts"


class ExternalContact(BaseModel):
    external_id: str
    name: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""
    notes: str = ""


def _first(person: dict, key: str) -> dict:
    values = person.get(key) or []
    primary = [v for v in values if (v.get("metadata") or {}).get("primary")]
    return (primary or values or [{}])[0]


def parse_person(person: dict) -> ExternalContact:
    """Flatten a People API person resource."""
    return ExternalContact(
        external_id=person.get("resourceName", ""),
        name=(_first(person, "names").get("displayName") or "").strip(),
        email=normalize_email(_first(person, "emailAddresses").get("value")),
        phone=(_first(person, "phoneNumbers").get("value") or "").strip(),
        company=(_first(person, "organizations").get("name") or "").strip(),
        notes=(_first(person, "biographies").get("value") or "").strip(),
    )


async def import_contact(
    db: AsyncSession, external: ExternalContact, *, queue: ChangeQueue | None = None
) -> tuple[str, Contact | None]:
    """Match-or-create one external contact. Returns (outcome, contact).

    Matching rebuilds the matcher from the current store so earlier records
    in the same cycle are visible. Existing contacts get a conservative
    merge. No commit is performed here.
    """
    if not external.name and not external.email:
        logger.debug("Skipping external contact %s with no name or email", external.external_id)
        return "skipped", None

    matcher = await build_matcher(db)
    existing = matcher.match(external.name, external.email)
    if existing:
        changed = False
        for field in ("phone", "notes"):
            incoming = getattr(external, field)
            if incoming and not getattr(existing, field):
                setattr(existing, field, incoming)
                changed = True
        if external.email and not existing.email and not matcher.match_email(external.email):
            existing.email = normalize_email(external.email)
            changed = True
        if external.company and not existing.company_id:
            company, created = await ensure_company_by_name(db, external.company)
            if created and queue:
                await queue.record(db, ENTITY_COMPANY, company.id, OP_UPSERT, company_payload(company))
            existing.company_id = company.id
            changed = True
        if not changed:
            return "skipped", existing
        await flush(db)
        if queue:
            payload = contact_payload(existing, await company_name_for(db, existing))
            await queue.record(db, ENTITY_CONTACT, existing.id, OP_UPSERT, payload)
        return "updated", existing

    company = None
    if external.company:
        company, created = await ensure_company_by_name(db, external.company)
        if created and queue:
            await queue.record(db, ENTITY_COMPANY, company.id, OP_UPSERT, company_payload(company))
    contact = Contact(
        id=uuid.uuid4(),
        name=external.name or external.email.split("@", 1)[0],
        email=normalize_email(external.email) or None,
        phone=external.phone,
        notes=external.notes,
        company_id=company.id if company else None,
    )
    db.add(contact)
    await flush(db)
    if queue:
        payload = contact_payload(contact, company.name if company else "")
        await queue.record(db, ENTITY_CONTACT, contact.id, OP_UPSERT, payload)
    return "created", contact


async def import_contacts(
    db: AsyncSession,
    client: PeopleClient,
    *,
    initial: bool = False,
    queue: ChangeQueue | None = None,
) -> SyncResult:
    """Run one People API pull cycle."""

    async def _process(session: AsyncSession, person: dict):
        outcome, contact = await import_contact(session, parse_person(person), queue=queue)
        return outcome, "contact", contact.id if contact else None

    return await run_pull_cycle(
        db,
        SERVICE_NAME,
        client.list_connections,
        _process,
        initial=initial,
        external_id=lambda person: str(person.get("resourceName") or ""),
    )
