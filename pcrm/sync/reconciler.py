"""Reconciler - applies one decrypted vault change to the local store.

Every apply is idempotent: upserts go by id, deletes tolerate missing rows,
timestamps only ever move forward. Referenced rows that have not arrived yet
are created as placeholders carrying the incoming id and best-effort name; a
later upsert of the same id fills them in.

Nothing here commits. The sync engine wraps each change in its own
transaction and rolls back on any error.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import flush
from ..errors import PayloadError, RefResolutionError
from ..models.base import utcnow
from ..models.company import Company
from ..models.contact import Contact
from ..models.deal import DEAL_STAGES, PLACEHOLDER_CURRENCY, PLACEHOLDER_STAGE, Deal, DealNote
from ..models.interaction import (
    DEFAULT_CADENCE_DAYS,
    INTERACTION_TYPES,
    RELATIONSHIP_STRENGTHS,
    SENTIMENTS,
    ContactCadence,
    InteractionLog,
)
from ..models.relationship import Relationship
from ..schemas.payloads import (
    ENTITY_COMPANY,
    ENTITY_CONTACT,
    ENTITY_CONTACT_CADENCE,
    ENTITY_DEAL,
    ENTITY_DEAL_NOTE,
    ENTITY_INTERACTION_LOG,
    ENTITY_RELATIONSHIP,
    ENTITY_SUGGESTION,
    OP_DELETE,
    OPS,
    CompanyPayload,
    ContactCadencePayload,
    ContactPayload,
    DealNotePayload,
    DealPayload,
    InteractionLogPayload,
    OpenedChange,
    RelationshipPayload,
    parse_timestamp,
)
from ..services.company_svc import find_company_by_name
from ..services.contact_svc import bump_last_contacted, find_contact_by_email, find_contact_by_name
from ..services.deal_svc import append_deal_note, touch_deal
from ..services.interaction_svc import record_interaction
from ..services.relationship_svc import DEFAULT_RELATIONSHIP_TYPE, canonical_pair, find_relationship
from .codec import decode_payload
from .matcher import normalize_email

logger = logging.getLogger(__name__)


# --- parsing helpers ---------------------------------------------------------


def _parse_uuid(raw: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw.strip())
    except (ValueError, AttributeError) as exc:
        raise PayloadError(f"Invalid UUID in {field}: {raw!r}") from exc


def _try_uuid(raw: str | None) -> uuid.UUID | None:
    """Optional reference: empty or unparseable text means 'not given'."""
    if not raw or not raw.strip():
        return None
    try:
        return uuid.UUID(raw.strip())
    except ValueError:
        return None


def _parse_time(raw: str | None, field: str) -> datetime:
    try:
        return parse_timestamp(raw or "")
    except ValueError as exc:
        raise PayloadError(f"Invalid timestamp in {field}: {raw!r}") from exc


def _optional_time(raw: str | None, field: str) -> datetime | None:
    if raw is None or not raw.strip():
        return None
    return _parse_time(raw, field)


def _target_id(change: OpenedChange, payload_id: str) -> uuid.UUID:
    return _parse_uuid(payload_id or change.entity_id, "id")


def fallback_name(name: str | None, entity_id: uuid.UUID) -> str:
    trimmed = (name or "").strip()
    return trimmed or str(entity_id)


# --- placeholder policy ------------------------------------------------------


async def _unique_company_name(db: AsyncSession, name: str, company_id: uuid.UUID) -> str:
    """Company names are unique case-insensitively; suffix the id on collision."""
    other = await find_company_by_name(db, name)
    if other is None or other.id == company_id:
        return name
    renamed = f"{name} [{str(company_id)[:8]}]"
    logger.warning(
        "Company name %r already used by %s; storing %s as %r", name, other.id, company_id, renamed
    )
    return renamed


async def _unique_email(db: AsyncSession, email: str | None, contact_id: uuid.UUID) -> str | None:
    key = normalize_email(email)
    if not key:
        return None
    other = await find_contact_by_email(db, key)
    if other is not None and other.id != contact_id:
        logger.warning(
            "Email %r already belongs to contact %s; dropping it from %s", key, other.id, contact_id
        )
        return None
    return key


async def ensure_company(db: AsyncSession, company_id: uuid.UUID, name: str) -> Company:
    company = await db.get(Company, company_id)
    if company is not None:
        return company
    company = Company(
        id=company_id,
        name=await _unique_company_name(db, fallback_name(name, company_id), company_id),
    )
    db.add(company)
    await flush(db)
    return company


async def ensure_contact(
    db: AsyncSession,
    contact_id: uuid.UUID,
    name: str,
    company_id: uuid.UUID | None = None,
) -> Contact:
    contact = await db.get(Contact, contact_id)
    if contact is not None:
        return contact
    contact = Contact(id=contact_id, name=fallback_name(name, contact_id), company_id=company_id)
    db.add(contact)
    await flush(db)
    return contact


async def resolve_contact_identifier(db: AsyncSession, raw_id: str, name: str) -> Contact:
    """Id (placeholder if unknown), else name lookup, else a fresh placeholder by name."""
    parsed = _try_uuid(raw_id)
    if parsed is not None:
        return await ensure_contact(db, parsed, name)
    if name and name.strip():
        existing = await find_contact_by_name(db, name)
        if existing is not None:
            return existing
        return await ensure_contact(db, uuid.uuid4(), name)
    raise RefResolutionError("Missing contact information")


async def _resolve_company(
    db: AsyncSession, raw_id: str, name: str, what: str
) -> Company:
    parsed = _try_uuid(raw_id)
    if parsed is not None:
        return await ensure_company(db, parsed, name)
    if name and name.strip():
        company = await find_company_by_name(db, name)
        if company is not None:
            return company
    raise RefResolutionError(f"Company not found for {what}")


async def resolve_company_for_deal(db: AsyncSession, payload: DealPayload) -> Company:
    return await _resolve_company(db, payload.company_id, payload.company_name, f"deal {payload.id}")


async def resolve_note_company(db: AsyncSession, payload: DealNotePayload) -> Company:
    return await _resolve_company(
        db, payload.deal_company_id, payload.deal_company_name, f"deal note {payload.id}"
    )


# --- per-entity apply --------------------------------------------------------


async def _apply_contact(db: AsyncSession, change: OpenedChange, payload: ContactPayload) -> None:
    contact_id = _target_id(change, payload.id)
    if change.op == OP_DELETE:
        contact = await db.get(Contact, contact_id)
        if contact is not None:
            await db.delete(contact)
        return

    last_contacted_at = _optional_time(payload.last_contacted_at, "last_contacted_at")

    company_id: uuid.UUID | None = None
    parsed_company = _try_uuid(payload.company_id)
    if parsed_company is not None:
        company_id = (await ensure_company(db, parsed_company, payload.company_name)).id
    elif payload.company_name.strip():
        company = await find_company_by_name(db, payload.company_name)
        company_id = company.id if company else None

    email = await _unique_email(db, payload.email, contact_id)
    contact = await db.get(Contact, contact_id)
    if contact is None:
        contact = Contact(id=contact_id)
        db.add(contact)
    contact.name = fallback_name(payload.name, contact_id)
    contact.email = email
    contact.phone = payload.phone
    contact.company_id = company_id
    contact.notes = payload.notes
    bump_last_contacted(contact, last_contacted_at)


async def _apply_company(db: AsyncSession, change: OpenedChange, payload: CompanyPayload) -> None:
    company_id = _target_id(change, payload.id)
    company = await db.get(Company, company_id)
    if change.op == OP_DELETE:
        if company is not None:
            await db.delete(company)
        return

    name = await _unique_company_name(db, fallback_name(payload.name, company_id), company_id)
    if company is None:
        company = Company(id=company_id)
        db.add(company)
    company.name = name
    company.domain = payload.domain
    company.industry = payload.industry
    company.notes = payload.notes


async def _apply_deal(db: AsyncSession, change: OpenedChange, payload: DealPayload) -> None:
    deal_id = _target_id(change, payload.id)
    if change.op == OP_DELETE:
        deal = await db.get(Deal, deal_id)
        if deal is not None:
            await db.delete(deal)
        return

    stage = payload.stage.strip() or "prospecting"
    if stage not in DEAL_STAGES and stage != PLACEHOLDER_STAGE:
        raise PayloadError(f"Invalid deal stage: {payload.stage!r}")
    expected_close = _optional_time(payload.expected_close_date, "expected_close_date")

    company = await resolve_company_for_deal(db, payload)

    contact: Contact | None = None
    parsed_contact = _try_uuid(payload.contact_id)
    if parsed_contact is not None:
        contact = await ensure_contact(db, parsed_contact, payload.contact_name, company.id)
    elif payload.contact_name.strip():
        contact = await find_contact_by_name(db, payload.contact_name)

    deal = await db.get(Deal, deal_id)
    if deal is None:
        now = utcnow()
        deal = Deal(id=deal_id, created_at=now, last_activity_at=now)
        db.add(deal)
    deal.title = fallback_name(payload.title, deal_id)
    deal.amount = payload.amount
    deal.currency = payload.currency.strip().upper() or PLACEHOLDER_CURRENCY
    deal.stage = stage
    deal.company_id = company.id
    deal.contact_id = contact.id if contact else None
    deal.expected_close_date = expected_close


async def _apply_deal_note(db: AsyncSession, change: OpenedChange, payload: DealNotePayload) -> None:
    if change.op == OP_DELETE:
        return
    note_id = _target_id(change, payload.id)
    deal_id = _parse_uuid(payload.deal_id, "deal_id")
    created_at = _parse_time(payload.created_at, "created_at")

    deal = await db.get(Deal, deal_id)
    if deal is None:
        company = await resolve_note_company(db, payload)
        now = utcnow()
        deal = Deal(
            id=deal_id,
            title=fallback_name(payload.deal_title, deal_id),
            company_id=company.id,
            currency=PLACEHOLDER_CURRENCY,
            stage=PLACEHOLDER_STAGE,
            amount=0,
            created_at=now,
            last_activity_at=now,
        )
        db.add(deal)
        await flush(db)

    note = await db.get(DealNote, note_id)
    if note is None:
        await append_deal_note(db, deal, DealNote(id=note_id, content=payload.content, created_at=created_at))
        return
    note.content = payload.content
    touch_deal(deal, note.created_at)


async def _apply_relationship(
    db: AsyncSession, change: OpenedChange, payload: RelationshipPayload
) -> None:
    rel_id = _target_id(change, payload.id)
    rel = await db.get(Relationship, rel_id)
    if change.op == OP_DELETE:
        if rel is not None:
            await db.delete(rel)
        return

    first = await resolve_contact_identifier(db, payload.contact_id_1, payload.contact_1_name)
    second = await resolve_contact_identifier(db, payload.contact_id_2, payload.contact_2_name)
    c1, c2 = canonical_pair(first.id, second.id)
    rel_type = payload.relationship_type.strip() or DEFAULT_RELATIONSHIP_TYPE

    holder = await find_relationship(db, c1, c2, rel_type)
    if rel is None:
        rel = holder
        if rel is not None:
            logger.debug("Relationship %s duplicates %s for the same pair; merging", rel_id, rel.id)
        else:
            rel = Relationship(id=rel_id)
            db.add(rel)
    elif holder is not None and holder.id != rel.id:
        # Another row already holds (pair, type); fold this one into it.
        logger.warning(
            "Relationship %s retyped to %r, which %s already holds for the same pair; merging",
            rel_id,
            rel_type,
            holder.id,
        )
        await db.delete(rel)
        rel = holder
    rel.contact_id_1 = c1
    rel.contact_id_2 = c2
    rel.relationship_type = rel_type
    rel.context = payload.context


async def _apply_interaction(
    db: AsyncSession, change: OpenedChange, payload: InteractionLogPayload
) -> None:
    if change.op == OP_DELETE:
        return
    log_id = _target_id(change, payload.id)
    if payload.interaction_type not in INTERACTION_TYPES:
        raise PayloadError(f"Invalid interaction type: {payload.interaction_type!r}")
    sentiment = (payload.sentiment or "").strip() or None
    if sentiment is not None and sentiment not in SENTIMENTS:
        raise PayloadError(f"Invalid sentiment: {payload.sentiment!r}")
    interacted_at = _parse_time(payload.interacted_at, "interacted_at")

    contact: Contact | None = None
    parsed_contact = _try_uuid(payload.contact_id)
    if parsed_contact is not None:
        contact = await ensure_contact(db, parsed_contact, payload.contact_name)
    else:
        contact = await find_contact_by_name(db, payload.contact_name)
    if contact is None:
        raise RefResolutionError(f"Contact not found for interaction {payload.id}")

    log = InteractionLog(
        id=log_id,
        interaction_type=payload.interaction_type,
        interacted_at=interacted_at,
        sentiment=sentiment,
        metadata_json=payload.metadata,
    )
    await record_interaction(db, contact, log)


async def _apply_cadence(
    db: AsyncSession, change: OpenedChange, payload: ContactCadencePayload
) -> None:
    if change.op == OP_DELETE:
        return
    contact_id = _target_id(change, payload.id)
    strength = payload.relationship_strength.strip() or "medium"
    if strength not in RELATIONSHIP_STRENGTHS:
        raise PayloadError(f"Invalid relationship strength: {payload.relationship_strength!r}")

    await ensure_contact(db, contact_id, payload.contact_name)
    cadence = await db.get(ContactCadence, contact_id)
    if cadence is None:
        cadence = ContactCadence(contact_id=contact_id)
        db.add(cadence)
    cadence.cadence_days = payload.cadence_days if payload.cadence_days > 0 else DEFAULT_CADENCE_DAYS
    cadence.relationship_strength = strength
    cadence.priority_score = payload.priority_score


_APPLIERS = {
    ENTITY_CONTACT: _apply_contact,
    ENTITY_COMPANY: _apply_company,
    ENTITY_DEAL: _apply_deal,
    ENTITY_DEAL_NOTE: _apply_deal_note,
    ENTITY_RELATIONSHIP: _apply_relationship,
    ENTITY_INTERACTION_LOG: _apply_interaction,
    ENTITY_CONTACT_CADENCE: _apply_cadence,
}


async def apply_change(db: AsyncSession, change: OpenedChange) -> bool:
    """Apply one change. Returns False for changes that are deliberately ignored.

    Raises PayloadError, RefResolutionError or StorageError; the caller
    rolls back the transaction.
    """
    if change.op not in OPS:
        raise PayloadError(f"Unknown op {change.op!r} for {change.entity}:{change.entity_id}")

    if change.entity == ENTITY_SUGGESTION:
        logger.debug("Skipping suggestion change %s (suggestions are local-only)", change.entity_id)
        return False

    applier = _APPLIERS.get(change.entity)
    if applier is None:
        logger.debug("Skipping change for unknown entity %r (%s)", change.entity, change.entity_id)
        return False

    payload = decode_payload(change.entity, change.payload)
    await applier(db, change, payload)
    await flush(db)
    return True
