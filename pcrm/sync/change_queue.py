"""Change queue - turns local mutations into sealed outbox rows.

Payload builders carry denormalized names (company_name, contact_name, ...)
so a receiving device can create placeholders when a referenced row has not
arrived yet.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import SyncError
from ..models.company import Company
from ..models.contact import Contact
from ..models.deal import Deal, DealNote
from ..models.interaction import ContactCadence, InteractionLog
from ..models.outbox import OutboxItem
from ..models.relationship import Relationship
from ..models.suggestion import Suggestion
from ..schemas.payloads import (
    CompanyPayload,
    ContactCadencePayload,
    ContactPayload,
    DealNotePayload,
    DealPayload,
    InteractionLogPayload,
    RelationshipPayload,
    SuggestionPayload,
    WirePayload,
    format_timestamp,
)
from ..schemas.sync import VaultSyncResult
from .codec import PayloadCodec, encode_payload
from .outbox import enqueue

logger = logging.getLogger(__name__)


def _id_text(value: uuid.UUID | None) -> str:
    return str(value) if value else ""


def contact_payload(contact: Contact, company_name: str = "") -> ContactPayload:
    return ContactPayload(
        id=str(contact.id),
        name=contact.name,
        email=contact.email or "",
        phone=contact.phone or "",
        company_id=_id_text(contact.company_id),
        company_name=company_name,
        notes=contact.notes or "",
        last_contacted_at=format_timestamp(contact.last_contacted_at),
    )


def company_payload(company: Company) -> CompanyPayload:
    return CompanyPayload(
        id=str(company.id),
        name=company.name,
        domain=company.domain or "",
        industry=company.industry or "",
        notes=company.notes or "",
    )


def deal_payload(deal: Deal, company_name: str = "", contact_name: str = "") -> DealPayload:
    return DealPayload(
        id=str(deal.id),
        title=deal.title,
        amount=deal.amount,
        currency=deal.currency,
        stage=deal.stage,
        company_id=_id_text(deal.company_id),
        company_name=company_name,
        contact_id=_id_text(deal.contact_id),
        contact_name=contact_name,
        expected_close_date=format_timestamp(deal.expected_close_date),
    )


def deal_note_payload(note: DealNote, deal: Deal | None, company_name: str = "") -> DealNotePayload:
    return DealNotePayload(
        id=str(note.id),
        deal_id=str(note.deal_id),
        deal_title=deal.title if deal else "",
        deal_company_id=_id_text(deal.company_id) if deal else "",
        deal_company_name=company_name,
        content=note.content,
        created_at=format_timestamp(note.created_at) or "",
    )


def relationship_payload(
    rel: Relationship, contact_1_name: str = "", contact_2_name: str = ""
) -> RelationshipPayload:
    return RelationshipPayload(
        id=str(rel.id),
        contact_id_1=str(rel.contact_id_1),
        contact_id_2=str(rel.contact_id_2),
        contact_1_name=contact_1_name,
        contact_2_name=contact_2_name,
        relationship_type=rel.relationship_type,
        context=rel.context or "",
    )


def interaction_payload(log: InteractionLog, contact_name: str = "") -> InteractionLogPayload:
    return InteractionLogPayload(
        id=str(log.id),
        contact_id=str(log.contact_id),
        contact_name=contact_name,
        interaction_type=log.interaction_type,
        interacted_at=format_timestamp(log.interacted_at) or "",
        sentiment=log.sentiment,
        metadata=log.metadata_json,
    )


def cadence_payload(cadence: ContactCadence, contact_name: str = "") -> ContactCadencePayload:
    return ContactCadencePayload(
        id=str(cadence.contact_id),
        contact_name=contact_name,
        cadence_days=cadence.cadence_days,
        relationship_strength=cadence.relationship_strength,
        priority_score=cadence.priority_score,
    )


def suggestion_payload(suggestion: Suggestion) -> SuggestionPayload:
    return SuggestionPayload(
        id=str(suggestion.id),
        type=suggestion.type,
        content=suggestion.content,
        confidence=suggestion.confidence,
        source_service=suggestion.source_service,
        status=suggestion.status,
    )


class ChangeQueue:
    """Seals payloads and appends them to the outbox inside the caller's transaction."""

    def __init__(
        self,
        codec: PayloadCodec,
        *,
        auto_sync: bool | None = None,
        sync_runner: Callable[[], Awaitable[VaultSyncResult]] | None = None,
    ) -> None:
        self.codec = codec
        self.auto_sync = settings.auto_sync_on_write if auto_sync is None else auto_sync
        self.sync_runner = sync_runner

    async def record(
        self,
        db: AsyncSession,
        entity: str,
        entity_id: uuid.UUID | str,
        op: str,
        payload: WirePayload,
    ) -> OutboxItem:
        """Seal and enqueue. No commit is performed here."""
        entity_id = str(entity_id)
        sealed = self.codec.seal(entity, op, entity_id, encode_payload(payload))
        return await enqueue(db, entity, entity_id, op, sealed)

    async def after_commit(self) -> None:
        """Run a sync cycle if auto-sync is on. Never fails the write."""
        if not self.auto_sync or self.sync_runner is None:
            return
        try:
            result = await self.sync_runner()
        except SyncError as exc:
            logger.warning("Vault sync after write failed, change kept in outbox: %s", exc)
            return
        if not result.ok:
            logger.warning(
                "Vault sync after write failed, change kept in outbox: %s", "; ".join(result.errors)
            )
