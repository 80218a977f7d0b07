"""Vault wire payload schemas - one tagged variant per entity."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

ENTITY_CONTACT = "contact"
ENTITY_COMPANY = "company"
ENTITY_DEAL = "deal"
ENTITY_DEAL_NOTE = "deal_note"
ENTITY_RELATIONSHIP = "relationship"
ENTITY_INTERACTION_LOG = "interaction_log"
ENTITY_CONTACT_CADENCE = "contact_cadence"
ENTITY_SUGGESTION = "suggestion"

OP_UPSERT = "upsert"
OP_DELETE = "delete"
OPS = frozenset({OP_UPSERT, OP_DELETE})


def format_timestamp(value: datetime | None) -> str | None:
    """RFC 3339, UTC, second precision, ``Z`` suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(raw: str) -> datetime:
    """Parse an RFC 3339 timestamp into aware UTC. Raises ValueError."""
    text = raw.strip()
    if not text:
        raise ValueError("empty timestamp")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp without offset: {raw!r}")
    return parsed.astimezone(timezone.utc)


class WirePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str


class ContactPayload(WirePayload):
    name: str = ""
    email: str = ""
    phone: str = ""
    company_id: str = ""
    company_name: str = ""
    notes: str = ""
    last_contacted_at: str | None = None


class CompanyPayload(WirePayload):
    name: str = ""
    domain: str = ""
    industry: str = ""
    notes: str = ""


class DealPayload(WirePayload):
    title: str = ""
    amount: int = 0
    currency: str = ""
    stage: str = ""
    company_id: str = ""
    company_name: str = ""
    contact_id: str = ""
    contact_name: str = ""
    expected_close_date: str | None = None


class DealNotePayload(WirePayload):
    deal_id: str = ""
    deal_title: str = ""
    deal_company_id: str = ""
    deal_company_name: str = ""
    content: str = ""
    created_at: str = ""


class RelationshipPayload(WirePayload):
    contact_id_1: str = ""
    contact_id_2: str = ""
    contact_1_name: str = ""
    contact_2_name: str = ""
    relationship_type: str = ""
    context: str = ""


class InteractionLogPayload(WirePayload):
    contact_id: str = ""
    contact_name: str = ""
    interaction_type: str = ""
    interacted_at: str = ""
    sentiment: str | None = None
    metadata: dict | None = None


class ContactCadencePayload(WirePayload):
    contact_name: str = ""
    cadence_days: int = 30
    relationship_strength: str = "medium"
    priority_score: float = 0.0


class SuggestionPayload(WirePayload):
    type: str = ""
    content: str = ""
    confidence: float = 0.0
    source_service: str = ""
    status: str = ""


PAYLOAD_TYPES: dict[str, type[WirePayload]] = {
    ENTITY_CONTACT: ContactPayload,
    ENTITY_COMPANY: CompanyPayload,
    ENTITY_DEAL: DealPayload,
    ENTITY_DEAL_NOTE: DealNotePayload,
    ENTITY_RELATIONSHIP: RelationshipPayload,
    ENTITY_INTERACTION_LOG: InteractionLogPayload,
    ENTITY_CONTACT_CADENCE: ContactCadencePayload,
    ENTITY_SUGGESTION: SuggestionPayload,
}


class Change(BaseModel):
    """A remote change as it arrives from the vault (payload still sealed)."""

    model_config = ConfigDict(extra="ignore")

    seq: int
    entity: str
    entity_id: str
    op: str
    payload: str


class OpenedChange(BaseModel):
    """A change after decryption, ready for the reconciler."""

    seq: int = 0
    entity: str
    entity_id: str
    op: str
    payload: bytes


class PushItem(BaseModel):
    """One outbox row on its way to the vault."""

    seq: int
    entity: str
    entity_id: str
    op: str
    payload: str
