"""Interaction log and follow-up cadence models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, UTCDateTime

INTERACTION_TYPES = frozenset({"meeting", "call", "email", "message", "event"})
SENTIMENTS = frozenset({"positive", "neutral", "negative"})
RELATIONSHIP_STRENGTHS = frozenset({"weak", "medium", "strong"})
DEFAULT_CADENCE_DAYS = 30


class InteractionLog(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "interaction_log"

    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contact.id", ondelete="CASCADE"), index=True
    )
    interaction_type: Mapped[str] = mapped_column(String(20))
    interacted_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    sentiment: Mapped[str | None] = mapped_column(String(20), default=None)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, default=None)

    def __repr__(self) -> str:
        return f"<InteractionLog {self.interaction_type} contact={self.contact_id}>"


class ContactCadence(TimestampMixin, Base):
    __tablename__ = "contact_cadence"

    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contact.id", ondelete="CASCADE"), primary_key=True
    )
    cadence_days: Mapped[int] = mapped_column(Integer, default=DEFAULT_CADENCE_DAYS)
    relationship_strength: Mapped[str] = mapped_column(String(20), default="medium")
    priority_score: Mapped[float] = mapped_column(Float, default=0.0)
    last_interaction_date: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    next_followup_date: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)

    def __repr__(self) -> str:
        return f"<ContactCadence contact={self.contact_id} every {self.cadence_days}d>"
