"""Deal and DealNote models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, UTCDateTime, utcnow

DEAL_STAGES = frozenset({
    "prospecting",
    "qualification",
    "proposal",
    "negotiation",
    "closed_won",
    "closed_lost",
})
# Stage given to deals synthesized from a note whose deal has not arrived yet.
PLACEHOLDER_STAGE = "unknown"
PLACEHOLDER_CURRENCY = "USD"


class Deal(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "deal"

    title: Mapped[str] = mapped_column(String(300))
    amount: Mapped[int] = mapped_column(BigInteger, default=0)  # minor units
    currency: Mapped[str] = mapped_column(String(3), default=PLACEHOLDER_CURRENCY)
    stage: Mapped[str] = mapped_column(String(30), default="prospecting")
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("company.id", ondelete="CASCADE"), index=True
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contact.id", ondelete="SET NULL"), default=None, index=True
    )
    expected_close_date: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Deal {self.title!r} stage={self.stage}>"


class DealNote(UUIDMixin, Base):
    __tablename__ = "deal_note"

    deal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("deal.id", ondelete="CASCADE"), index=True
    )
    content: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<DealNote deal={self.deal_id}>"
