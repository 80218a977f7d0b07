"""Contact model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, validates

from .base import Base, UUIDMixin, TimestampMixin, UTCDateTime, normalize_email, normalize_name


class Contact(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "contact"
    __table_args__ = (
        Index("uq_contact_email_key", "email_key", unique=True),
        Index("ix_contact_name_key", "name_key"),
    )

    name: Mapped[str] = mapped_column(String(200))
    name_key: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    # NULL rather than "" so the unique index only covers real addresses.
    email_key: Mapped[str | None] = mapped_column(String(255), default=None)
    phone: Mapped[str] = mapped_column(String(50), default="")
    company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("company.id", ondelete="SET NULL"), default=None, index=True
    )
    notes: Mapped[str] = mapped_column(Text, default="")
    last_contacted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)

    @validates("name")
    def _set_name_key(self, key: str, value: str) -> str:
        self.name_key = normalize_name(value)
        return value

    @validates("email")
    def _set_email_key(self, key: str, value: str | None) -> str | None:
        self.email_key = normalize_email(value) or None
        return value

    def __repr__(self) -> str:
        return f"<Contact {self.name!r}>"
