"""Relationship model - an unordered pair of contacts stored in canonical orientation."""

from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin


class Relationship(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "relationship"
    __table_args__ = (
        UniqueConstraint(
            "contact_id_1", "contact_id_2", "relationship_type", name="uq_relationship_pair_type"
        ),
    )

    # contact_id_1 < contact_id_2 in canonical text form
    contact_id_1: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contact.id", ondelete="CASCADE"), index=True
    )
    contact_id_2: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contact.id", ondelete="CASCADE"), index=True
    )
    relationship_type: Mapped[str] = mapped_column(String(50), default="knows")
    context: Mapped[str] = mapped_column(Text, default="")

    def __repr__(self) -> str:
        return f"<Relationship {self.relationship_type} {self.contact_id_1}-{self.contact_id_2}>"
