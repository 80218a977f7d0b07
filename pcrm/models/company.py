"""Company model."""

from __future__ import annotations

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from .base import Base, UUIDMixin, TimestampMixin, normalize_name


class Company(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "company"
    # SQLite lower() only folds ASCII, so uniqueness is enforced on a key computed here.
    __table_args__ = (Index("uq_company_name_key", "name_key", unique=True),)

    name: Mapped[str] = mapped_column(String(200))
    name_key: Mapped[str] = mapped_column(String(200), default="")
    domain: Mapped[str] = mapped_column(String(255), default="")
    industry: Mapped[str] = mapped_column(String(100), default="")
    notes: Mapped[str] = mapped_column(Text, default="")

    @validates("name")
    def _set_name_key(self, key: str, value: str) -> str:
        self.name_key = normalize_name(value)
        return value

    def __repr__(self) -> str:
        return f"<Company {self.name!r}>"
