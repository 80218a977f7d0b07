"""External provider sync state and import log.

The import log is what gives at-most-once ingestion per external record:
one row per (source_service, source_external_id).
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, UTCDateTime

PROVIDER_STATUSES = frozenset({"idle", "syncing", "error"})


class ProviderSyncState(TimestampMixin, Base):
    __tablename__ = "provider_sync_state"

    service_name: Mapped[str] = mapped_column(String(50), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), default="idle")
    last_sync_time: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    last_sync_token: Mapped[str | None] = mapped_column(Text, default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<ProviderSyncState {self.service_name} {self.status}>"


class ProviderSyncLog(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "provider_sync_log"
    __table_args__ = (
        UniqueConstraint(
            "source_service", "source_external_id", name="uq_provider_log_service_external"
        ),
    )

    source_service: Mapped[str] = mapped_column(String(50), index=True)
    source_external_id: Mapped[str] = mapped_column(String(255))
    entity_type: Mapped[str] = mapped_column(String(50))
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, default=None)

    def __repr__(self) -> str:
        return f"<ProviderSyncLog {self.source_service}:{self.source_external_id}>"
