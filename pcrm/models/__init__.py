"""Local store models - re-exports all models and Base.metadata."""

from .base import Base, UUIDMixin, TimestampMixin, UTCDateTime
from .company import Company
from .contact import Contact
from .deal import Deal, DealNote
from .relationship import Relationship
from .interaction import InteractionLog, ContactCadence
from .suggestion import Suggestion
from .outbox import OutboxItem, SyncStateEntry
from .provider_sync import ProviderSyncState, ProviderSyncLog

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "UTCDateTime",
    "Company",
    "Contact",
    "Deal",
    "DealNote",
    "Relationship",
    "InteractionLog",
    "ContactCadence",
    "Suggestion",
    "OutboxItem",
    "SyncStateEntry",
    "ProviderSyncState",
    "ProviderSyncLog",
]
