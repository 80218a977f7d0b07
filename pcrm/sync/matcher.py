"""Identity matcher - resolves an external (name, email) to a local contact."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models.base import normalize_email, normalize_name
from ..models.contact import Contact

logger = logging.getLogger(__name__)


class IdentityMatcher:
    """Email-first, name-fallback lookup over a contact snapshot.

    The first contact inserted under a key wins. Later contacts sharing a
    normalized name mark that name ambiguous; lookups still return the
    first one and log a warning.
    """

    def __init__(self, contacts: Iterable[Contact] = ()) -> None:
        self._by_email: dict[str, Contact] = {}
        self._by_name: dict[str, Contact] = {}
        self._ambiguous: set[str] = set()
        for contact in contacts:
            self.add(contact)

    def add(self, contact: Contact) -> None:
        email = normalize_email(contact.email)
        if email and email not in self._by_email:
            self._by_email[email] = contact

        name = normalize_name(contact.name)
        if not name:
            return
        existing = self._by_name.get(name)
        if existing is None:
            self._by_name[name] = contact
        elif existing.id != contact.id:
            self._ambiguous.add(name)

    def is_ambiguous(self, name: str) -> bool:
        return normalize_name(name) in self._ambiguous

    def match_email(self, email: str | None) -> Contact | None:
        key = normalize_email(email)
        if not key:
            return None
        return self._by_email.get(key)

    def match(self, name: str | None, email: str | None) -> Contact | None:
        """Return the matching contact, or None when nothing matches."""
        hit = self.match_email(email)
        if hit is not None:
            return hit

        key = normalize_name(name)
        if not key:
            return None
        hit = self._by_name.get(key)
        if hit is not None and key in self._ambiguous:
            logger.warning(
                "Ambiguous name match for %r; using contact %s (first of several)", name, hit.id
            )
        return hit


async def build_matcher(db: AsyncSession, *, limit: int | None = None) -> IdentityMatcher:
    """Snapshot local contacts (oldest first) into a fresh matcher."""
    stmt = (
        select(Contact)
        .order_by(Contact.created_at, Contact.id)
        .limit(limit or settings.matcher_snapshot_limit)
    )
    contacts = (await db.execute(stmt)).scalars().all()
    return IdentityMatcher(contacts)
