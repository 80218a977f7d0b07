"""Mail importer - contacts, companies and email interactions from message headers."""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import flush
from ..models.company import Company
from ..models.contact import Contact
from ..models.interaction import InteractionLog
from ..schemas.payloads import (
    ENTITY_COMPANY,
    ENTITY_CONTACT,
    ENTITY_INTERACTION_LOG,
    OP_UPSERT,
    parse_timestamp,
)
from ..schemas.sync import SyncResult
from ..services.company_svc import find_company_by_name
from ..services.interaction_svc import record_interaction
from .change_queue import ChangeQueue, company_payload, contact_payload, interaction_payload
from .google_client import GmailClient
from .matcher import IdentityMatcher, build_matcher, normalize_email
from .provider_pull import run_pull_cycle

logger = logging.getLogger(__name__)

SERVICE_NAME = "gmail"

CONSUMER_DOMAINS = frozenset({
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "hotmail.com",
    "outlook.com",
    "live.com",
    "msn.com",
    "icloud.com",
    "me.com",
    "mac.com",
    "aol.com",
    "protonmail.com",
    "pm.me",
})

_TRAILING_COMMENT = re.compile(r"\s*\([^()]*\)\s*$")


def is_consumer_domain(domain: str) -> bool:
    return domain.strip().lower() in CONSUMER_DOMAINS


def company_name_from_domain(domain: str) -> str:
    """``tech-startup.com`` -> ``Tech Startup``; the rest of each token keeps its case."""
    labels = [label for label in domain.strip().split(".") if label]
    if len(labels) > 1:
        labels = labels[:-1]
    tokens = [tok for label in labels for tok in label.split("-") if tok]
    return " ".join(tok[:1].upper() + tok[1:] for tok in tokens)


def parse_address_list(*headers: str | None) -> list[tuple[str, str, str]]:
    """(display_name, email, domain) for each address in the given headers."""
    parsed = []
    for name, addr in getaddresses([h for h in headers if h]):
        email = normalize_email(addr)
        if "@" not in email:
            continue
        parsed.append((name.strip(), email, email.rsplit("@", 1)[1]))
    return parsed


def parse_message_date(raw: str | None) -> datetime:
    """RFC 2822 (with or without a trailing zone comment) or RFC 3339; falls back to now."""
    text = (raw or "").strip()
    if text:
        try:
            parsed = parsedate_to_datetime(_TRAILING_COMMENT.sub("", text))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (TypeError, ValueError, IndexError):
            pass
        try:
            return parse_timestamp(text)
        except ValueError:
            pass
    logger.debug("Unparseable message date %r; using current time", raw)
    return datetime.now(timezone.utc)


def message_headers(message: dict) -> dict[str, str]:
    headers = (message.get("payload") or {}).get("headers") or []
    return {
        h["name"].lower(): h.get("value", "")
        for h in headers
        if isinstance(h, dict) and isinstance(h.get("name"), str)
    }


async def ensure_company_from_domain(
    db: AsyncSession, domain: str, *, queue: ChangeQueue | None = None
) -> Company | None:
    """Company derived from a work domain; None for consumer mail providers.

    No commit is performed here; callers batch commits.
    """
    domain = domain.strip().lower()
    if not domain or is_consumer_domain(domain):
        return None
    name = company_name_from_domain(domain)
    if not name:
        return None
    company = await find_company_by_name(db, name)
    if company:
        return company
    company = Company(id=uuid.uuid4(), name=name, domain=domain)
    db.add(company)
    await flush(db)
    if queue:
        await queue.record(db, ENTITY_COMPANY, company.id, OP_UPSERT, company_payload(company))
    return company


async def find_or_create_email_contact(
    db: AsyncSession,
    matcher: IdentityMatcher,
    display_name: str,
    email: str,
    domain: str,
    *,
    queue: ChangeQueue | None = None,
) -> tuple[Contact, bool]:
    """Match by email only; create on miss. Returns (contact, created).

    New contacts are registered with the matcher so repeats in the same
    batch resolve to them. No commit is performed here.
    """
    existing = matcher.match_email(email)
    if existing:
        return existing, False

    company = await ensure_company_from_domain(db, domain, queue=queue)
    contact = Contact(
        id=uuid.uuid4(),
        name=display_name.strip() or email.split("@", 1)[0],
        email=normalize_email(email),
        company_id=company.id if company else None,
    )
    db.add(contact)
    await flush(db)
    matcher.add(contact)
    if queue:
        payload = contact_payload(contact, company.name if company else "")
        await queue.record(db, ENTITY_CONTACT, contact.id, OP_UPSERT, payload)
    return contact, True


async def import_message(
    db: AsyncSession,
    matcher: IdentityMatcher,
    message: dict,
    *,
    self_address: str | None = None,
    queue: ChangeQueue | None = None,
) -> tuple[str, str, uuid.UUID | None]:
    """One email interaction per counterpart address on the message.

    Outcome is ``created`` when the message introduced a new contact,
    ``updated`` when it only added interactions to known contacts.
    """
    headers = message_headers(message)
    own = normalize_email(self_address)
    sender = parse_address_list(headers.get("from"))
    recipients = parse_address_list(headers.get("to"), headers.get("cc"))
    outgoing = bool(own) and any(email == own for _, email, _ in sender)

    interacted_at = parse_message_date(headers.get("date"))
    first_log: uuid.UUID | None = None
    created_any = False
    seen: set[str] = set()
    for display_name, email, domain in sender + recipients:
        if email == own or email in seen:
            continue
        seen.add(email)
        contact, created = await find_or_create_email_contact(
            db, matcher, display_name, email, domain, queue=queue
        )
        created_any = created_any or created
        log = await record_interaction(
            db,
            contact,
            InteractionLog(
                id=uuid.uuid4(),
                interaction_type="email",
                interacted_at=interacted_at,
                metadata_json={
                    "message_id": message.get("id"),
                    "subject": headers.get("subject", ""),
                    "direction": "outgoing" if outgoing else "incoming",
                },
            ),
        )
        if queue:
            await queue.record(
                db, ENTITY_INTERACTION_LOG, log.id, OP_UPSERT, interaction_payload(log, contact.name)
            )
        first_log = first_log or log.id

    if first_log is None:
        return "skipped", "interaction_log", None
    return ("created" if created_any else "updated"), "interaction_log", first_log


async def import_mail(
    db: AsyncSession,
    client: GmailClient,
    *,
    initial: bool = False,
    self_address: str | None = None,
    queue: ChangeQueue | None = None,
) -> SyncResult:
    """Run one Gmail pull cycle."""
    matcher = await build_matcher(db)
    self_address = self_address or settings.mail_self_address

    async def _process(session: AsyncSession, message: dict):
        return await import_message(
            session, matcher, message, self_address=self_address, queue=queue
        )

    return await run_pull_cycle(
        db, SERVICE_NAME, client.list_messages, _process, initial=initial
    )
