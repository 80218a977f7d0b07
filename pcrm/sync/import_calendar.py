"""Calendar importer - meeting interactions from Google Calendar events."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models.interaction import InteractionLog
from ..schemas.payloads import ENTITY_INTERACTION_LOG, OP_UPSERT, parse_timestamp
from ..schemas.sync import SyncResult
from ..services.interaction_svc import record_interaction
from .change_queue import ChangeQueue, interaction_payload
from .google_client import CalendarClient
from .import_mail import find_or_create_email_contact
from .matcher import IdentityMatcher, build_matcher, normalize_email
from .provider_pull import run_pull_cycle

logger = logging.getLogger(__name__)

SERVICE_NAME = "calendar"


def event_start(event: dict) -> datetime | None:
    """Start of a timed event, or midnight UTC of an all-day event."""
    start = event.get("start") or {}
    if start.get("dateTime"):
        try:
            return parse_timestamp(start["dateTime"])
        except ValueError:
            return None
    if start.get("date"):
        try:
            return datetime.combine(date.fromisoformat(start["date"]), time.min, tzinfo=timezone.utc)
        except ValueError:
            return None
    return None


async def import_event(
    db: AsyncSession,
    matcher: IdentityMatcher,
    event: dict,
    *,
    self_address: str | None = None,
    queue: ChangeQueue | None = None,
    now: datetime | None = None,
) -> tuple[str, str, uuid.UUID | None]:
    """One meeting interaction per attendee other than the calendar owner.

    Events that have not started yet are skipped; incremental syncs also
    report upcoming events, which are not interactions.
    """
    if event.get("status") == "cancelled":
        return "skipped", "interaction_log", None
    started = event_start(event)
    if started is None:
        logger.debug("Skipping event %s without a usable start time", event.get("id"))
        return "skipped", "interaction_log", None
    if started > (now or datetime.now(timezone.utc)):
        logger.debug("Skipping upcoming event %s", event.get("id"))
        return "skipped", "interaction_log", None

    own = normalize_email(self_address)
    first_log: uuid.UUID | None = None
    created_any = False
    for attendee in event.get("attendees") or []:
        email = normalize_email(attendee.get("email"))
        if not email or "@" not in email or attendee.get("self") or attendee.get("resource"):
            continue
        if email == own:
            continue
        contact, created = await find_or_create_email_contact(
            db,
            matcher,
            attendee.get("displayName") or "",
            email,
            email.rsplit("@", 1)[1],
            queue=queue,
        )
        created_any = created_any or created
        log = await record_interaction(
            db,
            contact,
            InteractionLog(
                id=uuid.uuid4(),
                interaction_type="meeting",
                interacted_at=started,
                metadata_json={
                    "event_id": event.get("id"),
                    "summary": event.get("summary", ""),
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


async def import_calendar(
    db: AsyncSession,
    client: CalendarClient,
    *,
    initial: bool = False,
    self_address: str | None = None,
    queue: ChangeQueue | None = None,
) -> SyncResult:
    """Run one Google Calendar pull cycle."""
    matcher = await build_matcher(db)
    self_address = self_address or settings.mail_self_address

    async def _process(session: AsyncSession, event: dict):
        return await import_event(session, matcher, event, self_address=self_address, queue=queue)

    return await run_pull_cycle(
        db, SERVICE_NAME, client.list_events, _process, initial=initial
    )
