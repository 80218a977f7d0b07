"""Tests for the Google Calendar importer."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pcrm.models.contact import Contact
from pcrm.models.interaction import InteractionLog
from pcrm.schemas.sync import PageRequest, ProviderPage
from pcrm.services import contact_svc
from pcrm.services.interaction_svc import get_cadence
from pcrm.sync.import_calendar import event_start, import_calendar, import_event
from pcrm.sync.matcher import build_matcher


def _event(event_id: str, *attendees: dict, **extra) -> dict:
    event = {
        "id": event_id,
        "summary": "Sync",
        "start": {"dateTime": "2025-05-02T15:00:00-04:00"},
        "attendees": list(attendees),
    }
    event.update(extra)
    return event


def test_event_start_variants():
    assert event_start(_event("a")) == datetime(2025, 5, 2, 19, 0, tzinfo=timezone.utc)
    assert event_start({"start": {"date": "2025-05-02"}}) == datetime(2025, 5, 2, tzinfo=timezone.utc)
    assert event_start({"start": {}}) is None
    assert event_start({"start": {"dateTime": "bogus"}}) is None


@pytest.mark.asyncio
async def test_meeting_logged_for_each_attendee(db: AsyncSession):
    matcher = await build_matcher(db)
    event = _event(
        "ev1",
        {"email": "me@home.io", "self": True},
        {"email": "room@resource.calendar.google.com", "resource": True},
        {"email": "Ann@Client.io", "displayName": "Ann"},
        {"email": "ben@client.io"},
    )

    outcome, _, first_log = await import_event(db, matcher, event)
    await db.commit()

    assert outcome == "created"
    assert (await db.execute(select(func.count()).select_from(Contact))).scalar() == 2
    log = await db.get(InteractionLog, first_log)
    assert log.interaction_type == "meeting"
    assert log.interacted_at == datetime(2025, 5, 2, 19, 0, tzinfo=timezone.utc)
    assert log.metadata_json == {"event_id": "ev1", "summary": "Sync"}
    cadence = await get_cadence(db, log.contact_id)
    assert cadence.last_interaction_date == log.interacted_at


@pytest.mark.asyncio
async def test_cancelled_and_undated_events_are_skipped(db: AsyncSession):
    matcher = await build_matcher(db)
    attendee = {"email": "x@y.io"}
    assert (await import_event(db, matcher, _event("c", attendee, status="cancelled")))[0] == "skipped"
    assert (await import_event(db, matcher, _event("d", attendee, start={})))[0] == "skipped"
    assert (await import_event(db, matcher, _event("e")))[0] == "skipped"


@pytest.mark.asyncio
async def test_owner_address_is_not_an_attendee(db: AsyncSession):
    matcher = await build_matcher(db)
    outcome, _, _ = await import_event(
        db, matcher, _event("f", {"email": "ME@home.io"}), self_address="me@home.io"
    )
    assert outcome == "skipped"


class FakeCalendar:
    def __init__(self, events: list[dict]) -> None:
        self.events = events
        self.requests: list[PageRequest] = []

    async def list_events(self, request: PageRequest) -> ProviderPage:
        self.requests.append(request)
        return ProviderPage(items=self.events, next_sync_token="cal-token")


@pytest.mark.asyncio
async def test_import_calendar_cycle(db: AsyncSession):
    client = FakeCalendar([_event("g", {"email": "gus@corp.io"}), _event("h", {"email": "gus@corp.io"})])

    result = await import_calendar(db, client, initial=True)
    again = await import_calendar(db, client)

    assert result.created == 1
    assert result.updated == 1
    assert again.skipped == 2
    assert client.requests[1].sync_token == "cal-token"


@pytest.mark.asyncio
async def test_upcoming_event_is_not_an_interaction(db: AsyncSession):
    matcher = await build_matcher(db)
    now = datetime(2025, 5, 1, tzinfo=timezone.utc)

    outcome, _, log_id = await import_event(
        db, matcher, _event("future", {"email": "soon@corp.io"}), now=now
    )

    assert outcome == "skipped"
    assert log_id is None
    assert await contact_svc.find_contact_by_email(db, "soon@corp.io") is None
