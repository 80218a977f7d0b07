"""Tests for the Gmail importer."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pcrm.models.company import Company
from pcrm.models.contact import Contact
from pcrm.models.interaction import InteractionLog
from pcrm.services import contact_svc
from pcrm.sync.import_mail import (
    company_name_from_domain,
    import_message,
    is_consumer_domain,
    parse_address_list,
    parse_message_date,
)
from pcrm.sync.matcher import build_matcher


def _message(msg_id: str, **headers: str) -> dict:
    return {
        "id": msg_id,
        "payload": {"headers": [{"name": k.capitalize(), "value": v} for k, v in headers.items()]},
    }


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar()


@pytest.mark.parametrize(
    "domain,expected",
    [
        ("tech-startup.com", "Tech Startup"),
        ("mixed.CASE.net", "Mixed CASE"),
        ("UPPERCASE.org", "UPPERCASE"),
        ("simple", "Simple"),
    ],
)
def test_company_name_from_domain(domain, expected):
    assert company_name_from_domain(domain) == expected


def test_consumer_domains():
    assert is_consumer_domain("Gmail.com")
    assert is_consumer_domain("icloud.com")
    assert not is_consumer_domain("acme.com")


def test_parse_address_list():
    parsed = parse_address_list('"Smith, Jo" <Jo@Acme.com>, bob@x.io', None, "not-an-address")
    assert parsed == [("Smith, Jo", "jo@acme.com", "acme.com"), ("", "bob@x.io", "x.io")]


def test_parse_message_date_formats():
    expected = datetime(2025, 3, 4, 9, 30, tzinfo=timezone.utc)
    assert parse_message_date("Tue, 04 Mar 2025 10:30:00 +0100") == expected
    assert parse_message_date("Tue, 04 Mar 2025 09:30:00 +0000 (UTC)") == expected
    assert parse_message_date("2025-03-04T09:30:00Z") == expected

    before = datetime.now(timezone.utc)
    assert parse_message_date("garbage") >= before
    assert parse_message_date(None) >= before


@pytest.mark.asyncio
async def test_import_message_creates_contacts_companies_and_interactions(db: AsyncSession):
    matcher = await build_matcher(db)
    message = _message(
        "m1",
        **{
            "from": "Jo Smith <jo@tech-startup.com>",
            "to": "me@home.io, pal@gmail.com",
            "date": "Tue, 04 Mar 2025 09:30:00 +0000",
            "subject": "Hello",
        },
    )

    outcome, entity_type, first_log = await import_message(
        db, matcher, message, self_address="me@home.io"
    )
    await db.commit()

    assert outcome == "created"
    assert entity_type == "interaction_log"
    assert first_log is not None
    assert await _count(db, Contact) == 2
    assert await _count(db, InteractionLog) == 2
    companies = (await db.execute(select(Company.name))).scalars().all()
    assert companies == ["Tech Startup"]

    jo = await contact_svc.find_contact_by_email(db, "jo@tech-startup.com")
    assert jo.name == "Jo Smith"
    assert jo.last_contacted_at == datetime(2025, 3, 4, 9, 30, tzinfo=timezone.utc)
    log = await db.get(InteractionLog, first_log)
    assert log.metadata_json == {"message_id": "m1", "subject": "Hello", "direction": "incoming"}


@pytest.mark.asyncio
async def test_repeated_sender_in_batch_resolves_to_one_contact(db: AsyncSession):
    matcher = await build_matcher(db)
    for msg_id in ("a", "b"):
        await import_message(
            db, matcher, _message(msg_id, **{"from": "Repeat <r@corp.io>", "to": "me@home.io"}),
            self_address="me@home.io",
        )
    await db.commit()

    assert await _count(db, Contact) == 1
    assert await _count(db, InteractionLog) == 2
    assert await _count(db, Company) == 1


@pytest.mark.asyncio
async def test_outgoing_message_and_existing_contact(db: AsyncSession):
    known = await contact_svc.create_contact(db, name="Known", email="known@corp.io")
    matcher = await build_matcher(db)

    outcome, _, log_id = await import_message(
        db, matcher, _message("m2", **{"from": "Me <ME@home.io>", "to": "known@corp.io"}),
        self_address="me@home.io",
    )
    await db.commit()

    assert outcome == "updated"
    log = await db.get(InteractionLog, log_id)
    assert log.contact_id == known.id
    assert log.metadata_json["direction"] == "outgoing"


@pytest.mark.asyncio
async def test_message_only_to_self_is_skipped(db: AsyncSession):
    matcher = await build_matcher(db)
    outcome, _, log_id = await import_message(
        db, matcher, _message("m3", **{"from": "me@home.io", "to": "me@home.io"}),
        self_address="me@home.io",
    )
    assert outcome == "skipped"
    assert log_id is None
