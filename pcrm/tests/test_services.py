"""Tests for local mutation services and their outbox coupling."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pcrm.database import flush
from pcrm.errors import StorageError
from pcrm.models.company import Company
from pcrm.models.contact import Contact
from pcrm.models.deal import Deal
from pcrm.models.relationship import Relationship
from pcrm.schemas.sync import VaultSyncResult
from pcrm.services import (
    company_svc,
    contact_svc,
    deal_svc,
    interaction_svc,
    relationship_svc,
    suggestion_svc,
)
from pcrm.sync.change_queue import ChangeQueue
from pcrm.sync.outbox import pending_changes, pending_count


def _open(queue: ChangeQueue, item) -> dict:
    plaintext = queue.codec.open(item.entity, item.op, item.entity_id, item.payload.decode("ascii"))
    return json.loads(plaintext)


@pytest.mark.asyncio
async def test_create_contact_enqueues_one_item(db: AsyncSession, queue: ChangeQueue):
    company = await company_svc.create_company(db, name="Acme", queue=queue)
    contact = await contact_svc.create_contact(
        db, name="Alice", email="Alice@Acme.com", company_id=company.id, queue=queue
    )

    items = await pending_changes(db)
    assert [i.entity for i in items] == ["company", "contact"]
    payload = _open(queue, items[1])
    assert payload["id"] == str(contact.id)
    assert payload["email"] == "alice@acme.com"
    assert payload["company_name"] == "Acme"


@pytest.mark.asyncio
async def test_create_contact_without_queue_writes_no_outbox(db: AsyncSession):
    await contact_svc.create_contact(db, name="Solo")
    assert await pending_count(db) == 0


@pytest.mark.asyncio
async def test_failed_write_leaves_no_outbox_item(db: AsyncSession, queue: ChangeQueue):
    with pytest.raises(StorageError):
        # Unknown company id violates the foreign key.
        await contact_svc.create_contact(db, name="Broken", company_id=uuid.uuid4(), queue=queue)

    assert await pending_count(db) == 0
    assert (await db.execute(select(func.count()).select_from(Contact))).scalar() == 0


@pytest.mark.asyncio
async def test_duplicate_email_rejected(db: AsyncSession):
    await contact_svc.create_contact(db, name="A", email="dup@x.io")
    with pytest.raises(ValueError):
        await contact_svc.create_contact(db, name="B", email="DUP@x.io")


@pytest.mark.asyncio
async def test_duplicate_company_name_rejected(db: AsyncSession):
    await company_svc.create_company(db, name="Initech")
    with pytest.raises(ValueError):
        await company_svc.create_company(db, name="initech")


@pytest.mark.asyncio
async def test_update_and_delete_contact_enqueue(db: AsyncSession, queue: ChangeQueue):
    contact = await contact_svc.create_contact(db, name="Bob", queue=queue)
    await contact_svc.update_contact(db, contact.id, phone="555", queue=queue)
    assert await contact_svc.delete_contact(db, contact.id, queue=queue)
    assert not await contact_svc.delete_contact(db, contact.id, queue=queue)

    items = await pending_changes(db)
    assert [i.op for i in items] == ["upsert", "upsert", "delete"]
    assert _open(queue, items[1])["phone"] == "555"


@pytest.mark.asyncio
async def test_find_contact_by_email_and_name(db: AsyncSession):
    contact = await contact_svc.create_contact(db, name="  Carol King ", email="carol@x.io")
    assert (await contact_svc.find_contact_by_email(db, "CAROL@x.io")).id == contact.id
    assert (await contact_svc.find_contact_by_name(db, "carol   king")).id == contact.id


def test_bump_last_contacted_is_monotonic():
    contact = Contact(id=uuid.uuid4(), name="T")
    later = datetime(2025, 6, 1, tzinfo=timezone.utc)
    earlier = datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert contact_svc.bump_last_contacted(contact, later)
    assert not contact_svc.bump_last_contacted(contact, earlier)
    assert not contact_svc.bump_last_contacted(contact, None)
    assert contact.last_contacted_at == later


@pytest.mark.asyncio
async def test_ensure_company_by_name(db: AsyncSession):
    first, created = await company_svc.ensure_company_by_name(db, "Hooli")
    again, created_again = await company_svc.ensure_company_by_name(db, "HOOLI")
    assert created and not created_again
    assert again.id == first.id


@pytest.mark.asyncio
async def test_deal_lifecycle_and_note(db: AsyncSession, queue: ChangeQueue):
    company = await company_svc.create_company(db, name="Umbrella")
    contact = await contact_svc.create_contact(db, name="Wes", company_id=company.id)
    deal = await deal_svc.create_deal(
        db, title="Vaccines", amount=5000, currency="USD", company_id=company.id,
        contact_id=contact.id, queue=queue,
    )
    assert deal.last_activity_at >= deal.created_at

    when = datetime(2099, 1, 1, tzinfo=timezone.utc)
    note = await deal_svc.add_deal_note(db, deal.id, "Call went well", created_at=when, queue=queue)
    assert note is not None
    assert deal.last_activity_at == when
    assert contact.last_contacted_at == when

    items = await pending_changes(db)
    note_payload = _open(queue, items[-1])
    assert note_payload["deal_title"] == "Vaccines"
    assert note_payload["deal_company_name"] == "Umbrella"
    assert note_payload["created_at"] == "2099-01-01T00:00:00Z"

    updated = await deal_svc.update_deal(db, deal.id, stage="negotiation", queue=queue)
    assert updated.stage == "negotiation"
    with pytest.raises(ValueError):
        await deal_svc.update_deal(db, deal.id, stage="bogus")


@pytest.mark.asyncio
async def test_create_deal_requires_company(db: AsyncSession):
    with pytest.raises(ValueError):
        await deal_svc.create_deal(db, title="No company", company_id=uuid.uuid4())
    assert await deal_svc.add_deal_note(db, uuid.uuid4(), "x") is None


@pytest.mark.asyncio
async def test_delete_company_cascades_deals(db: AsyncSession):
    company = await company_svc.create_company(db, name="Doomed")
    deal = await deal_svc.create_deal(db, title="D", company_id=company.id)
    assert await company_svc.delete_company(db, company.id)

    remaining = (await db.execute(select(func.count()).select_from(Deal).where(Deal.id == deal.id))).scalar()
    assert remaining == 0


@pytest.mark.asyncio
async def test_relationship_canonical_and_unique(db: AsyncSession, queue: ChangeQueue):
    a = await contact_svc.create_contact(db, name="A")
    b = await contact_svc.create_contact(db, name="B")
    rel = await relationship_svc.create_relationship(db, b.id, a.id, context="school", queue=queue)
    assert str(rel.contact_id_1) < str(rel.contact_id_2)

    with pytest.raises(ValueError):
        await relationship_svc.create_relationship(db, a.id, b.id)
    other = await relationship_svc.create_relationship(db, a.id, b.id, relationship_type="family")
    assert other.id != rel.id
    with pytest.raises(ValueError):
        await relationship_svc.create_relationship(db, a.id, a.id)

    assert len(await relationship_svc.list_relationships(db, a.id)) == 2
    assert await relationship_svc.delete_relationship(db, rel.id, queue=queue)
    assert (await db.execute(select(func.count()).select_from(Relationship))).scalar() == 1


@pytest.mark.asyncio
async def test_log_interaction_updates_contact_and_cadence(db: AsyncSession, queue: ChangeQueue):
    contact = await contact_svc.create_contact(db, name="Fay")
    await interaction_svc.set_contact_cadence(db, contact.id, cadence_days=7, relationship_strength="strong")

    when = datetime(2025, 4, 10, 15, 0, tzinfo=timezone.utc)
    log = await interaction_svc.log_interaction(
        db, contact.id, "call", interacted_at=when, sentiment="neutral", queue=queue
    )
    cadence = await interaction_svc.get_cadence(db, contact.id)
    assert contact.last_contacted_at == when
    assert cadence.last_interaction_date == when
    assert cadence.next_followup_date == datetime(2025, 4, 17, 15, 0, tzinfo=timezone.utc)
    assert [i.id for i in await interaction_svc.list_interactions(db, contact.id)] == [log.id]

    with pytest.raises(ValueError):
        await interaction_svc.log_interaction(db, contact.id, "carrier pigeon")


@pytest.mark.asyncio
async def test_create_suggestion_is_queued(db: AsyncSession, queue: ChangeQueue):
    suggestion = await suggestion_svc.create_suggestion(
        db, "followup", "Ping Alice", confidence=0.8, source_service="cadence", queue=queue
    )
    items = await pending_changes(db)
    assert items[0].entity == "suggestion"
    assert _open(queue, items[0])["content"] == "Ping Alice"
    assert [s.id for s in await suggestion_svc.list_suggestions(db)] == [suggestion.id]


@pytest.mark.asyncio
async def test_after_commit_runs_sync_when_enabled(db: AsyncSession, codec, caplog):
    calls = []

    async def failing_runner():
        calls.append(1)
        return VaultSyncResult(errors=["vault down"])

    queue = ChangeQueue(codec, auto_sync=True, sync_runner=failing_runner)
    contact = await contact_svc.create_contact(db, name="Kept", queue=queue)

    assert calls == [1]
    assert contact.id is not None
    assert await pending_count(db) == 1
    assert "vault down" in caplog.text


@pytest.mark.asyncio
async def test_company_lookup_folds_non_ascii_case(db: AsyncSession):
    company = await company_svc.create_company(db, name="Ångström Labs")

    found, created = await company_svc.ensure_company_by_name(db, "ÅNGSTRÖM   labs")
    assert not created
    assert found.id == company.id
    with pytest.raises(ValueError):
        await company_svc.create_company(db, name="ångström labs")


@pytest.mark.asyncio
async def test_company_name_key_is_unique(db: AsyncSession):
    db.add(Company(id=uuid.uuid4(), name="ÜBER GmbH"))
    db.add(Company(id=uuid.uuid4(), name="über  gmbh"))
    with pytest.raises(StorageError):
        await flush(db)


@pytest.mark.asyncio
async def test_contact_lookup_keys_follow_renames(db: AsyncSession):
    contact = await contact_svc.create_contact(db, name="Bob  Smith", email="Ünal@Firma.de")
    assert (await contact_svc.find_contact_by_name(db, "BOB SMITH")).id == contact.id
    assert (await contact_svc.find_contact_by_email(db, "ünal@firma.de")).id == contact.id
    with pytest.raises(ValueError):
        await contact_svc.create_contact(db, name="Dup", email="ÜNAL@FIRMA.DE")

    await contact_svc.update_contact(db, contact.id, name="Robert Smith", email="rs@firma.de")
    assert await contact_svc.find_contact_by_name(db, "bob smith") is None
    assert (await contact_svc.find_contact_by_name(db, "robert smith")).id == contact.id
    assert await contact_svc.find_contact_by_email(db, "ünal@firma.de") is None
