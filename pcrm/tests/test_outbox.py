"""Tests for the outbox queue and vault cursor."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from pcrm.errors import PayloadError
from pcrm.sync.outbox import (
    acknowledge,
    dequeue_batch,
    enqueue,
    get_last_synced_seq,
    pending_changes,
    pending_count,
    set_last_synced_seq,
)


@pytest.mark.asyncio
async def test_enqueue_assigns_increasing_seq(db: AsyncSession):
    first = await enqueue(db, "contact", "id-1", "upsert", "c2VhbGVk")
    second = await enqueue(db, "company", "id-2", "delete", "c2VhbGVk")
    await db.commit()

    assert second.seq > first.seq
    assert await pending_count(db) == 2


@pytest.mark.asyncio
async def test_dequeue_batch_in_seq_order_without_removing(db: AsyncSession):
    for i in range(5):
        await enqueue(db, "contact", f"id-{i}", "upsert", "eA==")
    await db.commit()

    batch = await dequeue_batch(db, 3)
    assert [item.entity_id for item in batch] == ["id-0", "id-1", "id-2"]
    assert await pending_count(db) == 5


@pytest.mark.asyncio
async def test_acknowledge_removes_up_to_seq(db: AsyncSession):
    items = [await enqueue(db, "contact", f"id-{i}", "upsert", "eA==") for i in range(4)]
    await db.commit()

    removed = await acknowledge(db, items[1].seq)
    assert removed == 2
    remaining = await pending_changes(db)
    assert [item.seq for item in remaining] == [items[2].seq, items[3].seq]
    assert all(item.seq > items[1].seq for item in remaining)


@pytest.mark.asyncio
async def test_seq_not_reused_after_acknowledge(db: AsyncSession):
    first = await enqueue(db, "contact", "a", "upsert", "eA==")
    await db.commit()
    await acknowledge(db, first.seq)

    second = await enqueue(db, "contact", "b", "upsert", "eA==")
    await db.commit()
    assert second.seq > first.seq


@pytest.mark.asyncio
async def test_rollback_discards_enqueued_item(db: AsyncSession):
    await enqueue(db, "contact", "a", "upsert", "eA==")
    await db.rollback()
    assert await pending_count(db) == 0


@pytest.mark.asyncio
async def test_enqueue_rejects_unknown_op(db: AsyncSession):
    with pytest.raises(PayloadError):
        await enqueue(db, "contact", "a", "merge", "eA==")


@pytest.mark.asyncio
async def test_cursor_defaults_to_zero_and_persists(db: AsyncSession):
    assert await get_last_synced_seq(db) == 0
    await set_last_synced_seq(db, 42)
    await db.commit()
    assert await get_last_synced_seq(db) == 42
    await set_last_synced_seq(db, 43)
    await db.commit()
    assert await get_last_synced_seq(db) == 43
