"""Outbox - durable FIFO of local changes awaiting upload, plus the vault cursor.

Nothing here commits except ``acknowledge``. ``enqueue`` joins the caller's
transaction so the entity write and its outbox row land together.
"""

from __future__ import annotations

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import commit, flush
from ..errors import PayloadError
from ..models.outbox import OutboxItem, SyncStateEntry
from ..schemas.payloads import OPS, PushItem

LAST_SYNCED_SEQ_KEY = "last_synced_seq"


async def enqueue(
    db: AsyncSession, entity: str, entity_id: str, op: str, payload: str
) -> OutboxItem:
    """Append a sealed payload. Flushed so ``seq`` is assigned; no commit."""
    if op not in OPS:
        raise PayloadError(f"Unknown outbox op: {op!r}")
    item = OutboxItem(
        entity=entity,
        entity_id=entity_id,
        op=op,
        payload=payload.encode("ascii"),
    )
    db.add(item)
    await flush(db)
    return item


async def dequeue_batch(db: AsyncSession, n: int) -> list[OutboxItem]:
    """Up to ``n`` oldest items in seq order. Items stay queued until acknowledged."""
    stmt = select(OutboxItem).order_by(OutboxItem.seq).limit(n)
    return list((await db.execute(stmt)).scalars().all())


async def acknowledge(db: AsyncSession, up_to_seq: int) -> int:
    """Remove every item with seq <= up_to_seq. Returns the number removed."""
    result = await db.execute(delete(OutboxItem).where(OutboxItem.seq <= up_to_seq))
    await commit(db)
    return result.rowcount or 0


async def pending_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(OutboxItem))).scalar() or 0


async def pending_changes(db: AsyncSession, limit: int = 1000) -> list[OutboxItem]:
    return await dequeue_batch(db, limit)


def to_push_item(item: OutboxItem) -> PushItem:
    return PushItem(
        seq=item.seq,
        entity=item.entity,
        entity_id=item.entity_id,
        op=item.op,
        payload=item.payload.decode("ascii"),
    )


async def get_last_synced_seq(db: AsyncSession) -> int:
    entry = await db.get(SyncStateEntry, LAST_SYNCED_SEQ_KEY)
    if entry is None or not entry.value:
        return 0
    return int(entry.value)


async def set_last_synced_seq(db: AsyncSession, seq: int) -> None:
    """Stage the new cursor. No commit is performed here."""
    entry = await db.get(SyncStateEntry, LAST_SYNCED_SEQ_KEY)
    if entry is None:
        db.add(SyncStateEntry(key=LAST_SYNCED_SEQ_KEY, value=str(seq)))
    else:
        entry.value = str(seq)
