"""Tests for the local store wiring."""

from __future__ import annotations

import pytest
from sqlalchemy import text

from pcrm.database import create_store_engine, init_db, shutdown
from pcrm.errors import SyncInProgressError
from pcrm.sync.vault_engine import _cycle_locks, cycle_mutex


@pytest.mark.asyncio
async def test_foreign_keys_enforced_on_sqlite(engine):
    async with engine.connect() as conn:
        assert (await conn.execute(text("PRAGMA foreign_keys"))).scalar() == 1


@pytest.mark.asyncio
async def test_shutdown_drops_cycle_locks():
    eng = create_store_engine("sqlite+aiosqlite:///:memory:", echo=False)
    await init_db(eng)
    with cycle_mutex("some-store"):
        with pytest.raises(SyncInProgressError):
            with cycle_mutex("some-store"):
                pass
    assert "some-store" in _cycle_locks

    await shutdown(eng)
    assert _cycle_locks == {}
