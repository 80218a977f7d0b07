"""Async test fixtures for the sync core using in-memory SQLite."""

from __future__ import annotations

import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from pcrm.database import create_store_engine, init_db, make_session_factory
from pcrm.schemas.payloads import Change, WirePayload
from pcrm.sync.change_queue import ChangeQueue
from pcrm.sync.codec import PayloadCodec, encode_payload
from pcrm.vault_config import VaultConfig

TEST_SEED = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_APP_ID = "e9240d3f-967d-485e-8c63-e0adf7eecca0"
TEST_USER_ID = "user-1"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture
async def engine():
    eng = create_store_engine("sqlite+aiosqlite:///:memory:", echo=False)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def codec() -> PayloadCodec:
    return PayloadCodec.from_seed(TEST_SEED, app_id=TEST_APP_ID, user_id=TEST_USER_ID)


@pytest.fixture
def queue(codec) -> ChangeQueue:
    return ChangeQueue(codec, auto_sync=False)


@pytest.fixture
def vault_config() -> VaultConfig:
    return VaultConfig(
        server="https://vault.test",
        user_id=TEST_USER_ID,
        device_id="device-1",
        token="tok-1",
        refresh_token="refresh-1",
        token_expires="2099-01-01T00:00:00Z",
        derived_key=TEST_SEED,
    )


def new_id() -> str:
    return str(uuid.uuid4())


def sealed_change(
    codec: PayloadCodec, seq: int, entity: str, payload: WirePayload, op: str = "upsert"
) -> Change:
    """A remote change as the vault would serve it."""
    return Change(
        seq=seq,
        entity=entity,
        entity_id=payload.id,
        op=op,
        payload=codec.seal(entity, op, payload.id, encode_payload(payload)),
    )
