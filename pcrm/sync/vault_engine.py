"""Vault sync engine - one cycle pushes the outbox, pulls remote changes, advances the cursor."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..database import commit
from ..errors import (
    AuthError,
    CodecError,
    RemoteRejectedError,
    StorageError,
    SyncError,
    TransportError,
    SyncInProgressError,
)
from ..models.outbox import OutboxItem
from ..schemas.payloads import Change, OpenedChange
from ..schemas.sync import SyncEvent, VaultSyncResult
from ..vault_config import VaultConfig, load_vault_config, save_vault_config
from .change_queue import ChangeQueue
from .codec import PayloadCodec
from .outbox import (
    acknowledge,
    dequeue_batch,
    get_last_synced_seq,
    pending_changes,
    pending_count,
    set_last_synced_seq,
    to_push_item,
)
from .reconciler import apply_change
from .vault_client import VaultClient, VaultTransport

logger = logging.getLogger(__name__)

TokenRefreshCallback = Callable[[str, str, datetime], object]
ProgressCallback = Callable[[SyncEvent], object]

# One cycle at a time per local store, keyed by database URL.
_cycle_locks: dict[str, threading.Lock] = {}
_cycle_locks_guard = threading.Lock()


@contextmanager
def cycle_mutex(key: str) -> Iterator[None]:
    with _cycle_locks_guard:
        lock = _cycle_locks.setdefault(key, threading.Lock())
    if not lock.acquire(blocking=False):
        raise SyncInProgressError(f"A sync cycle is already running for {key}")
    try:
        yield
    finally:
        lock.release()


def reset_cycle_locks() -> None:
    """Drop all cycle locks. Called on shutdown."""
    with _cycle_locks_guard:
        _cycle_locks.clear()


class VaultSyncEngine:
    """Bidirectional pump between the local outbox/store and the vault.

    ``run_cycle`` never raises SyncError subclasses except SyncInProgressError;
    failures end the cycle early and are reported in ``VaultSyncResult.errors``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transport: VaultTransport,
        codec: PayloadCodec,
        config: VaultConfig,
        *,
        on_token_refresh: TokenRefreshCallback | None = None,
        on_progress: ProgressCallback | None = None,
        batch_size: int | None = None,
        pull_limit: int | None = None,
        lock_key: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.transport = transport
        self.codec = codec
        self.config = config
        self.on_token_refresh = on_token_refresh
        self.on_progress = on_progress
        self.batch_size = batch_size or settings.vault_push_batch_size
        self.pull_limit = pull_limit or settings.vault_pull_limit
        self.lock_key = lock_key or settings.database_url
        self._auth_retried = False

    # --- status helpers ---

    async def pending_count(self) -> int:
        async with self.session_factory() as db:
            return await pending_count(db)

    async def pending_changes(self, limit: int = 1000) -> list[OutboxItem]:
        async with self.session_factory() as db:
            return await pending_changes(db, limit)

    async def last_synced_seq(self) -> int:
        async with self.session_factory() as db:
            return await get_last_synced_seq(db)

    # --- cycle ---

    async def run_cycle(self, cancel: asyncio.Event | None = None) -> VaultSyncResult:
        with cycle_mutex(self.lock_key):
            self._auth_retried = False
            result = VaultSyncResult()
            async with self.session_factory() as db:
                try:
                    result.last_synced_seq = await get_last_synced_seq(db)
                    await self._refresh_if_due()
                    await self._push(db, result)
                    await self._pull(db, result, cancel)
                except SyncError as exc:
                    result.errors.append(str(exc))
                    self._emit("cycle", "error", str(exc))
                    logger.warning("Vault sync cycle aborted: %s", exc)

        logger.info(
            "Vault sync: pushed %d, pulled %d, applied %d, cursor %d%s",
            result.pushed,
            result.pulled,
            result.applied,
            result.last_synced_seq,
            " (cancelled)" if result.cancelled else "",
        )
        return result

    def _emit(self, phase: str, kind: str, detail: str = "", seq: int | None = None) -> None:
        if self.on_progress is not None:
            self.on_progress(SyncEvent(phase=phase, kind=kind, detail=detail, seq=seq))

    async def _refresh_if_due(self) -> None:
        if self.config.needs_refresh():
            await self._refresh()

    async def _refresh(self) -> None:
        if not self.config.refresh_token:
            raise AuthError("No refresh token available")
        self._emit("auth", "start")
        try:
            grant = await self.transport.refresh_token(self.config.refresh_token)
        except RemoteRejectedError as exc:
            raise AuthError(f"Token refresh rejected: {exc.message}", status_code=exc.status_code) from exc
        self.config.update_tokens(grant.token, grant.refresh_token, grant.expires_at)
        self.transport.set_token(grant.token)
        if self.on_token_refresh is not None:
            try:
                outcome = self.on_token_refresh(grant.token, grant.refresh_token, grant.expires_at)
                if inspect.isawaitable(outcome):
                    await outcome
            except OSError as exc:
                logger.warning("Failed to persist refreshed vault token: %s", exc)
        self._emit("auth", "end")

    async def _call(self, fn):
        """Run a transport call, refreshing once on a 401 within this cycle."""
        try:
            return await fn()
        except AuthError as exc:
            if exc.status_code != 401 or self._auth_retried or not self.config.refresh_token:
                raise
            self._auth_retried = True
            logger.info("Vault returned 401; refreshing token and retrying")
            await self._refresh()
            return await fn()

    async def _push(self, db: AsyncSession, result: VaultSyncResult) -> None:
        self._emit("push", "start")
        while True:
            batch = await dequeue_batch(db, self.batch_size)
            if not batch:
                break
            items = [to_push_item(item) for item in batch]
            ack = await self._call(lambda: self.transport.push(items))
            if ack < batch[0].seq:
                raise TransportError(f"Vault acknowledged {ack}, expected >= {batch[0].seq}")
            ack = min(ack, batch[-1].seq)
            removed = await acknowledge(db, ack)
            result.pushed += removed
            self._emit("push", "item", f"acknowledged {removed}", seq=ack)
        self._emit("push", "end")

    def _open(self, change: Change) -> OpenedChange:
        plaintext = self.codec.open(change.entity, change.op, change.entity_id, change.payload)
        return OpenedChange(
            seq=change.seq,
            entity=change.entity,
            entity_id=change.entity_id,
            op=change.op,
            payload=plaintext,
        )

    async def _apply_one(self, db: AsyncSession, opened: OpenedChange) -> bool:
        try:
            applied = await apply_change(db, opened)
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StorageError(f"Applying {opened.entity}:{opened.entity_id} failed: {exc}") from exc
        except SyncError:
            await db.rollback()
            raise
        await commit(db)
        return applied

    async def _pull(
        self, db: AsyncSession, result: VaultSyncResult, cancel: asyncio.Event | None
    ) -> None:
        self._emit("pull", "start")
        since = await get_last_synced_seq(db)
        while True:
            batch = await self._call(lambda: self.transport.pull(since, self.pull_limit))
            if not batch.changes:
                break

            staged = since
            for change in sorted(batch.changes, key=lambda c: c.seq):
                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    self._emit("pull", "end", "cancelled")
                    return
                if change.seq <= staged:
                    continue
                try:
                    opened = self._open(change)
                except CodecError:
                    self._emit("pull", "error", f"decrypt failed at seq {change.seq}", seq=change.seq)
                    raise
                applied = await self._apply_one(db, opened)
                staged = change.seq
                result.pulled += 1
                if applied:
                    result.applied += 1
                self._emit("pull", "item", f"{change.op} {change.entity}", seq=change.seq)

            if staged > since:
                await set_last_synced_seq(db, staged)
                await commit(db)
                since = staged
                result.last_synced_seq = staged
                self._emit("cursor", "item", seq=staged)
            if not batch.has_more:
                break
        self._emit("pull", "end")


def make_codec(config: VaultConfig) -> PayloadCodec:
    return PayloadCodec.from_seed(config.derived_key, app_id=settings.vault_app_id, user_id=config.user_id)


def make_change_queue(
    config: VaultConfig | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> ChangeQueue | None:
    """Change queue for local services, or None when the vault is not configured."""
    config = config or load_vault_config()
    if not config.is_configured:
        return None

    async def _runner() -> VaultSyncResult:
        return await sync_now(config, session_factory=session_factory)

    return ChangeQueue(
        make_codec(config),
        auto_sync=settings.auto_sync_on_write or config.auto_sync,
        sync_runner=_runner,
    )


async def sync_now(
    config: VaultConfig | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    config_path: Path | str | None = None,
    on_progress: ProgressCallback | None = None,
    cancel: asyncio.Event | None = None,
) -> VaultSyncResult:
    """Run one cycle against the configured vault, persisting refreshed tokens."""
    config = config or load_vault_config(config_path)
    if not config.can_sync:
        return VaultSyncResult(errors=["Vault sync is not configured"])
    try:
        codec = make_codec(config)
    except CodecError as exc:
        return VaultSyncResult(errors=[str(exc)])
    if session_factory is None:
        from ..database import async_session_factory as session_factory

    def _persist(token: str, refresh_token: str, expires_at: datetime) -> None:
        save_vault_config(config, config_path)

    async with VaultClient(
        config.server or settings.vault_server,
        config.token,
        user_id=config.user_id,
        device_id=config.device_id,
    ) as client:
        engine = VaultSyncEngine(
            session_factory,
            client,
            codec,
            config,
            on_token_refresh=_persist,
            on_progress=on_progress,
        )
        return await engine.run_cycle(cancel)
