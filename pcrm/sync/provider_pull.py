"""Shared pull cycle for external providers (calendar, contacts, mail).

Token-based incremental fetch with one automatic fallback: when the
provider answers 410 Gone for a saved sync token, the cycle restarts once as
a time-window fetch from the last successful sync (or the initial window).
"""

from __future__ import annotations

import asyncio
import calendar
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import commit
from ..errors import ProviderTokenExpired
from ..schemas.sync import PageRequest, ProviderPage, SyncResult
from ..services.provider_state_svc import (
    find_log,
    get_state,
    log_import,
    mark_error,
    mark_idle,
    mark_syncing,
    record_sync_token,
)

logger = logging.getLogger(__name__)

FetchPage = Callable[[PageRequest], Awaitable[ProviderPage]]
# (db, item) -> (outcome, entity_type, entity_id); outcome is created | updated | skipped
ProcessItem = Callable[[AsyncSession, dict], Awaitable[tuple[str, str, uuid.UUID | None]]]


def months_ago(now: datetime, months: int) -> datetime:
    """Calendar-month subtraction, clamping the day (Aug 31 - 6 months = Feb 28/29)."""
    month_index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def default_external_id(item: dict) -> str:
    return str(item.get("id") or "")


def initial_window_start(now: datetime) -> datetime:
    return months_ago(now, settings.provider_initial_window_months)


async def run_pull_cycle(
    db: AsyncSession,
    service_name: str,
    fetch_page: FetchPage,
    process_item: ProcessItem,
    *,
    initial: bool = False,
    external_id: Callable[[dict], str] = default_external_id,
    page_size: int | None = None,
    now: datetime | None = None,
    cancel: asyncio.Event | None = None,
) -> SyncResult:
    """One paginated pull for ``service_name``.

    Items already present in the import log are skipped. On any failure the
    provider state is set to ``error`` with the message and the exception is
    re-raised. The new sync token is saved only when the last page arrives.
    """
    page_size = page_size or settings.provider_page_size
    now = now or datetime.now(timezone.utc)
    result = SyncResult()

    state = await get_state(db, service_name)
    mark_syncing(state)
    await commit(db)

    try:
        if initial or not state.last_sync_token:
            request = PageRequest(
                time_min=initial_window_start(now), time_max=now, page_size=page_size
            )
            logger.info("%s: fetching window since %s", service_name, request.time_min.isoformat())
        else:
            request = PageRequest(sync_token=state.last_sync_token, page_size=page_size)
            logger.info("%s: incremental sync", service_name)

        fell_back = False
        total = 0
        while True:
            if cancel is not None and cancel.is_set():
                logger.info("%s: cancelled after %d items; sync token unchanged", service_name, total)
                break

            try:
                page = await fetch_page(request)
            except ProviderTokenExpired:
                if fell_back or not request.is_token_request:
                    raise
                fell_back = True
                since = state.last_sync_time or initial_window_start(now)
                logger.info(
                    "%s: sync token expired, falling back to window since %s",
                    service_name,
                    since.isoformat(),
                )
                request = PageRequest(time_min=since, time_max=now, page_size=page_size)
                total = 0
                page = await fetch_page(request)

            count = len(page.items)
            total += count
            if count:
                page_num = (total - count) // page_size + 1
                logger.info("%s: fetched %d items (page %d)", service_name, count, page_num)

            for item in page.items:
                ext_id = external_id(item)
                if ext_id and await find_log(db, service_name, ext_id):
                    result.skipped += 1
                    continue
                outcome, entity_type, entity_id = await process_item(db, item)
                if outcome == "created":
                    result.created += 1
                elif outcome == "updated":
                    result.updated += 1
                else:
                    result.skipped += 1
                if ext_id and entity_id is not None:
                    log_import(db, service_name, ext_id, entity_type, entity_id)
            await commit(db)

            if page.next_page_token:
                request = request.model_copy(update={"page_token": page.next_page_token})
                continue
            record_sync_token(state, page.next_sync_token, now)
            break

        mark_idle(state)
        await commit(db)
    except Exception as exc:
        await db.rollback()
        state = await get_state(db, service_name)
        mark_error(state, f"{type(exc).__name__}: {exc}")
        await commit(db)
        logger.warning("%s sync failed: %s", service_name, exc)
        raise

    logger.info(
        "%s: %d created, %d updated, %d skipped",
        service_name,
        result.created,
        result.updated,
        result.skipped,
    )
    return result
