"""Company service - CRUD and name-based lookup."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import commit, flush
from ..models.base import normalize_name
from ..models.company import Company
from ..schemas.payloads import ENTITY_COMPANY, OP_DELETE, OP_UPSERT
from ..sync.change_queue import ChangeQueue, company_payload


async def get_company(db: AsyncSession, company_id: uuid.UUID) -> Company | None:
    return await db.get(Company, company_id)


async def find_company_by_name(db: AsyncSession, name: str) -> Company | None:
    """Lookup on the whitespace-collapsed, case-folded name."""
    key = normalize_name(name)
    if not key:
        return None
    stmt = select(Company).where(Company.name_key == key)
    return (await db.execute(stmt)).scalars().first()


async def ensure_company_by_name(
    db: AsyncSession, name: str, *, domain: str = ""
) -> tuple[Company, bool]:
    """Find by normalized name or create. Returns (company, created).

    No commit is performed here; callers batch commits.
    """
    clean = " ".join(name.split())
    existing = await find_company_by_name(db, clean)
    if existing:
        return existing, False
    company = Company(id=uuid.uuid4(), name=clean, domain=domain)
    db.add(company)
    await flush(db)
    return company, True


async def create_company(
    db: AsyncSession, *, queue: ChangeQueue | None = None, **kwargs
) -> Company:
    """Create a company and queue it for the vault in one transaction."""
    if await find_company_by_name(db, kwargs.get("name", "")):
        raise ValueError(f"Company already exists: {kwargs.get('name')!r}")
    company = Company(id=kwargs.pop("id", None) or uuid.uuid4(), **kwargs)
    db.add(company)
    await flush(db)
    if queue:
        await queue.record(db, ENTITY_COMPANY, company.id, OP_UPSERT, company_payload(company))
    await commit(db)
    if queue:
        await queue.after_commit()
    return company


async def update_company(
    db: AsyncSession, company_id: uuid.UUID, *, queue: ChangeQueue | None = None, **kwargs
) -> Company | None:
    company = await get_company(db, company_id)
    if not company:
        return None
    for key, value in kwargs.items():
        setattr(company, key, value)
    await flush(db)
    if queue:
        await queue.record(db, ENTITY_COMPANY, company.id, OP_UPSERT, company_payload(company))
    await commit(db)
    if queue:
        await queue.after_commit()
    return company


async def delete_company(
    db: AsyncSession, company_id: uuid.UUID, *, queue: ChangeQueue | None = None
) -> bool:
    """Delete a company (its deals cascade). Returns True if found and deleted."""
    company = await get_company(db, company_id)
    if not company:
        return False
    payload = company_payload(company)
    await db.delete(company)
    await flush(db)
    if queue:
        await queue.record(db, ENTITY_COMPANY, company_id, OP_DELETE, payload)
    await commit(db)
    if queue:
        await queue.after_commit()
    return True
