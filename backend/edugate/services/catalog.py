"""Permission catalog: seeding and listing.

Seeding inserts every (resource, type) pair with ON CONFLICT DO NOTHING on
the unique (resource, type) key, so it is idempotent, never rewrites an
existing description, and is safe when several instances boot at once.
"""

import logging
import uuid
from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.auth.permissions import PermissionResource, catalog_entries, sort_key
from edugate.models.permission import Permission

logger = logging.getLogger("edugate.catalog")

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def initialize_catalog(
    db: AsyncSession,
    resources: Iterable[PermissionResource] | None = None,
) -> int:
    """Ensure every catalog entry exists. Returns how many were created.

    `resources` narrows seeding to a subset (all resources by default).
    """
    dialect = db.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"Catalog seeding is not supported on {dialect!r}")

    wanted = set(resources) if resources is not None else None
    now = datetime.utcnow()
    rows = [
        {
            "id": str(uuid.uuid4()),
            "resource": resource.value,
            "type": type_.value,
            "description": description,
            "created_at": now,
        }
        for resource, type_, description in catalog_entries()
        if wanted is None or resource in wanted
    ]

    created = 0
    for row in rows:
        stmt = (
            insert(Permission.__table__)
            .values(**row)
            .on_conflict_do_nothing(index_elements=["resource", "type"])
        )
        result = await db.execute(stmt)
        created += result.rowcount or 0

    await db.flush()
    logger.info("Permission catalog initialised: %d created, %d total", created, len(rows))
    return created


async def list_all(db: AsyncSession) -> list[Permission]:
    """Full catalog, ordered by resource then type (READ, WRITE, ADMIN)."""
    result = await db.execute(select(Permission))
    return sorted(result.scalars().all(), key=lambda p: sort_key(p.resource, p.type))
