"""Background maintenance: outbox delivery and edit-token cleanup.

Uses FastAPI's lifespan context to start/stop an asyncio background loop.
No external scheduler; a plain asyncio.sleep loop fires every
MAINTENANCE_INTERVAL_SECONDS (default 300).

Startup also seeds the permission catalog when
SEED_PERMISSIONS_ON_STARTUP is true. Seeding is an idempotent upsert, so
several instances booting at once is fine. Deployments that prefer an
explicit step turn it off and run `python -m edugate.cli init-permissions`.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from edugate.config import settings
from edugate.database import async_session
from edugate.utils.redis import close_redis

logger = logging.getLogger("edugate.scheduler")


async def seed_catalog() -> int:
    from edugate.services.catalog import initialize_catalog

    async with async_session() as db:
        try:
            created = await initialize_catalog(db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return created


async def run_maintenance() -> None:
    """One sweep: deliver pending notifications, purge stale edit tokens."""
    from edugate.services.approval import purge_stale_tokens
    from edugate.services.notifications import dispatch_pending

    try:
        await dispatch_pending(async_session)
    except Exception:
        logger.exception("Outbox dispatch failed")

    try:
        async with async_session() as db:
            await purge_stale_tokens(db)
            await db.commit()
    except Exception:
        logger.exception("Edit token cleanup failed")


async def _maintenance_loop() -> None:
    while True:
        await asyncio.sleep(settings.maintenance_interval_seconds)
        try:
            await run_maintenance()
        except Exception:
            logger.exception("Unhandled error in maintenance sweep")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: seed, start the maintenance loop, cancel on shutdown."""
    if settings.seed_permissions_on_startup:
        created = await seed_catalog()
        logger.info("Permission catalog seeded at startup (%d new entries)", created)

    task = asyncio.create_task(_maintenance_loop())
    logger.info("Maintenance loop started")
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await close_redis()
        logger.info("Maintenance loop stopped")
