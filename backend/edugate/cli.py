"""Management CLI for permission and approval maintenance.

Usage:
    python -m edugate.cli init-permissions            # Seed the permission catalog (idempotent)
    python -m edugate.cli list-permissions            # Show the catalog
    python -m edugate.cli cleanup-tokens              # Purge expired/consumed edit tokens
    python -m edugate.cli migrate-admins <school_id>  # Give legacy admins READ access
    python -m edugate.cli flush-outbox                # Deliver pending notifications now
"""

import asyncio
import sys

from edugate.database import async_session, engine
from edugate.services import approval, catalog, grants
from edugate.services.notifications import dispatch_pending


async def _in_transaction(fn, *args):
    async with async_session() as db:
        try:
            result = await fn(db, *args)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return result


async def init_permissions():
    created = await _in_transaction(catalog.initialize_catalog)
    print(f"  {created} permission(s) created")


async def list_permissions():
    async with async_session() as db:
        rows = await catalog.list_all(db)
    for p in rows:
        print(f"  {p.resource.value:<14} {p.type.value:<6} {p.id}  {p.description}")
    print(f"\n{len(rows)} permission(s)")


async def cleanup_tokens():
    count = await _in_transaction(approval.purge_stale_tokens)
    print(f"  {count} token(s) deleted")


async def migrate_admins(school_id: str):
    result = await _in_transaction(grants.migrate_existing_admins, school_id)
    print(f"  migrated={result.migrated} skipped={result.skipped}")


async def flush_outbox():
    result = await dispatch_pending(async_session)
    print(f"  delivered={result['delivered']} failed={result['failed']}")


async def _run(coro):
    try:
        await coro
    finally:
        await engine.dispose()


COMMANDS = {
    "init-permissions": init_permissions,
    "list-permissions": list_permissions,
    "cleanup-tokens": cleanup_tokens,
    "flush-outbox": flush_outbox,
}


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd in COMMANDS:
        asyncio.run(_run(COMMANDS[cmd]()))
    elif cmd == "migrate-admins" and len(sys.argv) > 2:
        asyncio.run(_run(migrate_admins(sys.argv[2])))
    else:
        print(
            "Usage: python -m edugate.cli "
            "[init-permissions|list-permissions|cleanup-tokens|flush-outbox|migrate-admins <school_id>]"
        )
        sys.exit(1)
