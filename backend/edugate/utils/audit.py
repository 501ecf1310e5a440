"""Helper for recording permission audit events.

Usage:
    await record_permission_change(
        db, school_id=school_id, target=admin, caller=identity,
        caller_ip="10.0.0.7", previous_ids=before, new_ids=after,
    )

The row is added to the current DB session and committed with the
enclosing transaction. The same record is emitted on the `edugate.audit`
logger for log shipping.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from edugate.auth.jwt import Identity
from edugate.models.audit_event import PermissionAuditEvent
from edugate.models.school_admin import SchoolAdmin

audit_logger = logging.getLogger("edugate.audit")

PERMISSION_CHANGE = "PERMISSION_CHANGE"


async def record_permission_change(
    db: AsyncSession,
    *,
    school_id: str,
    target: SchoolAdmin,
    caller: Identity | None,
    caller_ip: str | None,
    previous_ids: list[str],
    new_ids: list[str],
) -> PermissionAuditEvent:
    """Append a PERMISSION_CHANGE event with the before/after id diff."""
    previous = sorted(set(previous_ids))
    current = sorted(set(new_ids))
    added = [pid for pid in current if pid not in previous]
    removed = [pid for pid in previous if pid not in current]

    event = PermissionAuditEvent(
        event=PERMISSION_CHANGE,
        school_id=school_id,
        target_admin_id=target.id,
        target_admin_name=target.full_name,
        target_admin_role=target.role,
        caller_user_id=caller.user_id if caller else "system",
        caller_ip=caller_ip or "unknown",
        previous_count=len(previous),
        new_count=len(current),
        added_ids=added,
        removed_ids=removed,
        created_at=datetime.utcnow(),
    )
    db.add(event)

    audit_logger.info(
        "%s school=%s target=%s caller=%s +%d -%d",
        PERMISSION_CHANGE,
        school_id,
        target.id,
        event.caller_user_id,
        len(added),
        len(removed),
        extra={
            "event": PERMISSION_CHANGE,
            "timestamp": event.created_at.isoformat(),
            "school_id": school_id,
            "target_admin_id": target.id,
            "target_admin_name": target.full_name,
            "target_admin_role": target.role,
            "caller_user_id": event.caller_user_id,
            "caller_ip": event.caller_ip,
            "previous_permission_count": event.previous_count,
            "new_permission_count": event.new_count,
            "permissions_added": len(added),
            "permissions_removed": len(removed),
            "added_permission_ids": added,
            "removed_permission_ids": removed,
        },
    )
    return event
