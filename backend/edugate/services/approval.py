"""Approval flow for sensitive school profile changes.

    request_token()  → pending token bound to (school, admin, exact payload),
                       sent out-of-band to the school principal's contact
    verify_token()   → consumes the token exactly once and returns the
                       stored payload with the current school snapshot
    cleanup_expired()→ platform-only sweep of expired and consumed tokens

Token states: pending (used_at null, not expired) → consumed (used_at set)
or expired (checked lazily on verify) or deleted by the cleanup sweep.

Every verification failure reaches the client as the same
VERIFICATION_FAILED error; only the log records which check failed.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.auth.jwt import Identity
from edugate.config import settings
from edugate.middleware.exceptions import (
    ActorMismatchError,
    InvalidInputError,
    InvalidOperationError,
    InvalidTokenError,
    PermissionDeniedError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    VerificationFailedError,
)
from edugate.middleware.rate_limit import RateLimiter, enforce
from edugate.models.edit_token import SchoolProfileEditToken
from edugate.models.school import School
from edugate.models.school_admin import SchoolAdmin
from edugate.schemas.school_profile import EditTokenAck, SchoolSnapshot
from edugate.services import notifications
from edugate.services.school_profile import (
    check_restricted,
    detect_sensitive_changes,
    get_school,
    snapshot,
)

logger = logging.getLogger("edugate.approval")

TOKEN_PREFIX = "SPET-"

ACK_MESSAGE = (
    "A verification token has been sent to the school principal. "
    "Submit it to confirm the change."
)


def generate_token() -> str:
    return TOKEN_PREFIX + secrets.token_hex(32).upper()


def _mask(token: str) -> str:
    return token[:9] + "…" if len(token) > 9 else "…"


@dataclass
class VerifiedChange:
    """Outcome of a successful verification."""

    token_id: str
    proposed_changes: dict
    current_snapshot: SchoolSnapshot
    school: School


async def _principal_contact(db: AsyncSession, school_id: str) -> SchoolAdmin | None:
    """The school's principal with an email, oldest first.

    An admin whose role is exactly "principal" wins over broader matches
    like "Vice Principal".
    """
    result = await db.execute(
        select(SchoolAdmin)
        .where(SchoolAdmin.school_id == school_id, SchoolAdmin.email.is_not(None))
        .order_by(SchoolAdmin.created_at)
    )
    principals = [a for a in result.scalars().all() if a.is_principal]
    if not principals:
        return None
    exact = [a for a in principals if a.role.strip().lower() == "principal"]
    return (exact or principals)[0]


async def request_token(
    db: AsyncSession,
    actor: SchoolAdmin,
    proposed_changes: dict,
    ip: str | None,
    user_agent: str | None,
    limiter: RateLimiter,
) -> EditTokenAck:
    """Issue a pending edit token for `proposed_changes`.

    The token value never appears in the return value; it is only
    delivered through the notification outbox.
    """
    await enforce(
        limiter,
        f"edit-token:request:{actor.id}",
        settings.edit_token_request_window,
        settings.edit_token_request_limit,
    )

    school = await get_school(db, actor.school_id)
    check_restricted(proposed_changes)

    if not detect_sensitive_changes(school, proposed_changes):
        raise InvalidInputError(
            "No sensitive changes detected. You can update these fields directly "
            "without verification."
        )

    principal = await _principal_contact(db, school.id)
    if not principal:
        raise InvalidOperationError(
            "Principal email not found. Please ensure your school has a principal "
            "with an email address."
        )

    now = datetime.utcnow()
    edit_token = SchoolProfileEditToken(
        token=generate_token(),
        school_id=school.id,
        admin_id=actor.id,
        changes=proposed_changes,
        ip_address=ip,
        user_agent=(user_agent or "")[:500] or None,
        created_at=now,
        expires_at=now + timedelta(minutes=settings.edit_token_expire_minutes),
    )
    db.add(edit_token)

    notifications.enqueue(
        db,
        kind=notifications.KIND_PROFILE_EDIT_VERIFICATION,
        recipient=principal.email,
        subject=f"Confirm school profile change for {school.name}",
        payload={
            "token": edit_token.token,
            "school_name": school.name,
            "requested_by": actor.full_name,
            "changes": proposed_changes,
            "expires_at": edit_token.expires_at.isoformat(),
        },
    )
    await db.flush()

    logger.info(
        "Edit token issued for school %s by admin %s",
        school.id,
        actor.id,
        extra={"school_id": school.id, "admin_id": actor.id, "ip": ip},
    )
    return EditTokenAck(message=ACK_MESSAGE)


async def verify_token(
    db: AsyncSession,
    token: str,
    actor: SchoolAdmin,
    ip: str | None,
    user_agent: str | None,
    limiter: RateLimiter,
    now: datetime | None = None,
) -> VerifiedChange:
    """Consume `token` for `actor`, exactly once.

    Checks run in order: exists, not expired, not used, bound to this
    actor and school. Consumption is a conditional UPDATE on
    `used_at IS NULL`, so of two concurrent verifications only one sees
    an affected row.
    """
    await enforce(
        limiter,
        f"edit-token:verify:{actor.id}",
        settings.edit_token_verify_window,
        settings.edit_token_verify_limit,
    )
    now = now or datetime.utcnow()

    try:
        result = await db.execute(
            select(SchoolProfileEditToken)
            .where(SchoolProfileEditToken.token == token)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()

        if not record:
            raise InvalidTokenError("token not found")
        if record.expires_at <= now:
            raise TokenExpiredError(f"expired at {record.expires_at.isoformat()}")
        if record.used_at is not None:
            raise TokenAlreadyUsedError(f"used at {record.used_at.isoformat()}")
        if record.admin_id != actor.id or record.school_id != actor.school_id:
            raise ActorMismatchError(f"bound to admin {record.admin_id}")

        consumed = await db.execute(
            update(SchoolProfileEditToken)
            .where(
                SchoolProfileEditToken.id == record.id,
                SchoolProfileEditToken.used_at.is_(None),
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount != 1:
            raise TokenAlreadyUsedError("lost race to a concurrent verification")
    except VerificationFailedError as e:
        logger.warning(
            "Edit token verification failed: %s",
            e.reason,
            extra={
                "reason": e.reason,
                "detail": e.detail,
                "token": _mask(token),
                "admin_id": actor.id,
                "school_id": actor.school_id,
                "ip": ip,
                "user_agent": user_agent,
            },
        )
        raise

    school = await get_school(db, record.school_id)
    logger.info(
        "Edit token %s consumed by admin %s",
        record.id,
        actor.id,
        extra={"school_id": school.id, "admin_id": actor.id, "ip": ip},
    )
    return VerifiedChange(
        token_id=record.id,
        proposed_changes=dict(record.changes),
        current_snapshot=snapshot(school),
        school=school,
    )


async def purge_stale_tokens(db: AsyncSession, now: datetime | None = None) -> int:
    """Delete tokens past expiry, or consumed longer ago than the retention window."""
    now = now or datetime.utcnow()
    retention_cutoff = now - timedelta(hours=settings.edit_token_retention_hours)
    result = await db.execute(
        delete(SchoolProfileEditToken)
        .where(
            or_(
                SchoolProfileEditToken.expires_at < now,
                and_(
                    SchoolProfileEditToken.used_at.is_not(None),
                    SchoolProfileEditToken.used_at < retention_cutoff,
                ),
            )
        )
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount or 0
    if count:
        logger.info("Purged %d stale edit tokens", count)
    return count


async def cleanup_expired(
    db: AsyncSession,
    identity: Identity,
    now: datetime | None = None,
) -> int:
    if not identity.is_platform:
        logger.warning(
            "Edit token cleanup denied for %s (%s)", identity.user_id, identity.role
        )
        raise PermissionDeniedError("Only platform administrators can clean up edit tokens")
    return await purge_stale_tokens(db, now)
