"""Notification outbox.

Messages are added to the caller's session with `enqueue()` and so commit
or roll back together with the change that produced them. Delivery runs
afterwards in its own session (`dispatch_pending()`), from a background
task right after the request and from the periodic maintenance loop.
Delivery is at-least-once; a failed send is logged, counted and retried
on the next sweep, and never affects the original transaction.

Actual email transport is out of scope: the default notifier logs the
message. Deployments plug a real one in with `set_notifier()`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edugate.config import settings
from edugate.models.outbox import OutboxMessage

logger = logging.getLogger("edugate.notifications")

KIND_PERMISSION_ASSIGNMENT = "permission_assignment"
KIND_PROFILE_EDIT_VERIFICATION = "school_profile_edit_verification"


class Notifier(Protocol):
    async def send(self, recipient: str, subject: str, payload: dict) -> None:
        ...


class LoggingNotifier:
    """Writes the message to the log instead of sending it."""

    async def send(self, recipient: str, subject: str, payload: dict) -> None:
        logger.info(
            "Notification to %s: %s",
            recipient,
            subject,
            extra={"recipient": recipient, "payload": payload},
        )


_notifier: Notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    return _notifier


def set_notifier(notifier: Notifier) -> None:
    global _notifier
    _notifier = notifier


def enqueue(
    db: AsyncSession,
    *,
    kind: str,
    recipient: str,
    subject: str,
    payload: dict,
) -> OutboxMessage:
    """Add an outbox message to the current session (no flush)."""
    message = OutboxMessage(
        kind=kind,
        recipient=recipient,
        subject=subject,
        payload=payload,
        attempts=0,
    )
    db.add(message)
    return message


async def dispatch_pending(
    session_factory: async_sessionmaker | None = None,
    notifier: Notifier | None = None,
    limit: int = 100,
) -> dict:
    """Deliver undelivered messages. Returns {"delivered": n, "failed": n}."""
    if session_factory is None:
        from edugate.database import async_session as session_factory

    notifier = notifier or get_notifier()
    delivered = failed = 0

    async with session_factory() as db:
        result = await db.execute(
            select(OutboxMessage)
            .where(
                OutboxMessage.delivered_at.is_(None),
                OutboxMessage.attempts < settings.outbox_max_attempts,
            )
            .order_by(OutboxMessage.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        for message in result.scalars().all():
            message.attempts += 1
            try:
                await notifier.send(message.recipient, message.subject, message.payload)
            except Exception as e:
                message.last_error = str(e)[:1000]
                failed += 1
                logger.error(
                    "Failed to deliver %s notification %s to %s: %s",
                    message.kind,
                    message.id,
                    message.recipient,
                    e,
                )
                continue
            message.delivered_at = datetime.utcnow()
            message.last_error = None
            delivered += 1

        await db.commit()

    if delivered or failed:
        logger.info("Outbox sweep: %d delivered, %d failed", delivered, failed)
    return {"delivered": delivered, "failed": failed}


async def deliver_after_commit(session_factory: async_sessionmaker | None = None) -> None:
    """Background-task entry point. Errors are logged, never raised."""
    try:
        await dispatch_pending(session_factory)
    except Exception:
        logger.exception("Outbox delivery after commit failed; the next sweep will retry")
