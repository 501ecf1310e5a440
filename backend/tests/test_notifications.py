"""Tests for the notification outbox."""

import pytest
from sqlalchemy import select

from edugate.auth.permissions import PermissionResource, PermissionType
from edugate.models import OutboxMessage, StaffPermission
from edugate.services import grants
from edugate.services.notifications import deliver_after_commit, dispatch_pending, enqueue

R = PermissionResource
T = PermissionType


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def send(self, recipient, subject, payload):
        self.sent.append((recipient, subject, payload))


class BrokenNotifier:
    async def send(self, recipient, subject, payload):
        raise ConnectionError("smtp down")


@pytest.mark.integration
@pytest.mark.asyncio
class TestOutboxDispatch:
    async def test_delivers_pending_messages_once(self, db_session, session_factory):
        enqueue(db_session, kind="test", recipient="a@example.org", subject="Hello", payload={"n": 1})
        await db_session.commit()
        notifier = RecordingNotifier()

        first = await dispatch_pending(session_factory, notifier)
        second = await dispatch_pending(session_factory, notifier)

        assert first == {"delivered": 1, "failed": 0}
        assert second == {"delivered": 0, "failed": 0}
        assert notifier.sent == [("a@example.org", "Hello", {"n": 1})]

    async def test_failed_delivery_is_recorded_and_retried(self, db_session, session_factory):
        enqueue(db_session, kind="test", recipient="a@example.org", subject="Hello", payload={})
        await db_session.commit()

        result = await dispatch_pending(session_factory, BrokenNotifier())
        assert result == {"delivered": 0, "failed": 1}

        async with session_factory() as db:
            message = (await db.execute(select(OutboxMessage))).scalar_one()
        assert message.attempts == 1
        assert message.delivered_at is None
        assert "smtp down" in message.last_error

        retry = await dispatch_pending(session_factory, RecordingNotifier())
        assert retry == {"delivered": 1, "failed": 0}

    async def test_gives_up_after_max_attempts(self, db_session, session_factory, monkeypatch):
        from edugate.config import settings

        monkeypatch.setattr(settings, "outbox_max_attempts", 2)
        enqueue(db_session, kind="test", recipient="a@example.org", subject="Hello", payload={})
        await db_session.commit()

        for _ in range(3):
            await dispatch_pending(session_factory, BrokenNotifier())

        async with session_factory() as db:
            message = (await db.execute(select(OutboxMessage))).scalar_one()
        assert message.attempts == 2

    async def test_delivery_failure_does_not_undo_grant(
        self, db_session, session_factory, catalog, school, make_admin
    ):
        target = await make_admin(school)
        await grants.assign_permissions(
            db_session, school.id, target.id, [catalog[(R.STUDENTS, T.READ)].id]
        )
        await db_session.commit()

        result = await dispatch_pending(session_factory, BrokenNotifier())
        assert result["failed"] == 1

        async with session_factory() as db:
            rows = (await db.execute(
                select(StaffPermission).where(StaffPermission.admin_id == target.id)
            )).scalars().all()
        assert [r.permission_id for r in rows] == [catalog[(R.STUDENTS, T.READ)].id]

    async def test_deliver_after_commit_swallows_errors(self):
        def broken_factory():
            raise RuntimeError("no database")

        await deliver_after_commit(broken_factory)
