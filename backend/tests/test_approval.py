"""Tests for the school profile edit-token approval flow."""

import asyncio
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import identity_for, platform_identity
from edugate.auth.permissions import PermissionResource, PermissionType
from edugate.config import settings
from edugate.middleware.exceptions import (
    VERIFICATION_FAILED_MESSAGE,
    ActorMismatchError,
    InvalidInputError,
    InvalidOperationError,
    InvalidTokenError,
    PermissionDeniedError,
    RateLimitExceededError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    VerificationFailedError,
)
from edugate.models import OutboxMessage, SchoolProfileEditToken
from edugate.services import approval
from edugate.services.notifications import KIND_PROFILE_EDIT_VERIFICATION

R = PermissionResource
T = PermissionType

LEVEL_CHANGE = {"levels": {"primary": True, "secondary": False}}


@pytest_asyncio.fixture
async def principal(school, make_admin):
    return await make_admin(school, role="Principal")


@pytest_asyncio.fixture
async def requester(school, make_admin, principal):
    return await make_admin(school, role="Deputy Head", grants=[(R.OVERVIEW, T.ADMIN)])


async def _issue(db: AsyncSession, actor, limiter, changes=LEVEL_CHANGE) -> SchoolProfileEditToken:
    await approval.request_token(db, actor, changes, "10.1.1.1", "pytest", limiter)
    await db.commit()
    result = await db.execute(
        select(SchoolProfileEditToken)
        .where(SchoolProfileEditToken.admin_id == actor.id)
        .order_by(SchoolProfileEditToken.created_at.desc())
    )
    return result.scalars().first()


@pytest.mark.asyncio
class TestRequestToken:
    async def test_issues_pending_token_and_queues_message(
        self, db_session, requester, principal, limiter
    ):
        ack = await approval.request_token(
            db_session, requester, LEVEL_CHANGE, "10.1.1.1", "pytest", limiter
        )
        await db_session.commit()

        assert ack.acknowledged is True
        assert "SPET-" not in ack.model_dump_json()

        record = (await db_session.execute(select(SchoolProfileEditToken))).scalar_one()
        assert record.token.startswith("SPET-")
        assert len(record.token) == 5 + 64
        assert record.token[5:] == record.token[5:].upper()
        assert record.admin_id == requester.id
        assert record.school_id == requester.school_id
        assert record.changes == LEVEL_CHANGE
        assert record.used_at is None
        assert record.ip_address == "10.1.1.1"
        assert record.expires_at - record.created_at == timedelta(
            minutes=settings.edit_token_expire_minutes
        )

        message = (await db_session.execute(select(OutboxMessage))).scalar_one()
        assert message.kind == KIND_PROFILE_EDIT_VERIFICATION
        assert message.recipient == principal.email
        assert message.payload["token"] == record.token

    async def test_prefers_exact_principal_over_vice_principal(
        self, db_session, school, make_admin, limiter
    ):
        await make_admin(school, role="Vice Principal")
        head = await make_admin(school, role="Principal")
        actor = await make_admin(school, role="Deputy Head", grants=[(R.OVERVIEW, T.ADMIN)])

        await _issue(db_session, actor, limiter)

        message = (await db_session.execute(select(OutboxMessage))).scalar_one()
        assert message.recipient == head.email

    async def test_tokens_are_unique(self, db_session, requester, limiter):
        first = await _issue(db_session, requester, limiter)
        second = await _issue(db_session, requester, limiter, {"levels": {"tertiary": True}})
        assert first.token != second.token

    async def test_rejects_change_without_sensitive_fields(self, db_session, requester, limiter):
        with pytest.raises(InvalidInputError):
            await approval.request_token(
                db_session, requester, {"name": "New Name"}, None, None, limiter
            )

    async def test_levels_equal_to_current_are_not_sensitive(self, db_session, requester, limiter):
        with pytest.raises(InvalidInputError):
            await approval.request_token(
                db_session, requester, {"levels": {"primary": False}}, None, None, limiter
            )

    async def test_rejects_restricted_fields(self, db_session, requester, limiter):
        with pytest.raises(PermissionDeniedError):
            await approval.request_token(
                db_session,
                requester,
                {"subdomain": "elsewhere", **LEVEL_CHANGE},
                None,
                None,
                limiter,
            )

    async def test_requires_principal_contact(self, db_session, school, make_admin, limiter):
        await make_admin(school, role="Principal", email=None)
        actor = await make_admin(school, grants=[(R.OVERVIEW, T.ADMIN)])

        with pytest.raises(InvalidOperationError):
            await approval.request_token(db_session, actor, LEVEL_CHANGE, None, None, limiter)

    async def test_issuance_is_rate_limited_per_actor(self, db_session, requester, limiter):
        for _ in range(settings.edit_token_request_limit):
            await approval.request_token(db_session, requester, LEVEL_CHANGE, None, None, limiter)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await approval.request_token(db_session, requester, LEVEL_CHANGE, None, None, limiter)
        assert exc_info.value.retry_after >= 1


@pytest.mark.asyncio
class TestVerifyToken:
    async def test_success_consumes_token(self, db_session, school, requester, limiter):
        record = await _issue(db_session, requester, limiter)

        verified = await approval.verify_token(
            db_session, record.token, requester, "10.1.1.1", "pytest", limiter
        )
        await db_session.commit()

        assert verified.proposed_changes == LEVEL_CHANGE
        assert verified.current_snapshot.id == school.id
        assert verified.current_snapshot.has_primary is False
        await db_session.refresh(record)
        assert record.used_at is not None

    async def test_second_verification_fails_already_used(self, db_session, requester, limiter):
        record = await _issue(db_session, requester, limiter)
        await approval.verify_token(db_session, record.token, requester, None, None, limiter)
        await db_session.commit()

        with pytest.raises(TokenAlreadyUsedError):
            await approval.verify_token(db_session, record.token, requester, None, None, limiter)

    async def test_concurrent_verification_succeeds_once(
        self, db_session, session_factory, requester, limiter
    ):
        record = await _issue(db_session, requester, limiter)

        async def attempt():
            async with session_factory() as db:
                try:
                    result = await approval.verify_token(
                        db, record.token, requester, None, None, limiter
                    )
                    await db.commit()
                    return result
                except Exception:
                    await db.rollback()
                    raise

        outcomes = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

        successes = [o for o in outcomes if isinstance(o, approval.VerifiedChange)]
        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], TokenAlreadyUsedError)

    async def test_expired_token_fails_even_if_unused(self, db_session, requester, limiter):
        record = await _issue(db_session, requester, limiter)

        with pytest.raises(TokenExpiredError):
            await approval.verify_token(
                db_session,
                record.token,
                requester,
                None,
                None,
                limiter,
                now=record.expires_at + timedelta(seconds=1),
            )

    async def test_unknown_token(self, db_session, requester, limiter):
        with pytest.raises(InvalidTokenError):
            await approval.verify_token(db_session, "SPET-NOPE", requester, None, None, limiter)

    async def test_other_actor_cannot_use_token(self, db_session, school, make_admin, requester, limiter):
        record = await _issue(db_session, requester, limiter)
        colleague = await make_admin(school, grants=[(R.OVERVIEW, T.ADMIN)])

        with pytest.raises(ActorMismatchError):
            await approval.verify_token(db_session, record.token, colleague, None, None, limiter)

        await db_session.refresh(record)
        assert record.used_at is None

    async def test_failures_share_one_client_message(self, db_session, requester, limiter):
        with pytest.raises(VerificationFailedError) as exc_info:
            await approval.verify_token(db_session, "SPET-NOPE", requester, None, None, limiter)

        exc = exc_info.value
        assert exc.error_code == "VERIFICATION_FAILED"
        assert exc.message == VERIFICATION_FAILED_MESSAGE
        assert exc.status_code == 400
        assert exc.reason == "invalid_token"

    async def test_verification_is_rate_limited(self, db_session, requester, limiter):
        for _ in range(settings.edit_token_verify_limit):
            with pytest.raises(InvalidTokenError):
                await approval.verify_token(db_session, "SPET-NOPE", requester, None, None, limiter)

        with pytest.raises(RateLimitExceededError):
            await approval.verify_token(db_session, "SPET-NOPE", requester, None, None, limiter)


@pytest.mark.asyncio
class TestCleanup:
    async def _token(self, db, actor, *, expires_at, used_at=None, token):
        record = SchoolProfileEditToken(
            token=token,
            school_id=actor.school_id,
            admin_id=actor.id,
            changes=LEVEL_CHANGE,
            expires_at=expires_at,
            used_at=used_at,
        )
        db.add(record)
        await db.commit()
        return record

    async def test_school_admin_cannot_clean_up(self, db_session, requester):
        with pytest.raises(PermissionDeniedError):
            await approval.cleanup_expired(db_session, identity_for(requester))

    async def test_removes_expired_and_old_consumed_tokens(
        self, db_session, requester, platform_user
    ):
        now = datetime(2026, 5, 1, 12, 0, 0)
        retention = timedelta(hours=settings.edit_token_retention_hours)

        await self._token(db_session, requester, token="SPET-EXPIRED", expires_at=now - timedelta(minutes=1))
        await self._token(
            db_session, requester, token="SPET-OLD-USED",
            expires_at=now + timedelta(minutes=5), used_at=now - retention - timedelta(minutes=1),
        )
        await self._token(
            db_session, requester, token="SPET-RECENT-USED",
            expires_at=now + timedelta(minutes=5), used_at=now - timedelta(minutes=1),
        )
        await self._token(db_session, requester, token="SPET-PENDING", expires_at=now + timedelta(minutes=5))

        count = await approval.cleanup_expired(db_session, platform_identity(platform_user), now=now)
        await db_session.commit()

        assert count == 2
        remaining = (await db_session.execute(select(SchoolProfileEditToken.token))).scalars().all()
        assert sorted(remaining) == ["SPET-PENDING", "SPET-RECENT-USED"]
