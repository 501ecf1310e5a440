"""Pytest configuration and fixtures for EduGate tests.

Each test gets its own file-backed SQLite database (aiosqlite), so
several sessions can work on it concurrently the way request handlers do.
"""

import os

os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("SEED_PERMISSIONS_ON_STARTUP", "false")
os.environ.setdefault("DEBUG", "false")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from edugate.auth.jwt import Identity, create_access_token
from edugate.auth.permissions import PermissionResource, PermissionType
from edugate.database import Base, get_db, get_session_factory
from edugate.main import app
from edugate.middleware.rate_limit import InMemoryRateLimiter, get_rate_limiter
from edugate.models import Permission, School, SchoolAdmin, StaffPermission, User, UserRole
from edugate.services.catalog import initialize_catalog


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'edugate.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter()


@pytest_asyncio.fixture
async def client(session_factory, limiter) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the database and rate limiter swapped for test ones."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def catalog(db_session: AsyncSession) -> dict:
    """Seeded catalog, keyed by (resource, type)."""
    await initialize_catalog(db_session)
    await db_session.commit()

    result = await db_session.execute(select(Permission))
    return {(p.resource, p.type): p for p in result.scalars().all()}


async def _create_school(db: AsyncSession, name: str, subdomain: str) -> School:
    school = School(name=name, subdomain=subdomain, email=f"office@{subdomain}.example.org")
    db.add(school)
    await db.commit()
    return school


@pytest_asyncio.fixture
async def school(db_session: AsyncSession) -> School:
    return await _create_school(db_session, "Greenfield Academy", "greenfield")


@pytest_asyncio.fixture
async def other_school(db_session: AsyncSession) -> School:
    return await _create_school(db_session, "Riverside High", "riverside")


@pytest.fixture
def make_admin(db_session: AsyncSession, catalog: dict):
    """Factory: create a user + SchoolAdmin with the given role and grants.

    `grants` is a list of (PermissionResource, PermissionType) pairs.
    """
    counter = {"n": 0}

    async def _make(
        school: School,
        role: str = "Bursar",
        grants: list[tuple[PermissionResource, PermissionType]] | None = None,
        email: str | None = "default",
    ) -> SchoolAdmin:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=f"admin{n}@{school.subdomain}.example.org",
            full_name=f"Admin {n}",
            role=UserRole.SCHOOL_ADMIN,
        )
        db_session.add(user)
        await db_session.flush()

        admin = SchoolAdmin(
            user_id=user.id,
            school_id=school.id,
            first_name="Admin",
            last_name=str(n),
            email=user.email if email == "default" else email,
            role=role,
        )
        db_session.add(admin)
        await db_session.flush()

        for key in grants or []:
            db_session.add(StaffPermission(admin_id=admin.id, permission_id=catalog[key].id))
        await db_session.commit()
        return admin

    return _make


@pytest_asyncio.fixture
async def platform_user(db_session: AsyncSession) -> User:
    user = User(email="ops@edugate.example.org", full_name="Platform Ops", role=UserRole.SUPER_ADMIN)
    db_session.add(user)
    await db_session.commit()
    return user


def identity_for(admin: SchoolAdmin) -> Identity:
    return Identity(
        user_id=admin.user_id,
        role=UserRole.SCHOOL_ADMIN.value,
        school_id=admin.school_id,
        profile_id=admin.id,
    )


def platform_identity(user: User) -> Identity:
    return Identity(user_id=user.id, role=UserRole.SUPER_ADMIN.value)


def auth_headers_for(admin: SchoolAdmin) -> dict:
    token = create_access_token(
        user_id=admin.user_id,
        role=UserRole.SCHOOL_ADMIN.value,
        school_id=admin.school_id,
        profile_id=admin.id,
    )
    return {"Authorization": f"Bearer {token}"}


def platform_headers(user: User, school: School | None = None) -> dict:
    headers = {
        "Authorization": f"Bearer {create_access_token(user_id=user.id, role=UserRole.SUPER_ADMIN.value)}"
    }
    if school is not None:
        headers["X-Tenant-Id"] = school.id
    return headers


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "auth: Authorization tests")
    config.addinivalue_line("markers", "tenancy: School isolation tests")
