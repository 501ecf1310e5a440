"""FastAPI dependencies for authentication, school scope and authorization.

Dependencies:
  get_current_identity     → decode JWT, check the user is active, return Identity
  get_school_context       → resolve the school this request acts in (or raise)
  get_current_admin        → the caller's SchoolAdmin record in that school
  require_permission(...)  → gate on one (resource, type) with live grants
  require_platform_admin   → restrict to platform users
"""

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.auth.jwt import Identity, decode_token, identity_from_claims
from edugate.auth.permissions import (
    PermissionResource,
    PermissionType,
    has_permission,
)
from edugate.database import get_db
from edugate.middleware.exceptions import PermissionDeniedError, ResourceNotFoundError
from edugate.models.school import School
from edugate.models.school_admin import SchoolAdmin
from edugate.models.user import User, UserRole
from edugate.services.grants import get_admin_for_user, load_grants
from edugate.tenancy import resolve_school_id, set_current_school_id, subdomain_from_host

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# ── Core identity dependency ────────────────────────────────

async def get_current_identity(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """Decode the JWT and confirm the user still exists and is active."""
    identity = identity_from_claims(decode_token(token))
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User.is_active).where(User.id == identity.user_id))
    is_active = result.scalar_one_or_none()
    if not is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return identity


# ── School context ──────────────────────────────────────────

async def get_school_context(
    request: Request,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> str:
    """Return the school id for this request and bind it to the context.

    Tenant hint: X-Tenant-Id header, else the Host subdomain looked up in
    `schools.subdomain`.
    """
    hint = request.headers.get("x-tenant-id")
    if not hint:
        subdomain = subdomain_from_host(request.headers.get("host"))
        if subdomain:
            result = await db.execute(select(School.id).where(School.subdomain == subdomain))
            hint = result.scalar_one_or_none()
            if hint is None:
                raise ResourceNotFoundError("School", subdomain)

    school_id = resolve_school_id(identity, hint)

    if identity.is_platform:
        school = await db.get(School, school_id)
        if not school:
            raise ResourceNotFoundError("School", school_id)

    set_current_school_id(school_id)
    return school_id


async def get_current_admin(
    identity: Identity = Depends(get_current_identity),
    school_id: str = Depends(get_school_context),
    db: AsyncSession = Depends(get_db),
) -> SchoolAdmin:
    """The caller's admin profile in the current school."""
    admin = await get_admin_for_user(db, school_id, identity.user_id)
    if not admin:
        raise PermissionDeniedError("You are not an administrator of this school")
    return admin


# ── Permission-based access control ─────────────────────────

def require_permission(resource: PermissionResource, type_: PermissionType):
    """Dependency factory: allow callers holding `type_` on `resource`.

    Grants are loaded from the database on every call, so a change
    committed by another request applies immediately.

    Usage:
        @router.get("/students")
        async def list_students(
            identity: Identity = Depends(
                require_permission(PermissionResource.STUDENTS, PermissionType.READ)
            ),
        ):
            ...
    """
    async def _check(
        identity: Identity = Depends(get_current_identity),
        school_id: str = Depends(get_school_context),
        db: AsyncSession = Depends(get_db),
    ) -> Identity:
        if identity.is_platform:
            return identity

        if identity.role != UserRole.SCHOOL_ADMIN.value:
            raise PermissionDeniedError("School administrator access required")

        admin = await get_admin_for_user(db, school_id, identity.user_id)
        if not admin:
            raise PermissionDeniedError("You are not an administrator of this school")

        granted = [] if admin.is_principal else await load_grants(db, admin.id)
        if not has_permission(admin.role, granted, resource, type_):
            logger.warning(
                "Access denied: %s lacks %s:%s",
                identity.user_id,
                resource.value,
                type_.value,
                extra={"school_id": school_id, "admin_id": admin.id},
            )
            raise PermissionDeniedError(
                f"You do not have {type_.value} permission for {resource.value}"
            )
        return identity

    return _check


async def require_platform_admin(
    identity: Identity = Depends(get_current_identity),
) -> Identity:
    """Restrict endpoint to platform admins only."""
    if not identity.is_platform:
        raise PermissionDeniedError("Platform admin access required")
    return identity
