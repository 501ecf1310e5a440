"""School profile endpoints, including the edit-token approval flow.

Endpoints:
    PATCH  /api/school-profile/                     Edit basic fields (OVERVIEW:ADMIN)
    POST   /api/school-profile/edit-token           Request a token for a level change (OVERVIEW:ADMIN)
    POST   /api/school-profile/edit-token/verify    Verify a token and apply its change (OVERVIEW:ADMIN)
    POST   /api/school-profile/edit-token/cleanup   Purge stale tokens (platform only)
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edugate.auth.deps import (
    get_current_admin,
    get_school_context,
    require_permission,
    require_platform_admin,
)
from edugate.auth.jwt import Identity
from edugate.auth.permissions import PermissionResource, PermissionType
from edugate.database import get_db, get_session_factory
from edugate.middleware.rate_limit import RateLimiter, client_ip, get_rate_limiter
from edugate.models.school_admin import SchoolAdmin
from edugate.schemas.school_profile import (
    CleanupResult,
    EditTokenAck,
    SchoolProfileUpdate,
    SchoolSnapshot,
    VerifiedChangeOut,
    VerifyEditTokenRequest,
)
from edugate.services import approval, school_profile
from edugate.services.notifications import deliver_after_commit

router = APIRouter()

_overview_admin = require_permission(PermissionResource.OVERVIEW, PermissionType.ADMIN)


@router.patch("/", response_model=SchoolSnapshot)
async def update_profile(
    body: SchoolProfileUpdate,
    school_id: str = Depends(get_school_context),
    db: AsyncSession = Depends(get_db),
    _: Identity = Depends(_overview_admin),
):
    changes = body.model_dump(exclude_unset=True, mode="json")
    return await school_profile.update_school_profile(db, school_id, changes)


@router.post("/edit-token", response_model=EditTokenAck, status_code=202)
async def request_edit_token(
    body: SchoolProfileUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    limiter: RateLimiter = Depends(get_rate_limiter),
    _: Identity = Depends(_overview_admin),
    admin: SchoolAdmin = Depends(get_current_admin),
):
    """Send a verification token to the principal. The token is never returned here."""
    ack = await approval.request_token(
        db,
        admin,
        body.model_dump(exclude_unset=True, mode="json"),
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        limiter=limiter,
    )
    background_tasks.add_task(deliver_after_commit, session_factory)
    return ack


@router.post("/edit-token/verify", response_model=VerifiedChangeOut)
async def verify_edit_token(
    body: VerifyEditTokenRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
    _: Identity = Depends(_overview_admin),
    admin: SchoolAdmin = Depends(get_current_admin),
):
    """Consume the token and apply the change it was issued for, in one transaction."""
    verified = await approval.verify_token(
        db,
        body.token,
        admin,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        limiter=limiter,
    )
    school_profile.apply_changes(verified.school, verified.proposed_changes)
    await db.flush()
    return VerifiedChangeOut(
        proposed_changes=verified.proposed_changes,
        current_snapshot=verified.current_snapshot,
        school=school_profile.snapshot(verified.school),
    )


@router.post("/edit-token/cleanup", response_model=CleanupResult)
async def cleanup_edit_tokens(
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(require_platform_admin),
):
    count = await approval.cleanup_expired(db, identity)
    return CleanupResult(count=count)
