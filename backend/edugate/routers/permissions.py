"""Permission catalog and admin grant endpoints.

Endpoints:
    GET    /api/permissions/                    Full catalog (STAFF:READ)
    GET    /api/permissions/me                  Caller's school, role and access (no grant needed)
    GET    /api/permissions/admins/{admin_id}   An admin's grants (STAFF:READ)
    PUT    /api/permissions/admins/{admin_id}   Replace an admin's grants (STAFF:WRITE + IDOR checks)
    POST   /api/permissions/migrate-admins      Give legacy admins READ access (platform only)
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edugate.auth.deps import (
    get_current_identity,
    get_school_context,
    require_permission,
    require_platform_admin,
)
from edugate.auth.jwt import Identity
from edugate.auth.permissions import (
    PermissionResource,
    PermissionType,
    catalog_entries,
    format_key,
)
from edugate.database import get_db, get_session_factory
from edugate.middleware.rate_limit import client_ip
from edugate.schemas.permissions import (
    AdminPermissionsOut,
    AssignPermissionsRequest,
    MigrationResult,
    MyAccessOut,
    PermissionOut,
)
from edugate.services import catalog, grants
from edugate.services.notifications import deliver_after_commit

router = APIRouter()


@router.get("/", response_model=list[PermissionOut])
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    _: Identity = Depends(require_permission(PermissionResource.STAFF, PermissionType.READ)),
):
    return await catalog.list_all(db)


@router.get("/me", response_model=MyAccessOut)
async def my_access(
    identity: Identity = Depends(get_current_identity),
    school_id: str = Depends(get_school_context),
    db: AsyncSession = Depends(get_db),
):
    """Bootstrap call for the dashboard. Requires no resource grant."""
    all_keys = [format_key(r, t) for r, t, _ in catalog_entries()]

    if identity.is_platform:
        return MyAccessOut(
            user_id=identity.user_id,
            role=identity.role,
            school_id=school_id,
            permissions=all_keys,
        )

    admin = await grants.get_admin_for_user(db, school_id, identity.user_id)
    if not admin:
        return MyAccessOut(
            user_id=identity.user_id,
            role=identity.role,
            school_id=school_id,
            permissions=[],
        )

    if admin.is_principal:
        keys = all_keys
    else:
        keys = [format_key(p.resource, p.type) for p in await grants.load_grants(db, admin.id)]

    return MyAccessOut(
        user_id=identity.user_id,
        role=identity.role,
        school_id=school_id,
        admin_id=admin.id,
        admin_role=admin.role,
        is_principal=admin.is_principal,
        permissions=keys,
    )


@router.get("/admins/{admin_id}", response_model=AdminPermissionsOut)
async def get_admin_permissions(
    admin_id: str,
    school_id: str = Depends(get_school_context),
    db: AsyncSession = Depends(get_db),
    _: Identity = Depends(require_permission(PermissionResource.STAFF, PermissionType.READ)),
):
    return await grants.get_grants_for(db, school_id, admin_id)


@router.put("/admins/{admin_id}", response_model=AdminPermissionsOut)
async def assign_admin_permissions(
    admin_id: str,
    body: AssignPermissionsRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    school_id: str = Depends(get_school_context),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    identity: Identity = Depends(
        require_permission(PermissionResource.STAFF, PermissionType.WRITE)
    ),
):
    """Replace the admin's grants. Anything not in `permission_ids` is revoked."""
    result = await grants.assign_permissions(
        db,
        school_id,
        admin_id,
        body.permission_ids,
        caller=identity,
        caller_ip=client_ip(request),
    )
    background_tasks.add_task(deliver_after_commit, session_factory)
    return result


@router.post("/migrate-admins", response_model=MigrationResult)
async def migrate_admins(
    school_id: str = Depends(get_school_context),
    db: AsyncSession = Depends(get_db),
    _: Identity = Depends(require_platform_admin),
):
    return await grants.migrate_existing_admins(db, school_id)
