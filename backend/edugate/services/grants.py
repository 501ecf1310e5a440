"""Permission grant manager: the only write path for admin grants.

assign_permissions() is a full replacement: the target's grants after the
call are exactly the ids passed in. Before anything is written it checks
that:
  - the target exists in the school and is not a Principal,
  - a school-scoped caller is present in the same school and either is a
    Principal or holds STAFF:ADMIN (IDOR protection),
  - a non-Principal caller only hands out ADMIN on resources where they
    hold ADMIN themselves (no privilege escalation),
  - every id is a real catalog entry.

Reads always go to the database; nothing is cached, so a check made right
after a committed assignment sees the new grants.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.auth.jwt import Identity
from edugate.auth.permissions import (
    PermissionResource,
    PermissionType,
    format_key,
    grant_keys,
    has_admin_access,
    has_permission as evaluate,
    is_principal_role,
    sort_key,
)
from edugate.middleware.exceptions import (
    InvalidInputError,
    InvalidOperationError,
    PermissionDeniedError,
    ResourceNotFoundError,
)
from edugate.models.permission import Permission, StaffPermission
from edugate.models.school import School
from edugate.models.school_admin import SchoolAdmin
from edugate.schemas.permissions import AdminPermissionsOut, MigrationResult, PermissionOut
from edugate.services import notifications
from edugate.utils.audit import record_permission_change

logger = logging.getLogger("edugate.grants")


# ── Loading ──────────────────────────────────────────────────

async def get_admin(db: AsyncSession, school_id: str, admin_id: str) -> SchoolAdmin | None:
    result = await db.execute(
        select(SchoolAdmin).where(
            SchoolAdmin.id == admin_id,
            SchoolAdmin.school_id == school_id,
        )
    )
    return result.scalar_one_or_none()


async def get_admin_for_user(db: AsyncSession, school_id: str, user_id: str) -> SchoolAdmin | None:
    """The caller's own admin profile in `school_id`, if any."""
    result = await db.execute(
        select(SchoolAdmin).where(
            SchoolAdmin.user_id == user_id,
            SchoolAdmin.school_id == school_id,
        )
    )
    return result.scalar_one_or_none()


async def load_grants(db: AsyncSession, admin_id: str) -> list[Permission]:
    """Current granted permissions of an admin, in catalog order."""
    result = await db.execute(
        select(Permission)
        .join(StaffPermission, StaffPermission.permission_id == Permission.id)
        .where(StaffPermission.admin_id == admin_id)
    )
    return sorted(result.scalars().all(), key=lambda p: sort_key(p.resource, p.type))


def _build_out(admin: SchoolAdmin, permissions: list[Permission]) -> AdminPermissionsOut:
    return AdminPermissionsOut(
        admin_id=admin.id,
        admin_name=admin.full_name,
        role=admin.role,
        is_principal=admin.is_principal,
        permissions=[PermissionOut.model_validate(p) for p in permissions],
    )


# ── Reads ────────────────────────────────────────────────────

async def get_grants_for(db: AsyncSession, school_id: str, admin_id: str) -> AdminPermissionsOut:
    """Role and current permissions of an admin in a school.

    Principals are reported with an empty list; their access does not
    come from grants.
    """
    admin = await get_admin(db, school_id, admin_id)
    if not admin:
        raise ResourceNotFoundError("Admin", admin_id)
    if admin.is_principal:
        return _build_out(admin, [])
    return _build_out(admin, await load_grants(db, admin.id))


async def has_permission(
    db: AsyncSession,
    admin_id: str,
    resource: PermissionResource,
    type_: PermissionType,
) -> bool:
    admin = await db.get(SchoolAdmin, admin_id)
    if not admin:
        return False
    if admin.is_principal:
        return True
    return evaluate(admin.role, await load_grants(db, admin.id), resource, type_)


async def has_admin_permission(
    db: AsyncSession,
    admin_id: str,
    resource: PermissionResource,
) -> bool:
    admin = await db.get(SchoolAdmin, admin_id)
    if not admin:
        return False
    if admin.is_principal:
        return True
    return has_admin_access(admin.role, await load_grants(db, admin.id), resource)


# ── Writes ───────────────────────────────────────────────────

async def _check_caller_authority(
    db: AsyncSession,
    school_id: str,
    caller: Identity,
    requested: list[Permission],
) -> None:
    """Raise PermissionDeniedError unless `caller` may assign `requested`."""
    caller_admin = await get_admin_for_user(db, school_id, caller.user_id)
    if not caller_admin:
        logger.warning(
            "Permission change denied: caller %s has no admin profile in school %s",
            caller.user_id,
            school_id,
        )
        raise PermissionDeniedError("You do not have access to this school")

    if caller_admin.is_principal:
        return

    caller_keys = grant_keys(await load_grants(db, caller_admin.id))

    if (PermissionResource.STAFF, PermissionType.ADMIN) not in caller_keys:
        logger.warning(
            "Permission change denied: caller %s lacks STAFF:ADMIN in school %s",
            caller.user_id,
            school_id,
        )
        raise PermissionDeniedError(
            "You need STAFF:ADMIN permission to modify other administrators' permissions"
        )

    for perm in requested:
        if perm.type != PermissionType.ADMIN:
            continue
        if (PermissionResource(perm.resource), PermissionType.ADMIN) not in caller_keys:
            logger.warning(
                "Permission change denied: caller %s tried to grant %s without holding it",
                caller.user_id,
                format_key(perm.resource, perm.type),
            )
            raise PermissionDeniedError(
                f"You cannot assign {format_key(perm.resource, perm.type)} permission "
                "as you don't have it yourself"
            )


async def assign_permissions(
    db: AsyncSession,
    school_id: str,
    admin_id: str,
    permission_ids: list[str],
    caller: Identity | None = None,
    caller_ip: str | None = None,
) -> AdminPermissionsOut:
    """Replace an admin's grants with exactly `permission_ids`.

    `caller` is None for system jobs. Platform callers skip the
    in-school authority checks. All writes go into the session's current
    transaction; nothing is visible to other sessions until it commits.
    """
    target = await get_admin(db, school_id, admin_id)
    if not target:
        raise ResourceNotFoundError("Admin", admin_id)

    if target.is_principal:
        raise InvalidOperationError(
            "Principal permissions cannot be modified. Principals have permanent "
            "full access to all school resources."
        )

    wanted_ids = list(dict.fromkeys(permission_ids))
    result = await db.execute(select(Permission).where(Permission.id.in_(wanted_ids)))
    requested = result.scalars().all() if wanted_ids else []

    if caller is not None and not caller.is_platform:
        await _check_caller_authority(db, school_id, caller, requested)

    if len(requested) != len(wanted_ids):
        found = {p.id for p in requested}
        raise InvalidInputError(
            "One or more permissions not found",
            details={"unknown_permission_ids": [pid for pid in wanted_ids if pid not in found]},
        )

    previous = await db.execute(
        select(StaffPermission.permission_id).where(StaffPermission.admin_id == target.id)
    )
    previous_ids = [row[0] for row in previous.all()]

    await db.execute(delete(StaffPermission).where(StaffPermission.admin_id == target.id))
    if wanted_ids:
        await db.execute(
            insert(StaffPermission),
            [{"admin_id": target.id, "permission_id": pid} for pid in wanted_ids],
        )

    await record_permission_change(
        db,
        school_id=school_id,
        target=target,
        caller=caller,
        caller_ip=caller_ip,
        previous_ids=previous_ids,
        new_ids=wanted_ids,
    )

    granted = sorted(requested, key=lambda p: sort_key(p.resource, p.type))

    if target.email and granted:
        school = await db.get(School, school_id)
        notifications.enqueue(
            db,
            kind=notifications.KIND_PERMISSION_ASSIGNMENT,
            recipient=target.email,
            subject=f"Your permissions at {school.name if school else 'your school'} were updated",
            payload={
                "admin_name": target.full_name,
                "school_name": school.name if school else None,
                "permissions": [
                    {
                        "resource": p.resource.value,
                        "type": p.type.value,
                        "description": p.description,
                    }
                    for p in granted
                ],
            },
        )

    await db.flush()
    return _build_out(target, granted)


async def migrate_existing_admins(db: AsyncSession, school_id: str) -> MigrationResult:
    """Give every non-Principal admin with no grants all READ permissions.

    For accounts created before the permission system existed.
    """
    result = await db.execute(
        select(Permission).where(Permission.type == PermissionType.READ)
    )
    read_permissions = result.scalars().all()
    if not read_permissions:
        raise InvalidOperationError(
            "No READ permissions found. Initialise the permission catalog first."
        )

    result = await db.execute(select(SchoolAdmin).where(SchoolAdmin.school_id == school_id))
    admins = result.scalars().all()

    migrated = skipped = 0
    for admin in admins:
        if is_principal_role(admin.role):
            skipped += 1
            continue

        existing = await db.execute(
            select(StaffPermission.permission_id)
            .where(StaffPermission.admin_id == admin.id)
            .limit(1)
        )
        if existing.first() is not None:
            skipped += 1
            continue

        await db.execute(
            insert(StaffPermission),
            [{"admin_id": admin.id, "permission_id": p.id} for p in read_permissions],
        )
        migrated += 1

    await db.flush()
    logger.info(
        "Migrated admins in school %s: %d migrated, %d skipped", school_id, migrated, skipped
    )
    return MigrationResult(migrated=migrated, skipped=skipped)
