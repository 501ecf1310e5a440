"""School profile edits.

Fields fall into three groups:
  - basic (name, email, phone, address)  → applied directly
  - sensitive (school levels)            → only through a verified edit token
  - restricted (subdomain, is_active)    → never changeable by school admins
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from edugate.middleware.exceptions import (
    InvalidOperationError,
    PermissionDeniedError,
    ResourceNotFoundError,
)
from edugate.models.school import School
from edugate.schemas.school_profile import SchoolSnapshot

logger = logging.getLogger("edugate.school_profile")

BASIC_FIELDS = ("name", "email", "phone", "address")
RESTRICTED_FIELDS = ("id", "subdomain", "is_active")

# levels payload key → School column
LEVEL_COLUMNS = {
    "primary": "has_primary",
    "secondary": "has_secondary",
    "tertiary": "has_tertiary",
}


def check_restricted(changes: dict) -> None:
    present = [f for f in RESTRICTED_FIELDS if changes.get(f) is not None]
    if present:
        raise PermissionDeniedError(
            "You do not have permission to change restricted fields "
            f"({', '.join(RESTRICTED_FIELDS)})"
        )


def detect_sensitive_changes(school: School, changes: dict) -> dict:
    """Return the level flags in `changes` that differ from the school's.

    Keys are the payload names ("primary", ...). Levels given with their
    current value are not a change.
    """
    levels = changes.get("levels") or {}
    diff = {}
    for key, column in LEVEL_COLUMNS.items():
        value = levels.get(key)
        if value is not None and value != getattr(school, column):
            diff[key] = value
    return diff


def snapshot(school: School) -> SchoolSnapshot:
    return SchoolSnapshot.model_validate(school)


def apply_changes(school: School, changes: dict) -> None:
    """Copy basic fields and levels from `changes` onto `school`."""
    for field in BASIC_FIELDS:
        if changes.get(field) is not None:
            setattr(school, field, changes[field])
    levels = changes.get("levels") or {}
    for key, column in LEVEL_COLUMNS.items():
        if levels.get(key) is not None:
            setattr(school, column, levels[key])


async def get_school(db: AsyncSession, school_id: str) -> School:
    school = await db.get(School, school_id)
    if not school:
        raise ResourceNotFoundError("School", school_id)
    return school


async def update_school_profile(
    db: AsyncSession,
    school_id: str,
    changes: dict,
) -> SchoolSnapshot:
    """Apply a profile edit that carries no sensitive change.

    Level changes must go through request_token() / verify_token().
    """
    school = await get_school(db, school_id)
    check_restricted(changes)

    if detect_sensitive_changes(school, changes):
        raise InvalidOperationError(
            "Token verification required for school level changes. "
            "Please request a verification token first."
        )

    apply_changes(school, changes)
    await db.flush()
    logger.info(
        "School profile updated for %s",
        school_id,
        extra={"school_id": school_id, "fields": sorted(k for k, v in changes.items() if v is not None)},
    )
    return snapshot(school)
