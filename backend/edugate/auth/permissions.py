"""Resource x action permission model for school administrators.

Design:
  - The catalog is the full cross-product of PermissionResource and
    PermissionType. Entries are seeded into the `permissions` table and
    referenced by `staff_permissions` grants.
  - A Principal (any role string containing "principal", case-insensitive)
    bypasses grants entirely and can never be edited.
  - ADMIN on a resource subsumes READ and WRITE on that same resource.
  - Everything in this module is pure: callers load grants and pass them in.

Both enums are persisted by value, so members must never be renamed.
"""

from __future__ import annotations

import enum
from typing import Iterable


class PermissionResource(str, enum.Enum):
    OVERVIEW = "OVERVIEW"
    ANALYTICS = "ANALYTICS"
    SUBSCRIPTIONS = "SUBSCRIPTIONS"
    STUDENTS = "STUDENTS"
    STAFF = "STAFF"
    CLASSES = "CLASSES"
    SUBJECTS = "SUBJECTS"
    TIMETABLES = "TIMETABLES"
    CALENDAR = "CALENDAR"
    ADMISSIONS = "ADMISSIONS"
    SESSIONS = "SESSIONS"
    EVENTS = "EVENTS"
    GRADES = "GRADES"
    CURRICULUM = "CURRICULUM"
    RESOURCES = "RESOURCES"
    TRANSFERS = "TRANSFERS"
    INTEGRATIONS = "INTEGRATIONS"


class PermissionType(str, enum.Enum):
    READ = "READ"
    WRITE = "WRITE"
    ADMIN = "ADMIN"


RESOURCE_NAMES: dict[PermissionResource, str] = {
    PermissionResource.OVERVIEW: "Dashboard Overview",
    PermissionResource.ANALYTICS: "Analytics",
    PermissionResource.SUBSCRIPTIONS: "Subscriptions",
    PermissionResource.STUDENTS: "Students",
    PermissionResource.STAFF: "Staff",
    PermissionResource.CLASSES: "Classes",
    PermissionResource.SUBJECTS: "Subjects",
    PermissionResource.TIMETABLES: "Timetables",
    PermissionResource.CALENDAR: "Calendar",
    PermissionResource.ADMISSIONS: "Admissions",
    PermissionResource.SESSIONS: "Sessions",
    PermissionResource.EVENTS: "Events",
    PermissionResource.GRADES: "Grades",
    PermissionResource.CURRICULUM: "Curriculum",
    PermissionResource.RESOURCES: "Class Resources",
    PermissionResource.TRANSFERS: "Student Transfers",
    PermissionResource.INTEGRATIONS: "External Integrations",
}

TYPE_NAMES: dict[PermissionType, str] = {
    PermissionType.READ: "Read",
    PermissionType.WRITE: "Write",
    PermissionType.ADMIN: "Admin",
}

PermissionKey = tuple[PermissionResource, PermissionType]


def describe(resource: PermissionResource, type_: PermissionType) -> str:
    """Human-readable catalog description, e.g. 'Read access to Students'."""
    return f"{TYPE_NAMES[type_]} access to {RESOURCE_NAMES[resource]}"


def catalog_entries() -> list[tuple[PermissionResource, PermissionType, str]]:
    """Every (resource, type, description) the catalog must contain."""
    return [
        (resource, type_, describe(resource, type_))
        for resource in PermissionResource
        for type_ in PermissionType
    ]


_RESOURCE_ORDER = {r: i for i, r in enumerate(PermissionResource)}
_TYPE_ORDER = {t: i for i, t in enumerate(PermissionType)}


def sort_key(resource: str, type_: str) -> tuple[int, int]:
    """Order by declaration order of resource, then type (READ < WRITE < ADMIN)."""
    return (
        _RESOURCE_ORDER[PermissionResource(resource)],
        _TYPE_ORDER[PermissionType(type_)],
    )


# ── Role classification ─────────────────────────────────────

PRINCIPAL_MARKER = "principal"


def is_principal_role(role: str | None) -> bool:
    """True for any role containing "principal", case-insensitively.

    This matches "Principal" but also "Vice Principal" and
    "principal-assistant". Narrowing it needs product sign-off.
    """
    if not role:
        return False
    return PRINCIPAL_MARKER in role.lower()


# ── Evaluation ──────────────────────────────────────────────

def grant_keys(granted: Iterable) -> set[PermissionKey]:
    """Normalise grants to a set of (resource, type) keys.

    Accepts (resource, type) tuples or objects exposing `.resource` and
    `.type` (Permission rows, schema objects).
    """
    keys: set[PermissionKey] = set()
    for g in granted:
        if isinstance(g, tuple):
            resource, type_ = g
        else:
            resource, type_ = g.resource, g.type
        keys.add((PermissionResource(resource), PermissionType(type_)))
    return keys


def has_admin_access(
    role: str | None,
    granted: Iterable,
    resource: PermissionResource,
) -> bool:
    """Principal, or holds ADMIN on `resource`."""
    if is_principal_role(role):
        return True
    return (PermissionResource(resource), PermissionType.ADMIN) in grant_keys(granted)


def has_permission(
    role: str | None,
    granted: Iterable,
    resource: PermissionResource,
    type_: PermissionType,
) -> bool:
    """Decide whether an actor may perform `type_` on `resource`.

    1. Principal → allow.
    2. ADMIN on the resource → allow.
    3. Exact (resource, type) grant → allow.
    4. Otherwise deny.
    """
    if is_principal_role(role):
        return True
    keys = grant_keys(granted)
    resource = PermissionResource(resource)
    if (resource, PermissionType.ADMIN) in keys:
        return True
    return (resource, PermissionType(type_)) in keys


def format_key(resource: PermissionResource | str, type_: PermissionType | str) -> str:
    return f"{PermissionResource(resource).value}:{PermissionType(type_).value}"
