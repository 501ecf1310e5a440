"""Aggregate model imports for Alembic auto-detection."""

from edugate.models.school import School  # noqa: F401
from edugate.models.user import User, UserRole  # noqa: F401
from edugate.models.school_admin import SchoolAdmin  # noqa: F401
from edugate.models.permission import Permission, StaffPermission  # noqa: F401
from edugate.models.edit_token import SchoolProfileEditToken  # noqa: F401
from edugate.models.audit_event import PermissionAuditEvent  # noqa: F401
from edugate.models.outbox import OutboxMessage  # noqa: F401
