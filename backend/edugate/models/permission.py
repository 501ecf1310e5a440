"""Permission catalog and the admin ↔ permission grant table."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from edugate.auth.permissions import PermissionResource, PermissionType
from edugate.database import Base


class Permission(Base):
    """Immutable catalog entry, unique per (resource, type)."""

    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("resource", "type", name="uq_permissions_resource_type"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    resource: Mapped[PermissionResource] = mapped_column(
        SAEnum(PermissionResource, native_enum=False, length=32),
        nullable=False,
        index=True,
    )
    type: Mapped[PermissionType] = mapped_column(
        SAEnum(PermissionType, native_enum=False, length=16),
        nullable=False,
        index=True,
    )
    description: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class StaffPermission(Base):
    """A grant. Replaced wholesale on every assignment."""

    __tablename__ = "staff_permissions"

    admin_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("school_admins.id", ondelete="CASCADE"),
        primary_key=True,
    )
    permission_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
