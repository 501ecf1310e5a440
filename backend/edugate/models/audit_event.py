"""PermissionAuditEvent: append-only record of every grant change.

Written in the same transaction as the grant replacement, so an event
exists exactly when the change was committed.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from edugate.database import Base


class PermissionAuditEvent(Base):
    __tablename__ = "permission_audit_events"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    school_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── Target ─────────────────────────────────────────────────
    target_admin_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    target_admin_name: Mapped[str] = mapped_column(String(200), nullable=False)
    target_admin_role: Mapped[str] = mapped_column(String(100), nullable=False)

    # ── Caller ─────────────────────────────────────────────────
    caller_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    caller_ip: Mapped[str] = mapped_column(String(64), nullable=False)

    # ── Diff ───────────────────────────────────────────────────
    previous_count: Mapped[int] = mapped_column(Integer, nullable=False)
    new_count: Mapped[int] = mapped_column(Integer, nullable=False)
    added_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    removed_ids: Mapped[list] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
