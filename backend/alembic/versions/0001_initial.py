"""Initial schema: schools, admins, permission catalog, grants, edit tokens,
audit events and the notification outbox.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-16

Run with:
    alembic upgrade head
    python -m edugate.cli init-permissions
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Tenants and identities ───────────────────────────────

    op.create_table(
        "schools",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("subdomain", sa.String(63), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(30)),
        sa.Column("address", sa.String(500)),
        sa.Column("has_primary", sa.Boolean(), server_default="false"),
        sa.Column("has_secondary", sa.Boolean(), server_default="false"),
        sa.Column("has_tertiary", sa.Boolean(), server_default="false"),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_schools_subdomain", "schools", ["subdomain"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20)),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "school_admins",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("school_id", sa.String(36), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("role", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "school_id", name="uq_school_admins_user_school"),
    )
    op.create_index("ix_school_admins_user_id", "school_admins", ["user_id"])
    op.create_index("ix_school_admins_school_id", "school_admins", ["school_id"])

    # ── Permission catalog and grants ────────────────────────

    op.create_table(
        "permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("resource", sa.String(32), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("description", sa.String(255)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("resource", "type", name="uq_permissions_resource_type"),
    )
    op.create_index("ix_permissions_resource", "permissions", ["resource"])
    op.create_index("ix_permissions_type", "permissions", ["type"])

    op.create_table(
        "staff_permissions",
        sa.Column("admin_id", sa.String(36), sa.ForeignKey("school_admins.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.String(36), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_staff_permissions_permission_id", "staff_permissions", ["permission_id"])

    # ── Approval tokens ──────────────────────────────────────

    op.create_table(
        "school_profile_edit_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("token", sa.String(80), nullable=False),
        sa.Column("school_id", sa.String(36), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("admin_id", sa.String(36), sa.ForeignKey("school_admins.id", ondelete="CASCADE"), nullable=False),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime()),
    )
    op.create_index("ix_school_profile_edit_tokens_token", "school_profile_edit_tokens", ["token"], unique=True)
    op.create_index("ix_school_profile_edit_tokens_school_id", "school_profile_edit_tokens", ["school_id"])
    op.create_index("ix_school_profile_edit_tokens_expires_at", "school_profile_edit_tokens", ["expires_at"])

    # ── Audit and outbox ─────────────────────────────────────

    op.create_table(
        "permission_audit_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event", sa.String(50), nullable=False),
        sa.Column("school_id", sa.String(36), nullable=False),
        sa.Column("target_admin_id", sa.String(36), nullable=False),
        sa.Column("target_admin_name", sa.String(200), nullable=False),
        sa.Column("target_admin_role", sa.String(100), nullable=False),
        sa.Column("caller_user_id", sa.String(36), nullable=False),
        sa.Column("caller_ip", sa.String(64), nullable=False),
        sa.Column("previous_count", sa.Integer(), nullable=False),
        sa.Column("new_count", sa.Integer(), nullable=False),
        sa.Column("added_ids", sa.JSON(), nullable=False),
        sa.Column("removed_ids", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_permission_audit_events_event", "permission_audit_events", ["event"])
    op.create_index("ix_permission_audit_events_school_id", "permission_audit_events", ["school_id"])
    op.create_index("ix_permission_audit_events_target_admin_id", "permission_audit_events", ["target_admin_id"])
    op.create_index("ix_permission_audit_events_created_at", "permission_audit_events", ["created_at"])

    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("delivered_at", sa.DateTime()),
    )
    op.create_index("ix_notification_outbox_kind", "notification_outbox", ["kind"])
    op.create_index("ix_notification_outbox_delivered_at", "notification_outbox", ["delivered_at"])


def downgrade() -> None:
    op.drop_table("notification_outbox")
    op.drop_table("permission_audit_events")
    op.drop_table("school_profile_edit_tokens")
    op.drop_table("staff_permissions")
    op.drop_table("permissions")
    op.drop_table("school_admins")
    op.drop_table("users")
    op.drop_table("schools")
