"""geofence alerting schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(50)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("clients.id")),
        sa.Column("username", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.CheckConstraint("role IN ('operator', 'tenant_user')", name="chk_user_role"),
        sa.CheckConstraint(
            "(role = 'tenant_user' AND client_id IS NOT NULL) OR role = 'operator'",
            name="chk_user_tenant_client",
        ),
    )
    op.create_index("ix_users_client_id", "users", ["client_id"])
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "geofences",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="zona-permitida"),
        sa.Column("color", sa.String(20), nullable=False, server_default="#1fb6aa"),
        sa.Column("geometry", postgresql.JSONB(), nullable=False),
        sa.Column("owner_kind", sa.String(20), nullable=False),
        sa.Column("owner_client_id", sa.Uuid(), sa.ForeignKey("clients.id")),
        sa.Column("alert_mode", sa.String(20), nullable=False, server_default="entry_and_exit"),
        sa.Column("entry_labels", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("exit_labels", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("state", sa.String(20), nullable=False, server_default="active"),
        _timestamp("deleted_at"),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("owner_kind IN ('platform', 'tenant')", name="chk_geofence_owner_kind"),
        sa.CheckConstraint(
            "(owner_kind = 'platform' AND owner_client_id IS NULL)"
            " OR (owner_kind = 'tenant' AND owner_client_id IS NOT NULL)",
            name="chk_geofence_owner_client",
        ),
        sa.CheckConstraint(
            "alert_mode IN ('entry_only', 'exit_only', 'entry_and_exit', 'none')",
            name="chk_geofence_alert_mode",
        ),
        sa.CheckConstraint("state IN ('active', 'deleted')", name="chk_geofence_state"),
    )
    op.create_index("idx_geofences_owner", "geofences", ["owner_kind", "owner_client_id"])
    op.create_index("ix_geofences_state", "geofences", ["state"])
    op.create_index("ix_geofences_created_at", "geofences", ["created_at"])

    op.create_table(
        "geofence_assignments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("geofence_id", sa.Uuid(), sa.ForeignKey("geofences.id", ondelete="CASCADE"), nullable=False),
        sa.Column("scope", sa.String(20), nullable=False),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("clients.id", ondelete="CASCADE")),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id")),
        _timestamp("created_at"),
        sa.CheckConstraint("scope IN ('global', 'client')", name="chk_assignment_scope"),
        sa.CheckConstraint(
            "(scope = 'global' AND client_id IS NULL) OR (scope = 'client' AND client_id IS NOT NULL)",
            name="chk_assignment_scope_client",
        ),
        sa.UniqueConstraint("geofence_id", "client_id", name="uq_assignment_geofence_client"),
    )
    op.create_index("ix_geofence_assignments_geofence_id", "geofence_assignments", ["geofence_id"])
    op.create_index("ix_geofence_assignments_client_id", "geofence_assignments", ["client_id"])
    op.create_index(
        "uq_assignment_geofence_global",
        "geofence_assignments",
        ["geofence_id"],
        unique=True,
        postgresql_where=sa.text("scope = 'global'"),
    )

    op.create_table(
        "geofence_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("vehicle_id", sa.String(100), nullable=False),
        sa.Column("geofence_id", sa.Uuid(), sa.ForeignKey("geofences.id"), nullable=False),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        _timestamp("occurred_at", nullable=False),
        sa.Column("dedupe_key", sa.String(64), nullable=False, unique=True),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("processed_at"),
        _timestamp("created_at"),
        sa.CheckConstraint("direction IN ('entry', 'exit')", name="chk_event_direction"),
    )
    op.create_index("ix_geofence_events_vehicle_id", "geofence_events", ["vehicle_id"])
    op.create_index("ix_geofence_events_geofence_id", "geofence_events", ["geofence_id"])
    op.create_index("ix_geofence_events_occurred_at", "geofence_events", ["occurred_at"])
    op.create_index("ix_geofence_events_processed", "geofence_events", ["processed"])
    op.create_index("ix_geofence_events_created_at", "geofence_events", ["created_at"])

    op.create_table(
        "notification_recipients",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("email", sa.String(255)),
        sa.Column("whatsapp", sa.String(50)),
        sa.Column("channels", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("alert_types", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("geofence_ids", postgresql.JSONB()),
        sa.Column("vehicle_ids", postgresql.JSONB()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_notification_recipients_client_id", "notification_recipients", ["client_id"])
    op.create_index("ix_notification_recipients_is_active", "notification_recipients", ["is_active"])

    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_id", sa.Uuid(), sa.ForeignKey("geofence_events.id"), nullable=False),
        sa.Column(
            "recipient_id",
            sa.Uuid(),
            sa.ForeignKey("notification_recipients.id", ondelete="SET NULL"),
        ),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("destination", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(255)),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text()),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("sent_at"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("channel IN ('email', 'whatsapp')", name="chk_delivery_channel"),
        sa.CheckConstraint(
            "status IN ('pending', 'sent', 'failed', 'skipped')",
            name="chk_delivery_status",
        ),
        sa.UniqueConstraint("event_id", "recipient_id", "channel", name="uq_delivery_event_recipient_channel"),
    )
    op.create_index("ix_notification_deliveries_event_id", "notification_deliveries", ["event_id"])
    op.create_index("ix_notification_deliveries_recipient_id", "notification_deliveries", ["recipient_id"])
    op.create_index("ix_notification_deliveries_status", "notification_deliveries", ["status"])
    op.create_index("ix_notification_deliveries_created_at", "notification_deliveries", ["created_at"])
    op.create_index("idx_deliveries_pending", "notification_deliveries", ["status", "updated_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("actor_id", sa.Uuid(), sa.ForeignKey("users.id")),
        sa.Column("actor_name", sa.String(255)),
        sa.Column("actor_role", sa.String(20)),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("resource_type", sa.String(30), nullable=False),
        sa.Column("resource_id", sa.String(64)),
        sa.Column("details", postgresql.JSONB()),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.String(512)),
        _timestamp("created_at"),
    )
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_resource_type", "audit_log", ["resource_type"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("notification_deliveries")
    op.drop_table("notification_recipients")
    op.drop_table("geofence_events")
    op.drop_index("uq_assignment_geofence_global", table_name="geofence_assignments")
    op.drop_table("geofence_assignments")
    op.drop_table("geofences")
    op.drop_table("users")
    op.drop_table("clients")
