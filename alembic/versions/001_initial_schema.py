"""Initial schema: users, schemes, applications, grievances, notifications.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

user_role = sa.Enum("officer", "family_member", "admin", name="userrole")
scheme_status = sa.Enum("draft", "active", "suspended", "closed", name="schemestatus")
eligibility_type = sa.Enum("officer", "family_member", "both", name="eligibilitytype")
application_status = sa.Enum(
    "pending", "under_review", "approved", "rejected", "withdrawn", name="applicationstatus"
)
grievance_status = sa.Enum(
    "pending", "acknowledged", "in_progress", "resolved", "closed", "escalated", name="grievancestatus"
)
notification_type = sa.Enum(
    "welfare_scheme",
    "scheme_deadline_reminder",
    "weekly_reminder",
    "application_status",
    "grievance_update",
    "grievance_overdue",
    "grievance_escalated",
    "emergency_alert",
    "marketplace_inquiry",
    "message_received",
    "birthday_wish",
    "admin_reminder",
    "system_announcement",
    "other",
    name="notificationtype",
)
notification_priority = sa.Enum("low", "medium", "high", "critical", name="notificationpriority")
notification_status = sa.Enum("pending", "sent", "delivered", "read", "failed", name="notificationstatus")
notification_source = sa.Enum("system", "admin", "automated", "user_action", name="notificationsource")
entity_type = sa.Enum(
    "WelfareScheme",
    "Application",
    "Grievance",
    "EmergencyAlert",
    "MarketplaceItem",
    "Message",
    "User",
    name="entitytype",
)
user_action = sa.Enum("clicked", "dismissed", "snoozed", "deleted", name="useraction")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("full_name", sa.String(255), server_default=""),
        sa.Column("phone", sa.String(50), server_default=""),
        sa.Column("role", user_role, nullable=False),
        sa.Column("service_status", sa.String(20), server_default="active"),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("notification_ids", JSONB(), server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "welfare_schemes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("category", sa.String(50), server_default="other"),
        sa.Column("eligibility_type", eligibility_type, nullable=False),
        sa.Column("status", scheme_status),
        sa.Column("application_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_schemes_status_deadline", "welfare_schemes", ["status", "application_deadline"])

    op.create_table(
        "applications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "scheme_id", UUID(as_uuid=True), sa.ForeignKey("welfare_schemes.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("applicant_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", application_status),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_applications_scheme_id", "applications", ["scheme_id"])
    op.create_index("ix_applications_applicant_id", "applications", ["applicant_id"])
    op.create_index("idx_applications_status_created", "applications", ["status", "created_at"])

    op.create_table(
        "grievances",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("ticket_number", sa.String(30), unique=True, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("submitted_by", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assigned_to", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("status", grievance_status),
        sa.Column("escalation_level", sa.Integer(), server_default="0"),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalation_reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_grievances_submitted_by", "grievances", ["submitted_by"])
    op.create_index("ix_grievances_assigned_to", "grievances", ["assigned_to"])
    op.create_index("idx_grievances_status_created", "grievances", ["status", "created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("recipient_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("message", sa.String(500), nullable=False),
        sa.Column("type", notification_type, nullable=False),
        sa.Column("priority", notification_priority),
        sa.Column("status", notification_status, nullable=False),
        sa.Column("source", notification_source),
        sa.Column("related_entity_type", entity_type, nullable=True),
        sa.Column("related_entity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("channels", JSONB()),
        sa.Column("metadata", JSONB(), server_default="{}"),
        sa.Column("batch_id", sa.String(36), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clicked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("action_taken", user_action, nullable=True),
        sa.Column("action_taken_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_batch_id", "notifications", ["batch_id"])
    op.create_index("idx_notifications_recipient_created", "notifications", ["recipient_id", "created_at"])
    op.create_index("idx_notifications_recipient_read", "notifications", ["recipient_id", "read_at"])
    op.create_index("idx_notifications_status_scheduled", "notifications", ["status", "scheduled_for"])
    op.create_index("idx_notifications_related", "notifications", ["related_entity_type", "related_entity_id"])
    op.create_index("idx_notifications_type", "notifications", ["type"])

    op.create_table(
        "notification_delivery_attempts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "notification_id",
            UUID(as_uuid=True),
            sa.ForeignKey("notifications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("channel", sa.String(10), nullable=False),
        sa.Column("attempted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("response", JSONB(), nullable=True),
    )
    op.create_index(
        "ix_notification_delivery_attempts_notification_id",
        "notification_delivery_attempts",
        ["notification_id"],
    )


def downgrade() -> None:
    op.drop_table("notification_delivery_attempts")
    op.drop_table("notifications")
    op.drop_table("grievances")
    op.drop_table("applications")
    op.drop_table("welfare_schemes")
    op.drop_table("users")
    for enum_type in (
        user_action,
        entity_type,
        notification_source,
        notification_status,
        notification_priority,
        notification_type,
        grievance_status,
        application_status,
        eligibility_type,
        scheme_status,
        user_role,
    ):
        enum_type.drop(op.get_bind(), checkfirst=True)
