"""Initial schema for bookings progress and notifications.

Revision ID: 5b8e1f0c2a91
Revises:
Create Date: 2026-10-17
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "5b8e1f0c2a91"
down_revision = None
branch_labels = None
depends_on = None

NOTIFICATION_TYPES = (
    "task_created",
    "task_updated",
    "task_completed",
    "task_overdue",
    "task_assigned",
    "task_comment",
    "milestone_created",
    "milestone_updated",
    "milestone_completed",
    "milestone_overdue",
    "milestone_approved",
    "milestone_rejected",
    "booking_created",
    "booking_updated",
    "booking_cancelled",
    "booking_confirmed",
    "booking_approved",
    "booking_reminder",
    "booking_completed",
    "payment_received",
    "payment_failed",
    "invoice_created",
    "invoice_overdue",
    "invoice_paid",
    "request_created",
    "request_updated",
    "request_approved",
    "request_rejected",
    "message_received",
    "document_uploaded",
    "document_approved",
    "document_rejected",
    "system_announcement",
    "maintenance_scheduled",
    "deadline_approaching",
    "project_delayed",
    "client_feedback",
    "team_mention",
)

WORK_STATUSES = ("pending", "in_progress", "completed", "cancelled", "on_hold")


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    bookingstatus = sa.Enum("pending", "approved", "in_progress", "completed", "cancelled", name="bookingstatus")
    milestonestatus = sa.Enum(*WORK_STATUSES, name="milestonestatus")
    taskstatus = sa.Enum(*WORK_STATUSES, name="taskstatus")
    notificationtype = sa.Enum(*NOTIFICATION_TYPES, name="notificationtype")
    notificationpriority = sa.Enum("low", "medium", "high", "urgent", name="notificationpriority")
    emailtemplatestyle = sa.Enum("modern", "minimal", "corporate", name="emailtemplatestyle")
    emaildeliverystatus = sa.Enum("sent", "failed", name="emaildeliverystatus")
    approvalstatus = sa.Enum("approved", "rejected", name="approvalstatus")

    op.create_table(
        "profiles",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"])

    op.create_table(
        "bookings",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("service_name", sa.String(length=200), nullable=True),
        sa.Column("client_id", _uuid(), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("provider_id", _uuid(), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("status", bookingstatus, nullable=True),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("project_progress", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("project_progress >= 0 AND project_progress <= 100", name="ck_bookings_progress_range"),
    )

    op.create_table(
        "milestones",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("booking_id", _uuid(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", milestonestatus, nullable=True),
        sa.Column("weight", sa.Float(), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("actual_hours", sa.Float(), nullable=True),
        sa.Column("progress_percentage", sa.Integer(), nullable=True),
        sa.Column("overdue_notified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "progress_percentage >= 0 AND progress_percentage <= 100", name="ck_milestones_progress_range"
        ),
    )
    op.create_index("ix_milestones_booking_id", "milestones", ["booking_id"])

    op.create_table(
        "tasks",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("milestone_id", _uuid(), sa.ForeignKey("milestones.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("status", taskstatus, nullable=True),
        sa.Column("weight", sa.Float(), nullable=True),
        sa.Column("progress_percentage", sa.Integer(), nullable=True),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("actual_hours", sa.Float(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_to", _uuid(), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=True),
        sa.Column("overdue_notified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("weight > 0", name="ck_tasks_weight_positive"),
    )
    op.create_index("ix_tasks_milestone_id", "tasks", ["milestone_id"])

    op.create_table(
        "milestone_approvals",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("milestone_id", _uuid(), sa.ForeignKey("milestones.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", _uuid(), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("status", approvalstatus, nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_milestone_approvals_milestone_id", "milestone_approvals", ["milestone_id"])

    op.create_table(
        "time_entries",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", _uuid(), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("duration_hours", sa.Float(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("logged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("duration_hours > 0", name="ck_time_entries_duration_positive"),
    )
    op.create_index("ix_time_entries_task_id", "time_entries", ["task_id"])

    op.create_table(
        "notifications",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("type", notificationtype, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("priority", notificationpriority, nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("action_url", sa.String(length=500), nullable=True),
        sa.Column("action_label", sa.String(length=120), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "is_read"])
    op.create_index("ix_notifications_expires_at", "notifications", ["expires_at"])

    op.create_table(
        "notification_settings",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), nullable=False, unique=True),
        sa.Column("task_notifications", sa.Boolean(), nullable=True),
        sa.Column("milestone_notifications", sa.Boolean(), nullable=True),
        sa.Column("booking_notifications", sa.Boolean(), nullable=True),
        sa.Column("payment_notifications", sa.Boolean(), nullable=True),
        sa.Column("invoice_notifications", sa.Boolean(), nullable=True),
        sa.Column("message_notifications", sa.Boolean(), nullable=True),
        sa.Column("document_notifications", sa.Boolean(), nullable=True),
        sa.Column("system_notifications", sa.Boolean(), nullable=True),
        sa.Column("email_notifications", sa.Boolean(), nullable=True),
        sa.Column("email_template_style", emailtemplatestyle, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "user_email_preferences",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), nullable=False, unique=True),
        sa.Column("email_enabled", sa.Boolean(), nullable=True),
        sa.Column("disabled_types", sa.JSON(), nullable=True),
        sa.Column("template_style", emailtemplatestyle, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "email_notification_logs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "notification_id",
            _uuid(),
            sa.ForeignKey("notifications.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("notification_type", sa.String(length=60), nullable=False),
        sa.Column("status", emaildeliverystatus, nullable=False),
        sa.Column("provider", sa.String(length=40), nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_email_notification_logs_notification_id", "email_notification_logs", ["notification_id"])


def downgrade() -> None:
    op.drop_index("ix_email_notification_logs_notification_id", table_name="email_notification_logs")
    op.drop_table("email_notification_logs")
    op.drop_table("user_email_preferences")
    op.drop_table("notification_settings")
    op.drop_index("ix_notifications_expires_at", table_name="notifications")
    op.drop_index("ix_notifications_user_read", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_time_entries_task_id", table_name="time_entries")
    op.drop_table("time_entries")
    op.drop_index("ix_milestone_approvals_milestone_id", table_name="milestone_approvals")
    op.drop_table("milestone_approvals")
    op.drop_index("ix_tasks_milestone_id", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_milestones_booking_id", table_name="milestones")
    op.drop_table("milestones")
    op.drop_table("bookings")
    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_table("profiles")

    bind = op.get_bind()
    for name in (
        "emaildeliverystatus",
        "approvalstatus",
        "emailtemplatestyle",
        "notificationpriority",
        "notificationtype",
        "taskstatus",
        "milestonestatus",
        "bookingstatus",
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)
