import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.db import Base


class NotificationType(enum.Enum):
    task_created = "task_created"
    task_updated = "task_updated"
    task_completed = "task_completed"
    task_overdue = "task_overdue"
    task_assigned = "task_assigned"
    task_comment = "task_comment"
    milestone_created = "milestone_created"
    milestone_updated = "milestone_updated"
    milestone_completed = "milestone_completed"
    milestone_overdue = "milestone_overdue"
    milestone_approved = "milestone_approved"
    milestone_rejected = "milestone_rejected"
    booking_created = "booking_created"
    booking_updated = "booking_updated"
    booking_cancelled = "booking_cancelled"
    booking_confirmed = "booking_confirmed"
    booking_approved = "booking_approved"
    booking_reminder = "booking_reminder"
    booking_completed = "booking_completed"
    payment_received = "payment_received"
    payment_failed = "payment_failed"
    invoice_created = "invoice_created"
    invoice_overdue = "invoice_overdue"
    invoice_paid = "invoice_paid"
    request_created = "request_created"
    request_updated = "request_updated"
    request_approved = "request_approved"
    request_rejected = "request_rejected"
    message_received = "message_received"
    document_uploaded = "document_uploaded"
    document_approved = "document_approved"
    document_rejected = "document_rejected"
    system_announcement = "system_announcement"
    maintenance_scheduled = "maintenance_scheduled"
    deadline_approaching = "deadline_approaching"
    project_delayed = "project_delayed"
    client_feedback = "client_feedback"
    team_mention = "team_mention"


class NotificationPriority(enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class EmailTemplateStyle(enum.Enum):
    modern = "modern"
    minimal = "minimal"
    corporate = "corporate"


class EmailDeliveryStatus(enum.Enum):
    sent = "sent"
    failed = "failed"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
        Index("ix_notifications_expires_at", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType, name="notificationtype"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSON)
    priority: Mapped[NotificationPriority] = mapped_column(
        Enum(NotificationPriority, name="notificationpriority"), default=NotificationPriority.medium
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    action_url: Mapped[str | None] = mapped_column(String(500))
    action_label: Mapped[str | None] = mapped_column(String(120))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class NotificationSettings(Base):
    __tablename__ = "notification_settings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)
    task_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    milestone_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    booking_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    payment_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    invoice_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    message_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    document_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    system_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    email_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    email_template_style: Mapped[EmailTemplateStyle] = mapped_column(
        Enum(EmailTemplateStyle, name="emailtemplatestyle"), default=EmailTemplateStyle.modern
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class EmailPreference(Base):
    __tablename__ = "user_email_preferences"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    disabled_types: Mapped[list | None] = mapped_column(JSON)
    template_style: Mapped[EmailTemplateStyle | None] = mapped_column(
        Enum(EmailTemplateStyle, name="emailtemplatestyle")
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class EmailNotificationLog(Base):
    __tablename__ = "email_notification_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    notification_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="SET NULL"), index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(60), nullable=False)
    status: Mapped[EmailDeliveryStatus] = mapped_column(
        Enum(EmailDeliveryStatus, name="emaildeliverystatus"), nullable=False
    )
    provider: Mapped[str | None] = mapped_column(String(40))
    provider_message_id: Mapped[str | None] = mapped_column(String(255))
    error_message: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
