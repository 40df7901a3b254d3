from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from servicehub.models.notification import EmailTemplateStyle, NotificationPriority, NotificationType


class NotificationCreate(BaseModel):
    user_id: UUID
    type: NotificationType
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    data: dict[str, Any] | None = None
    priority: NotificationPriority = NotificationPriority.medium
    expires_at: datetime | None = None
    action_url: str | None = Field(default=None, max_length=500)
    action_label: str | None = Field(default=None, max_length=120)


class NotificationFromTemplate(BaseModel):
    user_id: UUID
    type: NotificationType
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] | None = None
    priority: NotificationPriority
    is_read: bool
    read_at: datetime | None = None
    expires_at: datetime | None = None
    action_url: str | None = None
    action_label: str | None = None
    created_at: datetime


class NotificationBulkAction(BaseModel):
    notification_ids: list[UUID] = Field(min_length=1)
    action: Literal["mark_read", "mark_unread", "delete"]


class NotificationStats(BaseModel):
    total: int
    unread: int
    by_type: dict[str, int]
    by_priority: dict[str, int]
    recent_count: int


class NotificationSettingsUpdate(BaseModel):
    task_notifications: bool | None = None
    milestone_notifications: bool | None = None
    booking_notifications: bool | None = None
    payment_notifications: bool | None = None
    invoice_notifications: bool | None = None
    message_notifications: bool | None = None
    document_notifications: bool | None = None
    system_notifications: bool | None = None
    email_notifications: bool | None = None
    email_template_style: EmailTemplateStyle | None = None


class NotificationSettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    task_notifications: bool = True
    milestone_notifications: bool = True
    booking_notifications: bool = True
    payment_notifications: bool = True
    invoice_notifications: bool = True
    message_notifications: bool = True
    document_notifications: bool = True
    system_notifications: bool = True
    email_notifications: bool = True
    email_template_style: EmailTemplateStyle = EmailTemplateStyle.modern


class ResendResult(BaseModel):
    notification_id: UUID
    sent: bool
