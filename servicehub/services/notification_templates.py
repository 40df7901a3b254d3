"""Static notification template registry.

Each notification type has a title/message pair with ``{{placeholder}}``
fields, a default priority, an expiry window and an action link. Callers
supply the placeholder values through the notification ``data`` payload.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from servicehub.models.notification import NotificationPriority, NotificationType

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

_BOOKING_MILESTONES_URL = "/dashboard/bookings/{{booking_id}}/milestones"
_BOOKING_URL = "/dashboard/bookings/{{booking_id}}"
_INVOICES_URL = "/dashboard/invoices"
_REQUESTS_URL = "/dashboard/requests"
_DOCUMENTS_URL = "/dashboard/documents"
_NOTIFICATIONS_URL = "/dashboard/notifications"
_PROJECT_URL = "/dashboard/projects/{{project_id}}"


@dataclass(frozen=True)
class NotificationTemplate:
    type: NotificationType
    title_template: str
    message_template: str
    priority: NotificationPriority
    default_expires_in_hours: int | None
    action_url_template: str | None
    action_label: str | None


def _template(type_name, title, message, priority, hours, url, label) -> NotificationTemplate:
    return NotificationTemplate(
        type=NotificationType(type_name),
        title_template=title,
        message_template=message,
        priority=NotificationPriority(priority),
        default_expires_in_hours=hours,
        action_url_template=url,
        action_label=label,
    )


_LOW, _MEDIUM, _HIGH, _URGENT = "low", "medium", "high", "urgent"

TEMPLATES: dict[NotificationType, NotificationTemplate] = {
    t.type: t
    for t in (
        # Tasks
        _template(
            "task_created",
            "New Task: {{task_title}}",
            'A new task "{{task_title}}" has been created in {{milestone_title}} by {{actor_name}}.',
            _MEDIUM, 168, _BOOKING_MILESTONES_URL, "View Task",
        ),
        _template(
            "task_updated",
            "Task Updated: {{task_title}}",
            'Task "{{task_title}}" in {{milestone_title}} has been updated by {{actor_name}}.',
            _MEDIUM, 72, _BOOKING_MILESTONES_URL, "View Task",
        ),
        _template(
            "task_completed",
            "Task Completed: {{task_title}}",
            'Task "{{task_title}}" in {{milestone_title}} has been completed by {{actor_name}}.',
            _HIGH, 168, _BOOKING_MILESTONES_URL, "View Task",
        ),
        _template(
            "task_overdue",
            "Overdue Task: {{task_title}}",
            'Task "{{task_title}}" in {{milestone_title}} is overdue and needs attention.',
            _URGENT, 24, _BOOKING_MILESTONES_URL, "View Task",
        ),
        _template(
            "task_assigned",
            "Task Assigned: {{task_title}}",
            'You have been assigned task "{{task_title}}" in {{milestone_title}} by {{actor_name}}.',
            _HIGH, 72, _BOOKING_MILESTONES_URL, "View Task",
        ),
        _template(
            "task_comment",
            "New Comment on Task: {{task_title}}",
            '{{actor_name}} commented on task "{{task_title}}" in {{milestone_title}}.',
            _MEDIUM, 48, _BOOKING_MILESTONES_URL, "View Task",
        ),
        # Milestones
        _template(
            "milestone_created",
            "New Milestone: {{milestone_title}}",
            'A new milestone "{{milestone_title}}" has been created for {{project_name}} by {{actor_name}}.',
            _MEDIUM, 168, _BOOKING_MILESTONES_URL, "View Milestone",
        ),
        _template(
            "milestone_updated",
            "Milestone Updated: {{milestone_title}}",
            'Milestone "{{milestone_title}}" for {{project_name}} has been updated by {{actor_name}}.',
            _MEDIUM, 72, _BOOKING_MILESTONES_URL, "View Milestone",
        ),
        _template(
            "milestone_completed",
            "Milestone Completed: {{milestone_title}}",
            'Milestone "{{milestone_title}}" for {{project_name}} has been completed by {{actor_name}}.',
            _HIGH, 168, _BOOKING_MILESTONES_URL, "View Milestone",
        ),
        _template(
            "milestone_overdue",
            "Overdue Milestone: {{milestone_title}}",
            'Milestone "{{milestone_title}}" for {{project_name}} is overdue and needs attention.',
            _URGENT, 24, _BOOKING_MILESTONES_URL, "View Milestone",
        ),
        _template(
            "milestone_approved",
            "Milestone Approved: {{milestone_title}}",
            'Milestone "{{milestone_title}}" for {{project_name}} has been approved by {{actor_name}}.',
            _HIGH, 168, _BOOKING_MILESTONES_URL, "View Milestone",
        ),
        _template(
            "milestone_rejected",
            "Milestone Rejected: {{milestone_title}}",
            'Milestone "{{milestone_title}}" for {{project_name}} has been rejected by {{actor_name}}.',
            _HIGH, 72, _BOOKING_MILESTONES_URL, "View Milestone",
        ),
        # Bookings
        _template(
            "booking_created",
            "New Booking: {{booking_title}}",
            'A new booking "{{booking_title}}" for {{service_name}} has been created by {{actor_name}}.',
            _HIGH, 168, _BOOKING_URL, "View Booking",
        ),
        _template(
            "booking_updated",
            "Booking Updated: {{booking_title}}",
            'Booking "{{booking_title}}" for {{service_name}} has been updated by {{actor_name}}.',
            _MEDIUM, 72, _BOOKING_URL, "View Booking",
        ),
        _template(
            "booking_cancelled",
            "Booking Cancelled: {{booking_title}}",
            'Booking "{{booking_title}}" for {{service_name}} has been cancelled by {{actor_name}}.',
            _HIGH, 72, _BOOKING_URL, "View Booking",
        ),
        _template(
            "booking_confirmed",
            "Booking Confirmed: {{booking_title}}",
            'Booking "{{booking_title}}" for {{service_name}} has been confirmed by {{actor_name}}.',
            _HIGH, 168, _BOOKING_URL, "View Booking",
        ),
        _template(
            "booking_approved",
            "Booking Approved: {{booking_title}}",
            'Your booking "{{booking_title}}" for {{service_name}} has been approved by {{actor_name}}.',
            _HIGH, 168, _BOOKING_URL, "View Booking",
        ),
        _template(
            "booking_reminder",
            "Booking Reminder: {{booking_title}}",
            'Reminder: Your booking "{{booking_title}}" for {{service_name}} is scheduled for {{scheduled_date}}.',
            _MEDIUM, 24, _BOOKING_URL, "View Booking",
        ),
        _template(
            "booking_completed",
            "Booking Completed: {{booking_title}}",
            'Booking "{{booking_title}}" for {{service_name}} has been completed by {{actor_name}}.',
            _HIGH, 168, _BOOKING_URL, "View Booking",
        ),
        # Payments
        _template(
            "payment_received",
            "Payment Received: {{amount}} {{currency}}",
            "Payment of {{amount}} {{currency}} has been received for {{booking_title}}.",
            _HIGH, 168, _INVOICES_URL, "View Invoice",
        ),
        _template(
            "payment_failed",
            "Payment Failed: {{amount}} {{currency}}",
            "Payment of {{amount}} {{currency}} for {{booking_title}} has failed. Please try again.",
            _URGENT, 24, _INVOICES_URL, "View Invoice",
        ),
        # Invoices
        _template(
            "invoice_created",
            "New Invoice: {{invoice_number}}",
            "A new invoice {{invoice_number}} has been created for {{booking_title}}.",
            _HIGH, 168, _INVOICES_URL, "View Invoice",
        ),
        _template(
            "invoice_overdue",
            "Overdue Invoice: {{invoice_number}}",
            "Invoice {{invoice_number}} for {{booking_title}} is overdue. Please pay immediately.",
            _URGENT, 24, _INVOICES_URL, "View Invoice",
        ),
        _template(
            "invoice_paid",
            "Invoice Paid: {{invoice_number}}",
            "Invoice {{invoice_number}} for {{booking_title}} has been paid.",
            _HIGH, 168, _INVOICES_URL, "View Invoice",
        ),
        # Requests
        _template(
            "request_created",
            "New Request: {{request_type}}",
            "A new {{request_type}} request has been created by {{actor_name}}.",
            _MEDIUM, 72, _REQUESTS_URL, "View Request",
        ),
        _template(
            "request_updated",
            "Request Updated: {{request_type}}",
            "{{request_type}} request has been updated by {{actor_name}}.",
            _MEDIUM, 48, _REQUESTS_URL, "View Request",
        ),
        _template(
            "request_approved",
            "Request Approved: {{request_type}}",
            "Your {{request_type}} request has been approved by {{actor_name}}.",
            _HIGH, 168, _REQUESTS_URL, "View Request",
        ),
        _template(
            "request_rejected",
            "Request Rejected: {{request_type}}",
            "Your {{request_type}} request has been rejected by {{actor_name}}.",
            _HIGH, 72, _REQUESTS_URL, "View Request",
        ),
        # Messages
        _template(
            "message_received",
            "New Message from {{sender_name}}",
            "You have received a new message from {{sender_name}}.",
            _MEDIUM, 48, "/dashboard/messages", "View Message",
        ),
        # Documents
        _template(
            "document_uploaded",
            "Document Uploaded: {{document_name}}",
            'Document "{{document_name}}" has been uploaded by {{actor_name}}.',
            _MEDIUM, 72, _DOCUMENTS_URL, "View Document",
        ),
        _template(
            "document_approved",
            "Document Approved: {{document_name}}",
            'Document "{{document_name}}" has been approved by {{actor_name}}.',
            _HIGH, 168, _DOCUMENTS_URL, "View Document",
        ),
        _template(
            "document_rejected",
            "Document Rejected: {{document_name}}",
            'Document "{{document_name}}" has been rejected by {{actor_name}}.',
            _HIGH, 72, _DOCUMENTS_URL, "View Document",
        ),
        # System
        _template(
            "system_announcement",
            "System Announcement",
            "{{message}}",
            _MEDIUM, 168, _NOTIFICATIONS_URL, "View Details",
        ),
        _template(
            "maintenance_scheduled",
            "Scheduled Maintenance",
            "System maintenance is scheduled for {{maintenance_date}}. {{description}}",
            _HIGH, 72, _NOTIFICATIONS_URL, "View Details",
        ),
        # Projects
        _template(
            "deadline_approaching",
            "Deadline Approaching: {{project_name}}",
            'Project "{{project_name}}" deadline is approaching on {{deadline_date}}.',
            _HIGH, 24, _PROJECT_URL, "View Project",
        ),
        _template(
            "project_delayed",
            "Project Delayed: {{project_name}}",
            'Project "{{project_name}}" has been delayed. {{reason}}',
            _HIGH, 72, _PROJECT_URL, "View Project",
        ),
        _template(
            "client_feedback",
            "Client Feedback: {{project_name}}",
            'New feedback received for project "{{project_name}}" from {{actor_name}}.',
            _MEDIUM, 72, _PROJECT_URL, "View Project",
        ),
        _template(
            "team_mention",
            "You were mentioned",
            "{{actor_name}} mentioned you in {{entity_type}}.",
            _MEDIUM, 48, "/dashboard/{{entity_type}}/{{entity_id}}", "View Details",
        ),
    )
}

# Display grouping used by settings screens.
TYPES_BY_CATEGORY: dict[str, tuple[str, ...]] = {
    "tasks": ("task_created", "task_updated", "task_completed", "task_overdue", "task_assigned", "task_comment"),
    "milestones": (
        "milestone_created",
        "milestone_updated",
        "milestone_completed",
        "milestone_overdue",
        "milestone_approved",
        "milestone_rejected",
    ),
    "bookings": (
        "booking_created",
        "booking_updated",
        "booking_cancelled",
        "booking_confirmed",
        "booking_approved",
        "booking_reminder",
        "booking_completed",
    ),
    "payments": ("payment_received", "payment_failed"),
    "invoices": ("invoice_created", "invoice_overdue", "invoice_paid"),
    "requests": ("request_created", "request_updated", "request_approved", "request_rejected"),
    "messages": ("message_received",),
    "documents": ("document_uploaded", "document_approved", "document_rejected"),
    "system": ("system_announcement", "maintenance_scheduled"),
    "projects": ("deadline_approaching", "project_delayed", "client_feedback", "team_mention"),
}

# Settings gate (NotificationSettings.<category>_notifications) per type.
_GATE_BY_PREFIX = {
    "task_": "task",
    "milestone_": "milestone",
    "booking_": "booking",
    "payment_": "payment",
    "invoice_": "invoice",
    "message_": "message",
    "document_": "document",
    "system_": "system",
    "maintenance_": "system",
    "request_": "system",
}
_GATE_OVERRIDES = {
    NotificationType.deadline_approaching: "booking",
    NotificationType.project_delayed: "booking",
    NotificationType.client_feedback: "message",
    NotificationType.team_mention: "message",
}

SETTINGS_CATEGORIES = ("task", "milestone", "booking", "payment", "invoice", "message", "document", "system")


def get_template(notification_type: NotificationType | str) -> NotificationTemplate:
    return TEMPLATES[NotificationType(notification_type)]


def get_types_by_category() -> dict[str, list[str]]:
    return {category: list(types) for category, types in TYPES_BY_CATEGORY.items()}


def category_for(notification_type: NotificationType | str) -> str:
    notification_type = NotificationType(notification_type)
    override = _GATE_OVERRIDES.get(notification_type)
    if override:
        return override
    for prefix, category in _GATE_BY_PREFIX.items():
        if notification_type.value.startswith(prefix):
            return category
    return "system"


def interpolate(template: str | None, data: Mapping[str, Any] | None) -> str:
    """Replace ``{{key}}`` with ``data[key]``; unknown keys stay as written."""
    if not template:
        return template or ""
    values = data or {}

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        value = values.get(key)
        if value is None:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER.sub(_replace, template)


def default_action(
    notification_type: NotificationType | str, data: Mapping[str, Any] | None = None
) -> tuple[str | None, str | None]:
    template = TEMPLATES.get(NotificationType(notification_type))
    if template is None:
        return None, None
    url = interpolate(template.action_url_template, data) if template.action_url_template else None
    if url and _PLACEHOLDER.search(url):
        # Unresolved placeholders fall back to the notifications list.
        url = _NOTIFICATIONS_URL
    return url, template.action_label
