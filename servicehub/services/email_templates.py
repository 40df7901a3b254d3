"""HTML/text email rendering for notifications.

Each supported notification type has a generator that builds the subject,
headline, body and action link from the notification ``data`` payload.
Missing fields are filled with fixed defaults ("TBD" for dates and
amounts) so rendering never fails on partial data. The resulting content
is wrapped in one of three visual styles.
"""

from __future__ import annotations

import html
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from servicehub.models.notification import EmailTemplateStyle, NotificationPriority

MISSING = "TBD"

PRIORITY_COLORS = {
    NotificationPriority.urgent.value: "#dc3545",
    NotificationPriority.high.value: "#fd7e14",
    NotificationPriority.medium.value: "#0d6efd",
    NotificationPriority.low.value: "#6c757d",
}
_DEFAULT_COLOR = PRIORITY_COLORS[NotificationPriority.medium.value]


@dataclass(frozen=True)
class EmailContent:
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class _Body:
    title: str
    message: str
    action_url: str
    action_label: str
    priority: str
    notification_id: str


def priority_color(priority) -> str:
    value = getattr(priority, "value", priority)
    return PRIORITY_COLORS.get(value, _DEFAULT_COLOR)


class _Defaults(dict):
    def __missing__(self, key: str) -> str:
        return MISSING


def _fill(template: str, data: Mapping[str, Any], defaults: Mapping[str, str]) -> str:
    values = _Defaults(defaults)
    for key, value in (data or {}).items():
        if value is not None and value != "":
            values[key] = value
    return template.format_map(values)


# ----------------------------------------------------------------------
# Styles
# ----------------------------------------------------------------------
def _render_modern(body: _Body) -> str:
    color = priority_color(body.priority)
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"><title>{body.title}</title></head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f8f9fa;">
  <div style="background: white; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); overflow: hidden;">
    <div style="background: linear-gradient(135deg, {color}, {color}dd); padding: 30px; text-align: center;">
      <h1 style="color: white; margin: 0; font-size: 24px; font-weight: 600;">{body.title}</h1>
    </div>
    <div style="padding: 30px;">
      <p style="font-size: 16px; margin-bottom: 25px; color: #555;">{body.message}</p>
      <div style="text-align: center; margin: 30px 0;">
        <a href="{body.action_url}" style="display: inline-block; background: {color}; color: white; padding: 15px 30px; text-decoration: none; border-radius: 6px; font-weight: 600;">{body.action_label}</a>
      </div>
    </div>
    <div style="background: #f8f9fa; padding: 20px; border-top: 1px solid #eee;">
      <p style="font-size: 12px; color: #666; margin: 0; text-align: center;">Notification ID: {body.notification_id}</p>
    </div>
  </div>
</body>
</html>"""


def _render_minimal(body: _Body) -> str:
    color = priority_color(body.priority)
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"><title>{body.title}</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="border-left: 4px solid {color}; padding-left: 20px;">
    <h2 style="color: {color}; margin-top: 0;">{body.title}</h2>
    <p>{body.message}</p>
    <a href="{body.action_url}" style="display: inline-block; background-color: {color}; color: white; padding: 10px 20px; text-decoration: none; border-radius: 4px; margin-top: 15px;">{body.action_label}</a>
  </div>
  <hr style="margin: 30px 0; border: none; border-top: 1px solid #eee;">
  <p style="font-size: 12px; color: #666;">Notification ID: {body.notification_id}</p>
</body>
</html>"""


def _render_corporate(body: _Body) -> str:
    color = priority_color(body.priority)
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"><title>{body.title}</title></head>
<body style="font-family: Georgia, 'Times New Roman', serif; line-height: 1.6; color: #2c3e50; max-width: 640px; margin: 0 auto; padding: 0; background-color: #ecf0f1;">
  <table width="100%" cellpadding="0" cellspacing="0" style="background: white;">
    <tr><td style="background-color: #2c3e50; padding: 24px 32px; border-bottom: 4px solid {color};">
      <h1 style="color: white; margin: 0; font-size: 22px; font-weight: normal;">{body.title}</h1>
    </td></tr>
    <tr><td style="padding: 32px;">
      <p style="font-size: 15px; margin: 0 0 24px 0;">{body.message}</p>
      <a href="{body.action_url}" style="display: inline-block; border: 2px solid #2c3e50; color: #2c3e50; padding: 10px 24px; text-decoration: none; font-weight: bold;">{body.action_label}</a>
    </td></tr>
    <tr><td style="background-color: #f4f6f7; padding: 16px 32px; font-size: 11px; color: #7f8c8d;">
      This is an automated notification. Reference: {body.notification_id}
    </td></tr>
  </table>
</body>
</html>"""


STYLE_RENDERERS: dict[str, Callable[[_Body], str]] = {
    EmailTemplateStyle.modern.value: _render_modern,
    EmailTemplateStyle.minimal.value: _render_minimal,
    EmailTemplateStyle.corporate.value: _render_corporate,
}


def render_html(style, title: str, message: str, action_url: str, action_label: str, priority, notification_id) -> str:
    style_value = getattr(style, "value", style) or EmailTemplateStyle.modern.value
    renderer = STYLE_RENDERERS.get(style_value, _render_modern)
    body = _Body(
        title=html.escape(title),
        message=html.escape(message),
        action_url=html.escape(action_url, quote=True),
        action_label=html.escape(action_label),
        priority=getattr(priority, "value", priority) or NotificationPriority.medium.value,
        notification_id=html.escape(str(notification_id)),
    )
    return renderer(body)


# ----------------------------------------------------------------------
# Per-type content generators
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class _EmailBlueprint:
    subject: str
    title: str
    message: str
    action_path: str
    action_label: str


_BOOKING_DEFAULTS = {"booking_title": "Service Booking", "service_name": "Service", "booking_id": ""}
_TASK_DEFAULTS = {"task_title": "Task", "milestone_title": "Milestone", "actor_name": "Someone", "booking_id": ""}
_MILESTONE_DEFAULTS = {"milestone_title": "Milestone", "project_name": "your project", "booking_id": ""}
_MONEY_DEFAULTS = {"currency": "", "booking_title": "Service Booking", "invoice_number": "Invoice"}

_BOOKING_PATH = "/dashboard/bookings/{booking_id}"
_MILESTONES_PATH = "/dashboard/bookings/{booking_id}/milestones"

_GENERATORS: dict[str, tuple[_EmailBlueprint, Mapping[str, str]]] = {
    "booking_created": (
        _EmailBlueprint(
            "New Booking: {booking_title}",
            "New Booking Created",
            'A new booking "{booking_title}" has been created for service "{service_name}" on {scheduled_date}.',
            _BOOKING_PATH,
            "View Booking",
        ),
        _BOOKING_DEFAULTS,
    ),
    "booking_updated": (
        _EmailBlueprint(
            "Booking Updated: {booking_title}",
            "Booking Updated",
            'Your booking "{booking_title}" has been updated.',
            _BOOKING_PATH,
            "View Booking",
        ),
        _BOOKING_DEFAULTS,
    ),
    "booking_cancelled": (
        _EmailBlueprint(
            "Booking Cancelled: {booking_title}",
            "Booking Cancelled",
            'Your booking "{booking_title}" for "{service_name}" has been cancelled.',
            _BOOKING_PATH,
            "View Booking",
        ),
        _BOOKING_DEFAULTS,
    ),
    "booking_confirmed": (
        _EmailBlueprint(
            "Booking Confirmed: {booking_title}",
            "Booking Confirmed",
            'Your booking "{booking_title}" has been confirmed and is ready to proceed.',
            _BOOKING_PATH,
            "View Booking",
        ),
        _BOOKING_DEFAULTS,
    ),
    "booking_reminder": (
        _EmailBlueprint(
            "Reminder: {booking_title}",
            "Booking Reminder",
            'Your booking "{booking_title}" for "{service_name}" is scheduled for {scheduled_date}.',
            _BOOKING_PATH,
            "View Booking",
        ),
        _BOOKING_DEFAULTS,
    ),
    "booking_completed": (
        _EmailBlueprint(
            "Booking Completed: {booking_title}",
            "Booking Completed",
            'Your booking "{booking_title}" for "{service_name}" has been completed.',
            _BOOKING_PATH,
            "View Booking",
        ),
        _BOOKING_DEFAULTS,
    ),
    "task_created": (
        _EmailBlueprint(
            "New Task: {task_title}",
            "New Task Created",
            'A new task "{task_title}" has been added to {milestone_title} by {actor_name}. Due: {due_date}.',
            _MILESTONES_PATH,
            "View Task",
        ),
        _TASK_DEFAULTS,
    ),
    "task_updated": (
        _EmailBlueprint(
            "Task Updated: {task_title}",
            "Task Updated",
            'Task "{task_title}" in {milestone_title} has been updated by {actor_name}.',
            _MILESTONES_PATH,
            "View Task",
        ),
        _TASK_DEFAULTS,
    ),
    "task_completed": (
        _EmailBlueprint(
            "Task Completed: {task_title}",
            "Task Completed",
            'Task "{task_title}" in {milestone_title} has been completed by {actor_name}.',
            _MILESTONES_PATH,
            "View Task",
        ),
        _TASK_DEFAULTS,
    ),
    "task_overdue": (
        _EmailBlueprint(
            "Overdue Task: {task_title}",
            "Task Overdue",
            'Task "{task_title}" in {milestone_title} was due on {due_date} and needs attention.',
            _MILESTONES_PATH,
            "View Task",
        ),
        _TASK_DEFAULTS,
    ),
    "milestone_created": (
        _EmailBlueprint(
            "New Milestone: {milestone_title}",
            "New Milestone Created",
            'A new milestone "{milestone_title}" has been created for {project_name}.',
            _MILESTONES_PATH,
            "View Milestone",
        ),
        _MILESTONE_DEFAULTS,
    ),
    "milestone_updated": (
        _EmailBlueprint(
            "Milestone Updated: {milestone_title}",
            "Milestone Updated",
            'Milestone "{milestone_title}" for {project_name} has been updated.',
            _MILESTONES_PATH,
            "View Milestone",
        ),
        _MILESTONE_DEFAULTS,
    ),
    "milestone_completed": (
        _EmailBlueprint(
            "Milestone Completed: {milestone_title}",
            "Milestone Completed",
            'Milestone "{milestone_title}" for {project_name} has been completed.',
            _MILESTONES_PATH,
            "View Milestone",
        ),
        _MILESTONE_DEFAULTS,
    ),
    "milestone_overdue": (
        _EmailBlueprint(
            "Overdue Milestone: {milestone_title}",
            "Milestone Overdue",
            'Milestone "{milestone_title}" for {project_name} was due on {due_date} and needs attention.',
            _MILESTONES_PATH,
            "View Milestone",
        ),
        _MILESTONE_DEFAULTS,
    ),
    "payment_received": (
        _EmailBlueprint(
            "Payment Received: {amount} {currency}",
            "Payment Received",
            "We received your payment of {amount} {currency} for {booking_title}.",
            "/dashboard/invoices",
            "View Invoice",
        ),
        _MONEY_DEFAULTS,
    ),
    "payment_failed": (
        _EmailBlueprint(
            "Payment Failed: {amount} {currency}",
            "Payment Failed",
            "Your payment of {amount} {currency} for {booking_title} could not be processed. Please try again.",
            "/dashboard/invoices",
            "Retry Payment",
        ),
        _MONEY_DEFAULTS,
    ),
    "invoice_created": (
        _EmailBlueprint(
            "New Invoice: {invoice_number}",
            "New Invoice",
            "Invoice {invoice_number} for {amount} {currency} has been issued for {booking_title}. Due: {due_date}.",
            "/dashboard/invoices",
            "View Invoice",
        ),
        _MONEY_DEFAULTS,
    ),
    "invoice_overdue": (
        _EmailBlueprint(
            "Overdue Invoice: {invoice_number}",
            "Invoice Overdue",
            "Invoice {invoice_number} for {booking_title} was due on {due_date}. Please pay immediately.",
            "/dashboard/invoices",
            "Pay Invoice",
        ),
        _MONEY_DEFAULTS,
    ),
    "invoice_paid": (
        _EmailBlueprint(
            "Invoice Paid: {invoice_number}",
            "Invoice Paid",
            "Invoice {invoice_number} for {booking_title} has been paid. Thank you.",
            "/dashboard/invoices",
            "View Invoice",
        ),
        _MONEY_DEFAULTS,
    ),
}


def _absolute(base_url: str, path: str | None) -> str:
    if not path:
        return f"{base_url}/dashboard"
    if path.startswith("http://") or path.startswith("https://"):
        return path
    return f"{base_url}{path if path.startswith('/') else '/' + path}"


def generate_email_content(notification, base_url: str, style=None) -> EmailContent:
    """Build subject, HTML and text for ``notification``."""
    type_value = getattr(notification.type, "value", notification.type)
    data = notification.data if isinstance(notification.data, Mapping) else {}
    base_url = base_url.rstrip("/")
    entry = _GENERATORS.get(type_value)
    if entry is None:
        subject = notification.title or "Notification"
        title = subject
        message = notification.message or ""
        action_url = _absolute(base_url, notification.action_url)
        action_label = notification.action_label or "View Details"
    else:
        blueprint, defaults = entry
        subject = _fill(blueprint.subject, data, defaults).strip()
        title = _fill(blueprint.title, data, defaults)
        message = _fill(blueprint.message, data, defaults)
        path = _fill(blueprint.action_path, data, defaults)
        if path.endswith("/") or "//" in path:
            path = notification.action_url or "/dashboard"
        action_url = _absolute(base_url, path)
        action_label = blueprint.action_label
    html_body = render_html(style, title, message, action_url, action_label, notification.priority, notification.id)
    text = f"{title}\n\n{message}\n\n{action_label}: {action_url}"
    return EmailContent(subject=subject, html=html_body, text=text)
