"""Email delivery for persisted notifications.

The adapter is the last gate before mail leaves the system: it re-reads
the recipient's email preferences (it is also called directly for
resends), renders the message and records every attempt in
``email_notification_logs``. It never raises.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from servicehub.logging import get_logger
from servicehub.metrics import EMAIL_DELIVERIES
from servicehub.models.notification import (
    EmailDeliveryStatus,
    EmailNotificationLog,
    EmailPreference,
    EmailTemplateStyle,
    NotificationSettings,
)
from servicehub.services.email import OutboundEmail
from servicehub.services.email_templates import generate_email_content
from servicehub.telemetry import get_tracer

logger = get_logger(__name__)
tracer = get_tracer(__name__)


def _type_value(notification) -> str:
    return getattr(notification.type, "value", notification.type)


class EmailDeliveryAdapter:
    def __init__(
        self,
        transport,
        base_url: str,
        default_style: str = EmailTemplateStyle.modern.value,
        from_email: str | None = None,
        from_name: str | None = None,
        reply_to: str | None = None,
    ) -> None:
        self.transport = transport
        self.base_url = base_url
        self.default_style = default_style
        self.from_email = from_email
        self.from_name = from_name
        self.reply_to = reply_to

    @property
    def provider(self) -> str:
        return getattr(self.transport, "provider", self.transport.__class__.__name__.lower())

    def send_email_notification(
        self,
        db: Session,
        notification,
        recipient_email: str | None,
        recipient_name: str | None = "User",
        style: str | None = None,
    ) -> bool:
        with tracer.start_as_current_span("email.send_notification"):
            if not recipient_email:
                EMAIL_DELIVERIES.labels("skipped").inc()
                logger.info("email_notification_no_recipient notification_id=%s", notification.id)
                return False

            preference, settings_style = self._load_preferences(db, notification.user_id)
            if preference is not None:
                if not preference.email_enabled:
                    EMAIL_DELIVERIES.labels("skipped").inc()
                    logger.info("email_notifications_disabled user_id=%s", notification.user_id)
                    return False
                if _type_value(notification) in (preference.disabled_types or []):
                    EMAIL_DELIVERIES.labels("skipped").inc()
                    logger.info(
                        "email_notification_type_disabled user_id=%s type=%s",
                        notification.user_id,
                        _type_value(notification),
                    )
                    return False

            resolved_style = (
                style
                or (preference.template_style.value if preference is not None and preference.template_style else None)
                or settings_style
                or self.default_style
            )
            try:
                content = generate_email_content(notification, self.base_url, resolved_style)
                message_id = self.transport.send(
                    OutboundEmail(
                        to=recipient_email,
                        to_name=recipient_name,
                        subject=content.subject,
                        html=content.html,
                        text=content.text,
                        from_email=self.from_email,
                        from_name=self.from_name,
                        reply_to=self.reply_to,
                    )
                )
            except Exception as exc:
                EMAIL_DELIVERIES.labels("failed").inc()
                logger.warning(
                    "email_notification_failed notification_id=%s email=%s error=%s",
                    notification.id,
                    recipient_email,
                    exc,
                )
                self._log(db, notification, recipient_email, EmailDeliveryStatus.failed, error_message=str(exc))
                return False

            EMAIL_DELIVERIES.labels("sent").inc()
            logger.info(
                "email_notification_sent notification_id=%s provider=%s message_id=%s",
                notification.id,
                self.provider,
                message_id,
            )
            self._log(db, notification, recipient_email, EmailDeliveryStatus.sent, provider_message_id=message_id)
            return True

    def _load_preferences(self, db: Session, user_id) -> tuple[EmailPreference | None, str | None]:
        try:
            preference = db.query(EmailPreference).filter(EmailPreference.user_id == user_id).first()
            settings_row = db.query(NotificationSettings).filter(NotificationSettings.user_id == user_id).first()
        except Exception as exc:
            db.rollback()
            logger.warning("email_preferences_lookup_failed user_id=%s error=%s", user_id, exc)
            return None, None
        settings_style = None
        if settings_row is not None and settings_row.email_template_style:
            settings_style = settings_row.email_template_style.value
        return preference, settings_style

    def _log(
        self,
        db: Session,
        notification,
        email: str,
        status: EmailDeliveryStatus,
        provider_message_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        try:
            db.add(
                EmailNotificationLog(
                    notification_id=notification.id,
                    email=email,
                    notification_type=_type_value(notification),
                    status=status,
                    provider=self.provider,
                    provider_message_id=provider_message_id or None,
                    error_message=error_message,
                )
            )
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.warning(
                "email_notification_log_failed notification_id=%s error=%s",
                notification.id,
                exc,
            )
