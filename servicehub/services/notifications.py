from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from servicehub.logging import get_logger
from servicehub.metrics import NOTIFICATIONS_CREATED, SIDE_EFFECT_FAILURES
from servicehub.models.notification import (
    EmailTemplateStyle,
    Notification,
    NotificationPriority,
    NotificationSettings,
    NotificationType,
)
from servicehub.models.profile import Profile
from servicehub.schemas.notifications import NotificationSettingsUpdate, NotificationStats
from servicehub.services import notification_templates
from servicehub.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    is_missing_table_error,
    is_permission_error,
    validate_enum,
)
from servicehub.services.delivery import EmailDeliveryJob
from servicehub.services.notification_templates import NotificationTemplate
from servicehub.services.rate_limit import build_rate_limit_key
from servicehub.telemetry import get_tracer

logger = get_logger(__name__)

BULK_ACTIONS = ("mark_read", "mark_unread", "delete")
RECENT_WINDOW = timedelta(hours=24)

_ORDER_COLUMNS = {
    "created_at": Notification.created_at,
    "priority": Notification.priority,
    "type": Notification.type,
}


def _now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _default_settings(user_id: uuid.UUID) -> NotificationSettings:
    values = {f"{category}_notifications": True for category in notification_templates.SETTINGS_CATEGORIES}
    return NotificationSettings(
        user_id=user_id,
        email_notifications=True,
        email_template_style=EmailTemplateStyle.modern,
        **values,
    )


def _is_degradable(exc: BaseException) -> bool:
    return is_missing_table_error(exc) or is_permission_error(exc)


class NotificationService:
    """Persists notifications and hands email delivery to a queue.

    Email is never sent inline. When the recipient's settings allow it, an
    :class:`EmailDeliveryJob` is enqueued after the row is committed; a queue
    failure is logged and counted but never reaches the caller.
    """

    def __init__(
        self,
        delivery_queue=None,
        email_adapter=None,
        rate_limiter=None,
        resend_limit: int = 5,
        templates=notification_templates,
    ) -> None:
        self.delivery_queue = delivery_queue
        self.email_adapter = email_adapter
        self.rate_limiter = rate_limiter
        self.resend_limit = resend_limit
        self.templates = templates

    def create_notification(
        self,
        db: Session,
        user_id,
        notification_type,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        priority=NotificationPriority.medium,
        expires_at: datetime | None = None,
        action_url: str | None = None,
        action_label: str | None = None,
    ) -> Notification:
        user_uuid = coerce_uuid(user_id, "user_id")
        notification_type = validate_enum(notification_type, NotificationType, "notification type")
        if notification_type is None:
            raise HTTPException(status_code=400, detail="Invalid notification type")
        priority = validate_enum(priority, NotificationPriority, "priority") or NotificationPriority.medium

        with get_tracer(__name__).start_as_current_span("notifications.create") as span:
            span.set_attribute("notification.type", notification_type.value)
            deliver = self._delivery_allowed(db, user_uuid, notification_type)
            if not action_url:
                default_url, default_label = self.templates.default_action(notification_type, data)
                action_url = default_url
                action_label = action_label or default_label

            notification = Notification(
                user_id=user_uuid,
                type=notification_type,
                title=title,
                message=message,
                data=data or {},
                priority=priority,
                expires_at=expires_at,
                action_url=action_url,
                action_label=action_label,
            )
            db.add(notification)
            db.commit()
            db.refresh(notification)

            if not deliver:
                NOTIFICATIONS_CREATED.labels(notification_type.value, "suppressed").inc()
                logger.info(
                    "notification_delivery_suppressed notification_id=%s user_id=%s type=%s",
                    notification.id,
                    user_uuid,
                    notification_type.value,
                )
                return notification

            outcome = self._enqueue_delivery(db, notification)
            NOTIFICATIONS_CREATED.labels(notification_type.value, outcome).inc()
            span.set_attribute("notification.delivery", outcome)
        return notification

    def create_from_template(
        self,
        db: Session,
        user_id,
        notification_type,
        data: dict[str, Any] | None = None,
        template: NotificationTemplate | None = None,
    ) -> Notification:
        notification_type = validate_enum(notification_type, NotificationType, "notification type")
        if notification_type is None:
            raise HTTPException(status_code=400, detail="Invalid notification type")
        template = template or self.templates.get_template(notification_type)
        data = data or {}

        action_url = None
        if template.action_url_template:
            action_url = self.templates.interpolate(template.action_url_template, data)
            if "{{" in action_url:
                action_url = None
        expires_at = None
        if template.default_expires_in_hours:
            expires_at = _now() + timedelta(hours=template.default_expires_in_hours)

        return self.create_notification(
            db,
            user_id,
            notification_type,
            title=self.templates.interpolate(template.title_template, data),
            message=self.templates.interpolate(template.message_template, data),
            data=data,
            priority=template.priority,
            expires_at=expires_at,
            action_url=action_url,
            action_label=template.action_label,
        )

    def _delivery_allowed(self, db: Session, user_id: uuid.UUID, notification_type: NotificationType) -> bool:
        try:
            settings_row = db.query(NotificationSettings).filter(NotificationSettings.user_id == user_id).first()
        except DBAPIError as exc:
            if not is_missing_table_error(exc):
                raise
            db.rollback()
            settings_row = None
        if settings_row is None:
            return True
        if settings_row.email_notifications is False:
            return False
        category = self.templates.category_for(notification_type)
        return getattr(settings_row, f"{category}_notifications", True) is not False

    def resolve_recipient(self, db: Session, user_id) -> tuple[str | None, str | None]:
        profile = db.get(Profile, coerce_uuid(user_id, "user_id"))
        if profile is None:
            return None, None
        return profile.email, profile.full_name

    def _enqueue_delivery(self, db: Session, notification: Notification) -> str:
        if self.delivery_queue is None:
            return "no_queue"
        try:
            email, name = self.resolve_recipient(db, notification.user_id)
            if not email:
                logger.info(
                    "notification_delivery_no_recipient notification_id=%s user_id=%s",
                    notification.id,
                    notification.user_id,
                )
                return "no_recipient"
            self.delivery_queue.enqueue(
                EmailDeliveryJob(
                    notification_id=notification.id,
                    recipient_email=email,
                    recipient_name=name,
                )
            )
        except Exception as exc:
            SIDE_EFFECT_FAILURES.labels("notification_delivery").inc()
            logger.warning(
                "notification_delivery_enqueue_failed notification_id=%s error=%s",
                notification.id,
                exc,
            )
            return "enqueue_failed"
        return "enqueued"

    def get(self, db: Session, notification_id, user_id=None) -> Notification:
        query = db.query(Notification).filter(Notification.id == coerce_uuid(notification_id, "notification_id"))
        if user_id is not None:
            query = query.filter(Notification.user_id == coerce_uuid(user_id, "user_id"))
        notification = query.first()
        if not notification:
            raise HTTPException(status_code=404, detail="Notification not found")
        return notification

    def mark_as_read(self, db: Session, notification_id, user_id) -> Notification:
        notification = self.get(db, notification_id, user_id)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = _now()
            db.commit()
            db.refresh(notification)
        return notification

    def mark_all_as_read(self, db: Session, user_id) -> int:
        count = (
            db.query(Notification)
            .filter(Notification.user_id == coerce_uuid(user_id, "user_id"))
            .filter(Notification.is_read.is_(False))
            .update({Notification.is_read: True, Notification.read_at: _now()}, synchronize_session=False)
        )
        db.commit()
        return count

    def bulk_action(self, db: Session, user_id, notification_ids: list, action: str) -> int:
        if action not in BULK_ACTIONS:
            raise HTTPException(status_code=400, detail=f"Invalid action. Allowed: {', '.join(BULK_ACTIONS)}")
        ids = [coerce_uuid(value, "notification_id") for value in notification_ids]
        if not ids:
            return 0
        query = (
            db.query(Notification)
            .filter(Notification.user_id == coerce_uuid(user_id, "user_id"))
            .filter(Notification.id.in_(ids))
        )
        if action == "delete":
            count = query.delete(synchronize_session=False)
        elif action == "mark_read":
            count = query.update(
                {Notification.is_read: True, Notification.read_at: _now()}, synchronize_session=False
            )
        else:
            count = query.update({Notification.is_read: False, Notification.read_at: None}, synchronize_session=False)
        db.commit()
        db.expire_all()
        logger.info("notification_bulk_action user_id=%s action=%s count=%s", user_id, action, count)
        return count

    def get_notifications(
        self,
        db: Session,
        user_id,
        notification_type: str | None = None,
        priority: str | None = None,
        is_read: bool | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        search: str | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        query = db.query(Notification).filter(Notification.user_id == coerce_uuid(user_id, "user_id"))
        if notification_type:
            query = query.filter(
                Notification.type == validate_enum(notification_type, NotificationType, "notification type")
            )
        if priority:
            query = query.filter(Notification.priority == validate_enum(priority, NotificationPriority, "priority"))
        if is_read is not None:
            query = query.filter(Notification.is_read.is_(is_read))
        if created_after:
            query = query.filter(Notification.created_at >= created_after)
        if created_before:
            query = query.filter(Notification.created_at <= created_before)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Notification.title.ilike(pattern), Notification.message.ilike(pattern)))
        query = apply_ordering(query, order_by, order_dir, _ORDER_COLUMNS)
        try:
            return apply_pagination(query, limit, offset).all()
        except DBAPIError as exc:
            if not _is_degradable(exc):
                raise
            db.rollback()
            logger.warning("notification_list_unavailable user_id=%s error=%s", user_id, exc)
            return []

    def get_notification_stats(self, db: Session, user_id) -> NotificationStats:
        try:
            rows = (
                db.query(Notification.type, Notification.priority, Notification.is_read, Notification.created_at)
                .filter(Notification.user_id == coerce_uuid(user_id, "user_id"))
                .all()
            )
        except DBAPIError as exc:
            if not _is_degradable(exc):
                raise
            db.rollback()
            logger.warning("notification_stats_unavailable user_id=%s error=%s", user_id, exc)
            rows = []

        recent_cutoff = _now() - RECENT_WINDOW
        total = unread = recent = 0
        by_type: dict[str, int] = {}
        by_priority: dict[str, int] = {}
        for notification_type, priority, is_read, created_at in rows:
            total += 1
            if not is_read:
                unread += 1
            type_key = notification_type.value
            by_type[type_key] = by_type.get(type_key, 0) + 1
            priority_key = priority.value if priority else NotificationPriority.medium.value
            by_priority[priority_key] = by_priority.get(priority_key, 0) + 1
            created = _as_utc(created_at)
            if created and created >= recent_cutoff:
                recent += 1
        return NotificationStats(
            total=total,
            unread=unread,
            by_type=by_type,
            by_priority=by_priority,
            recent_count=recent,
        )

    def cleanup_expired_notifications(self, db: Session) -> int:
        count = (
            db.query(Notification)
            .filter(Notification.expires_at.isnot(None))
            .filter(Notification.expires_at < _now())
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info("notification_cleanup_expired count=%s", count)
        return count

    def get_settings(self, db: Session, user_id) -> NotificationSettings:
        user_uuid = coerce_uuid(user_id, "user_id")
        settings_row = db.query(NotificationSettings).filter(NotificationSettings.user_id == user_uuid).first()
        return settings_row or _default_settings(user_uuid)

    def update_settings(self, db: Session, user_id, payload: NotificationSettingsUpdate) -> NotificationSettings:
        user_uuid = coerce_uuid(user_id, "user_id")
        settings_row = db.query(NotificationSettings).filter(NotificationSettings.user_id == user_uuid).first()
        if settings_row is None:
            settings_row = _default_settings(user_uuid)
            db.add(settings_row)
        for key, value in payload.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            setattr(settings_row, key, value)
        db.commit()
        db.refresh(settings_row)
        return settings_row

    def delete(self, db: Session, notification_id, user_id) -> None:
        notification = self.get(db, notification_id, user_id)
        db.delete(notification)
        db.commit()

    def resend(self, db: Session, notification_id, user_id) -> bool:
        """Send the email for an existing notification right away.

        Raises ``RateLimitExceeded`` when the user has resent too often.
        """
        if self.email_adapter is None:
            raise HTTPException(status_code=503, detail="Email delivery is not configured")
        if self.rate_limiter is not None:
            self.rate_limiter.check(build_rate_limit_key("notification_resend", user_id), self.resend_limit)
        notification = self.get(db, notification_id, user_id)
        email, name = self.resolve_recipient(db, notification.user_id)
        if not email:
            raise HTTPException(status_code=400, detail="Recipient has no email address")
        return self.email_adapter.send_email_notification(db, notification, email, name or "User")
