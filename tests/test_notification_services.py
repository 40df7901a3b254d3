"""Tests for the notification service."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError, ProgrammingError

from servicehub.models import (
    EmailTemplateStyle,
    Notification,
    NotificationPriority,
    NotificationSettings,
    NotificationType,
)
from servicehub.schemas.notifications import NotificationSettingsUpdate
from servicehub.services.notifications import NotificationService
from servicehub.services.rate_limit import RateLimiter, RateLimitExceeded


def _disable(db_session, user_id, **flags):
    settings_row = NotificationSettings(user_id=user_id, **flags)
    db_session.add(settings_row)
    db_session.commit()
    return settings_row


class TestCreateNotification:
    def test_persists_and_enqueues_delivery(self, db_session, notification_service, recording_queue, profile):
        notification = notification_service.create_notification(
            db_session,
            profile.id,
            NotificationType.task_created,
            title="New Task: Tile",
            message="A new task was created.",
            data={"booking_id": "b-1"},
        )

        assert db_session.get(Notification, notification.id) is not None
        assert notification.priority == NotificationPriority.medium
        assert notification.action_url == "/dashboard/bookings/b-1/milestones"
        assert notification.action_label == "View Task"
        assert len(recording_queue.jobs) == 1
        job = recording_queue.jobs[0]
        assert job.notification_id == notification.id
        assert job.recipient_email == profile.email
        assert job.recipient_name == "Casey Client"

    def test_disabled_category_persists_without_delivery(
        self, db_session, notification_service, recording_queue, profile
    ):
        _disable(db_session, profile.id, task_notifications=False)

        notification = notification_service.create_notification(
            db_session, profile.id, "task_created", title="New Task", message="Created"
        )

        assert db_session.get(Notification, notification.id) is not None
        assert recording_queue.jobs == []

    def test_other_categories_still_deliver(self, db_session, notification_service, recording_queue, profile):
        _disable(db_session, profile.id, task_notifications=False)

        notification_service.create_notification(
            db_session, profile.id, "payment_received", title="Paid", message="Payment received"
        )

        assert len(recording_queue.jobs) == 1

    def test_global_email_toggle_suppresses_delivery(
        self, db_session, notification_service, recording_queue, profile
    ):
        _disable(db_session, profile.id, email_notifications=False)

        notification_service.create_notification(
            db_session, profile.id, "booking_created", title="Booked", message="New booking"
        )

        assert recording_queue.jobs == []

    def test_missing_profile_skips_delivery(self, db_session, notification_service, recording_queue):
        notification = notification_service.create_notification(
            db_session, uuid.uuid4(), "system_announcement", title="Hello", message="World"
        )

        assert notification.id is not None
        assert recording_queue.jobs == []

    def test_enqueue_failure_never_reaches_caller(self, db_session, profile):
        queue = MagicMock()
        queue.enqueue.side_effect = RuntimeError("queue full")
        service = NotificationService(delivery_queue=queue)

        notification = service.create_notification(
            db_session, profile.id, "task_created", title="New Task", message="Created"
        )

        queue.enqueue.assert_called_once()
        assert db_session.get(Notification, notification.id) is not None

    def test_explicit_action_is_kept(self, db_session, notification_service, profile):
        notification = notification_service.create_notification(
            db_session,
            profile.id,
            "task_created",
            title="New Task",
            message="Created",
            action_url="/custom",
            action_label="Open",
        )
        assert notification.action_url == "/custom"
        assert notification.action_label == "Open"

    def test_invalid_type_is_rejected_before_write(self, db_session, notification_service, profile):
        with pytest.raises(HTTPException) as exc:
            notification_service.create_notification(db_session, profile.id, "bogus", title="x", message="y")
        assert exc.value.status_code == 400
        assert db_session.query(Notification).count() == 0

    def test_invalid_user_id_is_rejected(self, db_session, notification_service):
        with pytest.raises(HTTPException) as exc:
            notification_service.create_notification(db_session, "not-a-uuid", "task_created", title="x", message="y")
        assert exc.value.status_code == 400

    def test_invalid_priority_is_rejected(self, db_session, notification_service, profile):
        with pytest.raises(HTTPException) as exc:
            notification_service.create_notification(
                db_session, profile.id, "task_created", title="x", message="y", priority="critical"
            )
        assert exc.value.status_code == 400


class TestCreateFromTemplate:
    def test_interpolates_template(self, db_session, notification_service, profile):
        notification = notification_service.create_from_template(
            db_session,
            profile.id,
            "task_completed",
            {"task_title": "Tile", "milestone_title": "Bathroom", "actor_name": "Sam", "booking_id": "b-9"},
        )

        assert notification.title == "Task Completed: Tile"
        assert notification.message == 'Task "Tile" in Bathroom has been completed by Sam.'
        assert notification.priority == NotificationPriority.high
        assert notification.action_url == "/dashboard/bookings/b-9/milestones"
        assert notification.action_label == "View Task"

    def test_sets_expiry_from_template(self, db_session, notification_service, profile):
        before = datetime.now(UTC)
        notification = notification_service.create_from_template(
            db_session, profile.id, "deadline_approaching", {"project_name": "Roof"}
        )

        expires_at = notification.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        assert before + timedelta(hours=23) < expires_at <= datetime.now(UTC) + timedelta(hours=24)

    def test_missing_data_keeps_placeholders(self, db_session, notification_service, profile):
        notification = notification_service.create_from_template(db_session, profile.id, "booking_created", {})

        assert notification.title == "New Booking: {{booking_title}}"
        assert notification.action_url == "/dashboard/notifications"


class TestReadState:
    def test_mark_as_read(self, db_session, notification_service, profile, make_notification):
        notification = make_notification(profile.id)

        updated = notification_service.mark_as_read(db_session, notification.id, profile.id)

        assert updated.is_read is True
        assert updated.read_at is not None

    def test_mark_as_read_requires_owner(self, db_session, notification_service, profile, make_notification):
        notification = make_notification(profile.id)

        with pytest.raises(HTTPException) as exc:
            notification_service.mark_as_read(db_session, notification.id, uuid.uuid4())
        assert exc.value.status_code == 404
        assert exc.value.detail == "Notification not found"

    def test_mark_all_as_read(self, db_session, notification_service, profile, make_notification):
        make_notification(profile.id)
        make_notification(profile.id)
        make_notification(profile.id, is_read=True)
        other = make_notification(uuid.uuid4())

        assert notification_service.mark_all_as_read(db_session, profile.id) == 2
        db_session.refresh(other)
        assert other.is_read is False

    def test_bulk_actions(self, db_session, notification_service, profile, make_notification):
        first = make_notification(profile.id)
        second = make_notification(profile.id)

        assert notification_service.bulk_action(db_session, profile.id, [first.id, second.id], "mark_read") == 2
        assert notification_service.bulk_action(db_session, profile.id, [first.id], "mark_unread") == 1
        db_session.refresh(first)
        db_session.refresh(second)
        assert first.is_read is False
        assert second.is_read is True

        first_id = first.id
        assert notification_service.bulk_action(db_session, profile.id, [str(first_id)], "delete") == 1
        assert db_session.get(Notification, first_id) is None

    def test_bulk_action_ignores_other_users(self, db_session, notification_service, profile, make_notification):
        foreign = make_notification(uuid.uuid4())
        assert notification_service.bulk_action(db_session, profile.id, [foreign.id], "delete") == 0

    def test_unknown_bulk_action(self, db_session, notification_service, profile):
        with pytest.raises(HTTPException) as exc:
            notification_service.bulk_action(db_session, profile.id, [uuid.uuid4()], "archive")
        assert exc.value.status_code == 400

    def test_delete(self, db_session, notification_service, profile, make_notification):
        notification_id = make_notification(profile.id).id
        notification_service.delete(db_session, notification_id, profile.id)
        assert db_session.get(Notification, notification_id) is None


class TestGetNotifications:
    def test_filters(self, db_session, notification_service, profile, make_notification):
        make_notification(profile.id, type=NotificationType.payment_received, title="Payment landed")
        make_notification(profile.id, type=NotificationType.task_created, is_read=True)
        make_notification(profile.id, priority=NotificationPriority.urgent, title="Urgent task")

        payments = notification_service.get_notifications(db_session, profile.id, notification_type="payment_received")
        unread = notification_service.get_notifications(db_session, profile.id, is_read=False)
        urgent = notification_service.get_notifications(db_session, profile.id, priority="urgent")
        searched = notification_service.get_notifications(db_session, profile.id, search="landed")

        assert [n.title for n in payments] == ["Payment landed"]
        assert len(unread) == 2
        assert [n.title for n in urgent] == ["Urgent task"]
        assert [n.title for n in searched] == ["Payment landed"]

    def test_pagination(self, db_session, notification_service, profile, make_notification):
        for _ in range(5):
            make_notification(profile.id)

        page = notification_service.get_notifications(db_session, profile.id, limit=2, offset=1)

        assert len(page) == 2

    def test_invalid_order_by(self, db_session, notification_service, profile):
        with pytest.raises(HTTPException) as exc:
            notification_service.get_notifications(db_session, profile.id, order_by="title")
        assert exc.value.status_code == 400

    def test_missing_table_degrades_to_empty(self, notification_service, profile):
        db = MagicMock()
        query = db.query.return_value
        query.filter.return_value = query
        query.order_by.return_value = query
        query.offset.return_value = query
        query.limit.return_value = query
        query.all.side_effect = OperationalError(
            "SELECT", {}, Exception("no such table: notifications")
        )

        assert notification_service.get_notifications(db, profile.id) == []
        db.rollback.assert_called_once()

    def test_permission_denied_degrades_to_empty(self, notification_service, profile):
        class _Denied(Exception):
            pgcode = "42501"

        db = MagicMock()
        query = db.query.return_value
        query.filter.return_value = query
        query.order_by.return_value = query
        query.offset.return_value = query
        query.limit.return_value = query
        query.all.side_effect = ProgrammingError("SELECT", {}, _Denied("permission denied"))

        assert notification_service.get_notifications(db, profile.id) == []

    def test_other_store_errors_propagate(self, notification_service, profile):
        db = MagicMock()
        query = db.query.return_value
        query.filter.return_value = query
        query.order_by.return_value = query
        query.offset.return_value = query
        query.limit.return_value = query
        query.all.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))

        with pytest.raises(OperationalError):
            notification_service.get_notifications(db, profile.id)


class TestNotificationStats:
    def test_single_pass_stats(self, db_session, notification_service, profile, make_notification):
        old = datetime.now(UTC) - timedelta(days=3)
        make_notification(profile.id, type=NotificationType.task_created)
        make_notification(profile.id, type=NotificationType.task_created, is_read=True)
        make_notification(profile.id, type=NotificationType.invoice_paid, priority=NotificationPriority.high)
        make_notification(profile.id, type=NotificationType.invoice_paid, created_at=old)
        make_notification(uuid.uuid4())

        stats = notification_service.get_notification_stats(db_session, profile.id)

        assert stats.total == 4
        assert stats.unread == 3
        assert stats.by_type == {"task_created": 2, "invoice_paid": 2}
        assert stats.by_priority == {"medium": 3, "high": 1}
        assert stats.recent_count == 3

    def test_no_notifications(self, db_session, notification_service, profile):
        stats = notification_service.get_notification_stats(db_session, profile.id)
        assert stats.total == 0
        assert stats.by_type == {}


class TestCleanup:
    def test_deletes_only_expired(self, db_session, notification_service, profile, make_notification):
        now = datetime.now(UTC)
        expired_id = make_notification(profile.id, expires_at=now - timedelta(hours=1)).id
        fresh_id = make_notification(profile.id, expires_at=now + timedelta(hours=1)).id
        forever_id = make_notification(profile.id).id

        assert notification_service.cleanup_expired_notifications(db_session) == 1
        assert db_session.get(Notification, expired_id) is None
        assert db_session.get(Notification, fresh_id) is not None
        assert db_session.get(Notification, forever_id) is not None

    def test_cleanup_is_idempotent(self, db_session, notification_service, profile, make_notification):
        make_notification(profile.id, expires_at=datetime.now(UTC) - timedelta(days=1))

        assert notification_service.cleanup_expired_notifications(db_session) == 1
        assert notification_service.cleanup_expired_notifications(db_session) == 0


class TestSettings:
    def test_defaults_without_row(self, db_session, notification_service, profile):
        settings_row = notification_service.get_settings(db_session, profile.id)
        assert settings_row.task_notifications is True
        assert settings_row.email_template_style == EmailTemplateStyle.modern
        assert db_session.query(NotificationSettings).count() == 0

    def test_update_upserts(self, db_session, notification_service, profile):
        created = notification_service.update_settings(
            db_session, profile.id, NotificationSettingsUpdate(task_notifications=False)
        )
        updated = notification_service.update_settings(
            db_session,
            profile.id,
            NotificationSettingsUpdate(email_template_style=EmailTemplateStyle.corporate),
        )

        assert created.id == updated.id
        assert updated.task_notifications is False
        assert updated.booking_notifications is True
        assert updated.email_template_style == EmailTemplateStyle.corporate


class TestResend:
    def test_resend_calls_adapter(self, db_session, profile, make_notification):
        adapter = MagicMock()
        adapter.send_email_notification.return_value = True
        service = NotificationService(email_adapter=adapter, rate_limiter=RateLimiter(60), resend_limit=2)
        notification = make_notification(profile.id)

        assert service.resend(db_session, notification.id, profile.id) is True
        args = adapter.send_email_notification.call_args.args
        assert args[1].id == notification.id
        assert args[2] == profile.email

    def test_resend_is_rate_limited(self, db_session, profile, make_notification):
        adapter = MagicMock()
        service = NotificationService(email_adapter=adapter, rate_limiter=RateLimiter(60), resend_limit=2)
        notification = make_notification(profile.id)

        service.resend(db_session, notification.id, profile.id)
        service.resend(db_session, notification.id, profile.id)
        with pytest.raises(RateLimitExceeded) as exc:
            service.resend(db_session, notification.id, profile.id)
        assert exc.value.retry_after >= 1
        assert adapter.send_email_notification.call_count == 2
