import logging
import uuid

from servicehub.celery_app import celery_app
from servicehub.db import SessionLocal
from servicehub.services.delivery import EmailDeliveryJob, deliver_job

logger = logging.getLogger(__name__)


@celery_app.task(name="servicehub.tasks.notifications.deliver_notification_email")
def deliver_notification_email(
    notification_id: str,
    recipient_email: str | None = None,
    recipient_name: str | None = None,
    style: str | None = None,
):
    """Send the email for one persisted notification.

    The recipient is looked up from the user's profile when the caller did
    not resolve it already.
    """
    from servicehub.container import container

    session = SessionLocal()
    try:
        notification_uuid = uuid.UUID(str(notification_id))
        if not recipient_email:
            notification = container.notification_service().get(session, notification_uuid)
            recipient_email, profile_name = container.notification_service().resolve_recipient(
                session, notification.user_id
            )
            recipient_name = recipient_name or profile_name
        if not recipient_email:
            logger.info("notification_delivery_no_recipient notification_id=%s", notification_id)
            return False
        job = EmailDeliveryJob(
            notification_id=notification_uuid,
            recipient_email=recipient_email,
            recipient_name=recipient_name,
            style=style,
        )
        return deliver_job(session, container.email_adapter(), job)
    except Exception:
        session.rollback()
        logger.exception("notification_delivery_task_failed notification_id=%s", notification_id)
        raise
    finally:
        session.close()


@celery_app.task(name="servicehub.tasks.notifications.cleanup_expired_notifications")
def cleanup_expired_notifications():
    from servicehub.container import container

    session = SessionLocal()
    try:
        return container.notification_service().cleanup_expired_notifications(session)
    except Exception:
        session.rollback()
        logger.exception("notification_cleanup_task_failed")
        raise
    finally:
        session.close()
