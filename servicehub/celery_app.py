from celery import Celery

from servicehub.config import settings

celery_app = Celery(
    "servicehub",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["servicehub.tasks.notifications", "servicehub.tasks.progress"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "cleanup-expired-notifications": {
            "task": "servicehub.tasks.notifications.cleanup_expired_notifications",
            "schedule": 3600.0,
        },
        "sweep-overdue-work": {
            "task": "servicehub.tasks.progress.sweep_overdue_work",
            "schedule": 3600.0,
        },
    },
)
