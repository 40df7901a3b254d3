from fastapi import Header, HTTPException

from servicehub.db import get_db  # noqa: F401
from servicehub.services.common import coerce_uuid


def get_current_user_id(x_user_id: str | None = Header(default=None)):
    """Caller identity as forwarded by the upstream gateway.

    Authentication itself happens before requests reach this service.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return coerce_uuid(x_user_id, "user_id")


# -------------------------------------------------------------------------
# Container-based Dependencies
# -------------------------------------------------------------------------
# These can be mocked in tests by overriding the container providers.


def get_progress_service():
    from servicehub.container import container
    return container.progress_service()


def get_notification_service():
    from servicehub.container import container
    return container.notification_service()


def get_bookings_service():
    from servicehub.container import container
    return container.bookings_service()


def get_milestones_service():
    from servicehub.container import container
    return container.milestones_service()


def get_tasks_service():
    from servicehub.container import container
    return container.tasks_service()


def get_time_entries_service():
    from servicehub.container import container
    return container.time_entries_service()


def get_overdue_notices():
    from servicehub.container import container
    return container.overdue_notices()


def get_realtime_hub():
    from servicehub.container import container
    return container.realtime_hub()
