"""Dependency injection container.

Every long-lived collaborator of the pipeline (change feed, realtime hub,
analytics cache, delivery queue, services) is a Singleton provider here.
Nothing else in the package holds mutable module-level state.

Usage:
    from servicehub.container import container

    service = container.notification_service()

    # In tests
    with container.delivery_queue.override(fake_queue):
        ...
"""

from __future__ import annotations

from dependency_injector import containers, providers  # type: ignore[import-not-found]

from servicehub.config import settings
from servicehub.logging import get_logger
from servicehub.realtime.hub import RealtimeHub
from servicehub.services.bookings import Bookings, Milestones, OverdueNotices, Tasks, TimeEntries
from servicehub.services.change_feed import ChangeFeed
from servicehub.services.delivery import CeleryDeliveryQueue, InProcessDeliveryQueue
from servicehub.services.email import build_transport
from servicehub.services.email_notifications import EmailDeliveryAdapter
from servicehub.services.notifications import NotificationService
from servicehub.services.progress import ProgressService
from servicehub.services.progress_cache import ProgressCache
from servicehub.services.rate_limit import RateLimiter

logger = get_logger(__name__)


def _build_delivery_queue(adapter):
    if settings.notification_delivery_backend == "celery":
        return CeleryDeliveryQueue()
    return InProcessDeliveryQueue(adapter, max_size=settings.notification_queue_max)


def _build_rate_limiter():
    redis_client = None
    try:
        import redis

        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        redis_client.ping()
        logger.info("notification_rate_limiter_redis_connected")
    except Exception as exc:
        logger.warning("notification_rate_limiter_redis_unavailable error=%s", exc)
        redis_client = None
    return RateLimiter(window_seconds=settings.resend_rate_window_seconds, redis_client=redis_client)


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Overridden at runtime with the actual SessionLocal
    db_session_factory = providers.Callable(lambda: None)

    change_feed = providers.Singleton(ChangeFeed)
    realtime_hub = providers.Singleton(RealtimeHub, feed=change_feed)
    progress_cache = providers.Singleton(
        ProgressCache,
        ttl_seconds=settings.progress_cache_ttl_seconds,
        max_entries=settings.progress_cache_max_entries,
    )
    progress_service = providers.Singleton(ProgressService, cache=progress_cache, hub=realtime_hub)

    email_transport = providers.Singleton(build_transport)
    email_adapter = providers.Singleton(
        EmailDeliveryAdapter,
        transport=email_transport,
        base_url=settings.app_url,
        default_style=settings.email_default_style,
        from_email=settings.email_from,
        from_name=settings.email_from_name,
        reply_to=settings.email_reply_to,
    )
    delivery_queue = providers.Singleton(_build_delivery_queue, adapter=email_adapter)
    rate_limiter = providers.Singleton(_build_rate_limiter)

    notification_service = providers.Singleton(
        NotificationService,
        delivery_queue=delivery_queue,
        email_adapter=email_adapter,
        rate_limiter=rate_limiter,
        resend_limit=settings.resend_rate_limit,
    )

    bookings_service = providers.Singleton(
        Bookings, progress_service=progress_service, notification_service=notification_service
    )
    milestones_service = providers.Singleton(
        Milestones, progress_service=progress_service, notification_service=notification_service
    )
    tasks_service = providers.Singleton(
        Tasks, progress_service=progress_service, notification_service=notification_service
    )
    time_entries_service = providers.Singleton(TimeEntries, progress_service=progress_service)
    overdue_notices = providers.Singleton(
        OverdueNotices, progress_service=progress_service, notification_service=notification_service
    )


# Global container instance
container = Container()


def get_container() -> Container:
    """Get the global container instance."""
    return container


def configure_container(db_session_factory) -> Container:
    """Bind the runtime session factory and hook the change feed onto it."""
    container.db_session_factory.override(providers.Callable(db_session_factory))
    container.change_feed().attach(db_session_factory)
    container.realtime_hub().configure_session_factory(db_session_factory)
    return container
