"""Background hand-off for notification emails.

``NotificationService`` never sends mail itself; it enqueues an
:class:`EmailDeliveryJob`. The in-process queue is drained by a worker
thread (or explicitly via :meth:`InProcessDeliveryQueue.drain`) and keeps
every failure on its ``failures`` channel. The Celery queue hands the job
to a worker process instead.
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from servicehub.logging import get_logger
from servicehub.metrics import SIDE_EFFECT_FAILURES
from servicehub.models.notification import Notification

logger = get_logger(__name__)


class DeliveryQueueFull(RuntimeError):
    pass


@dataclass(frozen=True)
class EmailDeliveryJob:
    notification_id: uuid.UUID
    recipient_email: str
    recipient_name: str | None = None
    style: str | None = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class DeliveryFailure:
    job: EmailDeliveryJob
    error: str
    failed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def deliver_job(db: Session, adapter, job: EmailDeliveryJob) -> bool:
    notification = db.get(Notification, job.notification_id)
    if notification is None:
        raise LookupError(f"Notification {job.notification_id} not found")
    return adapter.send_email_notification(
        db,
        notification,
        job.recipient_email,
        job.recipient_name,
        job.style,
    )


class InProcessDeliveryQueue:
    def __init__(self, adapter, max_size: int = 1000, max_failures: int = 1000) -> None:
        self.adapter = adapter
        self.max_size = max_size
        self.failures: deque[DeliveryFailure] = deque(maxlen=max_failures)
        self.stats = {"sent": 0, "not_sent": 0, "failed": 0}
        self._jobs: deque[EmailDeliveryJob] = deque()
        self._condition = threading.Condition()
        self._worker: threading.Thread | None = None
        self._running = False

    def enqueue(self, job: EmailDeliveryJob) -> None:
        with self._condition:
            if len(self._jobs) >= self.max_size:
                raise DeliveryQueueFull(f"Delivery queue is full ({self.max_size} jobs)")
            self._jobs.append(job)
            self._condition.notify()

    def pending(self) -> int:
        with self._condition:
            return len(self._jobs)

    def _next_job(self) -> EmailDeliveryJob | None:
        with self._condition:
            return self._jobs.popleft() if self._jobs else None

    def drain(self, db: Session) -> int:
        """Deliver every queued job. Returns how many emails were sent."""
        sent = 0
        while True:
            job = self._next_job()
            if job is None:
                return sent
            try:
                delivered = deliver_job(db, self.adapter, job)
            except Exception as exc:
                db.rollback()
                self._record("failed", DeliveryFailure(job=job, error=str(exc)))
                SIDE_EFFECT_FAILURES.labels("email_delivery").inc()
                logger.warning(
                    "notification_delivery_failed notification_id=%s error=%s",
                    job.notification_id,
                    exc,
                )
                continue
            if delivered:
                sent += 1
                self._record("sent")
            else:
                self._record("not_sent")

    def _record(self, outcome: str, failure: DeliveryFailure | None = None) -> None:
        with self._condition:
            self.stats[outcome] += 1
            if failure is not None:
                self.failures.append(failure)

    def snapshot(self) -> dict[str, int]:
        with self._condition:
            return dict(self.stats)

    def start(self, session_factory: Callable[[], Session]) -> None:
        if self._worker is not None:
            return
        self._running = True
        self._worker = threading.Thread(
            target=self._run,
            args=(session_factory,),
            name="notification-delivery",
            daemon=True,
        )
        self._worker.start()
        logger.info("notification_delivery_worker_started")

    def stop(self, timeout: float = 5.0) -> None:
        with self._condition:
            self._running = False
            self._condition.notify_all()
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None
        logger.info("notification_delivery_worker_stopped")

    def _run(self, session_factory: Callable[[], Session]) -> None:
        while True:
            with self._condition:
                while self._running and not self._jobs:
                    self._condition.wait(timeout=1.0)
                if not self._running:
                    return
            session = session_factory()
            try:
                self.drain(session)
            except Exception:
                logger.exception("notification_delivery_worker_error")
            finally:
                session.close()


class CeleryDeliveryQueue:
    def enqueue(self, job: EmailDeliveryJob) -> None:
        from servicehub.tasks.notifications import deliver_notification_email

        deliver_notification_email.delay(
            str(job.notification_id),
            job.recipient_email,
            job.recipient_name,
            job.style,
        )
