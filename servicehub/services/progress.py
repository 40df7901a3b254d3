"""Progress aggregation across the task -> milestone -> booking tree.

Task contribution is binary: a completed task contributes its full weight,
anything else contributes nothing. ``Task.progress_percentage`` is a
display value and never feeds the roll-up.

Booking status follows its milestones: completed once every milestone is
completed, in_progress while any progress exists, pending at 0%. A
cancelled booking keeps its status, and an approved one stays approved
until work starts.
"""

from __future__ import annotations

import enum
import time
from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from fastapi import HTTPException
from sqlalchemy.orm import Session

from servicehub.logging import get_logger
from servicehub.metrics import PROGRESS_RECOMPUTE_TIME, PROGRESS_RECOMPUTES, SIDE_EFFECT_FAILURES
from servicehub.models.bookings import (
    Booking,
    BookingStatus,
    Milestone,
    MilestoneStatus,
    Task,
    TaskStatus,
    TimeEntry,
)
from servicehub.schemas.bookings import ProgressAnalytics, TimeEntryCreate
from servicehub.services.common import coerce_uuid
from servicehub.services.progress_cache import ProgressCache, analytics_key
from servicehub.telemetry import get_tracer

logger = get_logger(__name__)
tracer = get_tracer(__name__)

_ZERO = Decimal(0)
_ONE = Decimal(1)
_HUNDRED = Decimal(100)

CLOSED_STATUSES = {TaskStatus.completed.value, TaskStatus.cancelled.value}
_MANUAL_MILESTONE_STATUSES = {MilestoneStatus.on_hold, MilestoneStatus.cancelled}


def _status_value(status) -> str | None:
    if isinstance(status, enum.Enum):
        return status.value
    return status


def _as_decimal(value, default: Decimal = _ONE) -> Decimal:
    if value is None:
        return default
    return Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def _clamp_percentage(value: int) -> int:
    return max(0, min(100, value))


def task_contribution(task) -> Decimal:
    if _status_value(task.status) == TaskStatus.completed.value:
        return _as_decimal(task.weight)
    return _ZERO


def milestone_progress(tasks: Iterable) -> int:
    total = _ZERO
    completed = _ZERO
    for task in tasks:
        total += _as_decimal(task.weight)
        completed += task_contribution(task)
    if total <= 0:
        return 0
    return _clamp_percentage(round_half_up(_HUNDRED * completed / total))


def booking_progress(milestones: Iterable) -> int:
    total = _ZERO
    weighted = _ZERO
    for milestone in milestones:
        weight = _as_decimal(milestone.weight)
        total += weight
        weighted += _as_decimal(milestone.progress_percentage, _ZERO) * weight
    if total <= 0:
        return 0
    return _clamp_percentage(round_half_up(weighted / total))


def derive_milestone_status(current: MilestoneStatus | None, tasks: list) -> MilestoneStatus:
    if current in _MANUAL_MILESTONE_STATUSES:
        return current
    statuses = [_status_value(task.status) for task in tasks]
    if statuses and all(status == TaskStatus.completed.value for status in statuses):
        return MilestoneStatus.completed
    if any(status in {TaskStatus.completed.value, TaskStatus.in_progress.value} for status in statuses):
        return MilestoneStatus.in_progress
    return MilestoneStatus.pending


def derive_booking_status(current: BookingStatus | None, milestones: list, progress: int) -> BookingStatus:
    if current == BookingStatus.cancelled:
        return current
    if milestones and all(_status_value(m.status) == MilestoneStatus.completed.value for m in milestones):
        return BookingStatus.completed
    if progress > 0:
        return BookingStatus.in_progress
    if current == BookingStatus.approved:
        return current
    return BookingStatus.pending


def _aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def is_overdue(due_date: datetime | None, status, now: datetime) -> bool:
    due = _aware(due_date)
    return due is not None and due < now and _status_value(status) not in CLOSED_STATUSES


class ProgressService:
    """Recomputes and caches progress, then tells open views about it."""

    def __init__(self, cache: ProgressCache, hub=None) -> None:
        self.cache = cache
        self.hub = hub

    def recalculate_milestone(self, db: Session, milestone_id) -> Milestone:
        started = time.perf_counter()
        with tracer.start_as_current_span("progress.recalculate_milestone"):
            milestone = db.get(Milestone, coerce_uuid(milestone_id, "milestone_id"))
            if not milestone:
                raise HTTPException(status_code=404, detail="Milestone not found")
            tasks = db.query(Task).filter(Task.milestone_id == milestone.id).all()
            milestone.progress_percentage = milestone_progress(tasks)
            status = derive_milestone_status(milestone.status, tasks)
            if status == MilestoneStatus.completed and milestone.status != MilestoneStatus.completed:
                milestone.completed_at = datetime.now(UTC)
            elif status != MilestoneStatus.completed:
                milestone.completed_at = None
            milestone.status = status
            milestone.actual_hours = float(sum(_as_decimal(task.actual_hours, _ZERO) for task in tasks))
            booking_id = milestone.booking_id
            db.commit()
            db.refresh(milestone)
        PROGRESS_RECOMPUTES.labels("milestone").inc()
        PROGRESS_RECOMPUTE_TIME.labels("milestone").observe(time.perf_counter() - started)
        self.cache.invalidate(analytics_key(booking_id))
        self.publish(
            booking_id,
            {
                "milestone_id": str(milestone.id),
                "progress_percentage": milestone.progress_percentage,
                "status": milestone.status.value,
                "actual_hours": milestone.actual_hours,
            },
            milestone_id=milestone.id,
        )
        return milestone

    def recalculate_booking(self, db: Session, booking_id) -> Booking:
        started = time.perf_counter()
        with tracer.start_as_current_span("progress.recalculate_booking"):
            booking = db.get(Booking, coerce_uuid(booking_id, "booking_id"))
            if not booking:
                raise HTTPException(status_code=404, detail="Booking not found")
            milestones = db.query(Milestone).filter(Milestone.booking_id == booking.id).all()
            booking.project_progress = booking_progress(milestones)
            booking.status = derive_booking_status(booking.status, milestones, booking.project_progress)
            db.commit()
            db.refresh(booking)
        PROGRESS_RECOMPUTES.labels("booking").inc()
        PROGRESS_RECOMPUTE_TIME.labels("booking").observe(time.perf_counter() - started)
        self.cache.invalidate(analytics_key(booking.id))
        self.publish(booking.id, {"project_progress": booking.project_progress, "status": booking.status.value})
        return booking

    def refresh_from_task(self, db: Session, task: Task) -> tuple[Milestone, Booking]:
        milestone = self.recalculate_milestone(db, task.milestone_id)
        booking = self.recalculate_booking(db, milestone.booking_id)
        return milestone, booking

    def refresh_from_milestone(self, db: Session, milestone: Milestone) -> Booking:
        return self.recalculate_booking(db, milestone.booking_id)

    def refresh_from_milestone_id(self, db: Session, milestone_id) -> tuple[Milestone, Booking]:
        milestone = self.recalculate_milestone(db, milestone_id)
        return milestone, self.recalculate_booking(db, milestone.booking_id)

    def log_time_entry(self, db: Session, payload: TimeEntryCreate) -> TimeEntry:
        task = db.get(Task, coerce_uuid(payload.task_id, "task_id"))
        if not task:
            raise HTTPException(status_code=404, detail="Task not found")
        entry = TimeEntry(**payload.model_dump(exclude_none=True))
        db.add(entry)
        task.actual_hours = float(_as_decimal(task.actual_hours, _ZERO) + _as_decimal(payload.duration_hours))
        db.commit()
        db.refresh(entry)
        self.refresh_from_task(db, task)
        return entry

    def get_progress_analytics(self, db: Session, booking_id) -> ProgressAnalytics:
        booking_uuid = coerce_uuid(booking_id, "booking_id")
        key = analytics_key(booking_uuid)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        booking = db.get(Booking, booking_uuid)
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        milestones = db.query(Milestone).filter(Milestone.booking_id == booking.id).all()
        tasks = (
            db.query(Task)
            .join(Milestone, Milestone.id == Task.milestone_id)
            .filter(Milestone.booking_id == booking.id)
            .all()
        )
        now = datetime.now(UTC)
        counts = {status.value: 0 for status in TaskStatus}
        overdue = 0
        estimated = _ZERO
        actual = _ZERO
        for task in tasks:
            status = _status_value(task.status)
            counts[status] = counts.get(status, 0) + 1
            if is_overdue(task.due_date, status, now):
                overdue += 1
            estimated += _as_decimal(task.estimated_hours, _ZERO)
            actual += _as_decimal(task.actual_hours, _ZERO)
        analytics = ProgressAnalytics(
            booking_id=booking.id,
            booking_progress=booking.project_progress or 0,
            total_milestones=len(milestones),
            completed_milestones=sum(1 for m in milestones if m.status == MilestoneStatus.completed),
            total_tasks=len(tasks),
            completed_tasks=counts[TaskStatus.completed.value],
            in_progress_tasks=counts[TaskStatus.in_progress.value],
            pending_tasks=counts[TaskStatus.pending.value],
            overdue_tasks=overdue,
            total_estimated_hours=float(estimated),
            total_actual_hours=float(actual),
            efficiency=round_half_up(estimated / actual * _HUNDRED) if actual > 0 else 0,
        )
        self.cache.set(key, analytics)
        return analytics

    def invalidate(self, booking_id) -> None:
        self.cache.invalidate(analytics_key(booking_id))

    def publish(self, booking_id, data: dict, milestone_id=None) -> None:
        if self.hub is None:
            return
        try:
            self.hub.publish_progress(booking_id, data, milestone_id=milestone_id)
        except Exception:
            SIDE_EFFECT_FAILURES.labels("progress_broadcast").inc()
            logger.warning("progress_broadcast_failed booking_id=%s", booking_id, exc_info=True)
