from __future__ import annotations

from datetime import UTC, datetime

from fastapi import HTTPException
from sqlalchemy.orm import Session

from servicehub.logging import get_logger
from servicehub.metrics import SIDE_EFFECT_FAILURES
from servicehub.models.bookings import (
    ApprovalStatus,
    Booking,
    BookingStatus,
    Milestone,
    MilestoneApproval,
    MilestoneStatus,
    Task,
    TaskStatus,
)
from servicehub.models.notification import NotificationType
from servicehub.models.profile import Profile
from servicehub.schemas.bookings import (
    BookingCreate,
    MilestoneCreate,
    MilestoneReviewCreate,
    MilestoneUpdate,
    TaskCreate,
    TaskUpdate,
    TimeEntryCreate,
)
from servicehub.services.common import apply_ordering, apply_pagination, coerce_uuid, validate_enum
from servicehub.services.progress import is_overdue
from servicehub.services.response import ListResponseMixin

logger = get_logger(__name__)

DEFAULT_ACTOR_NAME = "ServiceHub"


def _actor_name(db: Session, actor_id) -> str:
    if actor_id is None:
        return DEFAULT_ACTOR_NAME
    profile = db.get(Profile, actor_id)
    if profile is None or not profile.full_name:
        return DEFAULT_ACTOR_NAME
    return profile.full_name


def _booking_data(db: Session, booking: Booking, actor_id) -> dict:
    return {
        "booking_id": str(booking.id),
        "booking_title": booking.title,
        "service_name": booking.service_name or booking.title,
        "actor_name": _actor_name(db, actor_id or booking.provider_id),
    }


def _milestone_data(db: Session, milestone: Milestone, booking: Booking | None, actor_id) -> dict:
    return {
        "booking_id": str(milestone.booking_id),
        "milestone_id": str(milestone.id),
        "milestone_title": milestone.title,
        "project_name": booking.title if booking else None,
        "actor_name": _actor_name(db, actor_id or (booking.provider_id if booking else None)),
    }


def _task_data(db: Session, task: Task, milestone: Milestone, actor_id) -> dict:
    return {
        "booking_id": str(milestone.booking_id),
        "milestone_id": str(milestone.id),
        "task_id": str(task.id),
        "task_title": task.title,
        "milestone_title": milestone.title,
        "actor_name": _actor_name(db, actor_id),
    }


def _statuses(db: Session, milestone_id) -> tuple[MilestoneStatus | None, BookingStatus | None]:
    milestone = db.get(Milestone, milestone_id)
    if milestone is None:
        return None, None
    booking = db.get(Booking, milestone.booking_id)
    return milestone.status, booking.status if booking else None


def _recipients(*user_ids) -> list:
    seen = []
    for user_id in user_ids:
        if user_id is not None and user_id not in seen:
            seen.append(user_id)
    return seen


class _NotifyingService(ListResponseMixin):
    def __init__(self, progress_service, notification_service=None) -> None:
        self.progress = progress_service
        self.notifications = notification_service

    def _notify(self, db: Session, user_id, notification_type: NotificationType, data: dict) -> None:
        if self.notifications is None or user_id is None:
            return
        try:
            self.notifications.create_from_template(db, user_id, notification_type, data)
        except Exception as exc:
            db.rollback()
            SIDE_EFFECT_FAILURES.labels("notification").inc()
            logger.warning(
                "notification_create_failed user_id=%s type=%s error=%s",
                user_id,
                notification_type.value,
                exc,
            )

    def _announce_milestone_completed(self, db: Session, before, milestone: Milestone, booking, actor_id) -> None:
        if before == MilestoneStatus.completed or milestone.status != MilestoneStatus.completed:
            return
        self._notify(
            db,
            booking.client_id if booking else None,
            NotificationType.milestone_completed,
            _milestone_data(db, milestone, booking, actor_id),
        )

    def _announce_booking_completed(self, db: Session, before, booking: Booking, actor_id) -> None:
        if before == BookingStatus.completed or booking.status != BookingStatus.completed:
            return
        logger.info("booking_completed booking_id=%s", booking.id)
        self._notify(db, booking.client_id, NotificationType.booking_completed, _booking_data(db, booking, actor_id))


class Bookings(_NotifyingService):
    def create(self, db: Session, payload: BookingCreate, actor_id=None) -> Booking:
        booking = Booking(**payload.model_dump())
        db.add(booking)
        db.commit()
        db.refresh(booking)
        logger.info("booking_created booking_id=%s", booking.id)
        self._notify(db, booking.client_id, NotificationType.booking_created, _booking_data(db, booking, actor_id))
        return booking

    def get(self, db: Session, booking_id) -> Booking:
        booking = db.get(Booking, coerce_uuid(booking_id, "booking_id"))
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        return booking

    def list(
        self,
        db: Session,
        client_id: str | None,
        provider_id: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(Booking)
        if client_id:
            query = query.filter(Booking.client_id == coerce_uuid(client_id, "client_id"))
        if provider_id:
            query = query.filter(Booking.provider_id == coerce_uuid(provider_id, "provider_id"))
        if status:
            query = query.filter(Booking.status == validate_enum(status, BookingStatus, "status"))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Booking.created_at, "scheduled_date": Booking.scheduled_date, "title": Booking.title},
        )
        return apply_pagination(query, limit, offset).all()

    def recalculate(self, db: Session, booking_id) -> Booking:
        booking = self.get(db, booking_id)
        previous_status = booking.status
        for milestone in list(booking.milestones):
            self.progress.recalculate_milestone(db, milestone.id)
        booking = self.progress.recalculate_booking(db, booking.id)
        self._announce_booking_completed(db, previous_status, booking, None)
        return booking


class Milestones(_NotifyingService):
    def create(self, db: Session, payload: MilestoneCreate, actor_id=None) -> Milestone:
        booking = db.get(Booking, payload.booking_id)
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        previous_status = booking.status
        milestone = Milestone(**payload.model_dump())
        db.add(milestone)
        db.commit()
        db.refresh(milestone)
        booking = self.progress.refresh_from_milestone(db, milestone)
        self._notify(
            db,
            booking.client_id,
            NotificationType.milestone_created,
            _milestone_data(db, milestone, booking, actor_id),
        )
        self._announce_booking_completed(db, previous_status, booking, actor_id)
        return milestone

    def get(self, db: Session, milestone_id) -> Milestone:
        milestone = db.get(Milestone, coerce_uuid(milestone_id, "milestone_id"))
        if not milestone:
            raise HTTPException(status_code=404, detail="Milestone not found")
        return milestone

    def list(
        self,
        db: Session,
        booking_id: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(Milestone)
        if booking_id:
            query = query.filter(Milestone.booking_id == coerce_uuid(booking_id, "booking_id"))
        if status:
            query = query.filter(Milestone.status == validate_enum(status, MilestoneStatus, "status"))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"order_index": Milestone.order_index, "created_at": Milestone.created_at, "due_date": Milestone.due_date},
        )
        return apply_pagination(query, limit, offset).all()

    def update(self, db: Session, milestone_id, payload: MilestoneUpdate, actor_id=None) -> Milestone:
        milestone = self.get(db, milestone_id)
        previous_status, previous_booking_status = _statuses(db, milestone.id)
        changes = payload.model_dump(exclude_unset=True)
        for key, value in changes.items():
            setattr(milestone, key, value)
        if "due_date" in changes:
            milestone.overdue_notified_at = None
        if milestone.status == MilestoneStatus.completed and previous_status != MilestoneStatus.completed:
            milestone.completed_at = datetime.now(UTC)
        db.commit()
        db.refresh(milestone)
        booking = self.progress.refresh_from_milestone(db, milestone)
        db.refresh(milestone)
        self._announce_milestone_completed(db, previous_status, milestone, booking, actor_id)
        self._announce_booking_completed(db, previous_booking_status, booking, actor_id)
        return milestone

    def delete(self, db: Session, milestone_id, actor_id=None) -> None:
        milestone = self.get(db, milestone_id)
        booking_id = milestone.booking_id
        _, previous_booking_status = _statuses(db, milestone.id)
        db.delete(milestone)
        db.commit()
        booking = self.progress.recalculate_booking(db, booking_id)
        self._announce_booking_completed(db, previous_booking_status, booking, actor_id)

    def review(self, db: Session, milestone_id, payload: MilestoneReviewCreate, actor_id) -> dict:
        """Approve or reject a milestone on behalf of the booking's client or provider.

        Approving completes the milestone unless it already is. Rejecting a
        completed milestone is refused; otherwise the milestone keeps its
        status. Every decision is recorded as a ``MilestoneApproval`` and
        the other party is notified.
        """
        milestone = self.get(db, milestone_id)
        booking = db.get(Booking, milestone.booking_id)
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        actor_uuid = coerce_uuid(actor_id, "user_id")
        if actor_uuid not in (booking.client_id, booking.provider_id):
            raise HTTPException(status_code=403, detail="Access denied")
        approve = payload.action == "approve"
        if not approve and milestone.status == MilestoneStatus.completed:
            raise HTTPException(status_code=400, detail="Milestone is already completed")

        previous_booking_status = booking.status
        completes = approve and milestone.status != MilestoneStatus.completed
        if completes:
            milestone.status = MilestoneStatus.completed
            milestone.completed_at = datetime.now(UTC)
        approval = MilestoneApproval(
            milestone_id=milestone.id,
            user_id=actor_uuid,
            status=ApprovalStatus.approved if approve else ApprovalStatus.rejected,
            comment=payload.feedback,
        )
        db.add(approval)
        db.commit()
        db.refresh(approval)
        db.refresh(milestone)
        logger.info(
            "milestone_reviewed milestone_id=%s action=%s user_id=%s",
            milestone.id,
            payload.action,
            actor_uuid,
        )
        if completes:
            booking = self.progress.refresh_from_milestone(db, milestone)
            db.refresh(milestone)
        self.progress.publish(
            milestone.booking_id,
            {
                "milestone_id": str(milestone.id),
                "action": payload.action,
                "status": milestone.status.value,
                "reviewed_by": str(actor_uuid),
                "feedback": payload.feedback,
            },
            milestone_id=milestone.id,
        )

        recipient = booking.provider_id if actor_uuid != booking.provider_id else booking.client_id
        data = _milestone_data(db, milestone, booking, actor_uuid)
        data["feedback"] = payload.feedback
        self._notify(
            db,
            recipient,
            NotificationType.milestone_approved if approve else NotificationType.milestone_rejected,
            data,
        )
        if completes:
            self._announce_booking_completed(db, previous_booking_status, booking, actor_uuid)
        db.refresh(approval)
        db.refresh(milestone)
        verb = "approved" if approve else "rejected"
        return {"milestone": milestone, "approval": approval, "message": f"Milestone {verb} successfully"}

    def approvals(self, db: Session, milestone_id) -> list[MilestoneApproval]:
        milestone = self.get(db, milestone_id)
        return (
            db.query(MilestoneApproval)
            .filter(MilestoneApproval.milestone_id == milestone.id)
            .order_by(MilestoneApproval.created_at.asc())
            .all()
        )


class Tasks(_NotifyingService):
    def create(self, db: Session, payload: TaskCreate) -> Task:
        milestone = db.get(Milestone, payload.milestone_id)
        if not milestone:
            raise HTTPException(status_code=404, detail="Milestone not found")
        previous_status, previous_booking_status = _statuses(db, milestone.id)
        data = payload.model_dump(exclude={"created_by"})
        if data.get("status") == TaskStatus.completed:
            data["completed_at"] = datetime.now(UTC)
        task = Task(**data)
        db.add(task)
        db.commit()
        db.refresh(task)
        milestone, booking = self.progress.refresh_from_task(db, task)
        details = _task_data(db, task, milestone, payload.created_by)
        self._notify(db, booking.client_id, NotificationType.task_created, details)
        if task.assigned_to and task.assigned_to != payload.created_by:
            self._notify(db, task.assigned_to, NotificationType.task_assigned, details)
        self._announce_milestone_completed(db, previous_status, milestone, booking, payload.created_by)
        self._announce_booking_completed(db, previous_booking_status, booking, payload.created_by)
        return task

    def get(self, db: Session, task_id) -> Task:
        task = db.get(Task, coerce_uuid(task_id, "task_id"))
        if not task:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    def list(
        self,
        db: Session,
        milestone_id: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(Task)
        if milestone_id:
            query = query.filter(Task.milestone_id == coerce_uuid(milestone_id, "milestone_id"))
        if status:
            query = query.filter(Task.status == validate_enum(status, TaskStatus, "status"))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"order_index": Task.order_index, "created_at": Task.created_at, "due_date": Task.due_date},
        )
        return apply_pagination(query, limit, offset).all()

    def update(self, db: Session, task_id, payload: TaskUpdate, actor_id=None) -> Task:
        task = self.get(db, task_id)
        previous_status = task.status
        previous_assignee = task.assigned_to
        previous_milestone_status, previous_booking_status = _statuses(db, task.milestone_id)
        changes = payload.model_dump(exclude_unset=True)
        for key, value in changes.items():
            setattr(task, key, value)
        if "due_date" in changes:
            task.overdue_notified_at = None
        completed_now = task.status == TaskStatus.completed and previous_status != TaskStatus.completed
        if completed_now:
            task.completed_at = datetime.now(UTC)
        elif task.status != TaskStatus.completed:
            task.completed_at = None
        db.commit()
        db.refresh(task)
        milestone, booking = self.progress.refresh_from_task(db, task)
        details = _task_data(db, task, milestone, actor_id)
        if completed_now:
            self._notify(db, booking.client_id, NotificationType.task_completed, details)
        self._announce_milestone_completed(db, previous_milestone_status, milestone, booking, actor_id)
        self._announce_booking_completed(db, previous_booking_status, booking, actor_id)
        if task.assigned_to and task.assigned_to != previous_assignee:
            self._notify(db, task.assigned_to, NotificationType.task_assigned, details)
        return task

    def delete(self, db: Session, task_id, actor_id=None) -> None:
        task = self.get(db, task_id)
        milestone_id = task.milestone_id
        previous_milestone_status, previous_booking_status = _statuses(db, milestone_id)
        db.delete(task)
        db.commit()
        milestone, booking = self.progress.refresh_from_milestone_id(db, milestone_id)
        self._announce_milestone_completed(db, previous_milestone_status, milestone, booking, actor_id)
        self._announce_booking_completed(db, previous_booking_status, booking, actor_id)


class OverdueNotices(_NotifyingService):
    """Notifies the people on a booking once a task or milestone passes its due date.

    Each item is flagged with ``overdue_notified_at`` before its notices go
    out, so a sweep never repeats itself. Moving the due date clears the flag.
    """

    def sweep(self, db: Session, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(UTC)
        closed = [TaskStatus.completed, TaskStatus.cancelled]
        tasks = (
            db.query(Task)
            .filter(Task.due_date.is_not(None))
            .filter(Task.overdue_notified_at.is_(None))
            .filter(Task.status.notin_(closed))
            .all()
        )
        flagged_tasks = 0
        for task in tasks:
            if not is_overdue(task.due_date, task.status, now):
                continue
            milestone = task.milestone
            booking = milestone.booking
            details = _task_data(db, task, milestone, None)
            recipients = _recipients(task.assigned_to, booking.provider_id)
            task.overdue_notified_at = now
            db.commit()
            flagged_tasks += 1
            for user_id in recipients:
                self._notify(db, user_id, NotificationType.task_overdue, details)

        milestones = (
            db.query(Milestone)
            .filter(Milestone.due_date.is_not(None))
            .filter(Milestone.overdue_notified_at.is_(None))
            .filter(Milestone.status.notin_([MilestoneStatus.completed, MilestoneStatus.cancelled]))
            .all()
        )
        flagged_milestones = 0
        for milestone in milestones:
            if not is_overdue(milestone.due_date, milestone.status, now):
                continue
            booking = milestone.booking
            details = _milestone_data(db, milestone, booking, None)
            recipients = _recipients(booking.client_id, booking.provider_id)
            milestone.overdue_notified_at = now
            db.commit()
            flagged_milestones += 1
            for user_id in recipients:
                self._notify(db, user_id, NotificationType.milestone_overdue, details)

        logger.info("overdue_sweep_completed tasks=%s milestones=%s", flagged_tasks, flagged_milestones)
        return {"tasks": flagged_tasks, "milestones": flagged_milestones}


class TimeEntries:
    def __init__(self, progress_service) -> None:
        self.progress = progress_service

    def create(self, db: Session, payload: TimeEntryCreate):
        entry = self.progress.log_time_entry(db, payload)
        logger.info("time_entry_logged task_id=%s hours=%s", entry.task_id, entry.duration_hours)
        return entry
