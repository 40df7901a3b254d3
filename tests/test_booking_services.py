"""Tests for booking, milestone and task writes and the notifications they emit."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from dependency_injector import providers
from fastapi import HTTPException

from servicehub.celery_app import celery_app
from servicehub.container import container
from servicehub.models import (
    ApprovalStatus,
    Booking,
    BookingStatus,
    Milestone,
    MilestoneApproval,
    MilestoneStatus,
    Notification,
    NotificationType,
    Task,
    TaskStatus,
)
from servicehub.schemas.bookings import (
    BookingCreate,
    MilestoneCreate,
    MilestoneReviewCreate,
    MilestoneUpdate,
    TaskCreate,
    TaskUpdate,
    TimeEntryCreate,
)
from servicehub.services.bookings import Bookings, Milestones, OverdueNotices, Tasks, TimeEntries
from servicehub.tasks import progress as progress_tasks


@pytest.fixture()
def bookings(progress_service, notification_service):
    return Bookings(progress_service, notification_service)


@pytest.fixture()
def milestones(progress_service, notification_service):
    return Milestones(progress_service, notification_service)


@pytest.fixture()
def tasks(progress_service, notification_service):
    return Tasks(progress_service, notification_service)


@pytest.fixture()
def notices(progress_service, notification_service):
    return OverdueNotices(progress_service, notification_service)


@pytest.fixture()
def provider(make_profile):
    return make_profile(full_name="Pat Provider")


def _notifications(db_session, user_id, notification_type=None):
    query = db_session.query(Notification).filter(Notification.user_id == user_id)
    if notification_type is not None:
        query = query.filter(Notification.type == notification_type)
    return query.all()


class TestBookings:
    def test_create_notifies_client(self, db_session, bookings, profile, make_profile):
        provider = make_profile(full_name="Pat Provider")

        booking = bookings.create(
            db_session,
            BookingCreate(title="Kitchen", service_name="Renovation", client_id=profile.id, provider_id=provider.id),
        )

        assert booking.project_progress == 0
        [notification] = _notifications(db_session, profile.id, NotificationType.booking_created)
        assert notification.title == "New Booking: Kitchen"
        assert notification.message == 'A new booking "Kitchen" for Renovation has been created by Pat Provider.'
        assert notification.action_url == f"/dashboard/bookings/{booking.id}"

    def test_create_without_client_sends_nothing(self, db_session, bookings):
        bookings.create(db_session, BookingCreate(title="Kitchen"))
        assert db_session.query(Notification).count() == 0

    def test_notification_failure_keeps_booking(self, db_session, progress_service, profile):
        notifications = MagicMock()
        notifications.create_from_template.side_effect = RuntimeError("notifications down")
        service = Bookings(progress_service, notifications)

        booking = service.create(db_session, BookingCreate(title="Kitchen", client_id=profile.id))

        assert db_session.get(Booking, booking.id) is not None

    def test_get_missing(self, db_session, bookings):
        with pytest.raises(HTTPException) as exc:
            bookings.get(db_session, uuid.uuid4())
        assert exc.value.status_code == 404

    def test_list_filters(self, db_session, bookings, make_booking, profile):
        make_booking(title="Mine", client_id=profile.id)
        make_booking(title="Other")

        result = bookings.list_response(db_session, str(profile.id), None, None, "title", "asc", 10, 0)

        assert [booking.title for booking in result["items"]] == ["Mine"]
        assert result["count"] == 1
        assert result["limit"] == 10

    def test_recalculate_repairs_drift(self, db_session, bookings, booking, make_milestone, make_task):
        milestone = make_milestone(booking)
        make_task(milestone, status=TaskStatus.completed)
        booking.project_progress = 3
        db_session.commit()

        refreshed = bookings.recalculate(db_session, booking.id)

        assert refreshed.project_progress == 100
        assert db_session.get(Milestone, milestone.id).progress_percentage == 100


class TestMilestones:
    def test_create_recomputes_and_notifies(self, db_session, milestones, booking, profile, make_milestone, make_task):
        done = make_milestone(booking)
        make_task(done, status=TaskStatus.completed)
        milestones.progress.refresh_from_milestone_id(db_session, done.id)

        milestones.create(db_session, MilestoneCreate(booking_id=booking.id, title="Finishing"))

        db_session.refresh(booking)
        assert booking.project_progress == 50
        [notification] = _notifications(db_session, profile.id, NotificationType.milestone_created)
        assert notification.data["milestone_title"] == "Finishing"
        assert notification.data["actor_name"] == "ServiceHub"

    def test_create_for_missing_booking(self, db_session, milestones):
        with pytest.raises(HTTPException) as exc:
            milestones.create(db_session, MilestoneCreate(booking_id=uuid.uuid4(), title="Orphan"))
        assert exc.value.status_code == 404

    def test_manual_completion_notifies_once(self, db_session, milestones, milestone, profile):
        milestones.update(db_session, milestone.id, MilestoneUpdate(status=MilestoneStatus.completed))
        updated = milestones.update(db_session, milestone.id, MilestoneUpdate(title="Design done"))

        assert updated.status == MilestoneStatus.completed
        assert updated.completed_at is not None
        assert len(_notifications(db_session, profile.id, NotificationType.milestone_completed)) == 1

    def test_delete_recomputes_booking(self, db_session, milestones, booking, make_milestone, make_task):
        done = make_milestone(booking)
        make_task(done, status=TaskStatus.completed)
        pending = make_milestone(booking)
        make_task(pending)
        milestones.progress.refresh_from_milestone_id(db_session, done.id)
        milestones.progress.refresh_from_milestone_id(db_session, pending.id)

        milestones.delete(db_session, pending.id)

        db_session.refresh(booking)
        assert booking.project_progress == 100

    def test_list_by_booking(self, db_session, milestones, booking, make_milestone):
        make_milestone(booking, title="Second", order_index=2)
        make_milestone(booking, title="First", order_index=1)

        items = milestones.list(db_session, str(booking.id), None, "order_index", "asc", 10, 0)

        assert [m.title for m in items] == ["First", "Second"]


class TestMilestoneReview:
    @pytest.fixture()
    def reviewed(self, make_booking, make_milestone, profile, provider):
        booking = make_booking(client_id=profile.id, provider_id=provider.id)
        return make_milestone(booking, title="Framing")

    def test_client_approval_completes_and_notifies_provider(
        self, db_session, milestones, reviewed, profile, provider
    ):
        result = milestones.review(
            db_session, reviewed.id, MilestoneReviewCreate(action="approve", feedback="Looks great"), profile.id
        )

        assert result["message"] == "Milestone approved successfully"
        assert result["milestone"].status == MilestoneStatus.completed
        assert result["milestone"].completed_at is not None
        assert result["approval"].status == ApprovalStatus.approved
        assert result["approval"].comment == "Looks great"
        assert result["approval"].user_id == profile.id
        [notification] = _notifications(db_session, provider.id, NotificationType.milestone_approved)
        assert notification.message == 'Milestone "Framing" for Kitchen remodel has been approved by Casey Client.'
        assert notification.data["feedback"] == "Looks great"
        assert len(_notifications(db_session, profile.id, NotificationType.booking_completed)) == 1

    def test_rejection_keeps_status_and_notifies_provider(
        self, db_session, milestones, reviewed, profile, provider
    ):
        result = milestones.review(
            db_session, reviewed.id, MilestoneReviewCreate(action="reject", feedback="Beams are crooked"), profile.id
        )

        assert result["message"] == "Milestone rejected successfully"
        assert result["milestone"].status == MilestoneStatus.pending
        assert result["approval"].status == ApprovalStatus.rejected
        [notification] = _notifications(db_session, provider.id, NotificationType.milestone_rejected)
        assert notification.title == "Milestone Rejected: Framing"
        assert notification.data["feedback"] == "Beams are crooked"

    def test_provider_decision_notifies_client(self, db_session, milestones, reviewed, profile, provider):
        milestones.review(db_session, reviewed.id, MilestoneReviewCreate(action="reject"), provider.id)

        assert len(_notifications(db_session, profile.id, NotificationType.milestone_rejected)) == 1
        assert _notifications(db_session, provider.id, NotificationType.milestone_rejected) == []

    def test_approving_completed_milestone_records_only(self, db_session, milestones, reviewed, profile):
        milestones.update(db_session, reviewed.id, MilestoneUpdate(status=MilestoneStatus.completed))
        completed_at = db_session.get(Milestone, reviewed.id).completed_at

        result = milestones.review(db_session, reviewed.id, MilestoneReviewCreate(action="approve"), profile.id)

        assert result["milestone"].status == MilestoneStatus.completed
        assert result["milestone"].completed_at == completed_at
        assert len(_notifications(db_session, profile.id, NotificationType.booking_completed)) == 1

    def test_rejecting_completed_milestone_is_refused(self, db_session, milestones, reviewed, profile):
        milestones.update(db_session, reviewed.id, MilestoneUpdate(status=MilestoneStatus.completed))

        with pytest.raises(HTTPException) as exc:
            milestones.review(db_session, reviewed.id, MilestoneReviewCreate(action="reject"), profile.id)

        assert exc.value.status_code == 400
        assert db_session.query(MilestoneApproval).count() == 0

    def test_outsider_is_denied(self, db_session, milestones, reviewed, make_profile):
        outsider = make_profile()

        with pytest.raises(HTTPException) as exc:
            milestones.review(db_session, reviewed.id, MilestoneReviewCreate(action="approve"), outsider.id)

        assert exc.value.status_code == 403
        assert db_session.get(Milestone, reviewed.id).status == MilestoneStatus.pending

    def test_missing_milestone(self, db_session, milestones, profile):
        with pytest.raises(HTTPException) as exc:
            milestones.review(db_session, uuid.uuid4(), MilestoneReviewCreate(action="approve"), profile.id)
        assert exc.value.status_code == 404

    def test_approvals_are_listed_in_order(self, db_session, milestones, reviewed, profile, provider):
        milestones.review(db_session, reviewed.id, MilestoneReviewCreate(action="reject"), profile.id)
        milestones.review(db_session, reviewed.id, MilestoneReviewCreate(action="approve"), provider.id)

        approvals = milestones.approvals(db_session, reviewed.id)

        assert [approval.status for approval in approvals] == [ApprovalStatus.rejected, ApprovalStatus.approved]
        assert [approval.user_id for approval in approvals] == [profile.id, provider.id]


class TestTasks:
    def test_create_notifies_client_and_assignee(self, db_session, tasks, milestone, profile, make_profile):
        worker = make_profile(full_name="Wes Worker")

        task = tasks.create(
            db_session, TaskCreate(milestone_id=milestone.id, title="Tile", assigned_to=worker.id)
        )

        [created] = _notifications(db_session, profile.id, NotificationType.task_created)
        [assigned] = _notifications(db_session, worker.id, NotificationType.task_assigned)
        assert created.data["task_id"] == str(task.id)
        assert assigned.title == "Task Assigned: Tile"

    def test_self_assignment_is_not_notified(self, db_session, tasks, milestone, make_profile):
        worker = make_profile()

        tasks.create(
            db_session,
            TaskCreate(milestone_id=milestone.id, title="Tile", assigned_to=worker.id, created_by=worker.id),
        )

        assert _notifications(db_session, worker.id) == []

    def test_create_completed_sets_completed_at(self, db_session, tasks, milestone):
        task = tasks.create(db_session, TaskCreate(milestone_id=milestone.id, title="Done", status=TaskStatus.completed))

        assert task.completed_at is not None
        db_session.refresh(milestone)
        assert milestone.progress_percentage == 100
        assert milestone.status == MilestoneStatus.completed

    def test_create_for_missing_milestone(self, db_session, tasks):
        with pytest.raises(HTTPException) as exc:
            tasks.create(db_session, TaskCreate(milestone_id=uuid.uuid4(), title="Orphan"))
        assert exc.value.status_code == 404

    def test_completion_notifies_client(self, db_session, tasks, milestone, profile, make_profile, make_task):
        actor = make_profile(full_name="Sam Builder")
        task = make_task(milestone, title="Tile")

        tasks.update(db_session, task.id, TaskUpdate(status=TaskStatus.completed), actor_id=actor.id)

        [notification] = _notifications(db_session, profile.id, NotificationType.task_completed)
        assert notification.message == 'Task "Tile" in Design has been completed by Sam Builder.'

    def test_reopening_clears_completed_at(self, db_session, tasks, milestone, make_task):
        task = make_task(milestone)
        tasks.update(db_session, task.id, TaskUpdate(status=TaskStatus.completed))

        reopened = tasks.update(db_session, task.id, TaskUpdate(status=TaskStatus.in_progress))

        assert reopened.completed_at is None
        db_session.refresh(milestone)
        assert milestone.progress_percentage == 0
        assert milestone.status == MilestoneStatus.in_progress

    def test_reassignment_notifies_new_assignee(self, db_session, tasks, milestone, make_profile, make_task):
        worker = make_profile()
        task = make_task(milestone)

        tasks.update(db_session, task.id, TaskUpdate(assigned_to=worker.id))
        tasks.update(db_session, task.id, TaskUpdate(title="Renamed"))

        assert len(_notifications(db_session, worker.id, NotificationType.task_assigned)) == 1

    def test_delete_recomputes(self, db_session, tasks, milestone, make_task):
        make_task(milestone, status=TaskStatus.completed)
        pending = make_task(milestone)
        tasks.progress.refresh_from_milestone_id(db_session, milestone.id)

        tasks.delete(db_session, pending.id)

        db_session.refresh(milestone)
        assert milestone.progress_percentage == 100

    def test_list_by_status(self, db_session, tasks, milestone, make_task):
        make_task(milestone, title="Open")
        make_task(milestone, title="Closed", status=TaskStatus.completed)

        items = tasks.list(db_session, str(milestone.id), "completed", "order_index", "asc", 10, 0)

        assert [t.title for t in items] == ["Closed"]

    def test_completing_last_task_completes_milestone_and_booking(
        self, db_session, tasks, milestone, booking, profile, make_task
    ):
        first = make_task(milestone, title="Frame")
        second = make_task(milestone, title="Paint")

        tasks.update(db_session, first.id, TaskUpdate(status=TaskStatus.completed))
        assert _notifications(db_session, profile.id, NotificationType.milestone_completed) == []
        db_session.refresh(booking)
        assert booking.status == BookingStatus.in_progress

        tasks.update(db_session, second.id, TaskUpdate(status=TaskStatus.completed))
        tasks.update(db_session, second.id, TaskUpdate(title="Paint walls"))

        [milestone_done] = _notifications(db_session, profile.id, NotificationType.milestone_completed)
        assert milestone_done.data["milestone_id"] == str(milestone.id)
        [booking_done] = _notifications(db_session, profile.id, NotificationType.booking_completed)
        assert booking_done.title == "Booking Completed: Kitchen remodel"
        db_session.refresh(booking)
        assert booking.status == BookingStatus.completed

    def test_deleting_last_open_task_completes_milestone(self, db_session, tasks, milestone, profile, make_task):
        make_task(milestone, status=TaskStatus.completed)
        pending = make_task(milestone)
        tasks.progress.refresh_from_milestone_id(db_session, milestone.id)

        tasks.delete(db_session, pending.id)

        db_session.refresh(milestone)
        assert milestone.status == MilestoneStatus.completed
        assert len(_notifications(db_session, profile.id, NotificationType.milestone_completed)) == 1
        assert len(_notifications(db_session, profile.id, NotificationType.booking_completed)) == 1

    def test_reopening_moves_booking_back_to_in_progress(self, db_session, tasks, milestone, booking, make_task):
        done = make_task(milestone)
        make_task(milestone, status=TaskStatus.completed)
        tasks.update(db_session, done.id, TaskUpdate(status=TaskStatus.completed))

        tasks.update(db_session, done.id, TaskUpdate(status=TaskStatus.pending))

        db_session.refresh(booking)
        assert booking.status == BookingStatus.in_progress
        assert booking.project_progress == 50

    def test_due_date_change_clears_overdue_flag(self, db_session, tasks, milestone, make_task):
        task = make_task(milestone, overdue_notified_at=datetime.now(UTC))

        updated = tasks.update(db_session, task.id, TaskUpdate(due_date=datetime.now(UTC) + timedelta(days=2)))

        assert updated.overdue_notified_at is None


class TestTimeEntries:
    def test_create_logs_hours(self, db_session, progress_service, milestone, make_task):
        task = make_task(milestone)

        entry = TimeEntries(progress_service).create(
            db_session, TimeEntryCreate(task_id=task.id, duration_hours=1.5)
        )

        assert entry.task_id == task.id
        db_session.refresh(milestone)
        assert milestone.actual_hours == 1.5


class TestOverdueNotices:
    def test_overdue_task_notifies_assignee_and_provider_once(
        self, db_session, notices, make_booking, make_milestone, make_task, make_profile, profile, provider
    ):
        worker = make_profile(full_name="Wes Worker")
        milestone = make_milestone(make_booking(client_id=profile.id, provider_id=provider.id))
        now = datetime.now(UTC)
        make_task(milestone, title="Tile", assigned_to=worker.id, due_date=now - timedelta(hours=2))
        make_task(milestone, title="Later", due_date=now + timedelta(days=1))
        make_task(milestone, title="Done", status=TaskStatus.completed, due_date=now - timedelta(days=1))
        make_task(milestone, title="Dropped", status=TaskStatus.cancelled, due_date=now - timedelta(days=1))

        assert notices.sweep(db_session, now=now) == {"tasks": 1, "milestones": 0}
        assert notices.sweep(db_session, now=now) == {"tasks": 0, "milestones": 0}

        [to_worker] = _notifications(db_session, worker.id, NotificationType.task_overdue)
        [to_provider] = _notifications(db_session, provider.id, NotificationType.task_overdue)
        assert to_worker.title == "Overdue Task: Tile"
        assert to_provider.data["task_title"] == "Tile"
        assert _notifications(db_session, profile.id, NotificationType.task_overdue) == []

    def test_overdue_milestone_notifies_client_and_provider(
        self, db_session, notices, make_booking, make_milestone, profile, provider
    ):
        booking = make_booking(client_id=profile.id, provider_id=provider.id)
        now = datetime.now(UTC)
        make_milestone(booking, title="Framing", due_date=now - timedelta(days=1))
        make_milestone(booking, title="Closed", status=MilestoneStatus.completed, due_date=now - timedelta(days=1))

        assert notices.sweep(db_session, now=now) == {"tasks": 0, "milestones": 1}

        [to_client] = _notifications(db_session, profile.id, NotificationType.milestone_overdue)
        assert to_client.message == 'Milestone "Framing" for Kitchen remodel is overdue and needs attention.'
        assert len(_notifications(db_session, provider.id, NotificationType.milestone_overdue)) == 1

    def test_flag_is_kept_when_notification_fails(self, db_session, progress_service, milestone, make_task):
        notifications = MagicMock()
        notifications.create_from_template.side_effect = RuntimeError("notifications down")
        due = datetime.now(UTC) - timedelta(hours=1)
        task = make_task(milestone, assigned_to=milestone.booking.client_id, due_date=due)

        result = OverdueNotices(progress_service, notifications).sweep(db_session)

        assert result["tasks"] == 1
        assert db_session.get(Task, task.id).overdue_notified_at is not None

    def test_moved_due_date_is_swept_again(self, db_session, notices, tasks, milestone, make_task, make_profile):
        worker = make_profile()
        now = datetime.now(UTC)
        task = make_task(milestone, assigned_to=worker.id, due_date=now - timedelta(hours=3))
        notices.sweep(db_session, now=now)

        tasks.update(db_session, task.id, TaskUpdate(due_date=now - timedelta(hours=1)))

        assert notices.sweep(db_session, now=now)["tasks"] == 1
        assert len(_notifications(db_session, worker.id, NotificationType.task_overdue)) == 2


class TestOverdueTask:
    def test_beat_runs_sweep_hourly(self):
        entry = celery_app.conf.beat_schedule["sweep-overdue-work"]

        assert entry["task"] == "servicehub.tasks.progress.sweep_overdue_work"
        assert entry["schedule"] == 3600.0

    def test_sweep_task_uses_its_own_session(
        self, monkeypatch, session_factory, progress_service, notification_service, milestone, make_task
    ):
        monkeypatch.setattr(progress_tasks, "SessionLocal", session_factory)
        make_task(milestone, due_date=datetime.now(UTC) - timedelta(hours=1))
        notices = OverdueNotices(progress_service, notification_service)

        with container.overdue_notices.override(providers.Object(notices)):
            assert progress_tasks.sweep_overdue_work() == {"tasks": 1, "milestones": 0}

    def test_sweep_task_reraises(self, monkeypatch, session_factory):
        monkeypatch.setattr(progress_tasks, "SessionLocal", session_factory)
        notices = MagicMock()
        notices.sweep.side_effect = RuntimeError("database unavailable")

        with container.overdue_notices.override(providers.Object(notices)):
            with pytest.raises(RuntimeError):
                progress_tasks.sweep_overdue_work()
