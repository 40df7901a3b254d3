from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from servicehub.api.deps import (
    get_bookings_service,
    get_current_user_id,
    get_db,
    get_milestones_service,
    get_overdue_notices,
    get_progress_service,
    get_tasks_service,
    get_time_entries_service,
)
from servicehub.schemas.bookings import (
    BookingCreate,
    BookingRead,
    MilestoneApprovalRead,
    MilestoneCreate,
    MilestoneRead,
    MilestoneReviewCreate,
    MilestoneReviewRead,
    MilestoneUpdate,
    OverdueSweepResult,
    ProgressAnalytics,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    TimeEntryCreate,
    TimeEntryRead,
)
from servicehub.schemas.common import ListResponse
from servicehub.services.common import coerce_uuid

router = APIRouter()


@router.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED, tags=["bookings"])
def create_booking(payload: BookingCreate, db: Session = Depends(get_db), service=Depends(get_bookings_service)):
    return service.create(db, payload)


@router.get("/bookings", response_model=ListResponse[BookingRead], tags=["bookings"])
def list_bookings(
    client_id: str | None = None,
    provider_id: str | None = None,
    status: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    service=Depends(get_bookings_service),
):
    return service.list_response(db, client_id, provider_id, status, order_by, order_dir, limit, offset)


@router.get("/bookings/{booking_id}", response_model=BookingRead, tags=["bookings"])
def get_booking(booking_id: str, db: Session = Depends(get_db), service=Depends(get_bookings_service)):
    return service.get(db, booking_id)


@router.get("/bookings/{booking_id}/progress", response_model=ProgressAnalytics, tags=["bookings"])
def get_booking_progress(booking_id: str, db: Session = Depends(get_db), progress=Depends(get_progress_service)):
    return progress.get_progress_analytics(db, booking_id)


@router.post("/bookings/{booking_id}/recalculate", response_model=BookingRead, tags=["bookings"])
def recalculate_booking(booking_id: str, db: Session = Depends(get_db), service=Depends(get_bookings_service)):
    return service.recalculate(db, booking_id)


@router.post(
    "/milestones",
    response_model=MilestoneRead,
    status_code=status.HTTP_201_CREATED,
    tags=["milestones"],
)
def create_milestone(
    payload: MilestoneCreate, db: Session = Depends(get_db), service=Depends(get_milestones_service)
):
    return service.create(db, payload)


@router.get("/bookings/{booking_id}/milestones", response_model=ListResponse[MilestoneRead], tags=["milestones"])
def list_milestones(
    booking_id: str,
    status: str | None = None,
    order_by: str = Query(default="order_index"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    service=Depends(get_milestones_service),
):
    return service.list_response(db, booking_id, status, order_by, order_dir, limit, offset)


@router.get("/milestones/{milestone_id}", response_model=MilestoneRead, tags=["milestones"])
def get_milestone(milestone_id: str, db: Session = Depends(get_db), service=Depends(get_milestones_service)):
    return service.get(db, milestone_id)


@router.patch("/milestones/{milestone_id}", response_model=MilestoneRead, tags=["milestones"])
def update_milestone(
    milestone_id: str,
    payload: MilestoneUpdate,
    db: Session = Depends(get_db),
    service=Depends(get_milestones_service),
):
    return service.update(db, milestone_id, payload)


@router.delete("/milestones/{milestone_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["milestones"])
def delete_milestone(milestone_id: str, db: Session = Depends(get_db), service=Depends(get_milestones_service)):
    service.delete(db, milestone_id)


@router.post("/milestones/{milestone_id}/review", response_model=MilestoneReviewRead, tags=["milestones"])
def review_milestone(
    milestone_id: str,
    payload: MilestoneReviewCreate,
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_milestones_service),
):
    return service.review(db, milestone_id, payload, user_id)


@router.get(
    "/milestones/{milestone_id}/approvals",
    response_model=list[MilestoneApprovalRead],
    tags=["milestones"],
)
def list_milestone_approvals(
    milestone_id: str, db: Session = Depends(get_db), service=Depends(get_milestones_service)
):
    return service.approvals(db, milestone_id)


@router.post("/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED, tags=["tasks"])
def create_task(payload: TaskCreate, db: Session = Depends(get_db), service=Depends(get_tasks_service)):
    return service.create(db, payload)


@router.get("/milestones/{milestone_id}/tasks", response_model=ListResponse[TaskRead], tags=["tasks"])
def list_tasks(
    milestone_id: str,
    status: str | None = None,
    order_by: str = Query(default="order_index"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    service=Depends(get_tasks_service),
):
    return service.list_response(db, milestone_id, status, order_by, order_dir, limit, offset)


@router.get("/tasks/{task_id}", response_model=TaskRead, tags=["tasks"])
def get_task(task_id: str, db: Session = Depends(get_db), service=Depends(get_tasks_service)):
    return service.get(db, task_id)


@router.patch("/tasks/{task_id}", response_model=TaskRead, tags=["tasks"])
def update_task(task_id: str, payload: TaskUpdate, db: Session = Depends(get_db), service=Depends(get_tasks_service)):
    return service.update(db, task_id, payload)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["tasks"])
def delete_task(task_id: str, db: Session = Depends(get_db), service=Depends(get_tasks_service)):
    service.delete(db, task_id)


@router.post(
    "/tasks/{task_id}/time-entries",
    response_model=TimeEntryRead,
    status_code=status.HTTP_201_CREATED,
    tags=["tasks"],
)
def log_time_entry(
    task_id: str,
    payload: TimeEntryCreate,
    db: Session = Depends(get_db),
    service=Depends(get_time_entries_service),
):
    payload = payload.model_copy(update={"task_id": coerce_uuid(task_id, "task_id")})
    return service.create(db, payload)


@router.post("/progress/overdue-sweep", response_model=OverdueSweepResult, tags=["progress"])
def sweep_overdue_work(db: Session = Depends(get_db), service=Depends(get_overdue_notices)):
    return service.sweep(db)
