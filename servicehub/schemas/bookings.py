from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from servicehub.models.bookings import ApprovalStatus, BookingStatus, MilestoneStatus, TaskStatus


class BookingBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    service_name: str | None = Field(default=None, max_length=200)
    client_id: UUID | None = None
    provider_id: UUID | None = None
    status: BookingStatus = BookingStatus.pending
    scheduled_date: datetime | None = None


class BookingCreate(BookingBase):
    pass


class BookingRead(BookingBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_progress: int
    created_at: datetime
    updated_at: datetime


class MilestoneBase(BaseModel):
    booking_id: UUID
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    status: MilestoneStatus = MilestoneStatus.pending
    weight: float = Field(default=1.0, gt=0)
    order_index: int = 0
    due_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)


class MilestoneCreate(MilestoneBase):
    pass


class MilestoneUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    status: MilestoneStatus | None = None
    weight: float | None = Field(default=None, gt=0)
    order_index: int | None = None
    due_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)


class MilestoneRead(MilestoneBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    progress_percentage: int
    actual_hours: float
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class MilestoneReviewCreate(BaseModel):
    action: Literal["approve", "reject"]
    feedback: str | None = Field(default=None, max_length=2000)


class MilestoneApprovalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    milestone_id: UUID
    user_id: UUID | None = None
    status: ApprovalStatus
    comment: str | None = None
    created_at: datetime


class MilestoneReviewRead(BaseModel):
    milestone: MilestoneRead
    approval: MilestoneApprovalRead
    message: str


class TaskBase(BaseModel):
    milestone_id: UUID
    title: str = Field(min_length=1, max_length=200)
    status: TaskStatus = TaskStatus.pending
    weight: float = Field(default=1.0, gt=0)
    progress_percentage: int = Field(default=0, ge=0, le=100)
    estimated_hours: float | None = Field(default=None, ge=0)
    due_date: datetime | None = None
    assigned_to: UUID | None = None
    order_index: int = 0


class TaskCreate(TaskBase):
    created_by: UUID | None = None


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    status: TaskStatus | None = None
    weight: float | None = Field(default=None, gt=0)
    progress_percentage: int | None = Field(default=None, ge=0, le=100)
    estimated_hours: float | None = Field(default=None, ge=0)
    due_date: datetime | None = None
    assigned_to: UUID | None = None
    order_index: int | None = None


class TaskRead(TaskBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actual_hours: float
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TimeEntryCreate(BaseModel):
    task_id: UUID | None = None
    user_id: UUID | None = None
    duration_hours: float = Field(gt=0)
    description: str | None = None
    logged_at: datetime | None = None


class TimeEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    task_id: UUID
    user_id: UUID | None = None
    duration_hours: float
    description: str | None = None
    logged_at: datetime


class ProgressAnalytics(BaseModel):
    booking_id: UUID
    booking_progress: int
    total_milestones: int
    completed_milestones: int
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    pending_tasks: int
    overdue_tasks: int
    total_estimated_hours: float
    total_actual_hours: float
    efficiency: int


class OverdueSweepResult(BaseModel):
    tasks: int
    milestones: int
