from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class ProgressEventType(StrEnum):
    """Entity a realtime event is about."""

    TASK = "task"
    MILESTONE = "milestone"
    BOOKING = "booking"
    PROGRESS_UPDATE = "progress_update"


class ProgressAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    COMPLETE = "complete"


class ProgressEvent(BaseModel):
    """Envelope delivered to booking channel listeners."""

    booking_id: str
    milestone_id: str | None = None
    task_id: str | None = None
    type: ProgressEventType
    action: ProgressAction
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None

    def model_post_init(self, __context: Any) -> None:
        if self.timestamp is None:
            object.__setattr__(self, "timestamp", datetime.now(UTC))
