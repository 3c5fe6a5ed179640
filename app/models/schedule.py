# app/models/schedule.py
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import Field
from app.models.base import DocumentModel

class ScheduleStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScheduleStatus.COMPLETED, ScheduleStatus.CANCELED)

# Statuses that still occupy a driver or vehicle for overlap purposes
ACTIVE_STATUSES = [ScheduleStatus.PENDING.value, ScheduleStatus.ASSIGNED.value]

class ScheduleModel(DocumentModel):
    id: str = Field(default="", alias="_id")
    driver_id: str
    vehicle_id: str
    schedule_date: datetime
    end_date: Optional[datetime] = None
    shift_start: Optional[str] = None
    shift_end: Optional[str] = None
    status: ScheduleStatus = ScheduleStatus.PENDING
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
