# app/schemas/schedule.py
from datetime import date, datetime
from typing import Annotated, List, Optional
from pydantic import AfterValidator, BaseModel, Field, ConfigDict
from app.models.schedule import ScheduleStatus
from app.utils.day_range import parse_shift_time

def _check_shift(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    parse_shift_time(value)
    return value

ShiftTime = Annotated[Optional[str], AfterValidator(_check_shift)]

class ScheduleCreate(BaseModel):
    driver_id: str = Field(..., description="Driver ID")
    vehicle_id: str = Field(..., description="Vehicle ID")
    schedule_date: date
    end_date: Optional[date] = Field(None, description="Leave empty for an open-ended assignment")
    shift_start: ShiftTime = Field(None, description="HH:MM")
    shift_end: ShiftTime = Field(None, description="HH:MM")
    notes: Optional[str] = None

class ScheduleUpdate(BaseModel):
    """Partial update of a schedule. Only fields actually sent are applied.

    - ``driver_id`` / ``vehicle_id``: the new party must exist and be
      schedulable (employed / active); re-runs the overlap check.
    - ``schedule_date`` / ``end_date``: re-runs the overlap check and the
      payment materialization. Moving ``schedule_date`` into the future
      sends a non-terminal schedule back to ``pending``; moving it to
      today or earlier promotes a ``pending`` one when the driver is free.
      Sending ``end_date: null`` makes the schedule open-ended.
    - ``status``: the same transition rules as a status change.
    - ``shift_start`` / ``shift_end`` / ``notes``: stored as-is.
    """

    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    schedule_date: Optional[date] = None
    end_date: Optional[date] = None
    shift_start: ShiftTime = None
    shift_end: ShiftTime = None
    status: Optional[str] = None
    notes: Optional[str] = None

    def sent(self, field: str) -> bool:
        return field in self.model_fields_set

class ScheduleStatusChange(BaseModel):
    status: str

class DriverSummary(BaseModel):
    id: str
    first_name: str
    last_name: str

class VehicleSummary(BaseModel):
    id: str
    type: Optional[str] = None
    brand: str
    model: str
    license_plate: str

class ScheduleOut(BaseModel):
    id: str
    driver_id: str
    vehicle_id: str
    schedule_date: datetime
    end_date: Optional[datetime] = None
    shift_start: ShiftTime = None
    shift_end: ShiftTime = None
    status: ScheduleStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    driver: Optional[DriverSummary] = None
    vehicle: Optional[VehicleSummary] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

class ScheduleSweepResult(BaseModel):
    message: str
    completed: int = 0
    activated: int = 0
    payments_generated: int = 0

class PaymentBackfillEntry(BaseModel):
    schedule_id: str
    payments_generated: Optional[int] = None
    error: Optional[str] = None

class PaymentBackfillResult(BaseModel):
    message: str
    results: List[PaymentBackfillEntry]
