# app/schemas/payment.py
from datetime import date, datetime
from typing import Annotated, Any, List, Optional
from pydantic import BaseModel, BeforeValidator, Field, ConfigDict
from app.models.payment import PaymentStatus, PaymentType

def _truncate_to_day(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value

PaymentDay = Annotated[date, BeforeValidator(_truncate_to_day)]

class PaymentCreate(BaseModel):
    schedule_id: str = Field(..., description="Schedule ID")
    amount: float
    payment_date: PaymentDay
    payment_type: PaymentType
    comments: Optional[str] = ""

class PaymentUpdate(BaseModel):
    schedule_id: Optional[str] = None
    amount: Optional[float] = None
    payment_date: Optional[PaymentDay] = None
    payment_type: Optional[PaymentType] = None
    comments: Optional[str] = None
    status: Optional[str] = None

class PaymentStatusChange(BaseModel):
    status: str

class PaymentConfirmItem(BaseModel):
    id: str
    amount: Optional[float] = None
    payment_type: Optional[PaymentType] = None
    comments: Optional[str] = None

class PaymentConfirmMultiple(BaseModel):
    payments: List[PaymentConfirmItem]

class PaymentOut(BaseModel):
    id: str
    schedule_id: str
    amount: float
    payment_date: datetime
    payment_type: PaymentType
    status: PaymentStatus
    is_meeting_target: bool
    comments: str = ""
    auto_generated: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

class PaymentConfirmResult(BaseModel):
    id: str
    success: bool
    message: Optional[str] = None
    payment: Optional[PaymentOut] = None

class PaymentConfirmMultipleResult(BaseModel):
    message: str
    results: List[PaymentConfirmResult]

class ScheduleWindowOut(BaseModel):
    id: str
    start_date: datetime
    end_date: Optional[datetime] = None
    status: str

class MissingPaymentsOut(BaseModel):
    schedule: ScheduleWindowOut
    unpaid_days: List[date]

class PaymentStatsOut(BaseModel):
    schedule_id: str
    total_amount: float
    average_amount: float
    payment_count: int
    target_met: int
