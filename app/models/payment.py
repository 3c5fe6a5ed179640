# app/models/payment.py
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import Field
from app.models.base import DocumentModel

class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"

class PaymentType(str, Enum):
    CASH = "cash"
    MOBILE_MONEY = "mobile_money"

AUTO_GENERATED_COMMENT = "Generated automatically"

class PaymentModel(DocumentModel):
    id: str = Field(default="", alias="_id")
    schedule_id: str
    amount: float = 0
    payment_date: datetime
    payment_type: PaymentType = PaymentType.CASH
    status: PaymentStatus = PaymentStatus.PENDING
    is_meeting_target: bool = False
    comments: str = ""
    auto_generated: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

def meets_target(amount: float, daily_income_target: Optional[float]) -> bool:
    """A payment meets the target only when the vehicle has one (> 0)."""
    target = daily_income_target or 0
    return target > 0 and amount >= target
