# app/schemas/driver.py
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

class DriverBase(BaseModel):
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    license_number: str

class DriverCreate(DriverBase):
    hire_date: Optional[date] = None

class DriverUpdate(BaseModel):
    """Registry fields only; ``current_vehicle_id`` follows the driver's assigned schedule."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    license_number: Optional[str] = None
    hire_date: Optional[date] = None
    departure_date: Optional[date] = Field(None, description="Set when the driver leaves; blocks new schedules")

class DriverOut(DriverBase):
    id: str
    hire_date: Optional[datetime] = None
    departure_date: Optional[datetime] = None
    current_vehicle_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
