# app/models/driver.py
from datetime import datetime
from typing import Optional
from pydantic import Field
from app.models.base import DocumentModel

class DriverModel(DocumentModel):
    id: str = Field(default="", alias="_id")
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    license_number: str
    hire_date: Optional[datetime] = None
    departure_date: Optional[datetime] = None
    current_vehicle_id: Optional[str] = None
