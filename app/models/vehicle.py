# app/models/vehicle.py
from enum import Enum
from typing import Optional
from pydantic import Field
from app.models.base import DocumentModel

class VehicleStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"

class VehicleType(str, Enum):
    TAXI = "taxi"
    MOTO = "moto"

class VehicleModel(DocumentModel):
    id: str = Field(default="", alias="_id")
    type: VehicleType = VehicleType.TAXI
    license_plate: str
    brand: str
    model: str
    status: VehicleStatus = VehicleStatus.ACTIVE
    current_driver_id: Optional[str] = None
    daily_income_target: float = 0
    notes: Optional[str] = None
