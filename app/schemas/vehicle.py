# app/schemas/vehicle.py
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from app.models.vehicle import VehicleStatus, VehicleType

class VehicleBase(BaseModel):
    type: VehicleType = VehicleType.TAXI
    license_plate: str
    brand: str
    model: str
    daily_income_target: float = Field(0, ge=0, description="Amount a day's payment must reach to meet target")
    notes: Optional[str] = None

class VehicleCreate(VehicleBase):
    status: VehicleStatus = VehicleStatus.ACTIVE

class VehicleUpdate(BaseModel):
    type: Optional[VehicleType] = None
    license_plate: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    status: Optional[VehicleStatus] = None
    daily_income_target: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None

class VehicleOut(VehicleBase):
    id: str
    status: VehicleStatus
    current_driver_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
