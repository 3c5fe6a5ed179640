# app/routes/vehicle.py
from typing import List, Optional
from fastapi import APIRouter, Depends
from app.database import get_database
from app.dependencies import get_actor, get_audit_sink
from app.exceptions import NotFoundError, ValidationError
from app.models.vehicle import VehicleModel, VehicleStatus
from app.routes.driver import validate_pagination
from app.schemas.vehicle import VehicleCreate, VehicleUpdate, VehicleOut
from app.services.audit import AuditSink
from app.utils.logger import get_logger
from app.utils.object_id import to_object_id
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

router = APIRouter()
logger = get_logger(__name__)

def to_vehicle_out(vehicle: dict) -> VehicleOut:
    return VehicleOut(**VehicleModel.from_document(vehicle).model_dump())

async def get_vehicle_or_404(db: AsyncIOMotorDatabase, vehicle_id: str) -> dict:
    vehicle = await db.vehicles.find_one({"_id": to_object_id(vehicle_id, "vehicle ID")})
    if not vehicle:
        raise NotFoundError(
            message="Vehicle not found",
            details=f"No vehicle found with ID: {vehicle_id}",
            example="Please ensure you're using a valid vehicle ID"
        )
    return vehicle

async def ensure_unique_plate(db: AsyncIOMotorDatabase, license_plate: str, exclude_id=None):
    if not license_plate or not license_plate.strip():
        raise ValidationError(
            message="Invalid license plate",
            details="License plate cannot be empty",
            example="Example: '1234-AB-01'"
        )
    query = {"license_plate": license_plate}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if await db.vehicles.find_one(query):
        raise ValidationError(
            message="License plate already registered",
            details=f"A vehicle with license plate '{license_plate}' already exists",
            example="Please provide a unique license plate"
        )

@router.post("/vehicles/", response_model=VehicleOut)
async def create_vehicle(
    vehicle: VehicleCreate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    audit: AuditSink = Depends(get_audit_sink),
    actor: Optional[str] = Depends(get_actor)
):
    await ensure_unique_plate(db, vehicle.license_plate)

    vehicle_dict = vehicle.model_dump(mode="json")
    vehicle_dict["current_driver_id"] = None
    result = await db.vehicles.insert_one(vehicle_dict)
    created_vehicle = await db.vehicles.find_one({"_id": result.inserted_id})

    logger.info(f"Registered vehicle {result.inserted_id} ({vehicle.license_plate})")
    await audit.record(
        event_type="vehicle_create",
        module="vehicle",
        entity_id=result.inserted_id,
        new_data=VehicleModel.from_document(created_vehicle).model_dump(mode="json"),
        performed_by=actor,
        description=f"Vehicle {vehicle.brand} {vehicle.model} ({vehicle.license_plate}) registered"
    )
    return to_vehicle_out(created_vehicle)

@router.get("/vehicles/", response_model=List[VehicleOut])
async def get_vehicles(
    skip: int = 0,
    limit: int = 100,
    status: Optional[VehicleStatus] = None,
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    validate_pagination(skip, limit)
    query = {"status": status.value} if status else {}
    vehicles = await db.vehicles.find(query).skip(skip).limit(limit).to_list(length=limit)
    return [to_vehicle_out(vehicle) for vehicle in vehicles]

@router.get("/vehicles/{vehicle_id}", response_model=VehicleOut)
async def get_vehicle(vehicle_id: str, db: AsyncIOMotorDatabase = Depends(get_database)):
    return to_vehicle_out(await get_vehicle_or_404(db, vehicle_id))

@router.put("/vehicles/{vehicle_id}", response_model=VehicleOut)
async def update_vehicle(
    vehicle_id: str,
    vehicle: VehicleUpdate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    audit: AuditSink = Depends(get_audit_sink),
    actor: Optional[str] = Depends(get_actor)
):
    existing_vehicle = await get_vehicle_or_404(db, vehicle_id)

    updates = {
        k: v for k, v in vehicle.model_dump(mode="json", exclude_unset=True).items()
        if v is not None or k == "notes"
    }
    if "license_plate" in updates and updates["license_plate"] != existing_vehicle["license_plate"]:
        await ensure_unique_plate(db, updates["license_plate"], exclude_id=existing_vehicle["_id"])

    if not updates:
        return to_vehicle_out(existing_vehicle)

    updated_vehicle = await db.vehicles.find_one_and_update(
        {"_id": existing_vehicle["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER
    )

    logger.info(f"Updated vehicle {existing_vehicle['_id']}: {', '.join(updates)}")
    await audit.record(
        event_type="vehicle_update",
        module="vehicle",
        entity_id=existing_vehicle["_id"],
        old_data=VehicleModel.from_document(existing_vehicle).model_dump(mode="json"),
        new_data=VehicleModel.from_document(updated_vehicle).model_dump(mode="json"),
        performed_by=actor,
        description=f"Vehicle {existing_vehicle['license_plate']} updated"
    )
    return to_vehicle_out(updated_vehicle)
