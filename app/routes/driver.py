# app/routes/driver.py
from typing import List, Optional
from fastapi import APIRouter, Depends
from app.database import get_database
from app.dependencies import get_actor, get_audit_sink
from app.exceptions import NotFoundError, ValidationError
from app.models.driver import DriverModel
from app.schemas.driver import DriverCreate, DriverUpdate, DriverOut
from app.services.audit import AuditSink
from app.utils.day_range import start_of_day
from app.utils.logger import get_logger
from app.utils.object_id import to_object_id
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
router = APIRouter()
logger = get_logger(__name__)

def to_driver_out(driver: dict) -> DriverOut:
    return DriverOut(**DriverModel.from_document(driver).model_dump())

def validate_pagination(skip: int, limit: int):
    if skip < 0:
        raise ValidationError(
            message="Invalid skip value",
            details="Skip value cannot be negative",
            example="Use skip=0 for first page"
        )
    if limit < 1 or limit > 100:
        raise ValidationError(
            message="Invalid limit value",
            details="Limit must be between 1 and 100",
            example="Use limit=10 for 10 items per page"
        )

def validate_names(first_name: Optional[str], last_name: Optional[str]):
    for label, value in (("First name", first_name), ("Last name", last_name)):
        if value is not None and len(value.strip()) < 2:
            raise ValidationError(
                message="Invalid name",
                details=f"{label} cannot be empty and must be at least 2 characters long",
                example="Example: 'Kone'"
            )

async def get_driver_or_404(db: AsyncIOMotorDatabase, driver_id: str) -> dict:
    driver = await db.drivers.find_one({"_id": to_object_id(driver_id, "driver ID")})
    if not driver:
        raise NotFoundError(
            message="Driver not found",
            details=f"No driver found with ID: {driver_id}",
            example="Please ensure you're using a valid driver ID"
        )
    return driver

async def ensure_unique_license(db: AsyncIOMotorDatabase, license_number: str, exclude_id=None):
    query = {"license_number": license_number}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if await db.drivers.find_one(query):
        raise ValidationError(
            message="License number already registered",
            details=f"Driver with license number '{license_number}' already exists",
            example="Please provide a unique license number"
        )

@router.post("/drivers/", response_model=DriverOut)
async def create_driver(
    driver: DriverCreate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    audit: AuditSink = Depends(get_audit_sink),
    actor: Optional[str] = Depends(get_actor)
):
    validate_names(driver.first_name, driver.last_name)
    await ensure_unique_license(db, driver.license_number)

    driver_dict = driver.model_dump()
    driver_dict["hire_date"] = start_of_day(driver.hire_date) if driver.hire_date else None
    driver_dict["departure_date"] = None
    driver_dict["current_vehicle_id"] = None
    result = await db.drivers.insert_one(driver_dict)
    created_driver = await db.drivers.find_one({"_id": result.inserted_id})

    logger.info(f"Registered driver {result.inserted_id} ({driver.first_name} {driver.last_name})")
    await audit.record(
        event_type="driver_create",
        module="driver",
        entity_id=result.inserted_id,
        new_data=DriverModel.from_document(created_driver).model_dump(mode="json"),
        performed_by=actor,
        description=f"Driver {driver.first_name} {driver.last_name} registered"
    )
    return to_driver_out(created_driver)

@router.get("/drivers/", response_model=List[DriverOut])
async def get_drivers(
    skip: int = 0,
    limit: int = 100,
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    validate_pagination(skip, limit)
    drivers = await db.drivers.find().skip(skip).limit(limit).to_list(length=limit)
    return [to_driver_out(driver) for driver in drivers]

@router.get("/drivers/{driver_id}", response_model=DriverOut)
async def get_driver(driver_id: str, db: AsyncIOMotorDatabase = Depends(get_database)):
    return to_driver_out(await get_driver_or_404(db, driver_id))

@router.put("/drivers/{driver_id}", response_model=DriverOut)
async def update_driver(
    driver_id: str,
    driver: DriverUpdate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    audit: AuditSink = Depends(get_audit_sink),
    actor: Optional[str] = Depends(get_actor)
):
    existing_driver = await get_driver_or_404(db, driver_id)
    validate_names(driver.first_name, driver.last_name)

    # Only phone_number and departure_date may be cleared
    updates = {
        k: v for k, v in driver.model_dump(exclude_unset=True).items()
        if v is not None or k in ("phone_number", "departure_date")
    }
    if driver.license_number and driver.license_number != existing_driver["license_number"]:
        await ensure_unique_license(db, driver.license_number, exclude_id=existing_driver["_id"])
    for field in ("hire_date", "departure_date"):
        if field in updates and updates[field] is not None:
            updates[field] = start_of_day(updates[field])

    if not updates:
        return to_driver_out(existing_driver)

    updated_driver = await db.drivers.find_one_and_update(
        {"_id": existing_driver["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER
    )

    if updates.get("departure_date") and existing_driver.get("current_vehicle_id"):
        logger.warning(
            f"Driver {existing_driver['_id']} marked as departed while holding vehicle "
            f"{existing_driver['current_vehicle_id']}"
        )

    logger.info(f"Updated driver {existing_driver['_id']}: {', '.join(updates)}")
    await audit.record(
        event_type="driver_update",
        module="driver",
        entity_id=existing_driver["_id"],
        old_data=DriverModel.from_document(existing_driver).model_dump(mode="json"),
        new_data=DriverModel.from_document(updated_driver).model_dump(mode="json"),
        performed_by=actor,
        description=f"Driver {existing_driver['_id']} updated"
    )
    return to_driver_out(updated_driver)
