# app/routes/schedule.py
from datetime import date
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from app.database import get_database
from app.dependencies import get_actor, get_lifecycle_manager, get_scheduler
from app.models.schedule import ScheduleModel
from app.schemas.schedule import (
    ScheduleCreate, ScheduleUpdate, ScheduleStatusChange, ScheduleOut,
    DriverSummary, VehicleSummary, ScheduleSweepResult, PaymentBackfillResult
)
from app.services.scheduler import ReconciliationScheduler
from app.services.schedules import ScheduleLifecycleManager
from motor.motor_asyncio import AsyncIOMotorDatabase

router = APIRouter()

async def populate_schedules(db: AsyncIOMotorDatabase, schedules: List[Dict[str, Any]]) -> List[ScheduleOut]:
    """Attach driver and vehicle summaries to each schedule."""
    driver_ids = list({s["driver_id"] for s in schedules})
    vehicle_ids = list({s["vehicle_id"] for s in schedules})
    drivers = {d["_id"]: d for d in await db.drivers.find({"_id": {"$in": driver_ids}}).to_list(length=None)}
    vehicles = {v["_id"]: v for v in await db.vehicles.find({"_id": {"$in": vehicle_ids}}).to_list(length=None)}

    populated = []
    for schedule in schedules:
        out = ScheduleOut(**ScheduleModel.from_document(schedule).model_dump())
        driver = drivers.get(schedule["driver_id"])
        if driver:
            out.driver = DriverSummary(
                id=str(driver["_id"]),
                first_name=driver.get("first_name", ""),
                last_name=driver.get("last_name", "")
            )
        vehicle = vehicles.get(schedule["vehicle_id"])
        if vehicle:
            out.vehicle = VehicleSummary(
                id=str(vehicle["_id"]),
                type=vehicle.get("type"),
                brand=vehicle.get("brand", ""),
                model=vehicle.get("model", ""),
                license_plate=vehicle.get("license_plate", "")
            )
        populated.append(out)
    return populated

async def populate_schedule(db: AsyncIOMotorDatabase, schedule: Dict[str, Any]) -> ScheduleOut:
    return (await populate_schedules(db, [schedule]))[0]

@router.post("/schedules/", response_model=ScheduleOut)
async def create_schedule(
    schedule: ScheduleCreate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager),
    actor: Optional[str] = Depends(get_actor)
):
    created = await lifecycle.create(schedule, performed_by=actor)
    return await populate_schedule(db, created)

@router.get("/schedules/", response_model=List[ScheduleOut])
async def get_schedules(
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager)
):
    return await populate_schedules(db, await lifecycle.list_schedules())

@router.get("/schedules/current", response_model=List[ScheduleOut])
async def get_current_schedules(
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager)
):
    return await populate_schedules(db, await lifecycle.current())

@router.get("/schedules/future", response_model=List[ScheduleOut])
async def get_future_schedules(
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager)
):
    return await populate_schedules(db, await lifecycle.future())

@router.get("/schedules/conflicts", response_model=List[ScheduleOut])
async def get_conflicting_schedules(
    start: date,
    end: Optional[date] = None,
    driver_id: Optional[str] = None,
    vehicle_id: Optional[str] = None,
    exclude_id: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager)
):
    conflicts = await lifecycle.conflicts(driver_id, vehicle_id, start, end, exclude_schedule_id=exclude_id)
    return await populate_schedules(db, conflicts)

@router.get("/schedules/period", response_model=List[ScheduleOut])
async def get_schedules_by_period(
    start: date = Query(..., description="First day of the period (YYYY-MM-DD)"),
    end: date = Query(..., description="Last day of the period (YYYY-MM-DD)"),
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager)
):
    return await populate_schedules(db, await lifecycle.by_period(start, end))

@router.get("/schedules/date/{day}", response_model=List[ScheduleOut])
async def get_schedules_by_date(
    day: date,
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager)
):
    return await populate_schedules(db, await lifecycle.by_date(day))

@router.get("/schedules/driver/{driver_id}", response_model=List[ScheduleOut])
async def get_driver_schedules(
    driver_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager)
):
    return await populate_schedules(db, await lifecycle.by_driver(driver_id))

@router.get("/schedules/vehicle/{vehicle_id}", response_model=List[ScheduleOut])
async def get_vehicle_schedules(
    vehicle_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager)
):
    return await populate_schedules(db, await lifecycle.by_vehicle(vehicle_id))

@router.post("/schedules/check-expired", response_model=ScheduleSweepResult)
async def check_expired_schedules(scheduler: ReconciliationScheduler = Depends(get_scheduler)):
    result = await scheduler.run_expiration_sweep()
    return ScheduleSweepResult(message="Expired schedules checked", **result)

@router.post("/schedules/generate-daily-payments", response_model=ScheduleSweepResult)
async def generate_daily_payments(scheduler: ReconciliationScheduler = Depends(get_scheduler)):
    result = await scheduler.run_payment_sweep()
    return ScheduleSweepResult(
        message="Daily payments generated",
        payments_generated=result["payments_generated"]
    )

@router.post("/schedules/generate-payments", response_model=PaymentBackfillResult)
async def generate_payments_for_all_schedules(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
    actor: Optional[str] = Depends(get_actor)
):
    results = await scheduler.run_payment_backfill(performed_by=actor)
    return PaymentBackfillResult(message=f"Payments generated for {len(results)} schedule(s)", results=results)

@router.get("/schedules/{schedule_id}", response_model=ScheduleOut)
async def get_schedule(
    schedule_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager)
):
    return await populate_schedule(db, await lifecycle.get_schedule(schedule_id))

@router.put("/schedules/{schedule_id}", response_model=ScheduleOut)
async def update_schedule(
    schedule_id: str,
    schedule: ScheduleUpdate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager),
    actor: Optional[str] = Depends(get_actor)
):
    updated = await lifecycle.update(schedule_id, schedule, performed_by=actor)
    return await populate_schedule(db, updated)

@router.put("/schedules/{schedule_id}/status", response_model=ScheduleOut)
async def change_schedule_status(
    schedule_id: str,
    body: ScheduleStatusChange,
    db: AsyncIOMotorDatabase = Depends(get_database),
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager),
    actor: Optional[str] = Depends(get_actor)
):
    updated = await lifecycle.change_status(schedule_id, body.status, performed_by=actor)
    return await populate_schedule(db, updated)

@router.delete("/schedules/{schedule_id}")
async def delete_schedule(
    schedule_id: str,
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager),
    actor: Optional[str] = Depends(get_actor)
):
    deleted = await lifecycle.delete(schedule_id, performed_by=actor)
    return {"message": "Schedule and its payments deleted successfully", "id": str(deleted["_id"])}
