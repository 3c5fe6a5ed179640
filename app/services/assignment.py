# app/services/assignment.py
"""
Assignment coordinator: keeps ``driver.current_vehicle_id`` and
``vehicle.current_driver_id`` pointing at each other.

Each side is a separate single-document write; there is no transaction
around the pair. Unbind only clears a pointer that still references the
expected counterpart, so a pointer reassigned by a concurrent operation
is left alone.
"""

from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.exceptions import AssignmentError
from app.models.vehicle import VehicleStatus
from app.utils.logger import get_logger
from app.utils.object_id import to_object_id

logger = get_logger(__name__)


class AssignmentCoordinator:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def _load_pair(self, driver_id: Any, vehicle_id: Any):
        driver_oid = to_object_id(driver_id, "driver ID")
        vehicle_oid = to_object_id(vehicle_id, "vehicle ID")

        driver = await self.db.drivers.find_one({"_id": driver_oid})
        if not driver:
            raise AssignmentError(
                message="Driver not found",
                details=f"No driver found with ID: {driver_id}"
            )

        vehicle = await self.db.vehicles.find_one({"_id": vehicle_oid})
        if not vehicle:
            raise AssignmentError(
                message="Vehicle not found",
                details=f"No vehicle found with ID: {vehicle_id}"
            )
        return driver, vehicle

    async def bind(self, driver_id: Any, vehicle_id: Any) -> None:
        driver, vehicle = await self._load_pair(driver_id, vehicle_id)

        if driver.get("departure_date") is not None:
            raise AssignmentError(
                message="Driver not employed",
                details="Cannot assign a vehicle to a driver who has left the company"
            )
        if vehicle.get("status") != VehicleStatus.ACTIVE.value:
            raise AssignmentError(
                message="Vehicle not active",
                details=f"Cannot assign a vehicle whose status is '{vehicle.get('status')}'"
            )

        await self.db.drivers.update_one({"_id": driver["_id"]}, {"$set": {"current_vehicle_id": vehicle["_id"]}})
        await self.db.vehicles.update_one({"_id": vehicle["_id"]}, {"$set": {"current_driver_id": driver["_id"]}})
        logger.info(f"Bound driver {driver['_id']} <-> vehicle {vehicle['_id']}")

    async def unbind(self, driver_id: Any, vehicle_id: Any) -> None:
        driver, vehicle = await self._load_pair(driver_id, vehicle_id)

        # Conditional filters keep the check and the clear in one atomic write
        driver_result = await self.db.drivers.update_one(
            {"_id": driver["_id"], "current_vehicle_id": vehicle["_id"]},
            {"$set": {"current_vehicle_id": None}}
        )
        vehicle_result = await self.db.vehicles.update_one(
            {"_id": vehicle["_id"], "current_driver_id": driver["_id"]},
            {"$set": {"current_driver_id": None}}
        )
        if driver_result.modified_count or vehicle_result.modified_count:
            logger.info(f"Released driver {driver['_id']} <-> vehicle {vehicle['_id']}")
