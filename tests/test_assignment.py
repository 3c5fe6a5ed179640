# tests/test_assignment.py
"""Unit tests for the driver <-> vehicle assignment coordinator."""

from datetime import datetime

import pytest
from bson import ObjectId

from app.exceptions import AssignmentError


class TestBind:
    @pytest.mark.asyncio
    async def test_bind_sets_both_pointers(self, svc, db, make_driver, make_vehicle):
        driver_id, vehicle_id = await make_driver(), await make_vehicle()

        await svc.coordinator.bind(driver_id, vehicle_id)

        assert (await db.drivers.find_one({"_id": driver_id}))["current_vehicle_id"] == vehicle_id
        assert (await db.vehicles.find_one({"_id": vehicle_id}))["current_driver_id"] == driver_id

    @pytest.mark.asyncio
    async def test_bind_rejects_departed_driver(self, svc, db, make_driver, make_vehicle):
        driver_id = await make_driver(departure_date=datetime(2024, 1, 1))
        vehicle_id = await make_vehicle()

        with pytest.raises(AssignmentError) as exc:
            await svc.coordinator.bind(driver_id, vehicle_id)

        assert exc.value.message == "Driver not employed"
        assert (await db.vehicles.find_one({"_id": vehicle_id}))["current_driver_id"] is None

    @pytest.mark.asyncio
    async def test_bind_rejects_inactive_vehicle(self, svc, make_driver, make_vehicle):
        driver_id = await make_driver()
        vehicle_id = await make_vehicle(status="maintenance")

        with pytest.raises(AssignmentError) as exc:
            await svc.coordinator.bind(driver_id, vehicle_id)
        assert exc.value.message == "Vehicle not active"

    @pytest.mark.asyncio
    async def test_bind_reports_missing_parties(self, svc, make_driver, make_vehicle):
        with pytest.raises(AssignmentError) as exc:
            await svc.coordinator.bind(ObjectId(), await make_vehicle())
        assert exc.value.message == "Driver not found"

        with pytest.raises(AssignmentError) as exc:
            await svc.coordinator.bind(await make_driver(), ObjectId())
        assert exc.value.message == "Vehicle not found"


class TestUnbind:
    @pytest.mark.asyncio
    async def test_unbind_clears_both_pointers(self, svc, db, make_driver, make_vehicle):
        driver_id, vehicle_id = await make_driver(), await make_vehicle()
        await svc.coordinator.bind(driver_id, vehicle_id)

        await svc.coordinator.unbind(driver_id, vehicle_id)

        assert (await db.drivers.find_one({"_id": driver_id}))["current_vehicle_id"] is None
        assert (await db.vehicles.find_one({"_id": vehicle_id}))["current_driver_id"] is None

    @pytest.mark.asyncio
    async def test_unbind_leaves_reassigned_pointer_alone(self, svc, db, make_driver, make_vehicle):
        first, second = await make_driver(), await make_driver()
        vehicle_id = await make_vehicle()
        await svc.coordinator.bind(first, vehicle_id)
        # A concurrent operation hands the vehicle to another driver
        await db.vehicles.update_one({"_id": vehicle_id}, {"$set": {"current_driver_id": second}})

        await svc.coordinator.unbind(first, vehicle_id)

        assert (await db.drivers.find_one({"_id": first}))["current_vehicle_id"] is None
        assert (await db.vehicles.find_one({"_id": vehicle_id}))["current_driver_id"] == second
