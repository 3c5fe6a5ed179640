# tests/conftest.py
import os

os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ["LOG_DIR"] = ""
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SEED_SAMPLE_DATA"] = "false"

from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest
from mongomock_motor import AsyncMongoMockClient

from app.config import Settings, get_settings
from app.models.vehicle import VehicleStatus, VehicleType
from app.schemas.schedule import ScheduleCreate
from app.services.assignment import AssignmentCoordinator
from app.services.audit import AuditSink
from app.services.overlap import OverlapDetector
from app.services.payments import PaymentService
from app.services.reconciliation import PaymentReconciliationEngine
from app.services.scheduler import ReconciliationScheduler
from app.services.schedules import ScheduleLifecycleManager

TODAY = date(2024, 1, 15)


class FixedClock:
    """Wall clock frozen at a given local time; tests move it explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

    def set(self, now: datetime):
        self.now = now


def build_services(db, clock, settings: Settings = None) -> SimpleNamespace:
    settings = settings or get_settings()
    audit = AuditSink(db, clock)
    coordinator = AssignmentCoordinator(db)
    overlap = OverlapDetector(db)
    engine = PaymentReconciliationEngine(db, coordinator, audit, clock)
    lifecycle = ScheduleLifecycleManager(db, coordinator, overlap, engine, audit, clock, settings)
    return SimpleNamespace(
        db=db,
        clock=clock,
        audit=audit,
        coordinator=coordinator,
        overlap=overlap,
        engine=engine,
        lifecycle=lifecycle,
        payments=PaymentService(db, engine, audit, clock),
        scheduler=ReconciliationScheduler(lifecycle, engine, clock, settings),
    )


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 15, 10, 0))


@pytest.fixture
def db():
    return AsyncMongoMockClient()["fleet_test"]


@pytest.fixture
def svc(db, clock):
    return build_services(db, clock)


@pytest.fixture
def make_driver(db):
    counter = {"n": 0}

    async def _make(**overrides):
        counter["n"] += 1
        driver = {
            "first_name": "Awa",
            "last_name": f"Kone{counter['n']}",
            "phone_number": None,
            "license_number": f"DL-{counter['n']:04d}",
            "hire_date": datetime(2023, 1, 1),
            "departure_date": None,
            "current_vehicle_id": None,
        }
        driver.update(overrides)
        result = await db.drivers.insert_one(driver)
        return result.inserted_id

    return _make


@pytest.fixture
def make_vehicle(db):
    counter = {"n": 0}

    async def _make(**overrides):
        counter["n"] += 1
        vehicle = {
            "type": VehicleType.TAXI.value,
            "license_plate": f"{counter['n']:04d}-AB-01",
            "brand": "Toyota",
            "model": "Corolla",
            "status": VehicleStatus.ACTIVE.value,
            "current_driver_id": None,
            "daily_income_target": 20000,
        }
        vehicle.update(overrides)
        result = await db.vehicles.insert_one(vehicle)
        return result.inserted_id

    return _make


def schedule_request(driver_id, vehicle_id, start: date, end: date = None, **extra) -> ScheduleCreate:
    return ScheduleCreate(
        driver_id=str(driver_id),
        vehicle_id=str(vehicle_id),
        schedule_date=start,
        end_date=end,
        **extra
    )
