# app/dependencies.py
"""FastAPI dependencies that assemble the scheduling services around one database handle."""

from typing import Optional

from fastapi import Depends, Header
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.config import get_settings
from app.database import get_database
from app.services.assignment import AssignmentCoordinator
from app.services.audit import AuditSink
from app.services.overlap import OverlapDetector
from app.services.payments import PaymentService
from app.services.reconciliation import PaymentReconciliationEngine
from app.services.scheduler import ReconciliationScheduler
from app.services.schedules import ScheduleLifecycleManager
from app.utils.day_range import Clock, local_now


def get_clock() -> Clock:
    return local_now


async def get_actor(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """The caller recorded on audit entries, taken from the ``X-User-Id`` header."""
    return x_user_id


def get_audit_sink(
    db: AsyncIOMotorDatabase = Depends(get_database),
    clock: Clock = Depends(get_clock),
) -> AuditSink:
    return AuditSink(db, clock)


def get_reconciliation_engine(
    db: AsyncIOMotorDatabase = Depends(get_database),
    audit: AuditSink = Depends(get_audit_sink),
    clock: Clock = Depends(get_clock),
) -> PaymentReconciliationEngine:
    return PaymentReconciliationEngine(db, AssignmentCoordinator(db), audit, clock)


def get_lifecycle_manager(
    db: AsyncIOMotorDatabase = Depends(get_database),
    engine: PaymentReconciliationEngine = Depends(get_reconciliation_engine),
    audit: AuditSink = Depends(get_audit_sink),
    clock: Clock = Depends(get_clock),
) -> ScheduleLifecycleManager:
    return ScheduleLifecycleManager(
        db,
        coordinator=engine.coordinator,
        overlap=OverlapDetector(db),
        engine=engine,
        audit=audit,
        clock=clock,
        settings=get_settings(),
    )


def get_payment_service(
    db: AsyncIOMotorDatabase = Depends(get_database),
    engine: PaymentReconciliationEngine = Depends(get_reconciliation_engine),
    audit: AuditSink = Depends(get_audit_sink),
    clock: Clock = Depends(get_clock),
) -> PaymentService:
    return PaymentService(db, engine, audit, clock)


def get_scheduler(
    lifecycle: ScheduleLifecycleManager = Depends(get_lifecycle_manager),
    clock: Clock = Depends(get_clock),
) -> ReconciliationScheduler:
    return ReconciliationScheduler(lifecycle, lifecycle.engine, clock, get_settings())


def build_scheduler(db: AsyncIOMotorDatabase, clock: Clock = local_now) -> ReconciliationScheduler:
    """Wire the background scheduler outside of a request."""
    audit = AuditSink(db, clock)
    engine = PaymentReconciliationEngine(db, AssignmentCoordinator(db), audit, clock)
    lifecycle = ScheduleLifecycleManager(
        db, engine.coordinator, OverlapDetector(db), engine, audit, clock, get_settings()
    )
    return ReconciliationScheduler(lifecycle, engine, clock, get_settings())
