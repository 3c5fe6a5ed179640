# app/services/reconciliation.py
"""
Payment reconciliation engine.

Materializes one placeholder payment per active day of a schedule, answers
"which days are still unpaid", and moves a schedule between ``assigned`` and
``completed`` as its last day gets paid (or stops being paid).
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.exceptions import AssignmentError, NotFoundError
from app.models.payment import AUTO_GENERATED_COMMENT, PaymentStatus, PaymentType
from app.models.schedule import ScheduleStatus
from app.services.assignment import AssignmentCoordinator
from app.services.audit import AuditSink
from app.utils.day_range import Clock, DateLike, DayRange, local_now, start_of_day, to_day
from app.utils.logger import get_logger
from app.utils.object_id import to_object_id

logger = get_logger(__name__)


class PaymentReconciliationEngine:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        coordinator: AssignmentCoordinator,
        audit: AuditSink,
        clock: Clock = local_now,
    ):
        self.db = db
        self.coordinator = coordinator
        self.audit = audit
        self.clock = clock

    async def get_schedule(self, schedule_id: Any) -> Dict[str, Any]:
        schedule = await self.db.schedules.find_one({"_id": to_object_id(schedule_id, "schedule ID")})
        if not schedule:
            raise NotFoundError(
                message="Schedule not found",
                details=f"No schedule found with ID: {schedule_id}"
            )
        return schedule

    async def materialize_daily_payments(
        self,
        schedule_id: Any,
        performed_by: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Create a zero-amount pending payment for every day in
        ``[schedule_date, min(end_date or today, today)]`` that has none yet.

        Idempotent: days that already carry a payment, whatever its status,
        are skipped.
        """
        schedule = await self.get_schedule(schedule_id)
        now = self.clock()
        window = DayRange.of(schedule["schedule_date"], schedule.get("end_date")).clamp_end(now)
        if window.is_empty:
            return []

        existing = await self.db.payments.find(
            {
                "schedule_id": schedule["_id"],
                "payment_date": {"$gte": window.start_datetime, "$lte": window.end_datetime}
            },
            {"payment_date": 1}
        ).to_list(length=None)
        paid_days = {to_day(p["payment_date"]) for p in existing}

        created = []
        for day in window.days():
            if day in paid_days:
                continue
            payment = {
                "schedule_id": schedule["_id"],
                "amount": 0,
                "payment_date": start_of_day(day),
                "payment_type": PaymentType.CASH.value,
                "status": PaymentStatus.PENDING.value,
                "is_meeting_target": False,
                "comments": AUTO_GENERATED_COMMENT,
                "auto_generated": True,
                "created_at": now,
                "updated_at": now,
            }
            result = await self.db.payments.insert_one(payment)
            payment["_id"] = result.inserted_id
            created.append(payment)

        if created:
            logger.info(f"Generated {len(created)} daily payment(s) for schedule {schedule['_id']}")
            await self.audit.record(
                event_type="schedule_payments_generated",
                module="schedule",
                entity_id=schedule["_id"],
                new_data={"payments_generated": len(created)},
                performed_by=performed_by,
                description=f"Generated {len(created)} payment(s) for schedule {schedule['_id']}",
                metadata={"dates": [p["payment_date"] for p in created]}
            )
        return created

    async def is_day_paid(
        self,
        schedule_id: Any,
        day: DateLike,
        exclude_payment_id: Optional[Any] = None
    ) -> bool:
        """True if any payment, whatever its status, occupies ``day``."""
        start = start_of_day(day)
        query: Dict[str, Any] = {
            "schedule_id": to_object_id(schedule_id, "schedule ID"),
            "payment_date": {"$gte": start, "$lt": start + timedelta(days=1)}
        }
        if exclude_payment_id is not None:
            query["_id"] = {"$ne": to_object_id(exclude_payment_id, "payment ID")}
        return await self.db.payments.find_one(query) is not None

    async def unpaid_days_for(self, schedule: Dict[str, Any]) -> List[date]:
        today = self.clock().date()
        window = DayRange.of(schedule["schedule_date"], schedule.get("end_date") or today)
        if window.start > today or window.is_empty:
            return []

        payments = await self.db.payments.find(
            {"schedule_id": schedule["_id"], "status": {"$ne": PaymentStatus.REJECTED.value}},
            {"payment_date": 1}
        ).to_list(length=None)
        paid_days = {to_day(p["payment_date"]) for p in payments}
        return [day for day in window.days() if day not in paid_days]

    async def get_unpaid_days(self, schedule_id: Any) -> List[date]:
        """Days in ``[schedule_date, end_date or today]`` with no non-rejected payment, ascending."""
        return await self.unpaid_days_for(await self.get_schedule(schedule_id))

    async def is_last_payment_for_schedule(self, schedule_id: Any, day: DateLike) -> bool:
        schedule = await self.db.schedules.find_one({"_id": to_object_id(schedule_id, "schedule ID")})
        if not schedule or not schedule.get("end_date"):
            return False
        return to_day(day) >= to_day(schedule["end_date"])

    async def complete_schedule_if_all_paid(
        self,
        schedule_id: Any,
        performed_by: Optional[str] = None
    ) -> bool:
        schedule = await self.get_schedule(schedule_id)
        if schedule.get("status") != ScheduleStatus.ASSIGNED.value or not schedule.get("end_date"):
            return False
        if await self.unpaid_days_for(schedule):
            return False

        completed = await self.db.schedules.find_one_and_update(
            {"_id": schedule["_id"], "status": ScheduleStatus.ASSIGNED.value},
            {"$set": {"status": ScheduleStatus.COMPLETED.value, "updated_at": self.clock()}}
        )
        if not completed:
            return False

        try:
            await self.coordinator.unbind(schedule["driver_id"], schedule["vehicle_id"])
        except AssignmentError as e:
            logger.error(f"Schedule {schedule['_id']} completed but release failed: {e}")

        logger.info(f"Schedule {schedule['_id']} completed: every day is paid")
        await self.audit.record(
            event_type="schedule_auto_complete",
            module="schedule",
            entity_id=schedule["_id"],
            old_data={"status": ScheduleStatus.ASSIGNED.value},
            new_data={"status": ScheduleStatus.COMPLETED.value},
            performed_by=performed_by,
            description=f"Schedule {schedule['_id']} completed after its last day was paid"
        )
        return True

    async def reopen_schedule_if_unpaid(
        self,
        schedule_id: Any,
        performed_by: Optional[str] = None
    ) -> bool:
        """Revert a completed schedule to ``assigned`` once a day is unpaid again."""
        schedule = await self.db.schedules.find_one({"_id": to_object_id(schedule_id, "schedule ID")})
        if not schedule or schedule.get("status") != ScheduleStatus.COMPLETED.value:
            return False
        if not await self.unpaid_days_for(schedule):
            return False

        reopened = await self.db.schedules.find_one_and_update(
            {"_id": schedule["_id"], "status": ScheduleStatus.COMPLETED.value},
            {"$set": {"status": ScheduleStatus.ASSIGNED.value, "updated_at": self.clock()}}
        )
        if not reopened:
            return False

        holder = await self.db.schedules.find_one({
            "_id": {"$ne": schedule["_id"]},
            "status": ScheduleStatus.ASSIGNED.value,
            "$or": [{"driver_id": schedule["driver_id"]}, {"vehicle_id": schedule["vehicle_id"]}]
        })
        if holder:
            logger.warning(
                f"Schedule {schedule['_id']} reopened but driver/vehicle is held by schedule "
                f"{holder['_id']}; pointers left unchanged"
            )
        else:
            try:
                await self.coordinator.bind(schedule["driver_id"], schedule["vehicle_id"])
            except AssignmentError as e:
                logger.warning(f"Schedule {schedule['_id']} reopened without rebinding: {e.message}")

        logger.info(f"Schedule {schedule['_id']} reopened: a day is unpaid again")
        await self.audit.record(
            event_type="schedule_status_change",
            module="schedule",
            entity_id=schedule["_id"],
            old_data={"status": ScheduleStatus.COMPLETED.value},
            new_data={"status": ScheduleStatus.ASSIGNED.value},
            performed_by=performed_by,
            description=f"Schedule {schedule['_id']} reopened after a payment was removed or rejected"
        )
        return True
