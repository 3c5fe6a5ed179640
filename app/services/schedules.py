# app/services/schedules.py
"""
Schedule lifecycle manager.

Owns the ``pending -> assigned -> completed/canceled`` state machine. Every
transition consults the overlap detector and drives the assignment
coordinator; when the coordinator rejects a step after the schedule was
written, the schedule write is rolled back (delete on create, restore the
previous snapshot on update/status change) before the error surfaces.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from app.config import Settings, get_settings
from app.exceptions import AssignmentError, ConflictError, NotFoundError, ValidationError
from app.models.schedule import ACTIVE_STATUSES, ScheduleModel, ScheduleStatus
from app.models.vehicle import VehicleStatus
from app.schemas.schedule import ScheduleCreate, ScheduleUpdate
from app.services.assignment import AssignmentCoordinator
from app.services.audit import AuditSink
from app.services.overlap import OverlapDetector
from app.services.reconciliation import PaymentReconciliationEngine
from app.utils.day_range import (
    Clock, DayRange, day_end_at, end_of_day, local_now, start_of_day, to_day
)
from app.utils.logger import get_logger
from app.utils.object_id import to_object_id

logger = get_logger(__name__)


def schedule_snapshot(schedule: Dict[str, Any]) -> Dict[str, Any]:
    return ScheduleModel.from_document(schedule).model_dump(mode="json")


class ScheduleLifecycleManager:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        coordinator: AssignmentCoordinator,
        overlap: OverlapDetector,
        engine: PaymentReconciliationEngine,
        audit: AuditSink,
        clock: Clock = local_now,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.coordinator = coordinator
        self.overlap = overlap
        self.engine = engine
        self.audit = audit
        self.clock = clock
        self.settings = settings or get_settings()

    # Lookups

    async def get_schedule(self, schedule_id: Any) -> Dict[str, Any]:
        schedule = await self.db.schedules.find_one({"_id": to_object_id(schedule_id, "schedule ID")})
        if not schedule:
            raise NotFoundError(
                message="Schedule not found",
                details=f"No schedule found with ID: {schedule_id}",
                example="Please ensure you're using a valid schedule ID"
            )
        return schedule

    async def _require_driver(self, driver_id: Any) -> Dict[str, Any]:
        driver = await self.db.drivers.find_one({"_id": to_object_id(driver_id, "driver ID")})
        if not driver:
            raise NotFoundError(
                message="Driver not found",
                details=f"No driver found with ID: {driver_id}"
            )
        if driver.get("departure_date") is not None:
            raise ConflictError(
                message="Driver not employed",
                details="The driver has left the company and can no longer be scheduled"
            )
        return driver

    async def _require_vehicle(self, vehicle_id: Any) -> Dict[str, Any]:
        vehicle = await self.db.vehicles.find_one({"_id": to_object_id(vehicle_id, "vehicle ID")})
        if not vehicle:
            raise NotFoundError(
                message="Vehicle not found",
                details=f"No vehicle found with ID: {vehicle_id}"
            )
        if vehicle.get("status") != VehicleStatus.ACTIVE.value:
            raise ConflictError(
                message="Vehicle not active",
                details=f"Only active vehicles can be scheduled (current status: '{vehicle.get('status')}')"
            )
        return vehicle

    async def _assigned_holder(
        self,
        driver_id: Any = None,
        vehicle_id: Any = None,
        exclude_schedule_id: Any = None
    ) -> Optional[Dict[str, Any]]:
        """Another ``assigned`` schedule occupying the driver or the vehicle, if any."""
        parties = []
        if driver_id is not None:
            parties.append({"driver_id": driver_id})
        if vehicle_id is not None:
            parties.append({"vehicle_id": vehicle_id})
        query: Dict[str, Any] = {"status": ScheduleStatus.ASSIGNED.value, "$or": parties}
        if exclude_schedule_id is not None:
            query["_id"] = {"$ne": exclude_schedule_id}
        return await self.db.schedules.find_one(query)

    @staticmethod
    def _parse_status(status: Optional[str]) -> ScheduleStatus:
        try:
            return ScheduleStatus(status)
        except ValueError:
            raise ValidationError(
                message="Invalid status",
                details=f"'{status}' is not a schedule status",
                example="One of: pending, assigned, completed, canceled"
            )

    def effective_end(self, schedule: Dict[str, Any]) -> Optional[datetime]:
        """When an ``assigned`` schedule stops occupying its driver and vehicle."""
        if schedule.get("end_date"):
            return schedule["end_date"]
        if schedule.get("shift_end"):
            return day_end_at(schedule["schedule_date"], schedule["shift_end"])
        if self.settings.EXPIRE_OPEN_ENDED_SCHEDULES:
            return end_of_day(schedule["schedule_date"])
        return None

    def is_expired(self, schedule: Dict[str, Any], now: datetime) -> bool:
        end = self.effective_end(schedule)
        return end is not None and end < now

    async def _materialize_quietly(self, schedule_id: Any, performed_by: Optional[str] = None) -> None:
        try:
            await self.engine.materialize_daily_payments(schedule_id, performed_by=performed_by)
        except Exception as e:
            # The periodic payment sweep retries
            logger.error(f"Payment generation failed for schedule {schedule_id}: {e}", exc_info=True)

    async def _apply_assignment(self, before: Dict[str, Any], after: Dict[str, Any]) -> None:
        """Bind on entering ``assigned``, release on leaving it (or on a party change)."""
        was_assigned = before["status"] == ScheduleStatus.ASSIGNED.value
        is_assigned = after["status"] == ScheduleStatus.ASSIGNED.value
        pair_changed = (
            before["driver_id"] != after["driver_id"] or before["vehicle_id"] != after["vehicle_id"]
        )
        if was_assigned and (not is_assigned or pair_changed):
            await self.coordinator.unbind(before["driver_id"], before["vehicle_id"])
        if is_assigned and (not was_assigned or pair_changed):
            await self.coordinator.bind(after["driver_id"], after["vehicle_id"])

    async def _rollback(self, snapshot: Dict[str, Any]) -> None:
        await self.db.schedules.replace_one({"_id": snapshot["_id"]}, snapshot)
        if snapshot["status"] == ScheduleStatus.ASSIGNED.value:
            try:
                await self.coordinator.bind(snapshot["driver_id"], snapshot["vehicle_id"])
            except AssignmentError as e:
                logger.error(f"Could not restore binding of schedule {snapshot['_id']}: {e.message}")
        logger.warning(f"Schedule {snapshot['_id']} rolled back to its previous state")

    # Transitions

    async def create(self, data: ScheduleCreate, performed_by: Optional[str] = None) -> Dict[str, Any]:
        driver = await self._require_driver(data.driver_id)
        vehicle = await self._require_vehicle(data.vehicle_id)

        if data.end_date and data.end_date < data.schedule_date:
            raise ValidationError(
                message="Invalid end date",
                details="The end date cannot be before the schedule date"
            )

        # A driver or vehicle whose previous schedule silently ran out must be
        # released before the new window is judged
        await self.complete_expired_schedules(driver_id=driver["_id"])
        await self.complete_expired_schedules(vehicle_id=vehicle["_id"])

        window = DayRange.of(data.schedule_date, data.end_date)
        conflict = await self.overlap.find_conflict(driver["_id"], vehicle["_id"], window)
        if conflict:
            raise ConflictError(
                message="Schedule overlap",
                details="This driver or vehicle is already scheduled over this period",
                conflict=schedule_snapshot(conflict)
            )

        now = self.clock()
        status = ScheduleStatus.PENDING
        if data.schedule_date <= now.date():
            holder = await self._assigned_holder(driver_id=driver["_id"], vehicle_id=vehicle["_id"])
            if not holder:
                status = ScheduleStatus.ASSIGNED

        schedule = {
            "driver_id": driver["_id"],
            "vehicle_id": vehicle["_id"],
            "schedule_date": start_of_day(data.schedule_date),
            "end_date": day_end_at(data.end_date, data.shift_end) if data.end_date else None,
            "shift_start": data.shift_start,
            "shift_end": data.shift_end,
            "status": status.value,
            "notes": data.notes,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.db.schedules.insert_one(schedule)
        schedule["_id"] = result.inserted_id

        if status == ScheduleStatus.ASSIGNED:
            try:
                await self.coordinator.bind(driver["_id"], vehicle["_id"])
            except AssignmentError:
                await self.db.schedules.delete_one({"_id": schedule["_id"]})
                logger.warning(f"Schedule {schedule['_id']} removed: binding failed")
                raise

        await self._materialize_quietly(schedule["_id"], performed_by)

        logger.info(f"Created schedule {schedule['_id']} ({status.value}) for driver {driver['_id']} / vehicle {vehicle['_id']}")
        await self.audit.record(
            event_type="schedule_create",
            module="schedule",
            entity_id=schedule["_id"],
            new_data=schedule_snapshot(schedule),
            performed_by=performed_by,
            description=(
                f"Schedule created for {driver.get('first_name')} {driver.get('last_name')} "
                f"with vehicle {vehicle.get('brand')} {vehicle.get('model')} ({vehicle.get('license_plate')})"
            ),
            metadata={"driver_id": driver["_id"], "vehicle_id": vehicle["_id"]}
        )
        return schedule

    async def update(
        self,
        schedule_id: Any,
        data: ScheduleUpdate,
        performed_by: Optional[str] = None
    ) -> Dict[str, Any]:
        existing = await self.get_schedule(schedule_id)
        oid = existing["_id"]
        old_status = ScheduleStatus(existing["status"])

        driver_id = existing["driver_id"]
        if data.sent("driver_id") and data.driver_id and to_object_id(data.driver_id, "driver ID") != driver_id:
            driver_id = (await self._require_driver(data.driver_id))["_id"]
        vehicle_id = existing["vehicle_id"]
        if data.sent("vehicle_id") and data.vehicle_id and to_object_id(data.vehicle_id, "vehicle ID") != vehicle_id:
            vehicle_id = (await self._require_vehicle(data.vehicle_id))["_id"]
        parties_changed = driver_id != existing["driver_id"] or vehicle_id != existing["vehicle_id"]

        old_start = to_day(existing["schedule_date"])
        old_end = to_day(existing["end_date"]) if existing.get("end_date") else None
        new_start = data.schedule_date if data.sent("schedule_date") and data.schedule_date else old_start
        new_end = data.end_date if data.sent("end_date") else old_end
        dates_changed = new_start != old_start or new_end != old_end

        if new_end and new_end < new_start:
            raise ValidationError(
                message="Invalid end date",
                details="The end date cannot be before the schedule date"
            )

        now = self.clock()
        new_status = old_status
        if data.sent("status") and data.status is not None:
            new_status = self._parse_status(data.status)
        elif data.sent("schedule_date") and data.schedule_date:
            if new_start > now.date() and not old_status.is_terminal:
                new_status = ScheduleStatus.PENDING
            elif new_start <= now.date() and old_status == ScheduleStatus.PENDING:
                holder = await self._assigned_holder(driver_id, vehicle_id, exclude_schedule_id=oid)
                if not holder:
                    new_status = ScheduleStatus.ASSIGNED

        # A completed or canceled schedule occupies nothing
        if (parties_changed or dates_changed) and not new_status.is_terminal:
            conflict = await self.overlap.find_conflict(
                driver_id, vehicle_id, DayRange(new_start, new_end), exclude_schedule_id=oid
            )
            if conflict:
                raise ConflictError(
                    message="Schedule overlap",
                    details="This schedule overlaps an existing schedule for this driver or vehicle",
                    conflict=schedule_snapshot(conflict)
                )

        if new_status == ScheduleStatus.ASSIGNED and (old_status != ScheduleStatus.ASSIGNED or parties_changed):
            holder = await self._assigned_holder(driver_id, vehicle_id, exclude_schedule_id=oid)
            if holder:
                raise ConflictError(
                    message="Driver or vehicle already assigned",
                    details="Complete or cancel the active schedule first",
                    conflict=schedule_snapshot(holder)
                )

        shift_end = data.shift_end if data.sent("shift_end") else existing.get("shift_end")
        updates: Dict[str, Any] = {
            "driver_id": driver_id,
            "vehicle_id": vehicle_id,
            "schedule_date": start_of_day(new_start),
            "status": new_status.value,
            "updated_at": now,
        }
        if data.sent("end_date") or data.sent("shift_end"):
            updates["end_date"] = day_end_at(new_end, shift_end) if new_end else None
        for field in ("shift_start", "shift_end", "notes"):
            if data.sent(field):
                updates[field] = getattr(data, field)
        if new_status.is_terminal and not old_status.is_terminal and new_end is None:
            updates["end_date"] = day_end_at(now, shift_end)

        updated = await self.db.schedules.find_one_and_update(
            {"_id": oid}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )
        try:
            await self._apply_assignment(existing, updated)
        except AssignmentError:
            await self._rollback(existing)
            raise

        if dates_changed or (new_status == ScheduleStatus.COMPLETED and old_status != ScheduleStatus.COMPLETED):
            await self._materialize_quietly(oid, performed_by)

        logger.info(f"Updated schedule {oid} ({old_status.value} -> {new_status.value})")
        await self.audit.record(
            event_type="schedule_update",
            module="schedule",
            entity_id=oid,
            old_data=schedule_snapshot(existing),
            new_data=schedule_snapshot(updated),
            performed_by=performed_by,
            description=f"Schedule {oid} updated",
            metadata={"dates_changed": dates_changed, "parties_changed": parties_changed}
        )
        return updated

    async def change_status(
        self,
        schedule_id: Any,
        status: str,
        performed_by: Optional[str] = None
    ) -> Dict[str, Any]:
        new_status = self._parse_status(status)
        existing = await self.get_schedule(schedule_id)
        oid = existing["_id"]
        old_status = ScheduleStatus(existing["status"])

        if new_status == ScheduleStatus.ASSIGNED and old_status != ScheduleStatus.ASSIGNED:
            holder = await self._assigned_holder(
                existing["driver_id"], existing["vehicle_id"], exclude_schedule_id=oid
            )
            if holder:
                raise ConflictError(
                    message="Driver or vehicle already assigned",
                    details="This driver or vehicle already has an active schedule. Complete or cancel it first.",
                    conflict=schedule_snapshot(holder)
                )

        now = self.clock()
        updates: Dict[str, Any] = {"status": new_status.value, "updated_at": now}
        if new_status.is_terminal and not existing.get("end_date"):
            updates["end_date"] = day_end_at(now, existing.get("shift_end"))

        updated = await self.db.schedules.find_one_and_update(
            {"_id": oid}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )
        try:
            await self._apply_assignment(existing, updated)
        except AssignmentError:
            await self._rollback(existing)
            raise

        logger.info(f"Schedule {oid} status {old_status.value} -> {new_status.value}")
        await self.audit.record(
            event_type="schedule_status_change",
            module="schedule",
            entity_id=oid,
            old_data={"status": old_status.value, "end_date": existing.get("end_date")},
            new_data={"status": new_status.value, "end_date": updated.get("end_date")},
            performed_by=performed_by,
            description=f"Schedule {oid} status changed from '{old_status.value}' to '{new_status.value}'",
            metadata={"end_date_stamped": "end_date" in updates}
        )

        if new_status == ScheduleStatus.COMPLETED:
            await self._materialize_quietly(oid, performed_by)
        return updated

    async def delete(self, schedule_id: Any, performed_by: Optional[str] = None) -> Dict[str, Any]:
        existing = await self.get_schedule(schedule_id)
        oid = existing["_id"]

        deleted = await self.db.payments.delete_many({"schedule_id": oid})
        if existing["status"] == ScheduleStatus.ASSIGNED.value:
            try:
                await self.coordinator.unbind(existing["driver_id"], existing["vehicle_id"])
            except AssignmentError as e:
                logger.warning(f"Deleting schedule {oid} without releasing pointers: {e.message}")
        await self.db.schedules.delete_one({"_id": oid})

        logger.info(f"Deleted schedule {oid} and {deleted.deleted_count} payment(s)")
        await self.audit.record(
            event_type="schedule_delete",
            module="schedule",
            entity_id=oid,
            old_data=schedule_snapshot(existing),
            performed_by=performed_by,
            description=f"Schedule {oid} and its payments deleted",
            metadata={"payments_deleted": deleted.deleted_count}
        )
        return existing

    # Clock-driven transitions

    async def complete_expired(self, schedule: Dict[str, Any], now: datetime) -> bool:
        """Complete an ``assigned`` schedule whose effective end has passed.

        Same effects as a manual completion, except that a missing end date
        is stamped with the end that actually elapsed rather than "now".
        """
        updates: Dict[str, Any] = {"status": ScheduleStatus.COMPLETED.value, "updated_at": now}
        if not schedule.get("end_date"):
            updates["end_date"] = self.effective_end(schedule)

        completed = await self.db.schedules.find_one_and_update(
            {"_id": schedule["_id"], "status": ScheduleStatus.ASSIGNED.value},
            {"$set": updates}
        )
        if not completed:
            return False

        try:
            await self.coordinator.unbind(schedule["driver_id"], schedule["vehicle_id"])
        except AssignmentError as e:
            logger.error(f"Expired schedule {schedule['_id']} completed but release failed: {e.message}")

        logger.info(f"Auto-completed expired schedule {schedule['_id']} for driver {schedule['driver_id']}")
        await self.audit.record(
            event_type="schedule_auto_complete",
            module="schedule",
            entity_id=schedule["_id"],
            old_data={"status": ScheduleStatus.ASSIGNED.value, "end_date": schedule.get("end_date")},
            new_data={"status": ScheduleStatus.COMPLETED.value, "end_date": updates.get("end_date", schedule.get("end_date"))},
            description=f"Schedule {schedule['_id']} completed automatically after its end passed"
        )
        await self._materialize_quietly(schedule["_id"])
        return True

    async def complete_expired_schedules(self, driver_id: Any = None, vehicle_id: Any = None) -> int:
        """Complete every expired ``assigned`` schedule of a driver (or vehicle)."""
        query: Dict[str, Any] = {"status": ScheduleStatus.ASSIGNED.value}
        if driver_id is not None:
            query["driver_id"] = to_object_id(driver_id, "driver ID")
        if vehicle_id is not None:
            query["vehicle_id"] = to_object_id(vehicle_id, "vehicle ID")

        now = self.clock()
        completed = 0
        for schedule in await self.db.schedules.find(query).to_list(length=None):
            if self.is_expired(schedule, now) and await self.complete_expired(schedule, now):
                completed += 1
        return completed

    async def activate_pending(self, schedule: Dict[str, Any]) -> bool:
        """Promote a ``pending`` schedule whose start day has come, if its driver and vehicle are free."""
        now = self.clock()
        if to_day(schedule["schedule_date"]) > now.date():
            return False

        holder = await self._assigned_holder(
            schedule["driver_id"], schedule["vehicle_id"], exclude_schedule_id=schedule["_id"]
        )
        if holder:
            logger.info(f"Schedule {schedule['_id']} stays pending: schedule {holder['_id']} is still active")
            return False

        activated = await self.db.schedules.find_one_and_update(
            {"_id": schedule["_id"], "status": ScheduleStatus.PENDING.value},
            {"$set": {"status": ScheduleStatus.ASSIGNED.value, "updated_at": now}}
        )
        if not activated:
            return False

        try:
            await self.coordinator.bind(schedule["driver_id"], schedule["vehicle_id"])
        except AssignmentError as e:
            await self.db.schedules.update_one(
                {"_id": schedule["_id"], "status": ScheduleStatus.ASSIGNED.value},
                {"$set": {"status": ScheduleStatus.PENDING.value}}
            )
            logger.warning(f"Schedule {schedule['_id']} stays pending: {e.message}")
            return False

        logger.info(f"Activated pending schedule {schedule['_id']}")
        await self.audit.record(
            event_type="schedule_auto_activate",
            module="schedule",
            entity_id=schedule["_id"],
            old_data={"status": ScheduleStatus.PENDING.value},
            new_data={"status": ScheduleStatus.ASSIGNED.value},
            description=f"Schedule {schedule['_id']} activated on its start day"
        )
        if self.is_expired(schedule, now):
            # Its window ran out before it could be activated
            await self.complete_expired(schedule, now)
            return True
        await self._materialize_quietly(schedule["_id"])
        return True

    # Read views

    async def _find(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self.db.schedules.find(query).sort("schedule_date", ASCENDING).to_list(length=None)

    async def list_schedules(self) -> List[Dict[str, Any]]:
        return await self._find({})

    async def current(self) -> List[Dict[str, Any]]:
        today = start_of_day(self.clock())
        return await self._find({
            "status": ScheduleStatus.ASSIGNED.value,
            "schedule_date": {"$lte": end_of_day(today)},
            "$or": [{"end_date": None}, {"end_date": {"$gte": today}}]
        })

    async def future(self) -> List[Dict[str, Any]]:
        return await self._find({
            "status": {"$in": ACTIVE_STATUSES},
            "schedule_date": {"$gt": end_of_day(self.clock())}
        })

    async def by_driver(self, driver_id: Any) -> List[Dict[str, Any]]:
        return await self._find({"driver_id": to_object_id(driver_id, "driver ID")})

    async def by_vehicle(self, vehicle_id: Any) -> List[Dict[str, Any]]:
        return await self._find({"vehicle_id": to_object_id(vehicle_id, "vehicle ID")})

    async def by_period(self, start: date, end: date) -> List[Dict[str, Any]]:
        """Schedules of any status whose days intersect ``[start, end]``."""
        if end < start:
            raise ValidationError(
                message="Invalid period",
                details="The end of the period cannot be before its start"
            )
        window = DayRange(start, end)
        return await self._find({
            "schedule_date": {"$lte": window.end_datetime},
            "$or": [{"end_date": None}, {"end_date": {"$gte": window.start_datetime}}]
        })

    async def by_date(self, day: date) -> List[Dict[str, Any]]:
        return await self.by_period(day, day)

    async def conflicts(
        self,
        driver_id: Optional[str],
        vehicle_id: Optional[str],
        start: date,
        end: Optional[date] = None,
        exclude_schedule_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        if driver_id is None and vehicle_id is None:
            raise ValidationError(
                message="Missing party",
                details="Provide a driver_id, a vehicle_id, or both"
            )
        return await self.overlap.list_conflicts(
            driver_id, vehicle_id, DayRange(start, end), exclude_schedule_id
        )
