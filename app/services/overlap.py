# app/services/overlap.py
"""Overlap detector: finds non-terminal schedules that would double-book a driver or vehicle."""

from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from app.models.schedule import ACTIVE_STATUSES
from app.utils.day_range import DayRange
from app.utils.object_id import to_object_id


def build_overlap_query(
    driver_id: Any,
    vehicle_id: Any,
    window: DayRange,
    exclude_schedule_id: Optional[Any] = None
) -> Dict[str, Any]:
    """A schedule conflicts when it shares the driver or the vehicle and its
    ``[schedule_date, end_date or open]`` days intersect ``window``."""
    parties = []
    if driver_id is not None:
        parties.append({"driver_id": to_object_id(driver_id, "driver ID")})
    if vehicle_id is not None:
        parties.append({"vehicle_id": to_object_id(vehicle_id, "vehicle ID")})

    conditions: List[Dict[str, Any]] = [
        {"$or": parties},
        {"$or": [
            {"end_date": None},
            {"end_date": {"$gte": window.start_datetime}}
        ]}
    ]
    if not window.is_open:
        conditions.append({"schedule_date": {"$lte": window.end_datetime}})

    query: Dict[str, Any] = {"status": {"$in": ACTIVE_STATUSES}, "$and": conditions}
    if exclude_schedule_id is not None:
        query["_id"] = {"$ne": to_object_id(exclude_schedule_id, "schedule ID")}
    return query


class OverlapDetector:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def find_conflict(
        self,
        driver_id: Any,
        vehicle_id: Any,
        window: DayRange,
        exclude_schedule_id: Optional[Any] = None
    ) -> Optional[Dict[str, Any]]:
        """Return the first conflicting schedule (earliest start), or None."""
        query = build_overlap_query(driver_id, vehicle_id, window, exclude_schedule_id)
        conflicts = await self.db.schedules.find(query).sort("schedule_date", ASCENDING).limit(1).to_list(length=1)
        return conflicts[0] if conflicts else None

    async def list_conflicts(
        self,
        driver_id: Any,
        vehicle_id: Any,
        window: DayRange,
        exclude_schedule_id: Optional[Any] = None
    ) -> List[Dict[str, Any]]:
        query = build_overlap_query(driver_id, vehicle_id, window, exclude_schedule_id)
        return await self.db.schedules.find(query).sort("schedule_date", ASCENDING).to_list(length=None)
