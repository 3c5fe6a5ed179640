# app/services/audit.py
"""
Audit sink: appends one ``history`` document per successful mutation.
A failure to write the record never fails the operation that triggered it.
"""

from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.utils.day_range import Clock, local_now
from app.utils.logger import get_logger

logger = get_logger(__name__)


class AuditSink:
    def __init__(self, db: AsyncIOMotorDatabase, clock: Clock = local_now):
        self.db = db
        self.clock = clock

    async def record(
        self,
        event_type: str,
        module: str,
        entity_id: Any,
        old_data: Optional[Dict[str, Any]] = None,
        new_data: Optional[Dict[str, Any]] = None,
        performed_by: Optional[str] = None,
        description: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            await self.db.history.insert_one({
                "event_type": event_type,
                "module": module,
                "entity_id": entity_id,
                "old_data": old_data,
                "new_data": new_data,
                "performed_by": performed_by,
                "event_date": self.clock(),
                "description": description or f"{event_type} on {module} {entity_id}",
                "metadata": metadata,
            })
        except Exception as e:
            logger.error(f"Failed to write audit record {event_type} for {module} {entity_id}: {e}", exc_info=True)
