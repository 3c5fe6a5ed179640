# app/services/scheduler.py
"""
Reconciliation scheduler: the clock-driven half of the schedule state machine.

Two independent duties, each a sequential, failure-isolated pass:

* expiration sweep: completes ``assigned`` schedules whose end has passed,
  then activates ``pending`` schedules whose start day has come. Runs at
  startup and every ``EXPIRATION_SWEEP_INTERVAL_SECONDS``.
* payment sweep: materializes daily payments for every live schedule. Runs
  at startup and once a day shortly after local midnight.

The sweeps are plain coroutines; ``start()`` loops them on asyncio tasks
owned by the application lifespan.
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING

from app.config import Settings, get_settings
from app.models.schedule import ScheduleStatus
from app.services.reconciliation import PaymentReconciliationEngine
from app.services.schedules import ScheduleLifecycleManager
from app.utils.day_range import Clock, end_of_day, local_now
from app.utils.logger import get_logger

logger = get_logger(__name__)


class ReconciliationScheduler:
    def __init__(
        self,
        lifecycle: ScheduleLifecycleManager,
        engine: PaymentReconciliationEngine,
        clock: Clock = local_now,
        settings: Optional[Settings] = None,
    ):
        self.lifecycle = lifecycle
        self.engine = engine
        self.db = lifecycle.db
        self.clock = clock
        self.settings = settings or get_settings()
        self._tasks: List[asyncio.Task] = []

    # Sweeps

    async def run_expiration_sweep(self) -> Dict[str, int]:
        completed = 0
        driver_ids = await self.db.schedules.distinct("driver_id", {"status": ScheduleStatus.ASSIGNED.value})
        for driver_id in driver_ids:
            try:
                completed += await self.lifecycle.complete_expired_schedules(driver_id=driver_id)
            except Exception as e:
                logger.error(f"Expiration check failed for driver {driver_id}: {e}", exc_info=True)

        activated = 0
        pending = await self.db.schedules.find({
            "status": ScheduleStatus.PENDING.value,
            "schedule_date": {"$lte": end_of_day(self.clock())}
        }).sort("schedule_date", ASCENDING).to_list(length=None)
        for schedule in pending:
            try:
                if await self.lifecycle.activate_pending(schedule):
                    activated += 1
            except Exception as e:
                logger.error(f"Activation failed for schedule {schedule['_id']}: {e}", exc_info=True)

        logger.info(
            f"Expiration sweep: {completed} schedule(s) completed across {len(driver_ids)} driver(s), "
            f"{activated} of {len(pending)} pending schedule(s) activated"
        )
        return {"completed": completed, "activated": activated}

    async def run_payment_sweep(self) -> Dict[str, int]:
        now = self.clock()
        schedules = await self.db.schedules.find({
            "status": {"$in": [ScheduleStatus.ASSIGNED.value, ScheduleStatus.PENDING.value]},
            "$or": [{"end_date": None}, {"end_date": {"$gte": now}}]
        }).to_list(length=None)

        generated = 0
        failures = 0
        for schedule in schedules:
            try:
                payments = await self.engine.materialize_daily_payments(schedule["_id"])
                generated += len(payments)
            except Exception as e:
                failures += 1
                logger.error(f"Payment generation failed for schedule {schedule['_id']}: {e}", exc_info=True)

        logger.info(
            f"Payment sweep: {generated} payment(s) generated for {len(schedules)} schedule(s)"
            + (f", {failures} failure(s)" if failures else "")
        )
        return {"payments_generated": generated, "failures": failures}

    async def run_payment_backfill(self, performed_by: Optional[str] = None) -> List[Dict[str, Any]]:
        """Materialize payments for every schedule regardless of status, one result per schedule."""
        results = []
        schedules = await self.db.schedules.find({}, {"_id": 1}).to_list(length=None)
        for schedule in schedules:
            try:
                payments = await self.engine.materialize_daily_payments(schedule["_id"], performed_by)
                results.append({"schedule_id": str(schedule["_id"]), "payments_generated": len(payments)})
            except Exception as e:
                logger.error(f"Payment backfill failed for schedule {schedule['_id']}: {e}", exc_info=True)
                results.append({"schedule_id": str(schedule["_id"]), "error": str(e)})
        logger.info(f"Payment backfill processed {len(results)} schedule(s)")
        return results

    # Timing

    def seconds_until_payment_sweep(self, now: Optional[datetime] = None) -> float:
        now = now or self.clock()
        target = now.replace(
            hour=self.settings.PAYMENT_SWEEP_HOUR,
            minute=self.settings.PAYMENT_SWEEP_MINUTE,
            second=self.settings.PAYMENT_SWEEP_SECOND,
            microsecond=0,
        )
        if target <= now:
            target += timedelta(days=1)
        return (target - now).total_seconds()

    async def _expiration_loop(self):
        interval = self.settings.EXPIRATION_SWEEP_INTERVAL_SECONDS
        while True:
            started = time.monotonic()
            try:
                await self.run_expiration_sweep()
            except Exception as e:
                logger.error(f"Expiration sweep aborted: {e}", exc_info=True)
            elapsed = time.monotonic() - started
            if elapsed > interval:
                logger.warning(f"Expiration sweep took {elapsed:.1f}s, longer than its {interval}s interval")
            await asyncio.sleep(max(interval - elapsed, 0))

    async def _payment_loop(self):
        while True:
            try:
                await self.run_payment_sweep()
            except Exception as e:
                logger.error(f"Payment sweep aborted: {e}", exc_info=True)
            await asyncio.sleep(self.seconds_until_payment_sweep())

    def start(self):
        """Run both sweeps now, then keep them on their cadence. Called once at startup."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._expiration_loop(), name="expiration-sweep"),
            asyncio.create_task(self._payment_loop(), name="payment-sweep"),
        ]
        logger.info(
            f"Reconciliation scheduler started (expiration every {self.settings.EXPIRATION_SWEEP_INTERVAL_SECONDS}s, "
            f"payments daily at {self.settings.PAYMENT_SWEEP_HOUR:02d}:{self.settings.PAYMENT_SWEEP_MINUTE:02d}:"
            f"{self.settings.PAYMENT_SWEEP_SECOND:02d} {self.settings.TIMEZONE})"
        )

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Reconciliation scheduler stopped")
