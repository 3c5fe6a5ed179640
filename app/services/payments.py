# app/services/payments.py
"""
User-facing payment operations. Each mutation re-validates the one-payment-
per-day rule and lets the reconciliation engine complete or reopen the
owning schedule.
"""

from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from app.exceptions import ConflictError, FleetError, NotFoundError, ValidationError
from app.models.payment import PaymentModel, PaymentStatus, meets_target
from app.models.schedule import ScheduleStatus
from app.schemas.payment import PaymentConfirmItem, PaymentCreate, PaymentUpdate
from app.services.audit import AuditSink
from app.services.reconciliation import PaymentReconciliationEngine
from app.utils.day_range import Clock, DayRange, local_now, start_of_day, to_day
from app.utils.logger import get_logger
from app.utils.object_id import to_object_id

logger = get_logger(__name__)


def payment_snapshot(payment: Dict[str, Any]) -> Dict[str, Any]:
    return PaymentModel.from_document(payment).model_dump(mode="json")


class PaymentService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        engine: PaymentReconciliationEngine,
        audit: AuditSink,
        clock: Clock = local_now,
    ):
        self.db = db
        self.engine = engine
        self.audit = audit
        self.clock = clock

    async def get_payment(self, payment_id: Any) -> Dict[str, Any]:
        payment = await self.db.payments.find_one({"_id": to_object_id(payment_id, "payment ID")})
        if not payment:
            raise NotFoundError(
                message="Payment not found",
                details=f"No payment found with ID: {payment_id}"
            )
        return payment

    async def _daily_target(self, schedule: Dict[str, Any]) -> float:
        vehicle = await self.db.vehicles.find_one({"_id": schedule["vehicle_id"]}, {"daily_income_target": 1})
        return (vehicle or {}).get("daily_income_target") or 0

    @staticmethod
    def _parse_status(status: Optional[str]) -> PaymentStatus:
        try:
            return PaymentStatus(status)
        except ValueError:
            raise ValidationError(
                message="Invalid status",
                details=f"'{status}' is not a payment status",
                example="One of: pending, confirmed, rejected"
            )

    async def _settle_schedule(self, payment: Dict[str, Any], performed_by: Optional[str]) -> None:
        """Complete the schedule when its last day is now paid, reopen it when a day is unpaid again."""
        schedule_id = payment["schedule_id"]
        if payment["status"] == PaymentStatus.REJECTED.value:
            await self.engine.reopen_schedule_if_unpaid(schedule_id, performed_by)
        elif await self.engine.is_last_payment_for_schedule(schedule_id, payment["payment_date"]):
            await self.engine.complete_schedule_if_all_paid(schedule_id, performed_by)

    async def create_payment(self, data: PaymentCreate, performed_by: Optional[str] = None) -> Dict[str, Any]:
        if data.amount is None or data.amount <= 0:
            raise ValidationError(
                message="Invalid amount",
                details="The payment amount must be greater than zero"
            )

        schedule = await self.engine.get_schedule(data.schedule_id)
        if ScheduleStatus(schedule["status"]).is_terminal:
            raise ValidationError(
                message="Schedule closed",
                details="Payments cannot be added to a completed or canceled schedule"
            )

        window = DayRange.of(schedule["schedule_date"], schedule.get("end_date"))
        if not window.contains(data.payment_date):
            raise ValidationError(
                message="Payment date out of range",
                details="The payment date must fall within the schedule period"
            )

        if await self.engine.is_day_paid(schedule["_id"], data.payment_date):
            existing = await self.db.payments.find_one({
                "schedule_id": schedule["_id"],
                "payment_date": start_of_day(data.payment_date)
            })
            raise ConflictError(
                message="Payment already exists",
                details="A payment already exists for this schedule on this date",
                example="Update or confirm the existing payment instead",
                conflict=payment_snapshot(existing) if existing else None
            )

        now = self.clock()
        payment = {
            "schedule_id": schedule["_id"],
            "amount": data.amount,
            "payment_date": start_of_day(data.payment_date),
            "payment_type": data.payment_type.value,
            "status": PaymentStatus.PENDING.value,
            "is_meeting_target": meets_target(data.amount, await self._daily_target(schedule)),
            "comments": data.comments or "",
            "auto_generated": False,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.db.payments.insert_one(payment)
        payment["_id"] = result.inserted_id

        logger.info(f"Created payment {payment['_id']} of {data.amount} for schedule {schedule['_id']}")
        await self.audit.record(
            event_type="payment_create",
            module="payment",
            entity_id=payment["_id"],
            new_data=payment_snapshot(payment),
            performed_by=performed_by,
            description=f"Payment of {data.amount} created for schedule {schedule['_id']}"
        )

        await self._settle_schedule(payment, performed_by)
        return payment

    async def update_payment(
        self,
        payment_id: Any,
        data: PaymentUpdate,
        performed_by: Optional[str] = None
    ) -> Dict[str, Any]:
        existing = await self.get_payment(payment_id)
        fields = data.model_fields_set

        new_status = self._parse_status(data.status) if data.status else None
        if data.amount is not None and data.amount < 0:
            raise ValidationError(
                message="Invalid amount",
                details="The payment amount cannot be negative"
            )

        schedule_id = existing["schedule_id"]
        if data.schedule_id:
            schedule_id = to_object_id(data.schedule_id, "schedule ID")
        schedule = await self.engine.get_schedule(schedule_id)

        payment_day = data.payment_date or to_day(existing["payment_date"])
        moved = payment_day != to_day(existing["payment_date"]) or schedule_id != existing["schedule_id"]
        if moved:
            window = DayRange.of(schedule["schedule_date"], schedule.get("end_date"))
            if not window.contains(payment_day):
                raise ValidationError(
                    message="Payment date out of range",
                    details="The payment date must fall within the schedule period"
                )
            if await self.engine.is_day_paid(schedule_id, payment_day, exclude_payment_id=existing["_id"]):
                raise ConflictError(
                    message="Payment already exists",
                    details="A payment already exists for this schedule on this date"
                )

        amount = data.amount if data.amount is not None else existing["amount"]
        updates: Dict[str, Any] = {
            "schedule_id": schedule_id,
            "amount": amount,
            "payment_date": start_of_day(payment_day),
            "is_meeting_target": meets_target(amount, await self._daily_target(schedule)),
            "updated_at": self.clock(),
        }
        if data.payment_type:
            updates["payment_type"] = data.payment_type.value
        if "comments" in fields and data.comments is not None:
            updates["comments"] = data.comments
        if new_status:
            updates["status"] = new_status.value
        elif (
            existing["status"] == PaymentStatus.PENDING.value
            and existing["amount"] == 0
            and amount > 0
        ):
            # Filling in a generated placeholder confirms it
            updates["status"] = PaymentStatus.CONFIRMED.value

        payment = await self.db.payments.find_one_and_update(
            {"_id": existing["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )

        logger.info(f"Updated payment {payment['_id']} ({existing['amount']} -> {payment['amount']})")
        await self.audit.record(
            event_type="payment_update",
            module="payment",
            entity_id=payment["_id"],
            old_data=payment_snapshot(existing),
            new_data=payment_snapshot(payment),
            performed_by=performed_by,
            description=f"Payment {payment['_id']} updated ({existing['amount']} -> {payment['amount']})"
        )

        if schedule_id != existing["schedule_id"]:
            await self.engine.reopen_schedule_if_unpaid(existing["schedule_id"], performed_by)
        elif moved:
            await self.engine.reopen_schedule_if_unpaid(schedule_id, performed_by)
        await self._settle_schedule(payment, performed_by)
        return payment

    async def change_status(
        self,
        payment_id: Any,
        status: str,
        performed_by: Optional[str] = None
    ) -> Dict[str, Any]:
        new_status = self._parse_status(status)
        existing = await self.get_payment(payment_id)

        payment = await self.db.payments.find_one_and_update(
            {"_id": existing["_id"]},
            {"$set": {"status": new_status.value, "updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER
        )

        event = {
            PaymentStatus.CONFIRMED: "payment_confirm",
            PaymentStatus.REJECTED: "payment_reject",
            PaymentStatus.PENDING: "payment_pending",
        }[new_status]
        logger.info(f"Payment {payment['_id']} status {existing['status']} -> {new_status.value}")
        await self.audit.record(
            event_type=event,
            module="payment",
            entity_id=payment["_id"],
            old_data={"status": existing["status"]},
            new_data={"status": payment["status"]},
            performed_by=performed_by,
            description=f"Payment {payment['_id']} status changed ({existing['status']} -> {payment['status']})"
        )

        await self._settle_schedule(payment, performed_by)
        return payment

    async def delete_payment(self, payment_id: Any, performed_by: Optional[str] = None) -> Dict[str, Any]:
        payment = await self.get_payment(payment_id)

        await self.audit.record(
            event_type="payment_delete",
            module="payment",
            entity_id=payment["_id"],
            old_data=payment_snapshot(payment),
            performed_by=performed_by,
            description=f"Payment {payment['_id']} ({payment['amount']}) deleted from schedule {payment['schedule_id']}"
        )
        await self.db.payments.delete_one({"_id": payment["_id"]})
        logger.info(f"Deleted payment {payment['_id']}")

        await self.engine.reopen_schedule_if_unpaid(payment["schedule_id"], performed_by)
        return payment

    async def confirm_multiple(
        self,
        items: List[PaymentConfirmItem],
        performed_by: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Confirm each payment independently; one failure never stops the batch."""
        if not items:
            raise ValidationError(
                message="Invalid payment list",
                details="Provide at least one payment to confirm"
            )

        results = []
        for item in items:
            if not item.amount or item.amount <= 0 or not item.payment_type:
                results.append({"id": item.id, "success": False, "message": "Incomplete payment information"})
                continue
            try:
                existing = await self.get_payment(item.id)
                schedule = await self.engine.get_schedule(existing["schedule_id"])
                updates = {
                    "amount": item.amount,
                    "payment_type": item.payment_type.value,
                    "comments": item.comments or existing.get("comments", ""),
                    "status": PaymentStatus.CONFIRMED.value,
                    "is_meeting_target": meets_target(item.amount, await self._daily_target(schedule)),
                    "updated_at": self.clock(),
                }
                payment = await self.db.payments.find_one_and_update(
                    {"_id": existing["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
                )
                await self.audit.record(
                    event_type="payment_confirm",
                    module="payment",
                    entity_id=payment["_id"],
                    old_data={"status": existing["status"], "amount": existing["amount"]},
                    new_data={"status": payment["status"], "amount": payment["amount"]},
                    performed_by=performed_by,
                    description=f"Payment of {payment['amount']} confirmed for schedule {payment['schedule_id']}"
                )
                await self._settle_schedule(payment, performed_by)
                results.append({"id": item.id, "success": True, "payment": payment})
            except FleetError as e:
                results.append({"id": item.id, "success": False, "message": e.details or e.message})
            except Exception as e:
                logger.error(f"Failed to confirm payment {item.id}: {e}", exc_info=True)
                results.append({"id": item.id, "success": False, "message": str(e)})
        return results

    # Read views

    async def list_payments(
        self,
        status: Optional[str] = None,
        schedule_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = self._parse_status(status).value
        if schedule_id:
            query["schedule_id"] = to_object_id(schedule_id, "schedule ID")
        return await self.db.payments.find(query).sort("payment_date", ASCENDING).to_list(length=None)

    async def schedule_stats(self, schedule_id: Any) -> Dict[str, Any]:
        schedule = await self.engine.get_schedule(schedule_id)
        payments = await self.db.payments.find({"schedule_id": schedule["_id"]}).to_list(length=None)
        total = sum(p.get("amount", 0) for p in payments)
        return {
            "schedule_id": str(schedule["_id"]),
            "total_amount": total,
            "average_amount": total / len(payments) if payments else 0,
            "payment_count": len(payments),
            "target_met": sum(1 for p in payments if p.get("is_meeting_target")),
        }
