# app/routes/payment.py
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends
from app.dependencies import get_actor, get_payment_service
from app.models.payment import PaymentModel, PaymentStatus
from app.schemas.payment import (
    PaymentCreate, PaymentUpdate, PaymentStatusChange, PaymentOut,
    PaymentConfirmMultiple, PaymentConfirmMultipleResult, PaymentConfirmResult,
    MissingPaymentsOut, ScheduleWindowOut, PaymentStatsOut
)
from app.services.payments import PaymentService

router = APIRouter()

def to_payment_out(payment: Dict) -> PaymentOut:
    return PaymentOut(**PaymentModel.from_document(payment).model_dump())

@router.post("/payments/", response_model=PaymentOut)
async def create_payment(
    payment: PaymentCreate,
    service: PaymentService = Depends(get_payment_service),
    actor: Optional[str] = Depends(get_actor)
):
    return to_payment_out(await service.create_payment(payment, performed_by=actor))

@router.get("/payments/", response_model=List[PaymentOut])
async def get_payments(
    status: Optional[str] = None,
    schedule_id: Optional[str] = None,
    service: PaymentService = Depends(get_payment_service)
):
    return [to_payment_out(p) for p in await service.list_payments(status=status, schedule_id=schedule_id)]

@router.get("/payments/pending", response_model=List[PaymentOut])
async def get_pending_payments(service: PaymentService = Depends(get_payment_service)):
    payments = await service.list_payments(status=PaymentStatus.PENDING.value)
    return [to_payment_out(p) for p in payments]

@router.post("/payments/confirm-multiple", response_model=PaymentConfirmMultipleResult)
async def confirm_multiple_payments(
    body: PaymentConfirmMultiple,
    service: PaymentService = Depends(get_payment_service),
    actor: Optional[str] = Depends(get_actor)
):
    results = await service.confirm_multiple(body.payments, performed_by=actor)
    confirmed = sum(1 for r in results if r["success"])
    return PaymentConfirmMultipleResult(
        message=f"{confirmed} of {len(results)} payment(s) confirmed",
        results=[
            PaymentConfirmResult(
                id=r["id"],
                success=r["success"],
                message=r.get("message"),
                payment=to_payment_out(r["payment"]) if r.get("payment") else None
            )
            for r in results
        ]
    )

@router.get("/payments/schedule/{schedule_id}", response_model=List[PaymentOut])
async def get_schedule_payments(schedule_id: str, service: PaymentService = Depends(get_payment_service)):
    await service.engine.get_schedule(schedule_id)
    return [to_payment_out(p) for p in await service.list_payments(schedule_id=schedule_id)]

@router.get("/payments/schedule/{schedule_id}/missing", response_model=MissingPaymentsOut)
async def get_missing_payments(schedule_id: str, service: PaymentService = Depends(get_payment_service)):
    schedule = await service.engine.get_schedule(schedule_id)
    unpaid_days = await service.engine.unpaid_days_for(schedule)
    return MissingPaymentsOut(
        schedule=ScheduleWindowOut(
            id=str(schedule["_id"]),
            start_date=schedule["schedule_date"],
            end_date=schedule.get("end_date"),
            status=schedule["status"]
        ),
        unpaid_days=unpaid_days
    )

@router.get("/payments/schedule/{schedule_id}/stats", response_model=PaymentStatsOut)
async def get_schedule_payment_stats(schedule_id: str, service: PaymentService = Depends(get_payment_service)):
    return PaymentStatsOut(**await service.schedule_stats(schedule_id))

@router.get("/payments/{payment_id}", response_model=PaymentOut)
async def get_payment(payment_id: str, service: PaymentService = Depends(get_payment_service)):
    return to_payment_out(await service.get_payment(payment_id))

@router.put("/payments/{payment_id}", response_model=PaymentOut)
async def update_payment(
    payment_id: str,
    payment: PaymentUpdate,
    service: PaymentService = Depends(get_payment_service),
    actor: Optional[str] = Depends(get_actor)
):
    return to_payment_out(await service.update_payment(payment_id, payment, performed_by=actor))

@router.post("/payments/{payment_id}/status", response_model=PaymentOut)
@router.patch("/payments/{payment_id}/status", response_model=PaymentOut)
async def change_payment_status(
    payment_id: str,
    body: PaymentStatusChange,
    service: PaymentService = Depends(get_payment_service),
    actor: Optional[str] = Depends(get_actor)
):
    return to_payment_out(await service.change_status(payment_id, body.status, performed_by=actor))

@router.delete("/payments/{payment_id}")
async def delete_payment(
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
    actor: Optional[str] = Depends(get_actor)
):
    deleted = await service.delete_payment(payment_id, performed_by=actor)
    return {"message": "Payment deleted successfully", "id": str(deleted["_id"])}
