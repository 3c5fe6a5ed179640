# tests/test_payments.py
"""Unit tests for user-facing payment operations."""

from datetime import date, datetime

import pytest

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.payment import PaymentType
from app.schemas.payment import PaymentConfirmItem, PaymentCreate, PaymentUpdate
from conftest import TODAY, schedule_request


async def placeholders(db, schedule_id):
    return await db.payments.find({"schedule_id": schedule_id}).sort("payment_date", 1).to_list(length=None)


def payment_request(schedule_id, day, amount=25000, payment_type=PaymentType.CASH, **extra):
    return PaymentCreate(
        schedule_id=str(schedule_id), amount=amount, payment_date=day, payment_type=payment_type, **extra
    )


class TestCreatePayment:
    @pytest.mark.asyncio
    async def test_create_on_a_free_day(self, svc, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(), TODAY, date(2024, 1, 20))
        )

        payment = await svc.payments.create_payment(payment_request(schedule["_id"], date(2024, 1, 16)))

        assert payment["status"] == "pending"
        assert payment["payment_date"] == datetime(2024, 1, 16)
        assert payment["is_meeting_target"] is True

    @pytest.mark.asyncio
    async def test_target_is_not_met_below_the_vehicle_target(self, svc, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(), TODAY, date(2024, 1, 20))
        )
        payment = await svc.payments.create_payment(payment_request(schedule["_id"], date(2024, 1, 17), amount=5000))
        assert payment["is_meeting_target"] is False

    @pytest.mark.asyncio
    async def test_no_target_means_never_met(self, svc, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(daily_income_target=0), TODAY, date(2024, 1, 20))
        )
        payment = await svc.payments.create_payment(payment_request(schedule["_id"], date(2024, 1, 17)))
        assert payment["is_meeting_target"] is False

    @pytest.mark.asyncio
    async def test_duplicate_day_conflicts_with_existing_payment(self, svc, db, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(schedule_request(await make_driver(), await make_vehicle(), TODAY))
        existing = (await placeholders(db, schedule["_id"]))[0]

        with pytest.raises(ConflictError) as exc:
            await svc.payments.create_payment(payment_request(schedule["_id"], TODAY))
        assert exc.value.conflict["id"] == str(existing["_id"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -100])
    async def test_amount_must_be_positive(self, svc, make_driver, make_vehicle, amount):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(), TODAY, date(2024, 1, 20))
        )
        with pytest.raises(ValidationError):
            await svc.payments.create_payment(payment_request(schedule["_id"], date(2024, 1, 16), amount=amount))

    @pytest.mark.asyncio
    async def test_date_must_fall_in_the_schedule(self, svc, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(), TODAY, date(2024, 1, 20))
        )
        with pytest.raises(ValidationError) as exc:
            await svc.payments.create_payment(payment_request(schedule["_id"], date(2024, 1, 21)))
        assert exc.value.message == "Payment date out of range"

    @pytest.mark.asyncio
    async def test_terminal_schedule_accepts_no_payment(self, svc, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(), TODAY, date(2024, 1, 20))
        )
        await svc.lifecycle.change_status(schedule["_id"], "canceled")

        with pytest.raises(ValidationError):
            await svc.payments.create_payment(payment_request(schedule["_id"], date(2024, 1, 16)))

    @pytest.mark.asyncio
    async def test_unknown_schedule(self, svc):
        with pytest.raises(NotFoundError):
            await svc.payments.create_payment(payment_request("507f1f77bcf86cd799439011", TODAY))

    @pytest.mark.asyncio
    async def test_paying_the_last_day_with_gaps_does_not_complete(self, svc, db, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(), TODAY, date(2024, 1, 20))
        )
        await svc.payments.create_payment(payment_request(schedule["_id"], date(2024, 1, 20)))

        assert (await db.schedules.find_one({"_id": schedule["_id"]}))["status"] == "assigned"

    @pytest.mark.asyncio
    async def test_payment_date_accepts_datetimes(self):
        request = PaymentCreate(
            schedule_id="507f1f77bcf86cd799439011", amount=10, payment_date="2024-01-15T18:45:00Z", payment_type="cash"
        )
        assert request.payment_date == date(2024, 1, 15)


class TestUpdatePayment:
    @pytest.mark.asyncio
    async def test_filling_a_placeholder_confirms_it(self, svc, db, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(schedule_request(await make_driver(), await make_vehicle(), TODAY))
        placeholder = (await placeholders(db, schedule["_id"]))[0]

        payment = await svc.payments.update_payment(placeholder["_id"], PaymentUpdate(amount=30000))

        assert payment["status"] == "confirmed"
        assert payment["amount"] == 30000
        assert payment["is_meeting_target"] is True

    @pytest.mark.asyncio
    async def test_confirming_the_last_day_completes_the_schedule(self, svc, db, make_driver, make_vehicle):
        driver_id, vehicle_id = await make_driver(), await make_vehicle()
        schedule = await svc.lifecycle.create(
            schedule_request(driver_id, vehicle_id, date(2024, 1, 14), date(2024, 1, 15))
        )
        payments = await placeholders(db, schedule["_id"])

        await svc.payments.update_payment(payments[0]["_id"], PaymentUpdate(amount=20000))
        assert (await db.schedules.find_one({"_id": schedule["_id"]}))["status"] == "assigned"
        await svc.payments.update_payment(payments[1]["_id"], PaymentUpdate(amount=20000))

        assert (await db.schedules.find_one({"_id": schedule["_id"]}))["status"] == "completed"
        assert (await db.drivers.find_one({"_id": driver_id}))["current_vehicle_id"] is None

    @pytest.mark.asyncio
    async def test_moving_onto_an_occupied_day_conflicts(self, svc, db, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(), date(2024, 1, 14))
        )
        first, second = await placeholders(db, schedule["_id"])

        with pytest.raises(ConflictError):
            await svc.payments.update_payment(first["_id"], PaymentUpdate(payment_date=date(2024, 1, 15)))

        # Re-sending its own day is not a conflict
        payment = await svc.payments.update_payment(second["_id"], PaymentUpdate(payment_date=TODAY, amount=100))
        assert payment["payment_date"] == datetime(2024, 1, 15)

    @pytest.mark.asyncio
    async def test_negative_amount_is_invalid(self, svc, db, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(schedule_request(await make_driver(), await make_vehicle(), TODAY))
        placeholder = (await placeholders(db, schedule["_id"]))[0]

        with pytest.raises(ValidationError):
            await svc.payments.update_payment(placeholder["_id"], PaymentUpdate(amount=-5))


class TestPaymentStatus:
    @pytest.mark.asyncio
    async def test_rejecting_reopens_a_completed_schedule(self, svc, db, make_driver, make_vehicle):
        driver_id, vehicle_id = await make_driver(), await make_vehicle()
        schedule = await svc.lifecycle.create(schedule_request(driver_id, vehicle_id, TODAY, TODAY))
        placeholder = (await placeholders(db, schedule["_id"]))[0]
        await svc.payments.update_payment(placeholder["_id"], PaymentUpdate(amount=20000))
        assert (await db.schedules.find_one({"_id": schedule["_id"]}))["status"] == "completed"

        await svc.payments.change_status(placeholder["_id"], "rejected")

        assert (await db.schedules.find_one({"_id": schedule["_id"]}))["status"] == "assigned"
        assert (await db.drivers.find_one({"_id": driver_id}))["current_vehicle_id"] == vehicle_id
        assert await db.history.find_one({"event_type": "payment_reject"}) is not None

    @pytest.mark.asyncio
    async def test_invalid_payment_status(self, svc, db, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(schedule_request(await make_driver(), await make_vehicle(), TODAY))
        placeholder = (await placeholders(db, schedule["_id"]))[0]

        with pytest.raises(ValidationError):
            await svc.payments.change_status(placeholder["_id"], "paid")


class TestDeletePayment:
    @pytest.mark.asyncio
    async def test_deleting_the_filler_reopens_the_schedule(self, svc, db, make_driver, make_vehicle):
        driver_id, vehicle_id = await make_driver(), await make_vehicle()
        schedule = await svc.lifecycle.create(
            schedule_request(driver_id, vehicle_id, date(2024, 1, 13), date(2024, 1, 15))
        )
        payments = await placeholders(db, schedule["_id"])
        for payment in payments:
            await svc.payments.update_payment(payment["_id"], PaymentUpdate(amount=20000))
        assert (await db.schedules.find_one({"_id": schedule["_id"]}))["status"] == "completed"

        await svc.payments.delete_payment(payments[-1]["_id"])

        assert (await db.schedules.find_one({"_id": schedule["_id"]}))["status"] == "assigned"
        assert (await db.drivers.find_one({"_id": driver_id}))["current_vehicle_id"] == vehicle_id
        assert (await db.vehicles.find_one({"_id": vehicle_id}))["current_driver_id"] == driver_id
        assert await svc.engine.get_unpaid_days(schedule["_id"]) == [date(2024, 1, 15)]

    @pytest.mark.asyncio
    async def test_delete_unknown_payment(self, svc):
        with pytest.raises(NotFoundError):
            await svc.payments.delete_payment("507f1f77bcf86cd799439011")


class TestConfirmMultiple:
    @pytest.mark.asyncio
    async def test_each_item_is_confirmed_independently(self, svc, db, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(), date(2024, 1, 14))
        )
        first, second = await placeholders(db, schedule["_id"])

        results = await svc.payments.confirm_multiple([
            PaymentConfirmItem(id=str(first["_id"]), amount=20000, payment_type=PaymentType.MOBILE_MONEY),
            PaymentConfirmItem(id="not-an-id", amount=20000, payment_type=PaymentType.CASH),
            PaymentConfirmItem(id=str(second["_id"]), amount=None, payment_type=PaymentType.CASH),
        ])

        assert [r["success"] for r in results] == [True, False, False]
        assert results[2]["message"] == "Incomplete payment information"
        confirmed = await db.payments.find_one({"_id": first["_id"]})
        assert confirmed["status"] == "confirmed"
        assert confirmed["payment_type"] == "mobile_money"
        assert (await db.payments.find_one({"_id": second["_id"]}))["status"] == "pending"

    @pytest.mark.asyncio
    async def test_empty_batch_is_invalid(self, svc):
        with pytest.raises(ValidationError):
            await svc.payments.confirm_multiple([])


class TestPaymentViews:
    @pytest.mark.asyncio
    async def test_list_and_stats(self, svc, db, make_driver, make_vehicle):
        schedule = await svc.lifecycle.create(
            schedule_request(await make_driver(), await make_vehicle(), date(2024, 1, 14))
        )
        first, _ = await placeholders(db, schedule["_id"])
        await svc.payments.update_payment(first["_id"], PaymentUpdate(amount=30000))

        assert len(await svc.payments.list_payments(status="pending")) == 1
        assert len(await svc.payments.list_payments(schedule_id=str(schedule["_id"]))) == 2

        stats = await svc.payments.schedule_stats(schedule["_id"])
        assert stats["total_amount"] == 30000
        assert stats["average_amount"] == 15000
        assert stats["payment_count"] == 2
        assert stats["target_met"] == 1
