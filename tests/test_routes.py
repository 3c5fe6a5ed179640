# tests/test_routes.py
"""HTTP tests for the schedule, payment and registry routes."""

import pytest
from fastapi.testclient import TestClient

from app.database import get_database
from app.dependencies import get_clock
from app.main import app


@pytest.fixture
def client(db, clock):
    app.dependency_overrides[get_database] = lambda: db
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


def register_pair(client, target=20000):
    driver = client.post("/api/drivers/", json={
        "first_name": "Awa", "last_name": "Kone", "license_number": f"DL-{target}-{id(client)}"
    })
    assert driver.status_code == 200, driver.text
    vehicle = client.post("/api/vehicles/", json={
        "type": "taxi", "license_plate": f"PL-{target}-{id(client)}", "brand": "Toyota", "model": "Corolla",
        "daily_income_target": target
    })
    assert vehicle.status_code == 200, vehicle.text
    return driver.json()["id"], vehicle.json()["id"]


class TestScheduleRoutes:
    def test_create_schedule_binds_pair(self, client):
        driver_id, vehicle_id = register_pair(client)

        response = client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-15"
        }, headers={"X-User-Id": "dispatcher-1"})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["status"] == "assigned"
        assert body["driver"]["first_name"] == "Awa"
        assert body["vehicle"]["license_plate"].startswith("PL-")
        assert client.get(f"/api/drivers/{driver_id}").json()["current_vehicle_id"] == vehicle_id
        assert client.get(f"/api/vehicles/{vehicle_id}").json()["current_driver_id"] == driver_id

    def test_overlap_returns_409_with_conflict(self, client):
        driver_id, vehicle_id = register_pair(client)
        _, other_vehicle = register_pair(client, target=15000)
        first = client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id,
            "schedule_date": "2024-01-10", "end_date": "2024-01-20"
        }).json()

        response = client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": other_vehicle,
            "schedule_date": "2024-01-15", "end_date": "2024-01-18"
        })

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["message"] == "Schedule overlap"
        assert detail["conflict"]["id"] == first["id"]

    def test_invalid_shift_time_is_rejected(self, client):
        driver_id, vehicle_id = register_pair(client)
        response = client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-15", "shift_end": "25:00"
        })
        assert response.status_code == 422

    def test_malformed_id_is_a_400(self, client):
        response = client.get("/api/schedules/not-an-id")
        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Invalid schedule ID format"

    def test_status_change_stamps_shift_end(self, client):
        driver_id, vehicle_id = register_pair(client)
        schedule = client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-15", "shift_end": "18:00"
        }).json()

        response = client.put(f"/api/schedules/{schedule['id']}/status", json={"status": "completed"})

        assert response.status_code == 200, response.text
        assert response.json()["status"] == "completed"
        assert response.json()["end_date"].startswith("2024-01-15T18:00:00")
        assert client.get(f"/api/drivers/{driver_id}").json()["current_vehicle_id"] is None

    def test_read_views(self, client):
        driver_id, vehicle_id = register_pair(client)
        schedule = client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-15", "end_date": "2024-01-17"
        }).json()

        assert [s["id"] for s in client.get("/api/schedules/current").json()] == [schedule["id"]]
        assert client.get("/api/schedules/future").json() == []
        assert len(client.get(f"/api/schedules/driver/{driver_id}").json()) == 1
        assert len(client.get(f"/api/schedules/vehicle/{vehicle_id}").json()) == 1
        assert len(client.get("/api/schedules/date/2024-01-16").json()) == 1
        assert client.get("/api/schedules/date/2024-01-18").json() == []
        assert len(client.get("/api/schedules/period", params={"start": "2024-01-01", "end": "2024-01-15"}).json()) == 1
        assert len(client.get("/api/schedules/conflicts", params={"driver_id": driver_id, "start": "2024-01-17"}).json()) == 1
        assert client.get(f"/api/schedules/{schedule['id']}").json()["id"] == schedule["id"]

    def test_conflicts_view_needs_a_party(self, client):
        response = client.get("/api/schedules/conflicts", params={"start": "2024-01-17"})
        assert response.status_code == 400

    def test_check_expired(self, client, clock):
        driver_id, vehicle_id = register_pair(client)
        client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-15", "end_date": "2024-01-15"
        })
        clock.advance(days=1)

        response = client.post("/api/schedules/check-expired")

        assert response.status_code == 200
        assert response.json()["completed"] == 1

    def test_generate_payments(self, client, clock):
        driver_id, vehicle_id = register_pair(client)
        client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-15"
        })
        clock.advance(days=1)

        daily = client.post("/api/schedules/generate-daily-payments")
        assert daily.json()["payments_generated"] == 1

        backfill = client.post("/api/schedules/generate-payments").json()
        assert backfill["results"][0]["payments_generated"] == 0

    def test_delete_schedule(self, client):
        driver_id, vehicle_id = register_pair(client)
        schedule = client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-15"
        }).json()

        assert client.delete(f"/api/schedules/{schedule['id']}").status_code == 200
        assert client.get(f"/api/schedules/{schedule['id']}").status_code == 404
        assert client.get(f"/api/payments/schedule/{schedule['id']}").status_code == 404


class TestPaymentRoutes:
    def _schedule(self, client, **extra):
        driver_id, vehicle_id = register_pair(client)
        payload = {"driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-14"}
        payload.update(extra)
        return client.post("/api/schedules/", json=payload).json()

    def test_missing_days(self, client):
        schedule = self._schedule(client, end_date="2024-01-16")
        payments = client.get(f"/api/payments/schedule/{schedule['id']}").json()
        client.post(f"/api/payments/{payments[0]['id']}/status", json={"status": "rejected"})

        response = client.get(f"/api/payments/schedule/{schedule['id']}/missing")

        assert response.status_code == 200
        assert response.json()["unpaid_days"] == ["2024-01-14", "2024-01-16"]

    def test_duplicate_payment_is_409(self, client):
        schedule = self._schedule(client)
        response = client.post("/api/payments/", json={
            "schedule_id": schedule["id"], "amount": 5000, "payment_date": "2024-01-14", "payment_type": "cash"
        })
        assert response.status_code == 409
        assert response.json()["detail"]["message"] == "Payment already exists"

    def test_confirm_and_delete_reopens(self, client):
        schedule = self._schedule(client, end_date="2024-01-15")
        payments = client.get(f"/api/payments/schedule/{schedule['id']}").json()

        result = client.post("/api/payments/confirm-multiple", json={"payments": [
            {"id": p["id"], "amount": 20000, "payment_type": "mobile_money"} for p in payments
        ]}).json()
        assert [r["success"] for r in result["results"]] == [True, True]
        assert client.get(f"/api/schedules/{schedule['id']}").json()["status"] == "completed"

        assert client.delete(f"/api/payments/{payments[1]['id']}").status_code == 200
        assert client.get(f"/api/schedules/{schedule['id']}").json()["status"] == "assigned"

    def test_update_and_views(self, client):
        schedule = self._schedule(client)
        payments = client.get(f"/api/payments/schedule/{schedule['id']}").json()

        updated = client.put(f"/api/payments/{payments[0]['id']}", json={"amount": 25000}).json()
        assert updated["status"] == "confirmed"
        assert updated["is_meeting_target"] is True

        assert len(client.get("/api/payments/pending").json()) == 1
        assert len(client.get("/api/payments/", params={"status": "confirmed"}).json()) == 1
        assert client.get(f"/api/payments/{payments[0]['id']}").json()["amount"] == 25000
        stats = client.get(f"/api/payments/schedule/{schedule['id']}/stats").json()
        assert stats["payment_count"] == 2
        assert stats["target_met"] == 1

    def test_patch_status(self, client):
        schedule = self._schedule(client)
        payment = client.get(f"/api/payments/schedule/{schedule['id']}").json()[0]
        response = client.patch(f"/api/payments/{payment['id']}/status", json={"status": "confirmed"})
        assert response.json()["status"] == "confirmed"


class TestRegistryRoutes:
    def test_duplicate_license_is_rejected(self, client):
        payload = {"first_name": "Yao", "last_name": "Kouassi", "license_number": "DL-42"}
        assert client.post("/api/drivers/", json=payload).status_code == 200
        response = client.post("/api/drivers/", json=payload)
        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "License number already registered"

    def test_assignment_pointers_are_read_only(self, client):
        driver_id, vehicle_id = register_pair(client)
        client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-15"
        })

        client.put(f"/api/vehicles/{vehicle_id}", json={"current_driver_id": None, "notes": "new tyres"})

        vehicle = client.get(f"/api/vehicles/{vehicle_id}").json()
        assert vehicle["current_driver_id"] == driver_id
        assert vehicle["notes"] == "new tyres"

    def test_departed_driver_cannot_be_scheduled(self, client):
        driver_id, vehicle_id = register_pair(client)
        client.put(f"/api/drivers/{driver_id}", json={"departure_date": "2024-01-10"})

        response = client.post("/api/schedules/", json={
            "driver_id": driver_id, "vehicle_id": vehicle_id, "schedule_date": "2024-01-15"
        })
        assert response.status_code == 409
        assert response.json()["detail"]["message"] == "Driver not employed"

    @pytest.mark.asyncio
    async def test_updates_are_audited_with_actor(self, client, db):
        driver_id, _ = register_pair(client)
        client.put(f"/api/drivers/{driver_id}", json={"phone_number": "+2250700000009"}, headers={"X-User-Id": "hr"})

        entry = await db.history.find_one({"event_type": "driver_update"})
        assert entry["performed_by"] == "hr"
        assert entry["new_data"]["phone_number"] == "+2250700000009"

    def test_pagination_is_bounded(self, client):
        assert client.get("/api/drivers/", params={"limit": 500}).status_code == 400
        assert client.get("/api/vehicles/", params={"skip": -1}).status_code == 400
