from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
import redis
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from gopawz.deps import get_claims, get_lifecycle, get_repo, get_token_service, get_validator
from gopawz.main import app
from gopawz.models import BookingStatus
from gopawz.services.checkins import CheckinValidator
from gopawz.services.lifecycle import BookingLifecycle
from gopawz.services.tokens import TokenIssuanceService

from conftest import NOW, Clock, FakeRepo, StubNotifier, StubPayments


@pytest.fixture
def world():
    repo = FakeRepo()
    owner = repo.add_user()
    pet = repo.add_pet(owner.id)
    clock = Clock()
    claims = {"sub": str(owner.id), "role": "customer"}

    app.dependency_overrides[get_claims] = lambda: claims
    app.dependency_overrides[get_repo] = lambda: repo
    app.dependency_overrides[get_token_service] = lambda: TokenIssuanceService(repo, clock=clock)
    app.dependency_overrides[get_validator] = lambda: CheckinValidator(repo, clock=clock)
    app.dependency_overrides[get_lifecycle] = lambda: BookingLifecycle(repo, StubPayments(), StubNotifier(), clock=clock)
    yield repo, owner, pet, claims
    app.dependency_overrides.clear()


@pytest.fixture
def client(world):
    return TestClient(app)


def as_staff(claims):
    claims.update(sub="staff-1", role="staff")


class TestQRFlow:
    def test_issue_scan_and_audit(self, world, client):
        repo, owner, pet, claims = world
        b = repo.add_booking(user_id=owner.id, pet_id=pet.id, date=NOW + timedelta(hours=3))

        r = client.post(f"/bookings/{b.id}/qr-token")
        assert r.status_code == 201
        body = r.json()
        assert body["qr_code_image"].startswith("data:image/png;base64,")
        assert body["check_in_url"].endswith(body["token"])

        r = client.post(f"/bookings/{b.id}/qr-token", json={"force_regenerate": False})
        assert r.status_code == 409
        assert r.json()["detail"]["error"] == "ACTIVE_TOKEN_EXISTS"

        r = client.post("/check-in/scan", json={"token": body["token"]})
        assert r.status_code == 403

        as_staff(claims)
        r = client.post("/check-in/scan", json={"token": body["token"], "scanner_location": "park-east"})
        assert r.status_code == 200
        assert r.json()["message"] == "Biscuit checked in successfully"
        assert r.json()["booking"]["status"] == "checked_in"

        r = client.post("/check-in/scan", json={"token": body["token"]})
        assert r.status_code == 409
        assert r.json()["detail"]["error"] == "ALREADY_CHECKED_IN"

        r = client.get(f"/check-in/bookings/{b.id}/audit")
        assert [a["outcome"] for a in r.json()] == ["validated", "duplicate"]

    def test_unknown_token(self, world, client):
        as_staff(world[3])
        r = client.post("/check-in/scan", json={"token": "not-a-real-token"})
        assert r.status_code == 404
        assert r.json()["detail"]["error"] == "INVALID_TOKEN"

    def test_too_early(self, world, client):
        repo, owner, pet, _ = world
        b = repo.add_booking(user_id=owner.id, pet_id=pet.id, date=NOW + timedelta(days=3))
        r = client.post(f"/bookings/{b.id}/qr-token")
        assert r.status_code == 400
        assert r.json()["detail"]["error"] == "TOO_EARLY"
        assert "valid_from" in r.json()["detail"]

    def test_status_and_png(self, world, client):
        repo, owner, pet, _ = world
        b = repo.add_booking(user_id=owner.id, pet_id=pet.id, date=NOW + timedelta(hours=3))
        st = client.get(f"/bookings/{b.id}/qr-status").json()
        assert st["can_issue_token"] is True
        assert st["has_active_token"] is False

        r = client.post(f"/bookings/{b.id}/qr.png")
        assert r.status_code == 201
        assert r.headers["content-type"] == "image/png"
        assert r.content.startswith(b"\x89PNG")
        assert client.get(f"/bookings/{b.id}/qr-status").json()["has_active_token"] is True

    def test_png_does_not_revoke_active_code(self, world, client):
        repo, owner, pet, claims = world
        b = repo.add_booking(user_id=owner.id, pet_id=pet.id, date=NOW + timedelta(hours=3))
        token = client.post(f"/bookings/{b.id}/qr-token").json()["token"]
        stored_hash = repo.bookings[b.id]["qr_token_hash"]

        assert client.get(f"/bookings/{b.id}/qr.png").status_code == 405
        r = client.post(f"/bookings/{b.id}/qr.png")
        assert r.status_code == 409
        assert r.json()["detail"]["error"] == "ACTIVE_TOKEN_EXISTS"
        assert repo.bookings[b.id]["qr_token_hash"] == stored_hash

        as_staff(claims)
        assert client.post("/check-in/scan", json={"token": token}).status_code == 200

    def test_png_regenerates_when_asked(self, world, client):
        repo, owner, pet, _ = world
        b = repo.add_booking(user_id=owner.id, pet_id=pet.id, date=NOW + timedelta(hours=3))
        client.post(f"/bookings/{b.id}/qr-token")
        stored_hash = repo.bookings[b.id]["qr_token_hash"]
        r = client.post(f"/bookings/{b.id}/qr.png", json={"force_regenerate": True})
        assert r.status_code == 201
        assert repo.bookings[b.id]["qr_token_hash"] != stored_hash

    def test_other_customers_booking(self, world, client):
        repo, _, pet, _ = world
        b = repo.add_booking(user_id=uuid.uuid4(), pet_id=pet.id, date=NOW + timedelta(hours=3))
        assert client.post(f"/bookings/{b.id}/qr-token").status_code == 403


class TestBookingRoutes:
    def test_create_get_and_list(self, world, client):
        repo, owner, pet, _ = world
        r = client.post("/bookings", json={
            "user_id": str(owner.id), "pet_id": str(pet.id), "service_type": "express",
            "date": (NOW + timedelta(days=4)).isoformat(), "time_slot": "11:00 AM",
            "location": "Mobile Gym", "price": 3500,
        })
        assert r.status_code == 201
        booking_id = r.json()["id"]
        assert r.json()["status"] == "scheduled"

        assert client.get(f"/bookings/{booking_id}").json()["price"] == 3500
        listed = client.get(f"/bookings/users/{owner.id}", params={"upcoming": True}).json()
        assert [b["id"] for b in listed] == [booking_id]

    def test_missing_booking(self, world, client):
        r = client.get(f"/bookings/{uuid.uuid4()}")
        assert r.status_code == 404
        assert r.json()["detail"] == {"error": "NOT_FOUND", "message": "Booking not found"}

    def test_cancel(self, world, client):
        repo, owner, pet, _ = world
        far = repo.add_booking(user_id=owner.id, pet_id=pet.id, date=NOW + timedelta(days=3))
        near = repo.add_booking(user_id=owner.id, pet_id=pet.id, date=NOW + timedelta(hours=22))

        r = client.post(f"/bookings/{near.id}/cancel")
        assert r.status_code == 400
        assert r.json()["detail"]["hours_remaining"] == 22.0

        r = client.post(f"/bookings/{far.id}/cancel")
        assert r.status_code == 200
        assert r.json()["booking"]["status"] == "cancelled"
        assert r.json()["refund"] is None

        r = client.post(f"/bookings/{far.id}/cancel")
        assert r.status_code == 409

    def test_reschedule(self, world, client):
        repo, owner, pet, _ = world
        b = repo.add_booking(user_id=owner.id, pet_id=pet.id, date=NOW + timedelta(days=2))
        new_date = NOW + timedelta(days=6)
        r = client.post(f"/bookings/{b.id}/reschedule",
                        json={"new_date": new_date.isoformat(), "new_time_slot": "3:00 PM"})
        assert r.status_code == 200
        assert r.json()["time_slot"] == "3:00 PM"

    def test_complete_is_staff_only(self, world, client):
        repo, owner, pet, claims = world
        b = repo.add_booking(user_id=owner.id, pet_id=pet.id, date=NOW - timedelta(hours=1),
                             status=BookingStatus.CHECKED_IN)
        assert client.post(f"/bookings/{b.id}/complete").status_code == 403
        as_staff(claims)
        r = client.post(f"/bookings/{b.id}/complete", json={"media_url": "https://cdn.test/v.mp4"})
        assert r.status_code == 200
        assert r.json()["status"] == "completed"
        assert r.json()["media_url"] == "https://cdn.test/v.mp4"


class BrokenRepo(FakeRepo):
    def __init__(self, exc: Exception):
        super().__init__()
        self.exc = exc

    async def get_booking(self, booking_id):
        raise self.exc


@pytest.mark.parametrize("exc", [
    redis.ConnectionError("redis down"),
    OperationalError("SELECT 1", {}, Exception("db down")),
])
def test_infrastructure_faults_become_503(world, client, exc):
    app.dependency_overrides[get_repo] = lambda: BrokenRepo(exc)
    r = client.get(f"/bookings/{uuid.uuid4()}")
    assert r.status_code == 503
    assert r.json()["detail"]["error"] == "SERVICE_UNAVAILABLE"


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
