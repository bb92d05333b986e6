from __future__ import annotations

import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

# settings are read at import time; keep tests off real infra
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RL_ENABLED"] = "false"
os.environ["NATS_ENABLED"] = "false"
os.environ["REMINDERS_ENABLED"] = "false"
os.environ["PUBLIC_BASE_URL"] = "https://gopawz.test"

import pytest

from gopawz.core.payments import PaymentProviderError, RefundResult
from gopawz.models import BookingStatus, PaymentStatus

NOW = datetime(2025, 1, 10, 10, 0, 0, tzinfo=timezone.utc)

BOOKING_FIELDS = (
    "id", "user_id", "pet_id", "service_type", "date", "time_slot", "location", "price",
    "status", "payment_id", "notes", "qr_token_hash", "qr_token_issued_at", "qr_token_expires_at",
    "checked_in_at", "check_in_verified_by", "reminder_sent_at", "cancelled_at", "completed_at",
    "media_url", "created_at", "updated_at",
)


class Clock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> None:
        self.now = self.now + timedelta(**kw)


class FakeRepo:
    """In-memory BookingRepository. Reads hand out copies, so callers only see writes they re-read."""

    def __init__(self, *, yield_on_lookup: bool = False):
        self.bookings: dict[uuid.UUID, dict] = {}
        self.payments: dict[uuid.UUID, dict] = {}
        self.pets: dict[uuid.UUID, SimpleNamespace] = {}
        self.users: dict[uuid.UUID, SimpleNamespace] = {}
        self.audits: list = []
        self.yield_on_lookup = yield_on_lookup

    # --- seeding helpers
    def add_user(self, **kw) -> SimpleNamespace:
        u = SimpleNamespace(id=uuid.uuid4(), email="sam@example.com", name="Sam", phone="+15550100", **kw)
        self.users[u.id] = u
        return u

    def add_pet(self, user_id: uuid.UUID, **kw) -> SimpleNamespace:
        p = SimpleNamespace(id=uuid.uuid4(), user_id=user_id, name=kw.pop("name", "Biscuit"),
                            breed=kw.pop("breed", "Beagle"), **kw)
        self.pets[p.id] = p
        return p

    def add_booking(self, **kw) -> SimpleNamespace:
        row = {f: None for f in BOOKING_FIELDS}
        row.update(
            id=uuid.uuid4(), service_type="standard", time_slot="10:00 AM", location="Mobile Gym",
            price=4500, status=BookingStatus.SCHEDULED, created_at=NOW, updated_at=NOW,
        )
        row.update(kw)
        self.bookings[row["id"]] = row
        return SimpleNamespace(**row)

    def add_payment(self, booking_id: uuid.UUID, **kw) -> SimpleNamespace:
        row = dict(id=uuid.uuid4(), booking_id=booking_id, user_id=uuid.uuid4(),
                   stripe_payment_intent_id="pi_123", amount=4500, status=PaymentStatus.SUCCEEDED,
                   refund_id=None, refunded_amount=None)
        row.update(kw)
        self.payments[row["id"]] = row
        return SimpleNamespace(**row)

    # --- BookingRepository
    async def get_booking(self, booking_id):
        row = self.bookings.get(booking_id)
        return SimpleNamespace(**row) if row else None

    async def create_booking(self, fields):
        return self.add_booking(**fields)

    async def update_booking_status(self, booking_id, expected_status, fields):
        row = self.bookings.get(booking_id)
        if row is None or row["status"] != expected_status:
            return False
        row.update(fields)
        return True

    async def update_booking(self, booking_id, fields):
        row = self.bookings.get(booking_id)
        if row is None:
            return False
        row.update(fields)
        return True

    async def find_booking_by_token_hash(self, token_hash):
        found = next((SimpleNamespace(**r) for r in self.bookings.values() if r["qr_token_hash"] == token_hash), None)
        if self.yield_on_lookup:
            await asyncio.sleep(0)
        return found

    async def list_bookings_for_user(self, user_id, upcoming_only=False):
        rows = [SimpleNamespace(**r) for r in self.bookings.values() if r["user_id"] == user_id]
        if upcoming_only:
            rows = [r for r in rows if r.status == BookingStatus.SCHEDULED]
            return sorted(rows, key=lambda r: r.date)
        return sorted(rows, key=lambda r: r.date, reverse=True)

    async def find_bookings_for_reminder(self, start, end):
        rows = [SimpleNamespace(**r) for r in self.bookings.values()
                if r["status"] == BookingStatus.SCHEDULED and r["reminder_sent_at"] is None
                and start <= r["date"] < end]
        return sorted(rows, key=lambda r: r.date)

    async def insert_audit_entry(self, entry):
        self.audits.append(entry)
        return entry

    async def list_audit_entries(self, booking_id):
        return sorted((a for a in self.audits if a.booking_id == booking_id), key=lambda a: a.scanned_at)

    async def get_payment(self, payment_id):
        row = self.payments.get(payment_id)
        return SimpleNamespace(**row) if row else None

    async def update_payment(self, payment_id, fields):
        row = self.payments.get(payment_id)
        if row is None:
            return False
        row.update(fields)
        return True

    async def get_pet(self, pet_id):
        return self.pets.get(pet_id)

    async def get_user(self, user_id):
        return self.users.get(user_id)


class StubPayments:
    def __init__(self, fail: str | None = None):
        self.fail = fail
        self.calls: list[str] = []

    async def refund(self, payment_intent_id):
        self.calls.append(payment_intent_id)
        if self.fail:
            raise PaymentProviderError(self.fail)
        return RefundResult(refund_id=f"re_{len(self.calls)}", amount=4500, status="succeeded")


class StubNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list = []

    async def notify(self, notification):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append(notification)

    def kinds(self):
        return [n.kind for n in self.sent]


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def repo():
    return FakeRepo()


@pytest.fixture
def owner(repo):
    return repo.add_user()


@pytest.fixture
def pet(repo, owner):
    return repo.add_pet(owner.id)


@pytest.fixture
def payments():
    return StubPayments()


@pytest.fixture
def notifier():
    return StubNotifier()
