from __future__ import annotations

import uuid
from datetime import timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gopawz.models import AuditOutcome, Base, BookingStatus, CheckinAudit, Pet, User
from gopawz.repository import SqlBookingRepository

from conftest import NOW


@pytest.fixture
async def session():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool,
                                 connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as s:
        yield s
    await engine.dispose()


@pytest.fixture
async def seeded(session):
    user = User(id=uuid.uuid4(), email="sam@example.com", name="Sam")
    pet = Pet(id=uuid.uuid4(), user_id=user.id, name="Biscuit", breed="Beagle")
    session.add_all([user, pet])
    await session.commit()
    return SqlBookingRepository(session), user, pet


def fields(user, pet, **kw):
    out = dict(id=uuid.uuid4(), user_id=user.id, pet_id=pet.id, service_type="standard",
               date=NOW + timedelta(days=2), time_slot="10:00 AM", location="Mobile Gym", price=4500)
    out.update(kw)
    return out


class TestSqlBookingRepository:
    async def test_create_and_read_back_aware_datetimes(self, seeded):
        repo, user, pet = seeded
        b = await repo.create_booking(fields(user, pet))
        got = await repo.get_booking(b.id)
        assert got.status == BookingStatus.SCHEDULED
        assert got.date == NOW + timedelta(days=2)
        assert got.date.tzinfo is not None
        assert got.date.utcoffset() == timezone.utc.utcoffset(None)

    async def test_conditional_update_only_applies_once(self, seeded):
        repo, user, pet = seeded
        b = await repo.create_booking(fields(user, pet))
        change = {"status": BookingStatus.CHECKED_IN, "checked_in_at": NOW}
        assert await repo.update_booking_status(b.id, BookingStatus.SCHEDULED, change) is True
        assert await repo.update_booking_status(b.id, BookingStatus.SCHEDULED, change) is False
        got = await repo.get_booking(b.id)
        assert got.status == BookingStatus.CHECKED_IN
        assert got.checked_in_at == NOW

    async def test_plain_update_ignores_status(self, seeded):
        repo, user, pet = seeded
        b = await repo.create_booking(fields(user, pet))
        await repo.update_booking_status(b.id, BookingStatus.SCHEDULED, {"status": BookingStatus.CANCELLED})
        assert await repo.update_booking(b.id, {"reminder_sent_at": NOW}) is True
        got = await repo.get_booking(b.id)
        assert got.reminder_sent_at == NOW
        assert got.status == BookingStatus.CANCELLED
        assert await repo.update_booking(uuid.uuid4(), {"notes": "x"}) is False

    async def test_find_by_token_hash(self, seeded):
        repo, user, pet = seeded
        b = await repo.create_booking(fields(user, pet, qr_token_hash="a" * 64))
        assert (await repo.find_booking_by_token_hash("a" * 64)).id == b.id
        assert await repo.find_booking_by_token_hash("b" * 64) is None

    async def test_upcoming_only_lists_scheduled_soonest_first(self, seeded):
        repo, user, pet = seeded
        late = await repo.create_booking(fields(user, pet, date=NOW + timedelta(days=9)))
        soon = await repo.create_booking(fields(user, pet, date=NOW + timedelta(days=1)))
        gone = await repo.create_booking(fields(user, pet, date=NOW + timedelta(days=3)))
        await repo.update_booking_status(gone.id, BookingStatus.SCHEDULED, {"status": BookingStatus.CANCELLED})

        upcoming = await repo.list_bookings_for_user(user.id, upcoming_only=True)
        assert [b.id for b in upcoming] == [soon.id, late.id]
        everything = await repo.list_bookings_for_user(user.id)
        assert [b.id for b in everything] == [late.id, gone.id, soon.id]

    async def test_reminder_window(self, seeded):
        repo, user, pet = seeded
        inside = await repo.create_booking(fields(user, pet, date=NOW + timedelta(hours=10)))
        await repo.create_booking(fields(user, pet, date=NOW + timedelta(hours=24)))
        await repo.create_booking(fields(user, pet, date=NOW + timedelta(hours=5), reminder_sent_at=NOW))
        due = await repo.find_bookings_for_reminder(NOW, NOW + timedelta(hours=24))
        assert [b.id for b in due] == [inside.id]

    async def test_audit_entries_in_scan_order(self, seeded):
        repo, user, pet = seeded
        b = await repo.create_booking(fields(user, pet))
        for minutes, outcome in ((5, AuditOutcome.DUPLICATE), (0, AuditOutcome.VALIDATED)):
            await repo.insert_audit_entry(CheckinAudit(
                id=uuid.uuid4(), booking_id=b.id, token_hash="a" * 64, outcome=outcome,
                scanned_by="staff-1", scanned_at=NOW + timedelta(minutes=minutes),
            ))
        rows = await repo.list_audit_entries(b.id)
        assert [r.outcome for r in rows] == [AuditOutcome.VALIDATED, AuditOutcome.DUPLICATE]
