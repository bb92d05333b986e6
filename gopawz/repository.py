from __future__ import annotations
import uuid
from datetime import datetime
from typing import Any, Protocol, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Booking, BookingStatus, CheckinAudit, Payment, Pet, User, utcnow

class BookingRepository(Protocol):
    """Storage contract used by the services. Status writes are compare-and-swap only."""

    async def get_booking(self, booking_id: uuid.UUID) -> Booking | None: ...
    async def create_booking(self, fields: dict[str, Any]) -> Booking: ...
    async def update_booking_status(
        self, booking_id: uuid.UUID, expected_status: BookingStatus, fields: dict[str, Any]
    ) -> bool: ...
    async def update_booking(self, booking_id: uuid.UUID, fields: dict[str, Any]) -> bool: ...
    async def find_booking_by_token_hash(self, token_hash: str) -> Booking | None: ...
    async def list_bookings_for_user(self, user_id: uuid.UUID, upcoming_only: bool = False) -> Sequence[Booking]: ...
    async def find_bookings_for_reminder(self, start: datetime, end: datetime) -> Sequence[Booking]: ...
    async def insert_audit_entry(self, entry: CheckinAudit) -> CheckinAudit: ...
    async def list_audit_entries(self, booking_id: uuid.UUID) -> Sequence[CheckinAudit]: ...
    async def get_payment(self, payment_id: uuid.UUID) -> Payment | None: ...
    async def update_payment(self, payment_id: uuid.UUID, fields: dict[str, Any]) -> bool: ...
    async def get_pet(self, pet_id: uuid.UUID) -> Pet | None: ...
    async def get_user(self, user_id: uuid.UUID) -> User | None: ...

class SqlBookingRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_booking(self, booking_id: uuid.UUID) -> Booking | None:
        q = select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        return (await self.db.execute(q)).scalar_one_or_none()

    async def create_booking(self, fields: dict[str, Any]) -> Booking:
        obj = Booking(status=BookingStatus.SCHEDULED, **fields)
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def update_booking_status(
        self, booking_id: uuid.UUID, expected_status: BookingStatus, fields: dict[str, Any]
    ) -> bool:
        # single conditional UPDATE: a concurrent writer that already moved the
        # status makes this match zero rows instead of overwriting it
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == expected_status)
            .values(**fields, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        res = await self.db.execute(stmt)
        await self.db.commit()
        return res.rowcount == 1

    async def update_booking(self, booking_id: uuid.UUID, fields: dict[str, Any]) -> bool:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(**fields, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        res = await self.db.execute(stmt)
        await self.db.commit()
        return res.rowcount == 1

    async def find_booking_by_token_hash(self, token_hash: str) -> Booking | None:
        q = select(Booking).where(Booking.qr_token_hash == token_hash).execution_options(populate_existing=True)
        return (await self.db.execute(q)).scalars().first()

    async def list_bookings_for_user(self, user_id: uuid.UUID, upcoming_only: bool = False) -> Sequence[Booking]:
        q = select(Booking).where(Booking.user_id == user_id)
        if upcoming_only:
            q = q.where(Booking.status == BookingStatus.SCHEDULED).order_by(Booking.date.asc())
        else:
            q = q.order_by(Booking.date.desc())
        return (await self.db.execute(q)).scalars().all()

    async def find_bookings_for_reminder(self, start: datetime, end: datetime) -> Sequence[Booking]:
        q = select(Booking).where(
            Booking.status == BookingStatus.SCHEDULED,
            Booking.reminder_sent_at.is_(None),
            Booking.date >= start,
            Booking.date < end,
        ).order_by(Booking.date.asc())
        return (await self.db.execute(q)).scalars().all()

    async def insert_audit_entry(self, entry: CheckinAudit) -> CheckinAudit:
        self.db.add(entry)
        await self.db.commit()
        await self.db.refresh(entry)
        return entry

    async def list_audit_entries(self, booking_id: uuid.UUID) -> Sequence[CheckinAudit]:
        q = select(CheckinAudit).where(CheckinAudit.booking_id == booking_id).order_by(CheckinAudit.scanned_at.asc())
        return (await self.db.execute(q)).scalars().all()

    async def get_payment(self, payment_id: uuid.UUID) -> Payment | None:
        q = select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
        return (await self.db.execute(q)).scalar_one_or_none()

    async def update_payment(self, payment_id: uuid.UUID, fields: dict[str, Any]) -> bool:
        stmt = update(Payment).where(Payment.id == payment_id).values(**fields).execution_options(synchronize_session=False)
        res = await self.db.execute(stmt)
        await self.db.commit()
        return res.rowcount == 1

    async def get_pet(self, pet_id: uuid.UUID) -> Pet | None:
        return (await self.db.execute(select(Pet).where(Pet.id == pet_id))).scalar_one_or_none()

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        return (await self.db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
