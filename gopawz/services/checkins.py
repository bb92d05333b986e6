from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from ..core.qr import hash_token
from ..models import AuditOutcome, BookingStatus, CheckinAudit, utcnow
from ..repository import BookingRepository
from .rejections import Reason, Rejection, validation_failed
from .state_machine import guard_check_in

logger = logging.getLogger(__name__)

_OUTCOMES = {
    Reason.ALREADY_CHECKED_IN: AuditOutcome.DUPLICATE,
    Reason.TOKEN_EXPIRED: AuditOutcome.EXPIRED,
    Reason.TOKEN_MISMATCH: AuditOutcome.MISMATCH,
}

@dataclass(frozen=True)
class ScanSuccess:
    booking: Any
    pet: Any
    checked_in_at: datetime

class CheckinValidator:
    def __init__(self, repo: BookingRepository, *, clock: Callable[[], datetime] = utcnow):
        self.repo = repo
        self.clock = clock

    async def scan(self, presented_token: str, scanned_by: str, scan_location: str | None = None) -> ScanSuccess | Rejection:
        token = (presented_token or "").strip()
        if not token:
            return validation_failed("A QR token is required")
        if not scanned_by:
            return validation_failed("Scanner identity is required")

        token_hash = hash_token(token)
        booking = await self.repo.find_booking_by_token_hash(token_hash)
        if booking is None:
            # nothing to attach an audit row to
            logger.warning(f"Scan with unknown token hash {token_hash[:12]} by {scanned_by} at {scan_location}")
            return Rejection(Reason.INVALID_TOKEN, "Invalid QR code")

        now = self.clock()
        rejection = guard_check_in(booking, token_hash, now)
        if rejection is not None:
            await self._audit(booking.id, token_hash, _OUTCOMES.get(rejection.reason, AuditOutcome.REJECTED),
                              scanned_by, scan_location, now)
            return rejection

        won = await self.repo.update_booking_status(
            booking.id,
            BookingStatus.SCHEDULED,
            {"status": BookingStatus.CHECKED_IN, "checked_in_at": now, "check_in_verified_by": scanned_by},
        )
        if not won:
            # a concurrent scan (or cancel) got there first
            fresh = await self.repo.get_booking(booking.id)
            rejection = guard_check_in(fresh, token_hash, now) if fresh is not None else None
            if rejection is None:
                rejection = Rejection(Reason.ALREADY_CHECKED_IN, "Booking is already checked in",
                                      state=BookingStatus.CHECKED_IN.value,
                                      checked_in_at=getattr(fresh, "checked_in_at", None))
            await self._audit(booking.id, token_hash, _OUTCOMES.get(rejection.reason, AuditOutcome.REJECTED),
                              scanned_by, scan_location, now)
            logger.info(f"Lost check-in race for booking {booking.id}: {rejection.reason.value}")
            return rejection

        await self._audit(booking.id, token_hash, AuditOutcome.VALIDATED, scanned_by, scan_location, now)
        checked_in = await self.repo.get_booking(booking.id)
        pet = await self.repo.get_pet(booking.pet_id)
        logger.info(f"Booking {booking.id} checked in by {scanned_by} at {scan_location}")
        return ScanSuccess(booking=checked_in, pet=pet, checked_in_at=now)

    async def _audit(self, booking_id: uuid.UUID, token_hash: str, outcome: AuditOutcome,
                     scanned_by: str, scan_location: str | None, now: datetime) -> None:
        await self.repo.insert_audit_entry(CheckinAudit(
            id=uuid.uuid4(),
            booking_id=booking_id,
            token_hash=token_hash,
            outcome=outcome,
            scanned_by=scanned_by,
            scan_location=scan_location,
            scanned_at=now,
        ))
