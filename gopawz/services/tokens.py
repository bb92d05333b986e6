from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..core.qr import (
    can_issue_token, check_in_url, generate_qr_token, is_token_expired,
    issuance_opens_at, render_qr_data_url,
)
from ..models import BookingStatus, utcnow
from ..repository import BookingRepository
from .rejections import Reason, Rejection, already_terminal, not_found
from .state_machine import is_terminal

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class TokenIssued:
    booking_id: uuid.UUID
    token: str
    check_in_url: str
    artifact: str  # PNG data URL
    issued_at: datetime
    expires_at: datetime

@dataclass(frozen=True)
class TokenStatus:
    can_issue: bool
    has_active_token: bool
    issued_at: datetime | None
    expires_at: datetime | None
    booking_status: str
    checked_in_at: datetime | None

def has_active_token(booking, now: datetime) -> bool:
    return bool(
        booking.qr_token_hash
        and booking.qr_token_expires_at is not None
        and not is_token_expired(booking.qr_token_expires_at, now)
    )

class TokenIssuanceService:
    def __init__(
        self,
        repo: BookingRepository,
        *,
        clock: Callable[[], datetime] = utcnow,
        render: Callable[[str], str] = render_qr_data_url,
    ):
        self.repo = repo
        self.clock = clock
        self.render = render

    async def issue(self, booking_id: uuid.UUID, force_regenerate: bool = False) -> TokenIssued | Rejection:
        booking = await self.repo.get_booking(booking_id)
        if booking is None:
            return not_found()
        if is_terminal(booking.status):
            return already_terminal(BookingStatus(booking.status).value)

        now = self.clock()
        if not can_issue_token(booking.date, now):
            if now >= booking.date:
                return Rejection(Reason.WINDOW_CLOSED, "The session has already started")
            opens = issuance_opens_at(booking.date)
            return Rejection(
                Reason.TOO_EARLY,
                "QR codes can be generated within 24 hours of the session",
                valid_from=opens,
            )

        if has_active_token(booking, now) and not force_regenerate:
            return Rejection(
                Reason.ACTIVE_TOKEN_EXISTS,
                "An active QR code already exists for this booking",
                issued_at=booking.qr_token_issued_at,
                expires_at=booking.qr_token_expires_at,
                extra={"can_force_regenerate": True},
            )

        qr = generate_qr_token(booking.date, now)
        # overwriting the hash is what revokes any previously issued code
        ok = await self.repo.update_booking_status(
            booking.id,
            BookingStatus.SCHEDULED,
            {
                "qr_token_hash": qr.hash,
                "qr_token_issued_at": qr.issued_at,
                "qr_token_expires_at": qr.expires_at,
            },
        )
        if not ok:
            fresh = await self.repo.get_booking(booking.id)
            if fresh is None:
                return not_found()
            return already_terminal(BookingStatus(fresh.status).value)

        url = check_in_url(qr.token)
        logger.info(f"QR token issued for booking {booking.id} (expires {qr.expires_at.isoformat()})")
        return TokenIssued(
            booking_id=booking.id,
            token=qr.token,
            check_in_url=url,
            artifact=self.render(url),
            issued_at=qr.issued_at,
            expires_at=qr.expires_at,
        )

    async def status(self, booking_id: uuid.UUID) -> TokenStatus | Rejection:
        booking = await self.repo.get_booking(booking_id)
        if booking is None:
            return not_found()
        now = self.clock()
        status = BookingStatus(booking.status)
        active = has_active_token(booking, now)
        return TokenStatus(
            can_issue=status == BookingStatus.SCHEDULED and can_issue_token(booking.date, now),
            has_active_token=active,
            issued_at=booking.qr_token_issued_at if active else None,
            expires_at=booking.qr_token_expires_at if active else None,
            booking_status=status.value,
            checked_in_at=booking.checked_in_at,
        )
