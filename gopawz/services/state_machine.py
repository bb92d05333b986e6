"""
Booking state machine.

    scheduled --scan--------> checked_in
    scheduled --cancel------> cancelled
    scheduled|checked_in ---> completed   (staff)
    scheduled --reschedule--> scheduled   (new date)

Nothing leaves checked_in/cancelled/completed except checked_in -> completed.
Guards are pure: they inspect a booking and a clock reading and return a
Rejection (first failing guard wins) or None.
"""
from __future__ import annotations
import hmac
from datetime import datetime, timedelta

from ..core.qr import is_token_expired
from ..models import BookingStatus
from .rejections import Reason, Rejection, already_terminal

CANCEL_WINDOW = timedelta(hours=24)
RESCHEDULE_WINDOW = timedelta(hours=12)

TERMINAL_STATES = frozenset({BookingStatus.CHECKED_IN, BookingStatus.CANCELLED, BookingStatus.COMPLETED})

def hours_until(when: datetime, now: datetime) -> float:
    return round((when - now).total_seconds() / 3600, 1)

def is_terminal(status: BookingStatus) -> bool:
    return BookingStatus(status) in TERMINAL_STATES

def guard_check_in(booking, presented_hash: str, now: datetime) -> Rejection | None:
    # duplicate before expiry: a re-scan after a good check-in must not read as "expired"
    status = BookingStatus(booking.status)
    if status == BookingStatus.CHECKED_IN:
        return Rejection(
            Reason.ALREADY_CHECKED_IN,
            "Booking is already checked in",
            state=status.value,
            checked_in_at=booking.checked_in_at,
        )
    if status != BookingStatus.SCHEDULED:
        return already_terminal(status.value)
    if not booking.qr_token_hash or not hmac.compare_digest(booking.qr_token_hash, presented_hash):
        return Rejection(Reason.TOKEN_MISMATCH, "QR code does not match the current code for this booking")
    if booking.qr_token_expires_at is None or is_token_expired(booking.qr_token_expires_at, now):
        return Rejection(
            Reason.TOKEN_EXPIRED,
            "QR code has expired, ask the customer to generate a new one",
            expires_at=booking.qr_token_expires_at,
        )
    return None

def guard_cancel(booking, now: datetime) -> Rejection | None:
    status = BookingStatus(booking.status)
    if status != BookingStatus.SCHEDULED:
        return already_terminal(status.value)
    if booking.date - now < CANCEL_WINDOW:
        hours = hours_until(booking.date, now)
        return Rejection(
            Reason.WINDOW_TOO_CLOSE,
            f"Bookings can only be cancelled at least 24 hours in advance ({hours} hours remaining)",
            hours_remaining=hours,
        )
    return None

def guard_reschedule(booking, now: datetime) -> Rejection | None:
    status = BookingStatus(booking.status)
    if status != BookingStatus.SCHEDULED:
        return already_terminal(status.value)
    if booking.date - now < RESCHEDULE_WINDOW:
        hours = hours_until(booking.date, now)
        return Rejection(
            Reason.WINDOW_TOO_CLOSE,
            f"Bookings can only be rescheduled at least 12 hours in advance ({hours} hours remaining)",
            hours_remaining=hours,
        )
    return None

def guard_complete(booking) -> Rejection | None:
    status = BookingStatus(booking.status)
    if status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
        return already_terminal(status.value)
    return None
