"""
Booking lifecycle: create, cancel, reschedule, complete.

Every write follows the same shape: guard -> external side effect (refund) ->
conditional status update -> best-effort notification. A failed refund stops
the cancellation; a failed notification never undoes a transition.
"""
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from ..core.notifications import Notification, NotificationKind, NotificationTransport
from ..core.payments import PaymentProviderError, PaymentsProvider, RefundResult
from ..models import BookingStatus, PaymentStatus, utcnow
from ..repository import BookingRepository
from .rejections import Reason, Rejection, already_terminal, not_found, validation_failed
from .state_machine import guard_cancel, guard_complete, guard_reschedule

logger = logging.getLogger(__name__)

SERVICE_TYPES = ("express", "standard", "pro")

_CLEARED_TOKEN = {"qr_token_hash": None, "qr_token_issued_at": None, "qr_token_expires_at": None}

@dataclass(frozen=True)
class Cancelled:
    booking: Any
    refund: RefundResult | None

class BookingLifecycle:
    def __init__(
        self,
        repo: BookingRepository,
        payments: PaymentsProvider,
        notifier: NotificationTransport,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.payments = payments
        self.notifier = notifier
        self.clock = clock

    async def create(
        self,
        *,
        user_id: uuid.UUID,
        pet_id: uuid.UUID,
        service_type: str,
        date: datetime,
        time_slot: str,
        location: str,
        price: int,
        payment_id: uuid.UUID | None = None,
        notes: str | None = None,
    ):
        if service_type not in SERVICE_TYPES:
            return validation_failed(f"service_type must be one of {', '.join(SERVICE_TYPES)}")
        problem = self._check_schedule(date, time_slot)
        if problem:
            return problem
        if price < 0:
            return validation_failed("price must not be negative")
        if not location or not location.strip():
            return validation_failed("location is required")

        pet = await self.repo.get_pet(pet_id)
        if pet is None or pet.user_id != user_id:
            return not_found("Pet")

        if payment_id is not None:
            payment = await self.repo.get_payment(payment_id)
            if payment is None or payment.user_id != user_id:
                return not_found("Payment")
            if payment.booking_id is not None:
                return validation_failed("Payment is already linked to a booking")

        booking = await self.repo.create_booking({
            "id": uuid.uuid4(),
            "user_id": user_id,
            "pet_id": pet_id,
            "service_type": service_type,
            "date": date,
            "time_slot": time_slot.strip(),
            "location": location.strip(),
            "price": price,
            "payment_id": payment_id,
            "notes": notes,
        })
        if payment_id is not None:
            await self.repo.update_payment(payment_id, {"booking_id": booking.id})
        logger.info(f"Booking {booking.id} created for {date.isoformat()} ({service_type})")
        await self._notify(NotificationKind.BOOKING_CONFIRMATION, booking)
        return booking

    async def cancel(self, booking_id: uuid.UUID) -> Cancelled | Rejection:
        booking = await self.repo.get_booking(booking_id)
        if booking is None:
            return not_found()
        now = self.clock()
        rejection = guard_cancel(booking, now)
        if rejection is not None:
            return rejection

        refund: RefundResult | None = None
        if booking.payment_id is not None:
            payment = await self.repo.get_payment(booking.payment_id)
            if payment is None:
                return not_found("Payment")
            if payment.booking_id != booking.id or payment.user_id != booking.user_id:
                logger.warning(f"Booking {booking.id} points at payment {payment.id} owned elsewhere, refund refused")
                return validation_failed("Payment does not belong to this booking")
            status = PaymentStatus(payment.status)
            if status == PaymentStatus.REFUNDED:
                # already refunded: reuse the recorded refund, never issue a second one
                refund = RefundResult(
                    refund_id=payment.refund_id or "",
                    amount=payment.refunded_amount if payment.refunded_amount is not None else payment.amount,
                    status="succeeded",
                )
            elif status == PaymentStatus.SUCCEEDED:
                try:
                    refund = await self.payments.refund(payment.stripe_payment_intent_id)
                except PaymentProviderError as e:
                    logger.error(f"Refund failed for booking {booking.id}, cancellation aborted: {e}")
                    return Rejection(
                        Reason.REFUND_FAILED,
                        "The refund could not be processed, the booking was not cancelled",
                        detail=str(e),
                    )
                await self.repo.update_payment(payment.id, {
                    "status": PaymentStatus.REFUNDED,
                    "refund_id": refund.refund_id,
                    "refunded_amount": refund.amount,
                })

        ok = await self.repo.update_booking_status(
            booking.id, BookingStatus.SCHEDULED,
            {"status": BookingStatus.CANCELLED, "cancelled_at": now},
        )
        if not ok:
            fresh = await self.repo.get_booking(booking.id)
            if fresh is None:
                return not_found()
            rejection = already_terminal(BookingStatus(fresh.status).value)
            if refund is None:
                return rejection
            logger.error(f"Booking {booking.id} changed state after refund {refund.refund_id}")
            return replace(rejection, extra={"refund_id": refund.refund_id, "refunded_amount": refund.amount})

        cancelled = await self.repo.get_booking(booking.id)
        logger.info(f"Booking {booking.id} cancelled" + (f" with refund {refund.refund_id}" if refund else ""))
        await self._notify(NotificationKind.CANCELLATION, cancelled, refund_amount=refund.amount if refund else None)
        return Cancelled(booking=cancelled, refund=refund)

    async def reschedule(self, booking_id: uuid.UUID, new_date: datetime, new_time_slot: str):
        problem = self._check_schedule(new_date, new_time_slot)
        if problem:
            return problem
        booking = await self.repo.get_booking(booking_id)
        if booking is None:
            return not_found()
        now = self.clock()
        rejection = guard_reschedule(booking, now)
        if rejection is not None:
            return rejection

        old_date = booking.date
        # tokens are bound to the old date, so they go with it
        ok = await self.repo.update_booking_status(
            booking.id, BookingStatus.SCHEDULED,
            {
                "status": BookingStatus.SCHEDULED,
                "date": new_date,
                "time_slot": new_time_slot.strip(),
                "reminder_sent_at": None,
                **_CLEARED_TOKEN,
            },
        )
        if not ok:
            fresh = await self.repo.get_booking(booking.id)
            return already_terminal(BookingStatus(fresh.status).value) if fresh else not_found()

        updated = await self.repo.get_booking(booking.id)
        logger.info(f"Booking {booking.id} rescheduled from {old_date.isoformat()} to {new_date.isoformat()}")
        await self._notify(NotificationKind.RESCHEDULE, updated, old_date=old_date)
        return updated

    async def complete(self, booking_id: uuid.UUID, media_url: str | None = None):
        booking = await self.repo.get_booking(booking_id)
        if booking is None:
            return not_found()
        rejection = guard_complete(booking)
        if rejection is not None:
            return rejection

        now = self.clock()
        ok = await self.repo.update_booking_status(
            booking.id, BookingStatus(booking.status),
            {"status": BookingStatus.COMPLETED, "completed_at": now, "media_url": media_url},
        )
        if not ok:
            fresh = await self.repo.get_booking(booking.id)
            if fresh is None:
                return not_found()
            return guard_complete(fresh) or already_terminal(BookingStatus(fresh.status).value)

        completed = await self.repo.get_booking(booking.id)
        logger.info(f"Booking {booking.id} completed")
        await self._notify(NotificationKind.SESSION_COMPLETE, completed, media_url=media_url)
        return completed

    def _check_schedule(self, date: datetime, time_slot: str) -> Rejection | None:
        if date.tzinfo is None:
            return validation_failed("date must include a timezone")
        if date <= self.clock():
            return validation_failed("date must be in the future")
        if not time_slot or not time_slot.strip():
            return validation_failed("time_slot is required")
        return None

    async def _notify(self, kind: NotificationKind, booking, **payload) -> bool:
        try:
            pet = await self.repo.get_pet(booking.pet_id)
            user = await self.repo.get_user(booking.user_id)
            if pet is None or user is None:
                logger.warning(f"NOTIFICATION_FAILED {kind.value} for booking {booking.id}: missing pet or user")
                return False
            await self.notifier.notify(Notification(kind=kind, booking=booking, pet=pet, user=user, **payload))
            return True
        except Exception as e:
            logger.error(f"NOTIFICATION_FAILED {kind.value} for booking {booking.id}: {e}")
            return False
