from __future__ import annotations
import logging
from datetime import datetime, timedelta

from ..core.notifications import Notification, NotificationKind, NotificationTransport
from ..repository import BookingRepository

logger = logging.getLogger(__name__)

async def send_due_reminders(
    repo: BookingRepository,
    notifier: NotificationTransport,
    *,
    now: datetime,
    lead: timedelta = timedelta(hours=24),
) -> int:
    """
    Remind customers whose session starts within `lead` of now and who have not
    been reminded yet. A reminder that fails to send is left unmarked so the
    next sweep retries it. Returns the number of reminders sent.
    """
    sent = 0
    bookings = await repo.find_bookings_for_reminder(now, now + lead)
    for booking in bookings:
        pet = await repo.get_pet(booking.pet_id)
        user = await repo.get_user(booking.user_id)
        if pet is None or user is None:
            logger.warning(f"Skipping reminder for booking {booking.id}: missing pet or user")
            continue
        try:
            await notifier.notify(Notification(NotificationKind.BOOKING_REMINDER, booking, pet, user))
        except Exception as e:
            logger.error(f"NOTIFICATION_FAILED booking_reminder for booking {booking.id}: {e}")
            continue
        # bookkeeping only, status is untouched
        await repo.update_booking(booking.id, {"reminder_sent_at": now})
        sent += 1
    if sent:
        logger.info(f"Sent {sent} booking reminder(s)")
    return sent
