"""
Outbound customer notifications (Resend email, Twilio SMS).

A Notification is a tagged value: `kind` selects the template and the payload
fields that template reads. Channel enablement comes from NotificationSettings,
fixed at construction.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Protocol

import httpx

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
SMS_FOOTER = "Reply STOP to opt out."

class NotificationError(Exception):
    pass

class NotificationKind(str, Enum):
    BOOKING_CONFIRMATION = "booking_confirmation"
    BOOKING_REMINDER = "booking_reminder"
    SESSION_COMPLETE = "session_complete"
    CANCELLATION = "cancellation"
    RESCHEDULE = "reschedule"

@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    booking: Any
    pet: Any
    user: Any
    old_date: datetime | None = None      # RESCHEDULE
    refund_amount: int | None = None      # CANCELLATION
    media_url: str | None = None          # SESSION_COMPLETE

    def __post_init__(self):
        if self.kind == NotificationKind.RESCHEDULE and self.old_date is None:
            raise ValueError("reschedule notification requires old_date")

@dataclass(frozen=True)
class NotificationSettings:
    email_enabled: bool = False
    sms_enabled: bool = False
    resend_api_key: str | None = None
    email_from: str = "GoPAWZ <noreply@gopawz.com>"
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_phone_number: str | None = None

    @classmethod
    def from_settings(cls, s: Settings) -> "NotificationSettings":
        return cls(
            email_enabled=s.email_enabled,
            sms_enabled=s.sms_enabled,
            resend_api_key=s.resend_api_key,
            email_from=s.email_from_address,
            twilio_account_sid=s.twilio_account_sid,
            twilio_auth_token=s.twilio_auth_token,
            twilio_phone_number=s.twilio_phone_number,
        )

class NotificationTransport(Protocol):
    async def notify(self, notification: Notification) -> None: ...

@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str

def _long_date(d: datetime) -> str:
    return d.strftime("%B %d, %Y at %I:%M %p").replace(" 0", " ")

def _short_date(d: datetime) -> str:
    return d.strftime("%B %d, %Y").replace(" 0", " ")

def _money(minor: int) -> str:
    return f"${minor / 100:.2f}"

# --- templates: each returns (email, sms body or None)

def _confirmation(n: Notification) -> tuple[EmailMessage, str | None]:
    when = _long_date(n.booking.date)
    email = EmailMessage(
        to=n.user.email,
        subject=f"Booking Confirmed - {n.pet.name}'s Session",
        text=(
            f"Hi {n.user.name},\n\n{n.pet.name}'s {n.booking.service_type} session is confirmed for "
            f"{when} ({n.booking.time_slot}) at {n.booking.location}.\n"
            "Your check-in QR code can be generated from the portal 24 hours before the session."
        ),
    )
    sms = f"GoPAWZ: {n.pet.name}'s session is confirmed for {when}. You'll receive a QR code 24hrs before. {SMS_FOOTER}"
    return email, sms

def _reminder(n: Notification) -> tuple[EmailMessage, str | None]:
    when = _long_date(n.booking.date)
    email = EmailMessage(
        to=n.user.email,
        subject=f"Reminder: {n.pet.name}'s Session Tomorrow",
        text=(
            f"Hi {n.user.name},\n\nA reminder that {n.pet.name}'s session is on {when} at {n.booking.location}.\n"
            "Generate your check-in QR code from the portal; it expires 30 minutes before the session starts."
        ),
    )
    sms = f"GoPAWZ Reminder: {n.pet.name}'s session is tomorrow at {when}. Generate your QR code at gopawz.com/portal. {SMS_FOOTER}"
    return email, sms

def _session_complete(n: Notification) -> tuple[EmailMessage, str | None]:
    text = f"Hi {n.user.name},\n\n{n.pet.name} finished the session on {_short_date(n.booking.date)}."
    if n.media_url:
        text += f"\nPhotos and videos: {n.media_url}"
    email = EmailMessage(to=n.user.email, subject=f"{n.pet.name}'s Session Complete!", text=text)
    sms = f"GoPAWZ: {n.pet.name} had a great session! Check your email for photos and videos. {SMS_FOOTER}"
    return email, sms

def _cancellation(n: Notification) -> tuple[EmailMessage, str | None]:
    text = f"Hi {n.user.name},\n\n{n.pet.name}'s session on {_long_date(n.booking.date)} has been cancelled."
    if n.refund_amount:
        text += f"\nA refund of {_money(n.refund_amount)} has been issued to your original payment method."
    email = EmailMessage(to=n.user.email, subject=f"Cancellation Confirmed - {n.pet.name}'s Session", text=text)
    return email, None

def _reschedule(n: Notification) -> tuple[EmailMessage, str | None]:
    new_when = _long_date(n.booking.date)
    email = EmailMessage(
        to=n.user.email,
        subject=f"Booking Rescheduled - {n.pet.name}'s Session",
        text=(
            f"Hi {n.user.name},\n\n{n.pet.name}'s session has moved from {_long_date(n.old_date)} "
            f"to {new_when} ({n.booking.time_slot}).\nAny QR code generated for the old time no longer works."
        ),
    )
    sms = f"GoPAWZ: {n.pet.name}'s session rescheduled to {new_when}. {SMS_FOOTER}"
    return email, sms

_TEMPLATES: dict[NotificationKind, Callable[[Notification], tuple[EmailMessage, str | None]]] = {
    NotificationKind.BOOKING_CONFIRMATION: _confirmation,
    NotificationKind.BOOKING_REMINDER: _reminder,
    NotificationKind.SESSION_COMPLETE: _session_complete,
    NotificationKind.CANCELLATION: _cancellation,
    NotificationKind.RESCHEDULE: _reschedule,
}

def compose(n: Notification) -> tuple[EmailMessage, str | None]:
    return _TEMPLATES[n.kind](n)

class HttpNotificationTransport:
    def __init__(self, config: NotificationSettings, timeout: float = 10.0):
        self.config = config
        self.timeout = timeout

    async def notify(self, notification: Notification) -> None:
        email, sms_body = compose(notification)
        phone = getattr(notification.user, "phone", None)

        if self.config.email_enabled:
            await self._send_email(email)
        else:
            logger.info(f"Email not configured, skipping: {email.subject}")

        if sms_body and phone:
            if self.config.sms_enabled:
                await self._send_sms(phone, sms_body)
            else:
                logger.info(f"SMS not configured, skipping {notification.kind.value} SMS")

    async def _send_email(self, email: EmailMessage) -> None:
        payload = {"from": self.config.email_from, "to": email.to, "subject": email.subject, "text": email.text}
        try:
            async with httpx.AsyncClient() as client:
                r = await client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.config.resend_api_key}"},
                    json=payload,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise NotificationError(f"email send failed: {e}") from e
        if r.status_code >= 400:
            raise NotificationError(f"email send failed [{r.status_code}]: {r.text}")
        logger.info(f"Email sent to {email.to}: {email.subject}")

    async def _send_sms(self, to_phone: str, body: str) -> None:
        sid = self.config.twilio_account_sid
        try:
            async with httpx.AsyncClient() as client:
                r = await client.post(
                    TWILIO_URL.format(sid=sid),
                    auth=(sid, self.config.twilio_auth_token),
                    data={"To": to_phone, "From": self.config.twilio_phone_number, "Body": body},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise NotificationError(f"SMS send failed: {e}") from e
        if r.status_code not in (200, 201):
            raise NotificationError(f"SMS send failed [{r.status_code}]: {r.text}")
        logger.info(f"SMS sent to {to_phone}")

_transport: HttpNotificationTransport | None = None
def get_notifier() -> HttpNotificationTransport:
    global _transport
    if _transport is None:
        _transport = HttpNotificationTransport(NotificationSettings.from_settings(get_settings()))
    return _transport
