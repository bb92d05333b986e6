from __future__ import annotations
from typing import Annotated, Literal
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from .models import AuditOutcome, BookingStatus

Str255 = Annotated[str, Field(min_length=1, max_length=255)]
ServiceType = Literal["express", "standard", "pro"]

# ---- Bookings ----
class BookingCreate(BaseModel):
    user_id: UUID
    pet_id: UUID
    service_type: ServiceType
    date: datetime
    time_slot: Str255
    location: Str255
    price: int = Field(ge=0)  # minor units
    payment_id: UUID | None = None
    notes: str | None = None

class BookingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    pet_id: UUID
    service_type: str
    date: datetime
    time_slot: str
    location: str
    price: int
    status: BookingStatus
    payment_id: UUID | None = None
    notes: str | None = None
    qr_token_issued_at: datetime | None = None
    qr_token_expires_at: datetime | None = None
    checked_in_at: datetime | None = None
    check_in_verified_by: str | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    media_url: str | None = None

class RescheduleRequest(BaseModel):
    new_date: datetime
    new_time_slot: Str255

class CompleteRequest(BaseModel):
    media_url: str | None = None

class RefundRead(BaseModel):
    refund_id: str
    amount: int
    status: str

class CancelResponse(BaseModel):
    booking: BookingRead
    refund: RefundRead | None = None
    message: str

# ---- QR tokens ----
class QRTokenRequest(BaseModel):
    force_regenerate: bool = False

class QRTokenResponse(BaseModel):
    token: str
    check_in_url: str
    qr_code_image: str  # PNG data URL
    issued_at: datetime
    expires_at: datetime

class QRStatusResponse(BaseModel):
    can_issue_token: bool
    has_active_token: bool
    token_issued_at: datetime | None = None
    token_expires_at: datetime | None = None
    booking_status: BookingStatus
    checked_in_at: datetime | None = None

# ---- Check-in ----
class ScanRequest(BaseModel):
    token: Str255
    scanner_location: str | None = "mobile-gym"

class PetRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    breed: str

class ScanResponse(BaseModel):
    success: bool = True
    message: str
    booking: BookingRead
    pet: PetRead | None = None
    checked_in_at: datetime

class AuditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    outcome: AuditOutcome
    scanned_by: str
    scan_location: str | None = None
    scanned_at: datetime
