from __future__ import annotations
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, Request

from ..core.nats import publish_checkin
from ..core.redis import allow_request
from ..deps import get_repo, get_validator, require_staff
from ..errors import rejection_to_http
from ..repository import SqlBookingRepository
from ..schemas import AuditRead, BookingRead, PetRead, ScanRequest, ScanResponse
from ..services.checkins import CheckinValidator
from ..services.rejections import Rejection

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/check-in", tags=["checkin"])

# --- 1) Staff scans a customer's QR: verify + transition to checked_in, audited either way
@router.post("/scan", response_model=ScanResponse)
async def scan_and_checkin(
    payload: ScanRequest,
    request: Request,
    claims: dict = Depends(require_staff),
    validator: CheckinValidator = Depends(get_validator),
):
    # basic rate-limit per IP on scan
    ip = request.client.host if request.client else "unknown"
    if not await allow_request(ip, "checkin.scan"):
        raise HTTPException(status_code=429, detail="Too many requests")

    result = await validator.scan(payload.token, scanned_by=claims["sub"], scan_location=payload.scanner_location)
    if isinstance(result, Rejection):
        raise rejection_to_http(result)

    booking = result.booking
    try:
        await publish_checkin({
            "booking_id": str(booking.id),
            "user_id": str(booking.user_id),
            "pet_id": str(booking.pet_id),
            "checked_in_at": result.checked_in_at.isoformat(),
            "scanned_by": claims["sub"],
            "idempotency_key": f"checkin:{booking.id}",
        })
    except Exception as e:
        # non-fatal for the check-in HTTP response
        logger.warning(f"Check-in event for booking {booking.id} not published: {e}")

    pet_name = result.pet.name if result.pet else "Pet"
    return ScanResponse(
        message=f"{pet_name} checked in successfully",
        booking=BookingRead.model_validate(booking),
        pet=PetRead.model_validate(result.pet) if result.pet else None,
        checked_in_at=result.checked_in_at,
    )

# --- 2) Chronological scan history for a booking (disputes)
@router.get("/bookings/{booking_id}/audit", response_model=list[AuditRead])
async def audit_trail(
    booking_id: uuid.UUID,
    claims: dict = Depends(require_staff),
    repo: SqlBookingRepository = Depends(get_repo),
):
    rows = await repo.list_audit_entries(booking_id)
    return [AuditRead.model_validate(r) for r in rows]
