from __future__ import annotations
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.nats import publish_booking_event
from ..deps import STAFF_ROLES, get_claims, get_lifecycle, get_repo, require_staff
from ..errors import rejection_to_http
from ..repository import SqlBookingRepository
from ..schemas import BookingCreate, BookingRead, CancelResponse, CompleteRequest, RefundRead, RescheduleRequest
from ..services.lifecycle import BookingLifecycle
from ..services.rejections import Rejection, not_found

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])

def _ensure_self_or_staff(claims: dict, user_id: uuid.UUID) -> None:
    if claims.get("role") not in STAFF_ROLES and str(user_id) != claims["sub"]:
        raise HTTPException(status_code=403, detail="Not your booking")

async def _get_owned(claims: dict, repo: SqlBookingRepository, booking_id: uuid.UUID):
    booking = await repo.get_booking(booking_id)
    if booking is None:
        raise rejection_to_http(not_found())
    _ensure_self_or_staff(claims, booking.user_id)
    return booking

async def _publish(event: str, booking) -> None:
    try:
        await publish_booking_event({
            "event": event,
            "booking_id": str(booking.id),
            "user_id": str(booking.user_id),
            "status": booking.status.value,
            "date": booking.date.isoformat(),
        })
    except Exception as e:
        logger.warning(f"Booking event {event} for {booking.id} not published: {e}")

@router.post("", response_model=BookingRead, status_code=201)
async def create_booking(
    payload: BookingCreate,
    claims: dict = Depends(get_claims),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    _ensure_self_or_staff(claims, payload.user_id)
    result = await lifecycle.create(**payload.model_dump())
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    return BookingRead.model_validate(result)

@router.get("/users/{user_id}", response_model=list[BookingRead])
async def list_user_bookings(
    user_id: uuid.UUID,
    upcoming: bool = Query(False),
    claims: dict = Depends(get_claims),
    repo: SqlBookingRepository = Depends(get_repo),
):
    _ensure_self_or_staff(claims, user_id)
    rows = await repo.list_bookings_for_user(user_id, upcoming_only=upcoming)
    return [BookingRead.model_validate(r) for r in rows]

@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    booking_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    repo: SqlBookingRepository = Depends(get_repo),
):
    return BookingRead.model_validate(await _get_owned(claims, repo, booking_id))

@router.post("/{booking_id}/cancel", response_model=CancelResponse)
async def cancel_booking(
    booking_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    repo: SqlBookingRepository = Depends(get_repo),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    await _get_owned(claims, repo, booking_id)
    result = await lifecycle.cancel(booking_id)
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    await _publish("cancelled", result.booking)
    refund = result.refund
    message = "Booking cancelled"
    if refund and refund.amount:
        message += f", ${refund.amount / 100:.2f} will be refunded"
    return CancelResponse(
        booking=BookingRead.model_validate(result.booking),
        refund=RefundRead(refund_id=refund.refund_id, amount=refund.amount, status=refund.status) if refund else None,
        message=message,
    )

@router.post("/{booking_id}/reschedule", response_model=BookingRead)
async def reschedule_booking(
    booking_id: uuid.UUID,
    payload: RescheduleRequest,
    claims: dict = Depends(get_claims),
    repo: SqlBookingRepository = Depends(get_repo),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    await _get_owned(claims, repo, booking_id)
    result = await lifecycle.reschedule(booking_id, payload.new_date, payload.new_time_slot)
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    await _publish("rescheduled", result)
    return BookingRead.model_validate(result)

@router.post("/{booking_id}/complete", response_model=BookingRead)
async def complete_booking(
    booking_id: uuid.UUID,
    payload: CompleteRequest | None = None,
    claims: dict = Depends(require_staff),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    result = await lifecycle.complete(booking_id, media_url=payload.media_url if payload else None)
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    await _publish("completed", result)
    return BookingRead.model_validate(result)
