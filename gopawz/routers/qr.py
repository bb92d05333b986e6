from __future__ import annotations
import uuid
from fastapi import APIRouter, Depends, HTTPException, Response

from ..core.qr import render_qr_png
from ..deps import STAFF_ROLES, get_claims, get_repo, get_token_service
from ..errors import rejection_to_http
from ..repository import SqlBookingRepository
from ..schemas import QRStatusResponse, QRTokenRequest, QRTokenResponse
from ..services.rejections import Rejection, not_found
from ..services.tokens import TokenIssuanceService

router = APIRouter(prefix="/bookings", tags=["qr"])

async def _ensure_owner_or_staff(claims: dict, repo: SqlBookingRepository, booking_id: uuid.UUID) -> None:
    booking = await repo.get_booking(booking_id)
    if booking is None:
        raise rejection_to_http(not_found())
    if claims.get("role") not in STAFF_ROLES and str(booking.user_id) != claims["sub"]:
        raise HTTPException(status_code=403, detail="Not your booking")

# --- 1) Customer generates (or regenerates) the check-in QR for a booking
@router.post("/{booking_id}/qr-token", response_model=QRTokenResponse, status_code=201)
async def issue_qr_token(
    booking_id: uuid.UUID,
    payload: QRTokenRequest | None = None,
    claims: dict = Depends(get_claims),
    repo: SqlBookingRepository = Depends(get_repo),
    tokens: TokenIssuanceService = Depends(get_token_service),
):
    await _ensure_owner_or_staff(claims, repo, booking_id)
    force = payload.force_regenerate if payload else False
    result = await tokens.issue(booking_id, force_regenerate=force)
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    return QRTokenResponse(
        token=result.token,
        check_in_url=result.check_in_url,
        qr_code_image=result.artifact,
        issued_at=result.issued_at,
        expires_at=result.expires_at,
    )

# --- 2) What the portal shows before/after generating
@router.get("/{booking_id}/qr-status", response_model=QRStatusResponse)
async def qr_status(
    booking_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    repo: SqlBookingRepository = Depends(get_repo),
    tokens: TokenIssuanceService = Depends(get_token_service),
):
    await _ensure_owner_or_staff(claims, repo, booking_id)
    st = await tokens.status(booking_id)
    if isinstance(st, Rejection):
        raise rejection_to_http(st)
    return QRStatusResponse(
        can_issue_token=st.can_issue,
        has_active_token=st.has_active_token,
        token_issued_at=st.issued_at,
        token_expires_at=st.expires_at,
        booking_status=st.booking_status,
        checked_in_at=st.checked_in_at,
    )

# --- 3) Same issuance, answered with the raw PNG (kiosk / printing)
@router.post("/{booking_id}/qr.png", status_code=201)
async def issue_qr_png(
    booking_id: uuid.UUID,
    payload: QRTokenRequest | None = None,
    claims: dict = Depends(get_claims),
    repo: SqlBookingRepository = Depends(get_repo),
    tokens: TokenIssuanceService = Depends(get_token_service),
):
    await _ensure_owner_or_staff(claims, repo, booking_id)
    force = payload.force_regenerate if payload else False
    result = await tokens.issue(booking_id, force_regenerate=force)
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    return Response(
        content=render_qr_png(result.check_in_url),
        status_code=201,
        media_type="image/png",
        headers={"Cache-Control": "no-store"},
    )
