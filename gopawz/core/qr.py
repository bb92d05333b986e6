from __future__ import annotations
import base64
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from .config import get_settings

TOKEN_BYTES = 16  # 128 bits
TOKEN_PRE_EXPIRY = timedelta(minutes=30)
ISSUANCE_WINDOW = timedelta(hours=24)

QR_FILL_COLOR = "#00CED1"
QR_BACK_COLOR = "#FFFFFF"

def _now() -> datetime:
    return datetime.now(timezone.utc)

@dataclass(frozen=True)
class QRToken:
    token: str
    hash: str
    issued_at: datetime
    expires_at: datetime

def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

def generate_qr_token(booking_date: datetime, now: datetime | None = None) -> QRToken:
    """
    New check-in token for a booking. The token dies 30 minutes before the
    session starts; only `hash` may be persisted.
    """
    token = secrets.token_urlsafe(TOKEN_BYTES)
    return QRToken(
        token=token,
        hash=hash_token(token),
        issued_at=now or _now(),
        expires_at=booking_date - TOKEN_PRE_EXPIRY,
    )

def is_token_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    return (now or _now()) > expires_at

def issuance_opens_at(booking_date: datetime) -> datetime:
    return booking_date - ISSUANCE_WINDOW

def can_issue_token(booking_date: datetime, now: datetime | None = None) -> bool:
    now = now or _now()
    return issuance_opens_at(booking_date) <= now < booking_date

# --- artifact rendering

def check_in_url(token: str) -> str:
    base = get_settings().public_base_url.rstrip("/")
    return f"{base}/check-in/{token}"

def render_qr_png(url: str) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=10, border=2)
    qr.add_data(url)
    qr.make(fit=True)
    img = qr.make_image(fill_color=QR_FILL_COLOR, back_color=QR_BACK_COLOR)
    b = BytesIO(); img.save(b, format="PNG")
    return b.getvalue()

def render_qr_data_url(url: str) -> str:
    encoded = base64.b64encode(render_qr_png(url)).decode("ascii")
    return f"data:image/png;base64,{encoded}"
