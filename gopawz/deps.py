from __future__ import annotations
from typing import Any, Dict, AsyncGenerator
from fastapi import Depends, Header, HTTPException, status
import time
import httpx
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .core.config import get_settings
from .core.notifications import get_notifier
from .core.payments import get_payments
from .repository import SqlBookingRepository
from .services.checkins import CheckinValidator
from .services.lifecycle import BookingLifecycle
from .services.tokens import TokenIssuanceService

settings = get_settings()

STAFF_ROLES = ("staff", "admin")

_JWKS: Dict[str, Any] | None = None
_JWKS_TS: float = 0.0
_JWKS_TTL: int = 3600

async def fetch_jwks() -> Dict[str, Any]:
    global _JWKS, _JWKS_TS
    now = time.time()
    if _JWKS is None or (now - _JWKS_TS) > _JWKS_TTL:
        async with httpx.AsyncClient() as client:
            r = await client.get(settings.auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _JWKS = r.json()
            _JWKS_TS = now
    return _JWKS

async def get_signing_key():
    from jwt.algorithms import RSAAlgorithm
    jwks = await fetch_jwks()
    key = jwks["keys"][0]
    return RSAAlgorithm.from_jwk(key)

async def get_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    key = await get_signing_key()
    try:
        payload = jwt.decode(token, key=key, algorithms=["RS256"], options={"verify_aud": False})
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if "sub" not in payload or "role" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return payload

async def require_staff(claims: dict = Depends(get_claims)) -> Dict[str, Any]:
    if claims.get("role") not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff role required")
    return claims

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for s in get_session():
        yield s

# --- service wiring ---

def get_repo(db: AsyncSession = Depends(get_db)) -> SqlBookingRepository:
    return SqlBookingRepository(db)

def get_token_service(repo: SqlBookingRepository = Depends(get_repo)) -> TokenIssuanceService:
    return TokenIssuanceService(repo)

def get_validator(repo: SqlBookingRepository = Depends(get_repo)) -> CheckinValidator:
    return CheckinValidator(repo)

def get_lifecycle(repo: SqlBookingRepository = Depends(get_repo)) -> BookingLifecycle:
    return BookingLifecycle(repo, get_payments(), get_notifier())
