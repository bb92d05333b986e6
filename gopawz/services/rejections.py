from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

class Reason(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    WINDOW_TOO_CLOSE = "WINDOW_TOO_CLOSE"
    TOO_EARLY = "TOO_EARLY"
    WINDOW_CLOSED = "WINDOW_CLOSED"
    ACTIVE_TOKEN_EXISTS = "ACTIVE_TOKEN_EXISTS"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_MISMATCH = "TOKEN_MISMATCH"
    REFUND_FAILED = "REFUND_FAILED"

@dataclass(frozen=True)
class Rejection:
    """
    Expected policy outcome, returned (never raised) to the caller.
    Carries whatever structured data the caller needs to render a precise message.
    """
    reason: Reason
    message: str
    state: str | None = None
    hours_remaining: float | None = None
    valid_from: datetime | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None
    checked_in_at: datetime | None = None
    detail: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.reason.value, "message": self.message}
        for key in ("state", "hours_remaining", "detail"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        for key in ("valid_from", "issued_at", "expires_at", "checked_in_at"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value.isoformat()
        out.update(self.extra)
        return out

def not_found(what: str = "Booking") -> Rejection:
    return Rejection(Reason.NOT_FOUND, f"{what} not found")

def validation_failed(message: str) -> Rejection:
    return Rejection(Reason.VALIDATION_FAILED, message)

def already_terminal(state: str) -> Rejection:
    return Rejection(Reason.ALREADY_TERMINAL, f"Booking is already {state}", state=state)
