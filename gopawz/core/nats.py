from __future__ import annotations
import json
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, max_reconnect_attempts=1, connect_timeout=2)

async def nats_close():
    if _nats.is_connected:
        await _nats.drain()

async def _publish(subject: str, evt: dict):
    if not _settings.nats_enabled:
        return
    await nats_connect()
    await _nats.publish(subject, json.dumps(evt, default=str).encode("utf-8"))

async def publish_checkin(evt: dict):
    """
    evt = {
      "booking_id": str,
      "user_id": str,
      "pet_id": str,
      "checked_in_at": iso8601,
      "scanned_by": str,
      "idempotency_key": "checkin:booking_id"
    }
    """
    await _publish(_settings.nats_subject_checkin, evt)

async def publish_booking_event(evt: dict):
    """evt = {"event": "cancelled" | "rescheduled" | "completed", "booking_id": str, ...}"""
    await _publish(_settings.nats_subject_booking, evt)
