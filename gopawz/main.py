from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .db import init_db, dispose_db, async_session_maker
from .core.config import get_settings
from .core.notifications import get_notifier
from .core.redis import close_redis, ping_redis
from .core.nats import nats_connect, nats_close
from .errors import install_error_handlers
from .models import utcnow
from .repository import SqlBookingRepository
from .routers import bookings, checkins, qr
from .services.reminders import send_due_reminders

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

async def remind_upcoming_sessions():
    try:
        async with async_session_maker() as db:
            await send_due_reminders(
                SqlBookingRepository(db), get_notifier(),
                now=utcnow(), lead=timedelta(hours=settings.reminder_lead_hours),
            )
    except Exception as e:
        logger.error(f"Reminder sweep failed: {e}")

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.nats_enabled:
        try:
            await nats_connect()
        except Exception as e:
            logger.warning(f"NATS unavailable, booking events will be dropped: {e}")
    if settings.rl_enabled and not await ping_redis():
        logger.warning("Redis unavailable, scan rate limiting is degraded")

    # Cron: sweep for sessions starting within the reminder lead time
    if settings.reminders_enabled:
        scheduler.add_job(remind_upcoming_sessions, "interval", seconds=settings.reminder_interval_seconds)
        scheduler.start()

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    try:
        await nats_close()
    except Exception as e:
        logger.warning(f"NATS close failed: {e}")
    await close_redis()
    await dispose_db()

app = FastAPI(title="gopawz-bookings", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5000",
        "http://127.0.0.1:5000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)
app.include_router(bookings.router)
app.include_router(qr.router)
app.include_router(checkins.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "gopawz-bookings"}

Instrumentator().instrument(app).expose(app)
