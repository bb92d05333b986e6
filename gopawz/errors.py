from __future__ import annotations
import logging

import httpx
import redis
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .services.rejections import Reason, Rejection

logger = logging.getLogger(__name__)

HTTP_STATUS = {
    Reason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    Reason.VALIDATION_FAILED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    Reason.INVALID_TOKEN: status.HTTP_404_NOT_FOUND,
    Reason.ALREADY_CHECKED_IN: status.HTTP_409_CONFLICT,
    Reason.ACTIVE_TOKEN_EXISTS: status.HTTP_409_CONFLICT,
    Reason.ALREADY_TERMINAL: status.HTTP_409_CONFLICT,
    Reason.TOKEN_MISMATCH: status.HTTP_409_CONFLICT,
    Reason.TOKEN_EXPIRED: status.HTTP_410_GONE,
    Reason.TOO_EARLY: status.HTTP_400_BAD_REQUEST,
    Reason.WINDOW_CLOSED: status.HTTP_400_BAD_REQUEST,
    Reason.WINDOW_TOO_CLOSE: status.HTTP_400_BAD_REQUEST,
    Reason.REFUND_FAILED: status.HTTP_502_BAD_GATEWAY,
}

def rejection_to_http(rej: Rejection) -> HTTPException:
    return HTTPException(status_code=HTTP_STATUS[rej.reason], detail=rej.to_dict())

async def _service_unavailable(request: Request, exc: Exception):
    logger.exception(f"Unexpected failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": {"error": "SERVICE_UNAVAILABLE", "message": "Service temporarily unavailable"}},
    )

def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SQLAlchemyError, _service_unavailable)
    app.add_exception_handler(httpx.HTTPError, _service_unavailable)
    app.add_exception_handler(redis.RedisError, _service_unavailable)
