"""routers/common.py - Caller resolution, the admin token guard and domain error to HTTP mapping."""

from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

import config

from errors import (
    AlertLimitReached,
    BookingError,
    BookingNotFound,
    ConfigurationError,
    GatewayUnavailable,
    InvalidAmount,
    InvalidSignature,
    InvalidTransition,
    PaymentNotFound,
    ValidationError,
)
from models import AppUser

# Most specific class first, isinstance order matters for subclasses
_STATUS_BY_ERROR = (
    (InvalidAmount, 400),
    (ValidationError, 422),
    (InvalidSignature, 400),
    (BookingNotFound, 404),
    (PaymentNotFound, 404),
    (InvalidTransition, 409),
    (AlertLimitReached, 403),
    (GatewayUnavailable, 502),
    (ConfigurationError, 500),
)


def status_for(err: BookingError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(err, cls):
            return status
    return 500


def http_error(err: BookingError) -> HTTPException:
    return HTTPException(status_code=status_for(err), detail=err.to_detail())


def get_app_user(db: Session, x_user_id: Optional[str]) -> AppUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail={"code": "UNAUTHORIZED", "message": "X-User-Id header required"})

    app_user = db.query(AppUser).filter(AppUser.external_id == x_user_id).first()
    if not app_user or app_user.anonymized_at is not None:
        raise HTTPException(status_code=403, detail={"code": "UNKNOWN_USER", "message": "Unknown user"})
    return app_user


def page_count(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit else 0


def require_admin(x_admin_token: Optional[str]) -> None:
    received = (x_admin_token or "").strip()
    expected = (config.ADMIN_API_TOKEN or "").strip()

    if received.lower().startswith("bearer "):
        received = received[7:].strip()

    if expected == "":
        raise HTTPException(status_code=500, detail={"code": "CONFIGURATION_ERROR", "message": "Admin token not configured"})
    if received != expected:
        raise HTTPException(status_code=401, detail={"code": "UNAUTHORIZED", "message": "Invalid admin token"})
