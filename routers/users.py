"""routers/users.py - User sync, profile, and privacy (export / erasure) endpoints."""

import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Header, HTTPException
from sqlalchemy import func

from config import active_alert_limit
from db import SessionLocal
from models import AppUser, Booking, Notification, Payment, PriceAlert
from routers.common import get_app_user
from schemas.users import (
    PreferencesUpdate,
    PrivacyDeleteResponse,
    PrivacyExport,
    ProfileResponse,
    ProfileUser,
    UserSyncPayload,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _profile_user(user: AppUser) -> ProfileUser:
    return ProfileUser(
        id=user.id,
        external_id=user.external_id,
        email=user.email,
        name=user.name,
        email_notifications_enabled=bool(user.email_notifications_enabled),
        created_at=user.created_at,
    )


def _row_dict(row, fields) -> dict:
    out = {}
    for f in fields:
        val = getattr(row, f, None)
        if hasattr(val, "isoformat"):
            val = val.isoformat()
        out[f] = val
    return out


@router.post("/user-sync")
def user_sync(payload: UserSyncPayload):
    external_id = payload.external_id.strip()
    if not external_id:
        raise HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "message": "Missing external_id"})

    email_norm = payload.email.strip().lower() if payload.email else None

    db = SessionLocal()
    try:
        user = db.query(AppUser).filter(AppUser.external_id == external_id).first()

        # Same email, new external_id
        if user is None and email_norm:
            user = db.query(AppUser).filter(func.lower(AppUser.email) == email_norm).first()
            if user is not None:
                user.external_id = external_id

        if user is None:
            user = AppUser(
                external_id=external_id,
                email=email_norm,
                name=payload.name,
                loyalty_points=0,
                email_notifications_enabled=True,
            )
            db.add(user)
        elif user.anonymized_at is not None:
            raise HTTPException(status_code=409, detail={"code": "USER_ERASED", "message": "User was erased"})
        else:
            if email_norm:
                user.email = email_norm
            if payload.name:
                user.name = payload.name

        db.commit()
        db.refresh(user)
        logger.info(f"[users] synced external_id={external_id} id={user.id}")
        return {"status": "ok", "id": user.id}
    except HTTPException:
        raise
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("/profile", response_model=ProfileResponse)
def get_profile(x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)

        active_alerts = (
            db.query(PriceAlert)
            .filter(PriceAlert.user_id == app_user.id, PriceAlert.is_active == True)  # noqa: E712
            .count()
        )
        unread = (
            db.query(Notification)
            .filter(Notification.user_id == app_user.id, Notification.is_read == False)  # noqa: E712
            .count()
        )

        return ProfileResponse(
            user=_profile_user(app_user),
            loyalty_points=int(app_user.loyalty_points or 0),
            active_alerts=active_alerts,
            active_alert_limit=active_alert_limit(),
            unread_notifications=unread,
        )
    finally:
        db.close()


@router.patch("/profile/preferences", response_model=ProfileUser)
def update_preferences(payload: PreferencesUpdate, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        for field, val in payload.model_dump(exclude_unset=True).items():
            if val is not None:
                setattr(app_user, field, val)
        db.commit()
        db.refresh(app_user)
        return _profile_user(app_user)
    finally:
        db.close()


# =====================================================================
# SECTION: PRIVACY
# =====================================================================

@router.get("/user/privacy", response_model=PrivacyExport)
def export_user_data(x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)

        bookings = db.query(Booking).filter(Booking.user_id == app_user.id).order_by(Booking.id).all()
        payments = db.query(Payment).filter(Payment.user_id == app_user.id).order_by(Payment.id).all()
        alerts = db.query(PriceAlert).filter(PriceAlert.user_id == app_user.id).order_by(PriceAlert.created_at).all()
        notifications = (
            db.query(Notification)
            .filter(Notification.user_id == app_user.id)
            .order_by(Notification.id)
            .all()
        )

        return PrivacyExport(
            exported_at=datetime.utcnow(),
            user=_profile_user(app_user),
            loyalty_points=int(app_user.loyalty_points or 0),
            bookings=[
                _row_dict(b, ("id", "reference", "booking_type", "status", "payment_status",
                              "total_amount", "currency", "travel_date", "return_date",
                              "loyalty_points_earned", "details", "created_at"))
                for b in bookings
            ],
            payments=[
                _row_dict(p, ("id", "transaction_id", "booking_id", "amount", "currency", "method",
                              "status", "refund_amount", "refunded_at", "created_at"))
                for p in payments
            ],
            price_alerts=[
                _row_dict(a, ("id", "alert_type", "search_criteria", "target_price", "currency",
                              "is_active", "times_triggered", "created_at"))
                for a in alerts
            ],
            notifications=[
                _row_dict(n, ("id", "type", "title", "message", "is_read", "created_at"))
                for n in notifications
            ],
        )
    finally:
        db.close()


@router.delete("/user/privacy", response_model=PrivacyDeleteResponse)
def erase_user_data(x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    """
    Anonymize rather than delete. Bookings and payments stay for accounting,
    personal fields are blanked, alerts stop and the inbox is cleared.
    """
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        now = datetime.utcnow()

        try:
            db.query(PriceAlert).filter(PriceAlert.user_id == app_user.id).update(
                {"is_active": False, "updated_at": now}, synchronize_session=False
            )
            db.query(Notification).filter(Notification.user_id == app_user.id).delete(synchronize_session=False)

            app_user.external_id = f"erased-{uuid4().hex}"
            app_user.email = None
            app_user.name = None
            app_user.email_notifications_enabled = False
            app_user.anonymized_at = now
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"[users] anonymized user id={app_user.id}")
        return PrivacyDeleteResponse(anonymized_at=now)
    finally:
        db.close()
