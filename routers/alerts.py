"""routers/alerts.py - Price alert CRUD: create, list, read, update, delete."""

from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Header, HTTPException, Query

from config import active_alert_limit
from db import SessionLocal
from errors import AlertLimitReached
from models import AlertType, AppUser, NotificationType, PriceAlert, PriceAlertRun
from routers.common import get_app_user, http_error, page_count
from schemas.alerts import (
    BulkDeleteResponse,
    PriceAlertCreate,
    PriceAlertListResponse,
    PriceAlertOut,
    PriceAlertUpdate,
)
from schemas.bookings import Pagination
from services.notification_service import get_dispatcher

router = APIRouter()


def _active_alert_count(db, user_id: int) -> int:
    return (
        db.query(PriceAlert)
        .filter(PriceAlert.user_id == user_id, PriceAlert.is_active == True)  # noqa: E712
        .count()
    )


def _ensure_below_cap(db, user_id: int) -> None:
    limit = active_alert_limit()
    # Serialises concurrent creates for one user until commit
    db.query(AppUser.id).filter(AppUser.id == user_id).with_for_update().first()
    if _active_alert_count(db, user_id) >= limit:
        raise http_error(AlertLimitReached(f"Maximum of {limit} active price alerts reached"))


def _owned_alert(db, alert_id: str, user_id: int) -> PriceAlert:
    alert = (
        db.query(PriceAlert)
        .filter(PriceAlert.id == alert_id, PriceAlert.user_id == user_id)
        .first()
    )
    if not alert:
        raise HTTPException(status_code=404, detail={"code": "ALERT_NOT_FOUND", "message": "Alert not found"})
    return alert


@router.post("/price-alerts", response_model=PriceAlertOut, status_code=201)
def create_price_alert(payload: PriceAlertCreate, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        _ensure_below_cap(db, app_user.id)

        now = datetime.utcnow()
        alert = PriceAlert(
            id=str(uuid4()),
            user_id=app_user.id,
            alert_type=payload.alert_type.value,
            search_criteria=payload.search_criteria,
            target_price=payload.target_price,
            currency=payload.currency,
            is_active=True,
            notify_on_any_drop=payload.notify_on_any_drop,
            drop_percentage=payload.drop_percentage,
            expires_at=payload.expires_at,
            times_triggered=0,
            created_at=now,
            updated_at=now,
        )
        db.add(alert)
        db.flush()

        if payload.target_price is not None:
            message = f"We'll notify you when prices drop below {payload.currency} {payload.target_price:.2f}"
        else:
            message = "We'll notify you when prices change"

        get_dispatcher().notify(
            db,
            app_user,
            NotificationType.PRICE_ALERT.value,
            "Price Alert Created",
            message,
            action_url="/dashboard/alerts",
            metadata={"alertId": alert.id},
        )
        db.commit()
        db.refresh(alert)

        return PriceAlertOut.model_validate(alert)
    finally:
        db.close()


@router.get("/price-alerts", response_model=PriceAlertListResponse)
def list_price_alerts(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    active: Optional[bool] = None,
    type: Optional[AlertType] = None,
):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)

        query = db.query(PriceAlert).filter(PriceAlert.user_id == app_user.id)
        if active is not None:
            query = query.filter(PriceAlert.is_active == active)
        if type is not None:
            query = query.filter(PriceAlert.alert_type == type.value)

        total = query.count()
        alerts = (
            query.order_by(PriceAlert.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return PriceAlertListResponse(
            data=[PriceAlertOut.model_validate(a) for a in alerts],
            pagination=Pagination(page=page, limit=limit, total=total, totalPages=page_count(total, limit)),
        )
    finally:
        db.close()


@router.get("/price-alerts/{alert_id}", response_model=PriceAlertOut)
def get_price_alert(alert_id: str, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        return PriceAlertOut.model_validate(_owned_alert(db, alert_id, app_user.id))
    finally:
        db.close()


@router.patch("/price-alerts/{alert_id}", response_model=PriceAlertOut)
def update_price_alert(
    alert_id: str,
    payload: PriceAlertUpdate,
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        alert = _owned_alert(db, alert_id, app_user.id)

        # Re-activation counts against the cap like a new alert
        if payload.is_active is True and alert.is_active is not True:
            _ensure_below_cap(db, app_user.id)

        for field, val in payload.model_dump(exclude_unset=True).items():
            setattr(alert, field, val)

        alert.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(alert)

        return PriceAlertOut.model_validate(alert)
    finally:
        db.close()


@router.delete("/price-alerts/{alert_id}")
def delete_price_alert(alert_id: str, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        alert = _owned_alert(db, alert_id, app_user.id)

        db.query(PriceAlertRun).filter(PriceAlertRun.alert_id == alert.id).delete()
        db.delete(alert)
        db.commit()

        return {"success": True, "id": alert_id}
    finally:
        db.close()


@router.delete("/price-alerts", response_model=BulkDeleteResponse)
def delete_price_alerts(
    ids: List[str] = Query(...),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)

        owned_ids = [
            row.id
            for row in db.query(PriceAlert.id)
            .filter(PriceAlert.user_id == app_user.id, PriceAlert.id.in_(ids))
            .all()
        ]
        if owned_ids:
            db.query(PriceAlertRun).filter(PriceAlertRun.alert_id.in_(owned_ids)).delete(synchronize_session=False)
            db.query(PriceAlert).filter(PriceAlert.id.in_(owned_ids)).delete(synchronize_session=False)
        db.commit()

        return BulkDeleteResponse(deleted=len(owned_ids))
    finally:
        db.close()
