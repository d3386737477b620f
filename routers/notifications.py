"""routers/notifications.py - In-app notification inbox."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query

from db import SessionLocal
from models import Notification
from routers.common import get_app_user, page_count
from schemas.bookings import Pagination
from schemas.notifications import MarkReadResponse, NotificationListResponse, NotificationOut

router = APIRouter()


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread: bool = False,
):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)

        base = db.query(Notification).filter(Notification.user_id == app_user.id)
        unread_count = base.filter(Notification.is_read == False).count()  # noqa: E712

        query = base.filter(Notification.is_read == False) if unread else base  # noqa: E712
        total = query.count()
        rows = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return NotificationListResponse(
            data=[NotificationOut.model_validate(n) for n in rows],
            pagination=Pagination(page=page, limit=limit, total=total, totalPages=page_count(total, limit)),
            unread_count=unread_count,
        )
    finally:
        db.close()


@router.post("/notifications/{notification_id}/read", response_model=MarkReadResponse)
def mark_notification_read(notification_id: int, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)

        notification = (
            db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == app_user.id)
            .first()
        )
        if not notification:
            raise HTTPException(status_code=404, detail={"code": "NOTIFICATION_NOT_FOUND", "message": "Notification not found"})

        updated = 0
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.utcnow()
            updated = 1
        db.commit()

        return MarkReadResponse(updated=updated)
    finally:
        db.close()


@router.post("/notifications/read-all", response_model=MarkReadResponse)
def mark_all_notifications_read(x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)

        updated = (
            db.query(Notification)
            .filter(Notification.user_id == app_user.id, Notification.is_read == False)  # noqa: E712
            .update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
        )
        db.commit()

        return MarkReadResponse(updated=updated)
    finally:
        db.close()
