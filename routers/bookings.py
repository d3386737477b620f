"""routers/bookings.py - Booking checkout initiation, listing and cancellation."""

from typing import Optional

from fastapi import APIRouter, Header, Query

from db import SessionLocal
from errors import BookingError
from models import Booking, BookingStatus
from routers.common import get_app_user, http_error, page_count
from schemas.bookings import BookingCreate, BookingListResponse, BookingOut, Pagination
from services.booking_service import cancel_booking, create_booking, get_booking_for_user

router = APIRouter()


@router.post("/bookings", response_model=BookingOut, status_code=201)
def create_booking_route(payload: BookingCreate, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        booking = create_booking(db, app_user, payload)
        return BookingOut.model_validate(booking)
    finally:
        db.close()


@router.get("/bookings", response_model=BookingListResponse)
def list_bookings(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[BookingStatus] = None,
):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)

        query = db.query(Booking).filter(Booking.user_id == app_user.id)
        if status is not None:
            query = query.filter(Booking.status == status.value)

        total = query.count()
        bookings = (
            query.order_by(Booking.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return BookingListResponse(
            data=[BookingOut.model_validate(b) for b in bookings],
            pagination=Pagination(page=page, limit=limit, total=total, totalPages=page_count(total, limit)),
        )
    finally:
        db.close()


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: int, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        try:
            booking = get_booking_for_user(db, booking_id, app_user)
        except BookingError as e:
            raise http_error(e)
        return BookingOut.model_validate(booking)
    finally:
        db.close()


@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking_route(booking_id: int, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        try:
            booking = get_booking_for_user(db, booking_id, app_user)
            booking = cancel_booking(db, booking, app_user)
        except BookingError as e:
            raise http_error(e)
        db.refresh(booking)
        return BookingOut.model_validate(booking)
    finally:
        db.close()
