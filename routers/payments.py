"""routers/payments.py - Payment intents, hosted checkout sessions and refunds."""

from typing import Optional

from fastapi import APIRouter, Header

from db import SessionLocal
from errors import BookingError
from routers.common import get_app_user, http_error, require_admin
from schemas.payments import (
    CheckoutSessionCreate,
    CheckoutSessionOut,
    PaymentIntentCreate,
    PaymentIntentOut,
    RefundCreate,
    RefundOut,
)
from services.booking_service import get_booking_for_user
from services import payment_service

router = APIRouter()


@router.post("/payments/intent", response_model=PaymentIntentOut)
def create_payment_intent(payload: PaymentIntentCreate, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        try:
            # Amount and currency always come from the booking, never the client
            booking = get_booking_for_user(db, payload.booking_id, app_user)
            result = payment_service.create_payment_intent(
                db,
                booking.total_amount,
                booking.currency,
                booking.id,
                app_user,
                metadata=payload.metadata,
            )
        except BookingError as e:
            raise http_error(e)
        return PaymentIntentOut(**result)
    finally:
        db.close()


@router.post("/payments/checkout-session", response_model=CheckoutSessionOut)
def create_checkout_session(payload: CheckoutSessionCreate, x_user_id: Optional[str] = Header(None, alias="X-User-Id")):
    db = SessionLocal()
    try:
        app_user = get_app_user(db, x_user_id)
        try:
            result = payment_service.create_checkout_session(
                db,
                payload.booking_id,
                app_user,
                [item.model_dump() for item in payload.line_items],
                payload.success_url,
                payload.cancel_url,
            )
        except BookingError as e:
            raise http_error(e)
        return CheckoutSessionOut(**result)
    finally:
        db.close()


# Operator only, guarded by the admin token
@router.post("/payments/refund", response_model=RefundOut)
def create_refund(payload: RefundCreate, x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")):
    require_admin(x_admin_token)

    db = SessionLocal()
    try:
        try:
            result = payment_service.process_refund(
                db,
                payload.payment_intent_id,
                amount=payload.amount,
                reason=payload.reason,
            )
        except BookingError as e:
            raise http_error(e)
        return RefundOut(**result)
    finally:
        db.close()
