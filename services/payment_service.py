"""
services/payment_service.py

Payment gateway adapter:
- create_payment_intent: PENDING payment row first, then the gateway call
- create_checkout_session: hosted checkout, local state arrives by webhook
- process_refund: gateway refund, then the local transition through the booking state store

Amounts enter in major units and leave for the gateway as integer minor units.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from config import MINOR_UNIT_SCALE
from errors import GatewayUnavailable, InvalidAmount, InvalidTransition, PaymentNotFound, ValidationError
from models import AppUser, BookingStatus, Payment, PaymentStatus
from providers.factory import get_payment_gateway
from schemas.payments import PaymentEvent
from services.booking_service import apply_payment_event, get_booking_for_user

logger = logging.getLogger(__name__)


# =====================================================================
# SECTION: AMOUNTS
# =====================================================================

def to_minor_units(amount) -> int:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmount(f"Amount {amount!r} is not a number")
    if not math.isfinite(value) or value <= 0:
        raise InvalidAmount(f"Amount {amount!r} must be a positive finite number")
    return int(round(value * MINOR_UNIT_SCALE))


def from_minor_units(amount_minor: Optional[int]) -> Optional[float]:
    if amount_minor is None:
        return None
    return round(int(amount_minor) / MINOR_UNIT_SCALE, 2)


# =====================================================================
# SECTION: PAYMENT INTENTS
# =====================================================================

def create_payment_intent(
    db: Session,
    amount,
    currency: str,
    booking_id: int,
    user: AppUser,
    metadata: Optional[Dict[str, str]] = None,
    gateway=None,
) -> Dict[str, Any]:
    """
    Returns {"client_secret", "payment_intent_id"}.

    The PENDING payment row is committed before the gateway is called, keyed by
    a provisional transaction id that doubles as the gateway idempotency key,
    and re-keyed to the real intent id afterwards.
    """
    amount_minor = to_minor_units(amount)
    booking = get_booking_for_user(db, booking_id, user)
    if booking.status not in (BookingStatus.PENDING.value, BookingStatus.FAILED.value):
        raise InvalidTransition(f"Booking {booking.reference} is {booking.status}, nothing to pay")

    gateway = gateway or get_payment_gateway()
    provisional_id = f"pending_{uuid4().hex}"
    now = datetime.utcnow()

    payment = Payment(
        transaction_id=provisional_id,
        booking_id=booking.id,
        user_id=user.id,
        amount=float(amount),
        currency=currency.upper(),
        method="CREDIT_CARD",
        gateway_provider=gateway.name,
        status=PaymentStatus.PENDING.value,
        gateway_response={"metadata": metadata or {}},
        created_at=now,
        updated_at=now,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)

    gateway_metadata = {
        **(metadata or {}),
        "bookingId": str(booking.id),
        "bookingReference": booking.reference,
        "userId": str(user.id),
    }

    try:
        intent = gateway.create_payment_intent(
            amount_minor,
            currency,
            gateway_metadata,
            idempotency_key=provisional_id,
        )
    except GatewayUnavailable as e:
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = str(e)
        payment.updated_at = datetime.utcnow()
        db.commit()
        raise

    payment.transaction_id = intent["id"]
    payment.updated_at = datetime.utcnow()
    db.commit()

    logger.info(
        f"[payments] intent created payment_intent={intent['id']} booking={booking.reference} "
        f"amount_minor={amount_minor} {currency.upper()}"
    )
    return {"client_secret": intent.get("client_secret"), "payment_intent_id": intent["id"]}


# =====================================================================
# SECTION: HOSTED CHECKOUT
# =====================================================================

def create_checkout_session(
    db: Session,
    booking_id: int,
    user: AppUser,
    line_items: List[Dict[str, Any]],
    success_url: str,
    cancel_url: str,
    gateway=None,
) -> Dict[str, Any]:
    """
    Returns {"session_id", "url"}. Nothing is written locally, the payment row
    is created when checkout.session.completed comes in.
    """
    booking = get_booking_for_user(db, booking_id, user)
    if booking.status not in (BookingStatus.PENDING.value, BookingStatus.FAILED.value):
        raise InvalidTransition(f"Booking {booking.reference} is {booking.status}, nothing to pay")

    gateway = gateway or get_payment_gateway()
    metadata = {"bookingId": str(booking.id), "userId": str(user.id)}

    session = gateway.create_checkout_session(
        line_items,
        success_url,
        cancel_url,
        metadata,
        customer_email=user.email,
    )

    logger.info(f"[payments] checkout session created session={session['id']} booking={booking.reference}")
    return {"session_id": session["id"], "url": session.get("url")}


# =====================================================================
# SECTION: REFUNDS
# =====================================================================

def process_refund(
    db: Session,
    payment_intent_id: str,
    amount: Optional[float] = None,
    reason: Optional[str] = None,
    gateway=None,
) -> Dict[str, Any]:
    """
    Partial iff amount is below what is left unrefunded; more than that is
    rejected before the gateway call. The local change goes through
    apply_payment_event, so the charge.refunded webhook that follows is stale.
    """
    payment = db.query(Payment).filter(Payment.transaction_id == payment_intent_id).first()
    if payment is None:
        raise PaymentNotFound(f"No payment for transaction {payment_intent_id}")

    if payment.status not in (PaymentStatus.COMPLETED.value, PaymentStatus.PARTIALLY_REFUNDED.value):
        raise InvalidTransition(f"Payment {payment_intent_id} is {payment.status}, nothing to refund")

    paid_minor = to_minor_units(payment.amount)
    remaining_minor = paid_minor - int(round(float(payment.refund_amount or 0) * MINOR_UNIT_SCALE))

    amount_minor = to_minor_units(amount) if amount is not None else None
    if amount_minor is not None and amount_minor > remaining_minor:
        raise ValidationError(
            f"Refund of {payment.currency} {float(amount):.2f} exceeds the "
            f"{payment.currency} {remaining_minor / MINOR_UNIT_SCALE:.2f} left on payment {payment_intent_id}"
        )

    # No amount refunds whatever is left, which the gateway does by default
    partial = amount_minor is not None and amount_minor < remaining_minor
    if partial:
        refunded_total = (paid_minor - remaining_minor + amount_minor) / MINOR_UNIT_SCALE
    else:
        refunded_total = float(payment.amount)

    gateway = gateway or get_payment_gateway()
    refund = gateway.create_refund(payment.transaction_id, amount_minor, reason)

    event = PaymentEvent(
        transaction_id=payment.transaction_id,
        target_status=PaymentStatus.PARTIALLY_REFUNDED if partial else PaymentStatus.REFUNDED,
        refund_amount=refunded_total,
        refund_reason=reason,
        source="refund_request",
        raw={"refund": refund},
    )
    payment = apply_payment_event(db, event)

    logger.info(
        f"[payments] refund recorded payment_intent={payment_intent_id} status={payment.status} "
        f"refund_amount={payment.refund_amount}"
    )
    return {
        "refund_id": refund.get("id"),
        "status": refund.get("status") or "pending",
        "payment_status": payment.status,
        "refund_amount": float(payment.refund_amount or 0),
    }
