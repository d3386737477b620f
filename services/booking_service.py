"""
services/booking_service.py

Booking state store:
- create_booking: PENDING booking at checkout initiation
- apply_payment_event: the single mutation point for payment driven changes
- cancel_booking: user cancellation of unpaid bookings

Every payment driven change (payment row, booking status, loyalty credit,
notification) is flushed in one session transaction and committed once.
Replays and out-of-order events are rejected by the transition tables
below, nothing else deduplicates them.
"""

import logging
import math
import secrets
import string
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from errors import BookingNotFound, InvalidTransition, PaymentNotFound, StaleEvent
from models import (
    AppUser,
    Booking,
    BookingStatus,
    NotificationType,
    Payment,
    PaymentStatus,
)
from schemas.bookings import BookingCreate
from schemas.payments import PaymentEvent
from services.notification_service import NotificationDispatcher, get_dispatcher

logger = logging.getLogger(__name__)


# =====================================================================
# SECTION: TRANSITION TABLES
# =====================================================================

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.FAILED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED, BookingStatus.REFUNDED, BookingStatus.COMPLETED},
    # A retried payment attempt can still confirm a failed booking
    BookingStatus.FAILED: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: {BookingStatus.REFUNDED},
    BookingStatus.REFUNDED: set(),
    BookingStatus.COMPLETED: set(),
}

# Per payment attempt. FAILED -> COMPLETED covers a customer retrying on the same intent.
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.REFUNDED: set(),
}

# Booking level payment_status, forward only
BOOKING_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.REFUNDED: set(),
}


def booking_transition_allowed(current: str, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS.get(BookingStatus(current), set())


def transition_booking(booking: Booking, target: BookingStatus) -> None:
    if not booking_transition_allowed(booking.status, target):
        raise InvalidTransition(f"Booking {booking.reference} cannot move from {booking.status} to {target.value}")
    booking.status = target.value


def payment_transition_allowed(payment: Payment, event: PaymentEvent) -> bool:
    current = PaymentStatus(payment.status)
    target = event.target_status
    if target not in PAYMENT_TRANSITIONS.get(current, set()):
        return False
    if current == target == PaymentStatus.PARTIALLY_REFUNDED:
        # Only a larger cumulative refund is news
        return (event.refund_amount or 0) > (payment.refund_amount or 0)
    return True


def _advance_booking_payment_status(booking: Booking, target: PaymentStatus) -> None:
    current = PaymentStatus(booking.payment_status)
    if target in BOOKING_PAYMENT_TRANSITIONS.get(current, set()):
        booking.payment_status = target.value


# =====================================================================
# SECTION: BOOKING CREATION AND LOOKUP
# =====================================================================

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference() -> str:
    return "TD" + "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(8))


def create_booking(db: Session, user: AppUser, payload: BookingCreate) -> Booking:
    reference = generate_reference()
    while db.query(Booking.id).filter(Booking.reference == reference).first() is not None:
        reference = generate_reference()

    now = datetime.utcnow()
    booking = Booking(
        reference=reference,
        user_id=user.id,
        booking_type=payload.booking_type.value,
        status=BookingStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        total_amount=payload.total_amount,
        currency=payload.currency,
        travel_date=payload.travel_date,
        return_date=payload.return_date,
        loyalty_points_earned=0,
        details=payload.details,
        created_at=now,
        updated_at=now,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)

    logger.info(f"[bookings] created booking={booking.reference} user_id={user.id} amount={booking.total_amount} {booking.currency}")
    return booking


def get_booking_for_user(db: Session, booking_id: int, user: AppUser) -> Booking:
    booking = (
        db.query(Booking)
        .filter(Booking.id == booking_id, Booking.user_id == user.id)
        .first()
    )
    if booking is None:
        raise BookingNotFound(f"Booking {booking_id} not found")
    return booking


def cancel_booking(
    db: Session,
    booking: Booking,
    user: AppUser,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> Booking:
    """Unpaid bookings only. Paid bookings are unwound through a refund."""
    if booking.status not in (BookingStatus.PENDING.value, BookingStatus.FAILED.value):
        raise InvalidTransition(f"Booking {booking.reference} is {booking.status}, request a refund instead")

    dispatcher = dispatcher or get_dispatcher()
    try:
        transition_booking(booking, BookingStatus.CANCELLED)
        booking.updated_at = datetime.utcnow()
        dispatcher.notify(
            db,
            user,
            NotificationType.BOOKING_UPDATE.value,
            "Booking Cancelled",
            f"Your booking {booking.reference} has been cancelled.",
            action_url=f"/trips/{booking.id}",
            metadata={"bookingId": booking.id},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"[bookings] cancelled booking={booking.reference}")
    return booking


# =====================================================================
# SECTION: PAYMENT EVENT APPLICATION
# =====================================================================

def _credit_loyalty_points(db: Session, booking: Booking, user: AppUser, amount: float) -> int:
    """One point per whole major unit paid."""
    points = math.floor(round(float(amount), 2))
    booking.loyalty_points_earned = points
    # SQL side increment, concurrent bookings for one user cannot lose points
    user.loyalty_points = AppUser.loyalty_points + points
    db.flush()
    return points


def _on_completed(db, payment, booking, user, event, dispatcher) -> None:
    amount = event.amount if event.amount is not None else payment.amount

    if booking.status == BookingStatus.CONFIRMED.value:
        logger.warning(
            f"[payments] extra successful payment transaction_id={payment.transaction_id} "
            f"for already confirmed booking={booking.reference}"
        )
        return

    if not booking_transition_allowed(booking.status, BookingStatus.CONFIRMED):
        # Money captured for a booking that moved on, left for a manual refund
        logger.error(
            f"[payments] payment completed for booking={booking.reference} in status={booking.status}, "
            f"transaction_id={payment.transaction_id} needs manual review"
        )
        _advance_booking_payment_status(booking, PaymentStatus.COMPLETED)
        return

    _advance_booking_payment_status(booking, PaymentStatus.COMPLETED)
    transition_booking(booking, BookingStatus.CONFIRMED)
    points = _credit_loyalty_points(db, booking, user, amount)

    dispatcher.notify(
        db,
        user,
        NotificationType.PAYMENT_SUCCESS.value,
        "Payment Successful!",
        "Your payment has been processed successfully. Your booking is now confirmed.",
        action_url=f"/trips/{booking.id}",
        metadata={
            "bookingId": booking.id,
            "bookingReference": booking.reference,
            "paymentIntentId": payment.transaction_id,
            "loyaltyPoints": points,
        },
    )


def _on_failed(db, payment, booking, user, event, dispatcher) -> None:
    reason = event.failure_reason or "Payment failed"
    payment.failure_reason = reason

    if booking.status not in (BookingStatus.PENDING.value, BookingStatus.FAILED.value):
        logger.info(
            f"[payments] failed attempt transaction_id={payment.transaction_id} "
            f"ignored for booking={booking.reference} status={booking.status}"
        )
        return

    _advance_booking_payment_status(booking, PaymentStatus.FAILED)
    if booking.status != BookingStatus.FAILED.value:
        transition_booking(booking, BookingStatus.FAILED)

    dispatcher.notify(
        db,
        user,
        NotificationType.PAYMENT_FAILED.value,
        "Payment Failed",
        f"Your payment could not be processed: {reason}. Please try again.",
        action_url=f"/booking/{booking.id}/payment",
        metadata={"bookingId": booking.id, "error": reason},
    )


def _on_refunded(db, payment, booking, user, event, dispatcher) -> None:
    full = event.target_status == PaymentStatus.REFUNDED
    refund_amount = event.refund_amount if event.refund_amount is not None else payment.amount
    # refund_amount is cumulative, the notice reports only this refund
    refunded_now = round(float(refund_amount) - float(payment.refund_amount or 0), 2)

    payment.refund_amount = refund_amount
    payment.refunded_at = datetime.utcnow()
    if event.refund_reason:
        payment.refund_reason = event.refund_reason

    _advance_booking_payment_status(booking, event.target_status)
    if full and booking_transition_allowed(booking.status, BookingStatus.REFUNDED):
        transition_booking(booking, BookingStatus.REFUNDED)

    if full:
        title = "Refund Processed"
        message = f"A refund of {payment.currency} {refunded_now:.2f} has been processed. Your payment is now fully refunded."
    else:
        title = "Partial Refund Processed"
        message = (
            f"A partial refund of {payment.currency} {refunded_now:.2f} has been processed. "
            f"Refunds so far total {payment.currency} {float(refund_amount):.2f}."
        )
    dispatcher.notify(
        db,
        user,
        NotificationType.SYSTEM.value,
        title,
        message,
        action_url=f"/trips/{booking.id}",
        metadata={"bookingId": booking.id, "refundAmount": refunded_now, "refundTotal": refund_amount},
    )


_HANDLERS = {
    PaymentStatus.COMPLETED: _on_completed,
    PaymentStatus.FAILED: _on_failed,
    PaymentStatus.REFUNDED: _on_refunded,
    PaymentStatus.PARTIALLY_REFUNDED: _on_refunded,
}


def apply_payment_event(
    db: Session,
    event: PaymentEvent,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> Payment:
    """
    Apply one payment event to its Payment and Booking.

    Raises PaymentNotFound when no payment row matches the transaction id and
    StaleEvent when the target state is not reachable (replay or late delivery).
    Either everything below is committed or nothing is.
    """
    dispatcher = dispatcher or get_dispatcher()

    payment = (
        db.query(Payment)
        .filter(Payment.transaction_id == event.transaction_id)
        .with_for_update()
        .first()
    )
    if payment is None:
        db.rollback()
        raise PaymentNotFound(f"No payment for transaction {event.transaction_id}")

    if not payment_transition_allowed(payment, event):
        current = payment.status
        db.rollback()
        raise StaleEvent(
            f"transaction_id={event.transaction_id} already {current}, "
            f"{event.target_status.value} not reachable"
        )

    booking = payment.booking
    user = db.get(AppUser, payment.user_id)
    now = datetime.utcnow()

    try:
        payment.status = event.target_status.value
        payment.updated_at = now
        if event.raw:
            payment.gateway_response = event.raw

        _HANDLERS[event.target_status](db, payment, booking, user, event, dispatcher)

        booking.updated_at = now
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            f"[payments] event rolled back transaction_id={event.transaction_id} "
            f"target={event.target_status.value}"
        )
        raise

    logger.info(
        f"[payments] applied transaction_id={payment.transaction_id} status={payment.status} "
        f"booking={booking.reference} booking_status={booking.status}"
    )
    return payment
