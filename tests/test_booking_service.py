"""
Unit tests for the booking state store.

Covers payment event application (confirmation, failure, refunds), replay
handling and all-or-nothing confirmation.
"""

import pytest

from errors import InvalidTransition, PaymentNotFound, StaleEvent
from models import Booking, BookingStatus, Notification, NotificationType, PaymentStatus
from schemas.payments import PaymentEvent
from services import booking_service
from services.booking_service import (
    apply_payment_event,
    booking_transition_allowed,
    cancel_booking,
    transition_booking,
)


def _completed(transaction_id="pi_test_123", amount=599.99):
    return PaymentEvent(transaction_id=transaction_id, target_status=PaymentStatus.COMPLETED, amount=amount)


def _notifications(db, user, kind=None):
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if kind:
        query = query.filter(Notification.type == kind)
    return query.all()


class TestConfirmation:
    """A successful payment confirms the booking and credits loyalty points."""

    def test_successful_payment_confirms_booking(self, db, user, make_booking, make_payment, dispatcher, emails):
        booking = make_booking(user, amount=599.99)
        make_payment(booking)

        payment = apply_payment_event(db, _completed(), dispatcher)

        db.refresh(booking)
        db.refresh(user)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.payment_status == PaymentStatus.COMPLETED.value
        assert booking.loyalty_points_earned == 599, "One point per whole unit, rounded down"
        assert user.loyalty_points == 599

        notes = _notifications(db, user, NotificationType.PAYMENT_SUCCESS.value)
        assert len(notes) == 1
        assert notes[0].title == "Payment Successful!"
        assert notes[0].action_url == f"/trips/{booking.id}"

        assert len(emails.sent) == 1
        assert emails.sent[0]["to"] == "traveler@example.com"

    def test_replayed_success_is_stale_and_changes_nothing(self, db, user, make_booking, make_payment, dispatcher, emails):
        booking = make_booking(user, amount=599.99)
        make_payment(booking)
        apply_payment_event(db, _completed(), dispatcher)

        with pytest.raises(StaleEvent):
            apply_payment_event(db, _completed(), dispatcher)

        db.refresh(user)
        db.refresh(booking)
        assert user.loyalty_points == 599, "Replay must not credit points twice"
        assert booking.status == BookingStatus.CONFIRMED.value
        assert len(_notifications(db, user, NotificationType.PAYMENT_SUCCESS.value)) == 1
        assert len(emails.sent) == 1

    def test_confirmation_is_all_or_nothing(self, db, user, make_booking, make_payment, dispatcher, emails, monkeypatch):
        booking = make_booking(user, amount=250.00)
        make_payment(booking)

        def boom(*args, **kwargs):
            raise RuntimeError("loyalty ledger unavailable")

        monkeypatch.setattr(booking_service, "_credit_loyalty_points", boom)

        with pytest.raises(RuntimeError):
            apply_payment_event(db, _completed(amount=250.00), dispatcher)

        db.expire_all()
        booking = db.get(Booking, booking.id)
        assert booking.status == BookingStatus.PENDING.value
        assert booking.payments[0].status == PaymentStatus.PENDING.value
        assert db.get(type(user), user.id).loyalty_points == 0
        assert _notifications(db, user) == []
        assert emails.sent == [], "Email must not leave for a rolled back confirmation"

    def test_unknown_transaction_raises_payment_not_found(self, db, dispatcher):
        with pytest.raises(PaymentNotFound):
            apply_payment_event(db, _completed(transaction_id="pi_missing"), dispatcher)

    def test_second_payment_for_confirmed_booking_does_not_credit_again(self, db, user, make_booking, make_payment, dispatcher):
        booking = make_booking(user, amount=100.00)
        make_payment(booking, transaction_id="pi_first")
        make_payment(booking, transaction_id="pi_second")

        apply_payment_event(db, _completed("pi_first", 100.00), dispatcher)
        apply_payment_event(db, _completed("pi_second", 100.00), dispatcher)

        db.refresh(user)
        assert user.loyalty_points == 100
        assert len(_notifications(db, user, NotificationType.PAYMENT_SUCCESS.value)) == 1


class TestFailure:
    """Failed attempts mark the booking failed and can be retried."""

    def test_failed_payment_marks_booking_failed(self, db, user, make_booking, make_payment, dispatcher):
        booking = make_booking(user)
        make_payment(booking)

        apply_payment_event(
            db,
            PaymentEvent(transaction_id="pi_test_123", target_status=PaymentStatus.FAILED, failure_reason="Card declined"),
            dispatcher,
        )

        db.refresh(booking)
        assert booking.status == BookingStatus.FAILED.value
        assert booking.payments[0].failure_reason == "Card declined"
        notes = _notifications(db, user, NotificationType.PAYMENT_FAILED.value)
        assert len(notes) == 1
        assert "Card declined" in notes[0].message

    def test_retry_after_failure_confirms(self, db, user, make_booking, make_payment, dispatcher):
        booking = make_booking(user, amount=80.50)
        make_payment(booking)

        apply_payment_event(db, PaymentEvent(transaction_id="pi_test_123", target_status=PaymentStatus.FAILED), dispatcher)
        apply_payment_event(db, _completed(amount=80.50), dispatcher)

        db.refresh(booking)
        db.refresh(user)
        assert booking.status == BookingStatus.CONFIRMED.value
        assert user.loyalty_points == 80

    def test_late_failure_after_success_is_stale(self, db, user, make_booking, make_payment, dispatcher):
        booking = make_booking(user)
        make_payment(booking)
        apply_payment_event(db, _completed(), dispatcher)

        with pytest.raises(StaleEvent):
            apply_payment_event(db, PaymentEvent(transaction_id="pi_test_123", target_status=PaymentStatus.FAILED), dispatcher)

        db.refresh(booking)
        assert booking.status == BookingStatus.CONFIRMED.value


class TestRefunds:
    """Refund classification: partial iff the refunded amount is below the paid amount."""

    def _paid(self, db, user, make_booking, make_payment, dispatcher, amount=400.00):
        booking = make_booking(user, amount=amount)
        make_payment(booking)
        apply_payment_event(db, _completed(amount=amount), dispatcher)
        return booking

    def test_full_refund(self, db, user, make_booking, make_payment, dispatcher):
        booking = self._paid(db, user, make_booking, make_payment, dispatcher)

        payment = apply_payment_event(
            db,
            PaymentEvent(transaction_id="pi_test_123", target_status=PaymentStatus.REFUNDED, refund_amount=400.00),
            dispatcher,
        )

        db.refresh(booking)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refund_amount == 400.00
        assert payment.refunded_at is not None
        assert booking.status == BookingStatus.REFUNDED.value
        assert booking.payment_status == PaymentStatus.REFUNDED.value

    def test_partial_refunds_accumulate(self, db, user, make_booking, make_payment, dispatcher):
        booking = self._paid(db, user, make_booking, make_payment, dispatcher)

        apply_payment_event(
            db,
            PaymentEvent(transaction_id="pi_test_123", target_status=PaymentStatus.PARTIALLY_REFUNDED, refund_amount=100.00),
            dispatcher,
        )
        db.refresh(booking)
        assert booking.status == BookingStatus.CONFIRMED.value, "Partial refunds keep the booking"
        assert booking.payment_status == PaymentStatus.PARTIALLY_REFUNDED.value

        with pytest.raises(StaleEvent):
            apply_payment_event(
                db,
                PaymentEvent(transaction_id="pi_test_123", target_status=PaymentStatus.PARTIALLY_REFUNDED, refund_amount=100.00),
                dispatcher,
            )

        payment = apply_payment_event(
            db,
            PaymentEvent(transaction_id="pi_test_123", target_status=PaymentStatus.PARTIALLY_REFUNDED, refund_amount=150.00),
            dispatcher,
        )
        assert payment.refund_amount == 150.00

        notes = _notifications(db, user, NotificationType.SYSTEM.value)
        assert [n.title for n in notes] == ["Partial Refund Processed", "Partial Refund Processed"]

    def test_refund_notice_reports_the_amount_just_refunded(self, db, user, make_booking, make_payment, dispatcher):
        self._paid(db, user, make_booking, make_payment, dispatcher)

        for total in (100.00, 150.00, 400.00):
            status = PaymentStatus.REFUNDED if total == 400.00 else PaymentStatus.PARTIALLY_REFUNDED
            apply_payment_event(
                db,
                PaymentEvent(transaction_id="pi_test_123", target_status=status, refund_amount=total),
                dispatcher,
            )

        notes = sorted(_notifications(db, user, NotificationType.SYSTEM.value), key=lambda n: n.id)
        assert "partial refund of USD 100.00" in notes[0].message
        assert "partial refund of USD 50.00" in notes[1].message, "Second notice must not repeat the running total"
        assert "Refunds so far total USD 150.00" in notes[1].message
        assert "refund of USD 250.00" in notes[2].message
        assert notes[1].meta["refundAmount"] == 50.00

    def test_refund_of_pending_payment_is_stale(self, db, user, make_booking, make_payment, dispatcher):
        booking = make_booking(user)
        make_payment(booking)

        with pytest.raises(StaleEvent):
            apply_payment_event(
                db,
                PaymentEvent(transaction_id="pi_test_123", target_status=PaymentStatus.REFUNDED, refund_amount=10.0),
                dispatcher,
            )


class TestTransitions:
    def test_terminal_states_have_no_exits(self):
        for target in BookingStatus:
            assert not booking_transition_allowed(BookingStatus.REFUNDED.value, target)
            assert not booking_transition_allowed(BookingStatus.COMPLETED.value, target)

    def test_transition_booking_rejects_illegal_move(self, user, make_booking):
        booking = make_booking(user, status=BookingStatus.CANCELLED)
        with pytest.raises(InvalidTransition):
            transition_booking(booking, BookingStatus.CONFIRMED)

    def test_cancel_pending_booking(self, db, user, make_booking, dispatcher):
        booking = make_booking(user)

        cancel_booking(db, booking, user, dispatcher)

        db.refresh(booking)
        assert booking.status == BookingStatus.CANCELLED.value
        assert len(_notifications(db, user, NotificationType.BOOKING_UPDATE.value)) == 1

    def test_cancel_confirmed_booking_is_rejected(self, db, user, make_booking, dispatcher):
        booking = make_booking(user, status=BookingStatus.CONFIRMED)
        with pytest.raises(InvalidTransition):
            cancel_booking(db, booking, user, dispatcher)
