"""
Unit tests for the notification dispatcher.

The in-app row is written in the caller's transaction and the email only
leaves once that transaction has committed.
"""

import logging

from models import Notification, NotificationType
from notifications_email import build_frontend_link, compose_notification_email
from services.notification_service import PENDING_EMAILS_KEY


def test_email_waits_for_commit(db, user, dispatcher, emails, executor):
    """Nothing is sent while the transaction is open."""
    dispatcher.notify(db, user, NotificationType.SYSTEM.value, "Hello", "Welcome aboard", action_url="/profile")

    assert db.query(Notification).count() == 1, "Row is flushed into the open transaction"
    assert emails.sent == []
    assert executor.submitted == 0

    db.commit()

    assert len(emails.sent) == 1
    assert emails.sent[0]["to"] == "traveler@example.com"
    assert "Hello" in emails.sent[0]["subject"]
    assert build_frontend_link("/profile") in emails.sent[0]["body"]
    assert PENDING_EMAILS_KEY not in db.info


def test_rollback_drops_row_and_email(db, user, dispatcher, emails):
    dispatcher.notify(db, user, NotificationType.SYSTEM.value, "Hello", "Welcome aboard")
    db.rollback()

    assert db.query(Notification).count() == 0
    assert emails.sent == []

    # A later unrelated commit must not resurrect the dropped email
    db.commit()
    assert emails.sent == []


def test_send_failure_is_logged_not_raised(db, user, dispatcher, emails, caplog):
    emails.fail = True

    with caplog.at_level(logging.ERROR, logger="services.notification_service"):
        dispatcher.notify(db, user, NotificationType.SYSTEM.value, "Hello", "Welcome aboard")
        db.commit()

    assert db.query(Notification).count() == 1, "The in-app row survives a failed email"
    assert any("email failed" in r.getMessage() for r in caplog.records)


def test_disabled_or_missing_email_gets_in_app_only(db, user, dispatcher, emails):
    user.email_notifications_enabled = False
    db.commit()
    dispatcher.notify(db, user, NotificationType.SYSTEM.value, "Hi", "Quiet please")
    db.commit()

    user.email_notifications_enabled = True
    user.email = None
    db.commit()
    dispatcher.notify(db, user, NotificationType.SYSTEM.value, "Hi", "No address")
    db.commit()

    assert db.query(Notification).count() == 2
    assert emails.sent == []


def test_custom_email_overrides_default(db, user, dispatcher, emails):
    dispatcher.notify(
        db,
        user,
        NotificationType.PRICE_ALERT.value,
        "Price Drop Alert!",
        "Cheaper now",
        email=("Custom subject", "Custom body"),
    )
    db.commit()

    assert emails.sent == [{"to": "traveler@example.com", "subject": "Custom subject", "body": "Custom body"}]


def test_metadata_is_stored(db, user, dispatcher):
    note = dispatcher.notify(
        db, user, NotificationType.BOOKING_UPDATE.value, "Update", "Changed", metadata={"bookingId": 7}
    )
    db.commit()
    db.refresh(note)

    assert note.meta == {"bookingId": 7}
    assert note.is_read is False


def test_compose_notification_email_uses_type_prefix():
    subject, body = compose_notification_email(
        NotificationType.PAYMENT_SUCCESS.value, "Payment Successful!", "Confirmed", "/trips/3"
    )
    assert subject == "TrueDest Booking confirmed: Payment Successful!"
    assert body.startswith("Payment Successful!")
    assert build_frontend_link("/trips/3") in body
