"""
Shared fixtures.

The database is an in-memory SQLite, so DATABASE_URL and the other settings
have to be in the environment before any project module is imported.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYMENT_PROVIDER"] = "mock"
os.environ["ADMIN_API_TOKEN"] = "admin-test-token"
os.environ["ALERTS_ENABLED"] = "true"
os.environ["PRICE_SEARCH_URL"] = "http://search.test/v1/prices"
for _key in ("SMTP_USERNAME", "SMTP_PASSWORD", "STRIPE_SECRET_KEY"):
    os.environ.pop(_key, None)

from concurrent.futures import Future
from datetime import date
from typing import Any, Dict, List, Optional

import pytest

import models  # noqa: F401
from db import Base, SessionLocal, engine
from errors import GatewayUnavailable
from models import AppUser, Booking, BookingStatus, Payment, PaymentStatus
from providers import factory
from services import notification_service, webhook_service
from services.notification_service import NotificationDispatcher


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:  # pragma: no cover - _send_safely never raises
            future.set_exception(e)
        return future


class EmailRecorder:
    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.fail = False

    def __call__(self, to_email: str, subject: str, body: str) -> None:
        if self.fail:
            raise RuntimeError("SMTP connection refused")
        self.sent.append({"to": to_email, "subject": subject, "body": body})


class FakeGateway:
    name = "fake"

    def __init__(self):
        self.intents: List[Dict[str, Any]] = []
        self.sessions: List[Dict[str, Any]] = []
        self.refunds: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None
        self.next_intent_id = "pi_test_123"

    def create_payment_intent(self, amount_minor, currency, metadata, idempotency_key=None):
        if self.fail_with:
            raise self.fail_with
        self.intents.append({
            "amount": amount_minor,
            "currency": currency,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        return {"id": self.next_intent_id, "client_secret": f"{self.next_intent_id}_secret"}

    def create_checkout_session(self, line_items, success_url, cancel_url, metadata, customer_email=None):
        if self.fail_with:
            raise self.fail_with
        self.sessions.append({"line_items": line_items, "metadata": metadata, "customer_email": customer_email})
        return {"id": "cs_test_1", "url": "https://checkout.test/cs_test_1"}

    def create_refund(self, payment_intent_id, amount_minor=None, reason=None):
        if self.fail_with:
            raise self.fail_with
        self.refunds.append({"payment_intent": payment_intent_id, "amount": amount_minor, "reason": reason})
        return {"id": f"re_test_{len(self.refunds)}", "status": "succeeded", "amount": amount_minor}


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def emails():
    return EmailRecorder()


@pytest.fixture
def executor():
    return InlineExecutor()


@pytest.fixture(autouse=True)
def dispatcher(monkeypatch, emails, executor):
    """Every code path, routes included, gets the inline dispatcher."""
    d = NotificationDispatcher(executor=executor, send_email=emails)
    monkeypatch.setattr(notification_service, "_DISPATCHER", d)
    monkeypatch.setattr(webhook_service, "_RECONCILER", None)
    return d


@pytest.fixture
def gateway(monkeypatch):
    g = FakeGateway()
    monkeypatch.setattr(factory, "_GATEWAY", g)
    monkeypatch.setattr(factory.config, "PAYMENT_PROVIDER", "fake")
    return g


@pytest.fixture
def failing_gateway(gateway):
    gateway.fail_with = GatewayUnavailable("Failed to create payment intent")
    return gateway


@pytest.fixture
def user(db):
    u = AppUser(
        external_id="user_ext_1",
        email="traveler@example.com",
        name="Sam Traveler",
        loyalty_points=0,
        email_notifications_enabled=True,
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture
def make_booking(db):
    def _make(user, amount=599.99, status=BookingStatus.PENDING, currency="USD"):
        booking = Booking(
            reference=f"TD{user.id:04d}{db.query(Booking).count():04d}",
            user_id=user.id,
            booking_type="FLIGHT",
            status=status.value,
            payment_status=PaymentStatus.PENDING.value,
            total_amount=amount,
            currency=currency,
            travel_date=date(2026, 12, 1),
            loyalty_points_earned=0,
            details={"offerId": "off_1"},
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking
    return _make


@pytest.fixture
def make_payment(db):
    def _make(booking, transaction_id="pi_test_123", amount=None, status=PaymentStatus.PENDING):
        payment = Payment(
            transaction_id=transaction_id,
            booking_id=booking.id,
            user_id=booking.user_id,
            amount=amount if amount is not None else booking.total_amount,
            currency=booking.currency,
            method="CREDIT_CARD",
            gateway_provider="stripe",
            status=status.value,
        )
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment
    return _make


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from main import app

    with TestClient(app) as c:
        yield c
