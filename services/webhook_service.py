"""
services/webhook_service.py

Webhook reconciler for payment gateway events.

Flow:
  1. Verify the signature over the raw body (nothing is parsed before this)
  2. Parse into a typed WebhookEvent
  3. Route by event type to a handler that builds a PaymentEvent
  4. apply_payment_event does the state change, replays surface as StaleEvent
     and are acknowledged

Error contract with the gateway:
  - InvalidSignature / ValidationError -> 400, gateway gives up or retries per its policy
  - StaleEvent, UnknownEventType       -> acknowledged, logged only
  - anything else (PaymentNotFound...) -> propagates, 500, gateway retries
  - dispute side effects are best effort and never fail the ack
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from config import STRIPE_WEBHOOK_SECRET
from db import SessionLocal
from errors import (
    ConfigurationError,
    InvalidSignature,
    StaleEvent,
    UnknownEventType,
    ValidationError,
)
from models import (
    AppUser,
    Booking,
    NotificationType,
    Payment,
    PaymentStatus,
    SupportTicket,
    TicketPriority,
)
from providers.stripe_gateway import verify_signature
from schemas.payments import PaymentEvent
from schemas.webhooks import WebhookEvent
from services.booking_service import apply_payment_event
from services.notification_service import NotificationDispatcher, get_dispatcher
from services.payment_service import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

# Known, deliberately not acted on
IGNORED_EVENT_TYPES = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
}


def _require(obj: Dict[str, Any], key: str) -> Any:
    value = obj.get(key)
    if not value:
        raise ValidationError(f"Event object is missing {key}")
    return value


class WebhookReconciler:
    def __init__(
        self,
        secret: Optional[str],
        verifier: Callable[[bytes, Optional[str], str], bool] = verify_signature,
        dispatcher: Optional[NotificationDispatcher] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        if not secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not set")
        self.secret = secret
        self.verifier = verifier
        self.dispatcher = dispatcher or get_dispatcher()
        self.session_factory = session_factory

        self._handlers = {
            "payment_intent.succeeded": self._payment_intent_succeeded,
            "payment_intent.payment_failed": self._payment_intent_failed,
            "payment_intent.canceled": self._payment_intent_canceled,
            "charge.refunded": self._charge_refunded,
            "charge.dispute.created": self._charge_dispute_created,
            "checkout.session.completed": self._checkout_session_completed,
        }

    # =================================================================
    # SECTION: ENTRY POINT
    # =================================================================

    def handle(self, raw_body: bytes, signature_header: Optional[str]) -> Dict[str, bool]:
        if not self.verifier(raw_body, signature_header, self.secret):
            logger.error("[webhooks] signature verification failed")
            raise InvalidSignature("Invalid signature")

        event = self.parse(raw_body)
        logger.info(f"[webhooks] received event id={event.id} type={event.type}")

        try:
            handler = self._route(event)
        except UnknownEventType as e:
            logger.warning(f"[webhooks] unhandled event type={event.type} id={event.id}: {e}")
            return {"received": True}

        if handler is None:
            logger.info(f"[webhooks] ignoring event type={event.type} id={event.id}")
            return {"received": True}

        db = self.session_factory()
        try:
            handler(db, event)
        except StaleEvent as e:
            logger.info(f"[webhooks] stale event id={event.id} type={event.type}: {e}")
        finally:
            db.close()

        return {"received": True}

    def parse(self, raw_body: bytes) -> WebhookEvent:
        try:
            return WebhookEvent.model_validate_json(raw_body)
        except PydanticValidationError as e:
            raise ValidationError(f"Malformed event payload: {e.errors()[:1]}") from e

    def _route(self, event: WebhookEvent):
        if event.type in IGNORED_EVENT_TYPES:
            return None
        handler = self._handlers.get(event.type)
        if handler is None:
            raise UnknownEventType(event.type)
        return handler

    # =================================================================
    # SECTION: PAYMENT INTENT EVENTS
    # =================================================================

    def _payment_intent_succeeded(self, db: Session, event: WebhookEvent) -> None:
        obj = event.obj
        amount_minor = obj.get("amount_received") or obj.get("amount")
        apply_payment_event(
            db,
            PaymentEvent(
                transaction_id=_require(obj, "id"),
                target_status=PaymentStatus.COMPLETED,
                amount=from_minor_units(amount_minor),
                raw=obj,
            ),
            self.dispatcher,
        )

    def _payment_intent_failed(self, db: Session, event: WebhookEvent) -> None:
        obj = event.obj
        error = obj.get("last_payment_error") or {}
        reason = error.get("message") or "Payment failed"
        apply_payment_event(
            db,
            PaymentEvent(
                transaction_id=_require(obj, "id"),
                target_status=PaymentStatus.FAILED,
                failure_reason=reason,
                raw={"id": obj.get("id"), "error": reason, "code": error.get("code")},
            ),
            self.dispatcher,
        )

    def _payment_intent_canceled(self, db: Session, event: WebhookEvent) -> None:
        obj = event.obj
        reason = "Payment was canceled"
        if obj.get("cancellation_reason"):
            reason = f"{reason} ({obj['cancellation_reason']})"
        apply_payment_event(
            db,
            PaymentEvent(
                transaction_id=_require(obj, "id"),
                target_status=PaymentStatus.FAILED,
                failure_reason=reason,
                raw={"id": obj.get("id"), "canceled_at": obj.get("canceled_at")},
            ),
            self.dispatcher,
        )

    # =================================================================
    # SECTION: CHARGE EVENTS
    # =================================================================

    def _charge_refunded(self, db: Session, event: WebhookEvent) -> None:
        obj = event.obj
        transaction_id = _require(obj, "payment_intent")
        amount_refunded = int(obj.get("amount_refunded") or 0)
        amount = obj.get("amount")
        if amount is None:
            # Charge without its amount, classify against the recorded payment
            payment = db.query(Payment).filter(Payment.transaction_id == transaction_id).first()
            amount = to_minor_units(payment.amount) if payment is not None else None
        full = amount is None or amount_refunded >= int(amount)
        apply_payment_event(
            db,
            PaymentEvent(
                transaction_id=transaction_id,
                target_status=PaymentStatus.REFUNDED if full else PaymentStatus.PARTIALLY_REFUNDED,
                refund_amount=from_minor_units(amount_refunded),
                raw=obj,
            ),
            self.dispatcher,
        )

    def _charge_dispute_created(self, db: Session, event: WebhookEvent) -> None:
        try:
            self._open_dispute(db, event.obj)
        except Exception:
            db.rollback()
            logger.exception(f"[webhooks] dispute side effects failed dispute={event.obj.get('id')}")

    def _open_dispute(self, db: Session, dispute: Dict[str, Any]) -> None:
        payment_intent_id = dispute.get("payment_intent")
        payment = (
            db.query(Payment).filter(Payment.transaction_id == payment_intent_id).first()
            if payment_intent_id else None
        )
        if payment is None:
            logger.warning(f"[webhooks] dispute={dispute.get('id')} for unknown payment_intent={payment_intent_id}")
            return

        user = db.get(AppUser, payment.user_id)
        booking = payment.booking

        self.dispatcher.notify(
            db,
            user,
            NotificationType.SYSTEM.value,
            "Payment Dispute Received",
            "We've received a dispute for your payment. Our team is reviewing it.",
            action_url="/support",
            metadata={"disputeId": dispute.get("id"), "bookingId": booking.id},
        )
        db.add(SupportTicket(
            ticket_number=f"DSP-{int(time.time() * 1000)}",
            user_id=user.id,
            category="PAYMENT",
            priority=TicketPriority.URGENT.value,
            subject="Payment Dispute",
            description=f"Stripe dispute ID: {dispute.get('id')}. Reason: {dispute.get('reason')}",
            booking_reference=booking.reference,
        ))
        db.commit()
        logger.info(f"[webhooks] dispute ticket opened dispute={dispute.get('id')} booking={booking.reference}")

    # =================================================================
    # SECTION: CHECKOUT EVENTS
    # =================================================================

    def _checkout_session_completed(self, db: Session, event: WebhookEvent) -> None:
        obj = event.obj
        metadata = obj.get("metadata") or {}
        booking_id = metadata.get("bookingId")
        payment_intent_id = obj.get("payment_intent")

        if not booking_id or not payment_intent_id:
            logger.error(f"[webhooks] checkout session={obj.get('id')} missing bookingId or payment_intent")
            return

        booking = db.get(Booking, int(booking_id))
        if booking is None:
            logger.error(f"[webhooks] checkout session={obj.get('id')} for unknown booking={booking_id}")
            return

        payment = db.query(Payment).filter(Payment.transaction_id == payment_intent_id).first()
        if payment is None:
            # Staged in the same transaction apply_payment_event commits
            db.add(Payment(
                transaction_id=payment_intent_id,
                booking_id=booking.id,
                user_id=booking.user_id,
                amount=from_minor_units(obj.get("amount_total")) or float(booking.total_amount),
                currency=(obj.get("currency") or booking.currency).upper(),
                method="CREDIT_CARD",
                gateway_provider="stripe",
                status=PaymentStatus.PENDING.value,
            ))
            db.flush()

        apply_payment_event(
            db,
            PaymentEvent(
                transaction_id=payment_intent_id,
                target_status=PaymentStatus.COMPLETED,
                amount=from_minor_units(obj.get("amount_total")),
                raw=obj,
            ),
            self.dispatcher,
        )


_RECONCILER: Optional[WebhookReconciler] = None


def get_reconciler() -> WebhookReconciler:
    global _RECONCILER
    if _RECONCILER is None:
        _RECONCILER = WebhookReconciler(STRIPE_WEBHOOK_SECRET)
    return _RECONCILER
