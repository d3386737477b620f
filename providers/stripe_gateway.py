"""
providers/stripe_gateway.py

Stripe integration (payment intents, hosted checkout, refunds, webhook signatures).
- Amounts passed in here are already integers in minor units (cents)
- Every SDK error is surfaced as GatewayUnavailable, callers decide what to persist
- verify_signature is the only authenticity check the webhook path uses
- Switch on with: PAYMENT_PROVIDER=stripe (default)
"""

import logging
from typing import Any, Dict, List, Optional, Union

import stripe

from config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_TOLERANCE_SECONDS
from errors import GatewayUnavailable

logger = logging.getLogger(__name__)

# Stripe only accepts these refund reasons, anything else is kept locally
STRIPE_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}

CHECKOUT_PAYMENT_METHODS = ["card"]


class StripeGateway:
    name = "stripe"

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or STRIPE_SECRET_KEY

    def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=amount_minor,
                currency=currency.lower(),
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"[stripe] payment intent create failed: {e}")
            raise GatewayUnavailable("Failed to create payment intent") from e

        return {"id": intent.id, "client_secret": intent.client_secret}

    def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "payment_method_types": CHECKOUT_PAYMENT_METHODS,
            "line_items": line_items,
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            # Webhooks for the underlying intent carry the same booking metadata
            "payment_intent_data": {"metadata": metadata},
            "allow_promotion_codes": True,
            "billing_address_collection": "required",
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"[stripe] checkout session create failed: {e}")
            raise GatewayUnavailable("Failed to create checkout session") from e

        return {"id": session.id, "url": session.url}

    def create_refund(
        self,
        payment_intent_id: str,
        amount_minor: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount_minor is not None:
            params["amount"] = amount_minor
        params["reason"] = reason if reason in STRIPE_REFUND_REASONS else "requested_by_customer"

        try:
            refund = stripe.Refund.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"[stripe] refund failed payment_intent={payment_intent_id}: {e}")
            raise GatewayUnavailable("Failed to process refund") from e

        return {"id": refund.id, "status": refund.status, "amount": refund.amount}


def verify_signature(
    raw_body: Union[bytes, str],
    signature_header: Optional[str],
    secret: Optional[str],
    tolerance: int = STRIPE_WEBHOOK_TOLERANCE_SECONDS,
) -> bool:
    """
    Check a Stripe-Signature header (t=<ts>,v1=<hmac>) against the raw body.
    The SDK compares digests in constant time and enforces the timestamp tolerance.
    """
    if not signature_header or not secret:
        return False

    try:
        payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
    except (stripe.SignatureVerificationError, UnicodeDecodeError):
        return False
    return True
