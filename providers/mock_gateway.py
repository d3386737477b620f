"""
providers/mock_gateway.py

Deterministic in-process gateway for local runs without Stripe credentials.
Switch on with: PAYMENT_PROVIDER=mock
Nothing is charged; webhooks have to be posted by hand.
"""

from typing import Any, Dict, List, Optional
from uuid import uuid4


class MockGateway:
    name = "mock"

    def __init__(self):
        self.intents: List[Dict[str, Any]] = []
        self.sessions: List[Dict[str, Any]] = []
        self.refunds: List[Dict[str, Any]] = []

    def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        intent_id = f"pi_mock_{uuid4().hex[:24]}"
        self.intents.append({
            "id": intent_id,
            "amount": amount_minor,
            "currency": currency.lower(),
            "metadata": dict(metadata),
            "idempotency_key": idempotency_key,
        })
        return {"id": intent_id, "client_secret": f"{intent_id}_secret_mock"}

    def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        session_id = f"cs_mock_{uuid4().hex[:24]}"
        self.sessions.append({"id": session_id, "line_items": line_items, "metadata": dict(metadata)})
        return {"id": session_id, "url": f"{success_url}?session_id={session_id}"}

    def create_refund(
        self,
        payment_intent_id: str,
        amount_minor: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        refund = {
            "id": f"re_mock_{uuid4().hex[:24]}",
            "status": "succeeded",
            "amount": amount_minor,
            "payment_intent": payment_intent_id,
            "reason": reason,
        }
        self.refunds.append(refund)
        return {"id": refund["id"], "status": refund["status"], "amount": refund["amount"]}
