"""schemas/payments.py - Payment request bodies and the internal payment event."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models import PaymentStatus


# =====================================================================
# SECTION: REQUEST / RESPONSE BODIES
# =====================================================================

class PaymentIntentCreate(BaseModel):
    booking_id: int
    metadata: Dict[str, str] = Field(default_factory=dict)


class PaymentIntentOut(BaseModel):
    client_secret: Optional[str] = None
    payment_intent_id: str


class CheckoutProductData(BaseModel):
    name: str = Field(max_length=250)
    description: Optional[str] = None


class CheckoutPriceData(BaseModel):
    currency: str = Field(min_length=3, max_length=3)
    product_data: CheckoutProductData
    # Minor units, as the gateway expects them in line items
    unit_amount: int = Field(gt=0)


class CheckoutLineItem(BaseModel):
    price_data: CheckoutPriceData
    quantity: int = Field(default=1, ge=1)


class CheckoutSessionCreate(BaseModel):
    booking_id: int
    line_items: List[CheckoutLineItem] = Field(min_length=1)
    success_url: str
    cancel_url: str


class CheckoutSessionOut(BaseModel):
    session_id: str
    url: Optional[str] = None


class RefundCreate(BaseModel):
    payment_intent_id: str
    amount: Optional[float] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=255)


class RefundOut(BaseModel):
    refund_id: Optional[str] = None
    status: str
    payment_status: str
    refund_amount: float


# =====================================================================
# SECTION: INTERNAL PAYMENT EVENT
# What the booking state store consumes, whatever produced it.
# =====================================================================

class PaymentEvent(BaseModel):
    transaction_id: str
    target_status: PaymentStatus

    # Major units. For COMPLETED this is the charged amount, for refunds the
    # cumulative refunded amount.
    amount: Optional[float] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    failure_reason: Optional[str] = None

    source: str = "webhook"
    raw: Dict[str, Any] = Field(default_factory=dict)
