"""
errors.py

Domain error taxonomy for bookings, payments, webhooks and price alerts.
Routers translate these into HTTPException responses; services never raise
HTTP errors themselves.
"""

from typing import Optional


class BookingError(Exception):
    """Base class. `code` is the machine readable value returned to clients."""

    code = "BOOKING_ERROR"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class ConfigurationError(BookingError):
    code = "CONFIGURATION_ERROR"


class ValidationError(BookingError):
    code = "VALIDATION_ERROR"


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"


class InvalidSignature(BookingError):
    code = "INVALID_SIGNATURE"


class StaleEvent(BookingError):
    """Event target state is not reachable from the current state. Expected under replays."""

    code = "STALE_EVENT"


class UnknownEventType(BookingError):
    code = "UNKNOWN_EVENT_TYPE"


class PaymentNotFound(BookingError):
    code = "PAYMENT_NOT_FOUND"


class BookingNotFound(BookingError):
    code = "BOOKING_NOT_FOUND"


class InvalidTransition(BookingError):
    code = "INVALID_TRANSITION"


class GatewayUnavailable(BookingError):
    code = "GATEWAY_UNAVAILABLE"


class AlertLimitReached(BookingError):
    code = "ALERT_LIMIT_REACHED"
