"""schemas/bookings.py - Pydantic models for booking checkout and listing."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import BookingType


class BookingCreate(BaseModel):
    booking_type: BookingType
    total_amount: float = Field(gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    travel_date: date
    return_date: Optional[date] = None

    # Flight / hotel specifics (offer id, segments, hotel code...) kept as submitted
    details: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_dates(self):
        if self.return_date is not None and self.return_date < self.travel_date:
            raise ValueError("return_date must not be before travel_date")
        self.currency = self.currency.upper()
        return self


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: str
    amount: float
    currency: str
    method: str
    status: str
    refund_amount: Optional[float] = None
    failure_reason: Optional[str] = None
    created_at: datetime


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reference: str
    booking_type: str
    status: str
    payment_status: str
    total_amount: float
    currency: str
    travel_date: date
    return_date: Optional[date] = None
    loyalty_points_earned: int
    details: Optional[Dict[str, Any]] = None
    payments: List[PaymentOut] = []
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class BookingListResponse(BaseModel):
    data: List[BookingOut]
    pagination: Pagination
