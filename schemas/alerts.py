"""schemas/alerts.py - Pydantic models for price alert CRUD."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import AlertType
from schemas.bookings import Pagination


class PriceAlertCreate(BaseModel):
    alert_type: AlertType

    # Flights: originCode, destinationCode, departureDate, returnDate, cabinClass, adults
    # Hotels: cityCode, checkInDate, checkOutDate, starRating, adults
    search_criteria: Dict[str, Any]

    target_price: Optional[float] = Field(default=None, gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    notify_on_any_drop: bool = False
    drop_percentage: Optional[float] = Field(default=None, ge=1, le=100)
    expires_at: Optional[datetime] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("search_criteria")
    @classmethod
    def _non_empty_criteria(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("search_criteria must not be empty")
        return v


class PriceAlertUpdate(BaseModel):
    target_price: Optional[float] = Field(default=None, gt=0)
    is_active: Optional[bool] = None
    notify_on_any_drop: Optional[bool] = None
    drop_percentage: Optional[float] = Field(default=None, ge=1, le=100)
    expires_at: Optional[datetime] = None


class PriceAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    alert_type: str
    search_criteria: Dict[str, Any]

    target_price: Optional[float] = None
    current_price: Optional[float] = None
    lowest_price: Optional[float] = None
    highest_price: Optional[float] = None
    currency: str

    is_active: bool
    notify_on_any_drop: bool
    drop_percentage: Optional[float] = None
    expires_at: Optional[datetime] = None

    last_checked_at: Optional[datetime] = None
    last_notified_at: Optional[datetime] = None
    last_notified_price: Optional[float] = None
    times_triggered: int

    created_at: datetime
    updated_at: datetime


class PriceAlertListResponse(BaseModel):
    success: bool = True
    data: List[PriceAlertOut]
    pagination: Pagination


class BulkDeleteResponse(BaseModel):
    success: bool = True
    deleted: int
