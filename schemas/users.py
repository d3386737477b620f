"""schemas/users.py - Pydantic models for profile and privacy endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ProfileUser(BaseModel):
    id: int
    external_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    email_notifications_enabled: bool
    created_at: Optional[datetime] = None


class ProfileResponse(BaseModel):
    user: ProfileUser
    loyalty_points: int
    active_alerts: int
    active_alert_limit: int
    unread_notifications: int


class PreferencesUpdate(BaseModel):
    email_notifications_enabled: Optional[bool] = None
    name: Optional[str] = None


class PrivacyExport(BaseModel):
    exported_at: datetime
    user: ProfileUser
    loyalty_points: int
    bookings: List[Dict[str, Any]]
    payments: List[Dict[str, Any]]
    price_alerts: List[Dict[str, Any]]
    notifications: List[Dict[str, Any]]


class PrivacyDeleteResponse(BaseModel):
    success: bool = True
    anonymized_at: datetime


class UserSyncPayload(BaseModel):
    # Identity from the auth provider, canonicalised in /user-sync
    external_id: str
    email: Optional[str] = None
    name: Optional[str] = None
