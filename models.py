# =======================================
# SECTION: IMPORTS AND BASE
# =======================================

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Date,
    Numeric,
    ForeignKey,
    Text,
    JSON,
)
from sqlalchemy.orm import relationship

from db import Base


# Money columns hold major units (dollars), returned as float
Money = Numeric(12, 2, asdecimal=False)


# =======================================
# SECTION: STATUS ENUMS
# Stored as plain strings, compared as str enums.
# =======================================

class BookingType(str, Enum):
    FLIGHT = "FLIGHT"
    HOTEL = "HOTEL"
    PACKAGE = "PACKAGE"


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class AlertType(str, Enum):
    FLIGHT = "FLIGHT"
    HOTEL = "HOTEL"


class NotificationType(str, Enum):
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PRICE_ALERT = "PRICE_ALERT"
    BOOKING_UPDATE = "BOOKING_UPDATE"
    SYSTEM = "SYSTEM"


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


# =======================================
# SECTION: ADMIN CONFIG MODEL
# =======================================

class AdminConfig(Base):
    __tablename__ = "admin_config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(String(255), nullable=True)
    description = Column(String(255), nullable=True)

    # Global master switch for alerts
    alerts_enabled = Column(Boolean, nullable=False, default=True)


# =======================================
# SECTION: USER MODELS
# =======================================

class AppUser(Base):
    __tablename__ = "app_users"

    id = Column(Integer, primary_key=True, index=True)

    external_id = Column(String(100), unique=True, index=True, nullable=False)

    email = Column(String(255), index=True, nullable=True)
    name = Column(String(200), nullable=True)

    loyalty_points = Column(Integer, nullable=False, default=0)

    # Per user email switch, in-app notifications are always written
    email_notifications_enabled = Column(Boolean, nullable=False, default=True)

    # Set by privacy erasure, personal fields are blanked instead of deleting rows
    anonymized_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    bookings = relationship("Booking", back_populates="user")


# =======================================
# SECTION: BOOKING AND PAYMENT MODELS
# =======================================

class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(20), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("app_users.id"), index=True, nullable=False)

    booking_type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default=BookingStatus.PENDING.value)
    payment_status = Column(String(24), nullable=False, default=PaymentStatus.PENDING.value)

    total_amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    travel_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=True)

    loyalty_points_earned = Column(Integer, nullable=False, default=0)

    # Flight / hotel specifics as submitted at checkout
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("AppUser", back_populates="bookings")
    payments = relationship("Payment", back_populates="booking", order_by="Payment.id")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)

    # Gateway payment intent id, the dedupe key for webhook events
    transaction_id = Column(String(255), unique=True, index=True, nullable=False)

    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("app_users.id"), index=True, nullable=False)

    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False)
    method = Column(String(32), nullable=False, default="CREDIT_CARD")
    gateway_provider = Column(String(32), nullable=False, default="stripe")

    status = Column(String(24), nullable=False, default=PaymentStatus.PENDING.value)

    refund_amount = Column(Money, nullable=True)
    refund_reason = Column(String(255), nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)

    # Opaque audit blob, last gateway object seen for this payment
    gateway_response = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    booking = relationship("Booking", back_populates="payments")


# =======================================
# SECTION: PRICE ALERT MODELS
# =======================================

class PriceAlert(Base):
    __tablename__ = "price_alerts"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("app_users.id"), index=True, nullable=False)

    alert_type = Column(String(16), nullable=False)
    search_criteria = Column(JSON, nullable=False)

    target_price = Column(Money, nullable=True)
    current_price = Column(Money, nullable=True)
    lowest_price = Column(Money, nullable=True)
    highest_price = Column(Money, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")

    is_active = Column(Boolean, nullable=False, default=True)
    notify_on_any_drop = Column(Boolean, nullable=False, default=False)
    drop_percentage = Column(Numeric(5, 2, asdecimal=False), nullable=True)

    expires_at = Column(DateTime, nullable=True)

    last_checked_at = Column(DateTime, nullable=True)
    last_notified_at = Column(DateTime, nullable=True)
    last_notified_price = Column(Money, nullable=True)
    times_triggered = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class PriceAlertRun(Base):
    __tablename__ = "price_alert_runs"

    id = Column(String, primary_key=True, index=True)
    alert_id = Column(String, ForeignKey("price_alerts.id"), nullable=False, index=True)

    run_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    price_found = Column(Money, nullable=True)
    previous_price = Column(Money, nullable=True)
    drop_percentage = Column(Numeric(7, 2, asdecimal=False), nullable=True)
    fired = Column(Boolean, nullable=False, default=False)
    reason = Column(Text, nullable=True)


# =======================================
# SECTION: NOTIFICATION AND SUPPORT MODELS
# =======================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("app_users.id"), index=True, nullable=False)

    type = Column(String(32), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)

    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)

    action_url = Column(String(500), nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class SupportTicket(Base):
    __tablename__ = "support_tickets"

    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(String(40), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("app_users.id"), index=True, nullable=False)

    category = Column(String(32), nullable=False)
    priority = Column(String(16), nullable=False, default=TicketPriority.MEDIUM.value)
    status = Column(String(16), nullable=False, default="OPEN")

    subject = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    booking_reference = Column(String(40), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
