"""
config.py

Single source of truth for:
- Environment variable reads
- Admin config DB helpers
- Alert toggle logic
- Startup validation of required secrets

Nothing here should contain route handlers or business logic beyond config resolution.
"""

import os
from typing import Optional

from sqlalchemy.orm import Session

from errors import ConfigurationError


# =====================================================================
# SECTION: ENV VARS
# =====================================================================

ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Payment gateway
# Set PAYMENT_PROVIDER=mock to run without Stripe credentials (local dev only).
PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "stripe").lower().strip()
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300"))

# Price search collaborator used by the alert cycle
PRICE_SEARCH_URL = os.getenv("PRICE_SEARCH_URL", "")
PRICE_SEARCH_API_KEY = os.getenv("PRICE_SEARCH_API_KEY", "")
PRICE_SEARCH_TIMEOUT_SECONDS = int(os.getenv("PRICE_SEARCH_TIMEOUT_SECONDS", "20"))

# SMTP / notifications
SMTP_HOST = os.getenv("SMTP_HOST", "mail-eu.smtp2go.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "2525"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
NOTIFY_FROM_EMAIL = os.getenv("NOTIFY_FROM_EMAIL", "notifications@truedest.com")
EMAIL_WORKERS = int(os.getenv("EMAIL_WORKERS", "4"))

FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "https://app.truedest.com")

# Hard default, admin_config key PRICE_ALERT_ACTIVE_LIMIT overrides it
PRICE_ALERT_ACTIVE_LIMIT = int(os.getenv("PRICE_ALERT_ACTIVE_LIMIT", "20"))

# Gateway amounts are integers in minor units (cents)
MINOR_UNIT_SCALE = 100


# =====================================================================
# SECTION: STARTUP VALIDATION
# =====================================================================

def validate_settings() -> None:
    """
    Presence checks for secrets the service cannot run without.
    Called from the app startup hook so a bad deploy fails immediately.
    """
    if not STRIPE_WEBHOOK_SECRET:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not set")
    if PAYMENT_PROVIDER == "stripe" and not STRIPE_SECRET_KEY:
        raise ConfigurationError("STRIPE_SECRET_KEY is not set")


# =====================================================================
# SECTION: ADMIN CONFIG DB HELPERS
# Read runtime configuration values stored in admin_config table.
# =====================================================================

def _get_config_row(db: Session, key: str):
    from models import AdminConfig
    return db.query(AdminConfig).filter(AdminConfig.key == key).first()


def get_config_str(key: str, default_value: Optional[str] = None) -> Optional[str]:
    """Read a config value from admin_config as string."""
    from db import SessionLocal
    db = SessionLocal()
    try:
        row = _get_config_row(db, key)
        if not row or row.value is None:
            return default_value
        return str(row.value)
    finally:
        db.close()


def get_config_int(key: str, default_value: int) -> int:
    """Read a config value from admin_config and cast to int."""
    raw = get_config_str(key, None)
    if raw is None:
        return default_value
    try:
        return int(raw)
    except ValueError:
        return default_value


def active_alert_limit() -> int:
    return get_config_int("PRICE_ALERT_ACTIVE_LIMIT", PRICE_ALERT_ACTIVE_LIMIT)


# =====================================================================
# SECTION: ALERT TOGGLE HELPERS
# =====================================================================

def master_alerts_enabled() -> bool:
    """Hard master switch controlled by ALERTS_ENABLED env var."""
    value = os.getenv("ALERTS_ENABLED", "true")
    return value.lower() == "true"


def alerts_globally_enabled(db: Session) -> bool:
    """Global switch stored in admin_config key = 'GLOBAL_ALERTS'."""
    row = _get_config_row(db, "GLOBAL_ALERTS")
    if not row:
        return True
    return bool(row.alerts_enabled)
