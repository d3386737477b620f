import smtplib
from email.message import EmailMessage
from typing import List, Optional, Tuple

from config import (
    FRONTEND_BASE_URL,
    NOTIFY_FROM_EMAIL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USERNAME,
)
from errors import ConfigurationError
from models import NotificationType


# =======================================
# SECTION: GENERIC SINGLE EMAIL SENDER
# =======================================

def smtp_configured() -> bool:
    return bool(SMTP_USERNAME and SMTP_PASSWORD and NOTIFY_FROM_EMAIL)


def send_single_email(to_email: str, subject: str, body: str, html: Optional[str] = None) -> None:
    if not smtp_configured():
        raise ConfigurationError("SMTP settings are not fully configured on the server")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"TrueDest <{NOTIFY_FROM_EMAIL}>"
    msg["To"] = to_email
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")

    with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
        server.starttls()
        server.login(SMTP_USERNAME, SMTP_PASSWORD)
        server.send_message(msg)


# =======================================
# SECTION: HELPER LINK BUILDERS
# =======================================

def build_frontend_link(path: Optional[str]) -> str:
    """Absolute link into the web app for a relative action_url like /trips/12."""
    base = FRONTEND_BASE_URL.rstrip("/")
    if not path:
        return base
    if path.startswith("http://") or path.startswith("https://"):
        return path
    return f"{base}/{path.lstrip('/')}"


# =======================================
# SECTION: NOTIFICATION EMAILS
# =======================================

SUBJECT_PREFIXES = {
    NotificationType.PAYMENT_SUCCESS.value: "Booking confirmed",
    NotificationType.PAYMENT_FAILED.value: "Payment failed",
    NotificationType.PRICE_ALERT.value: "Price alert",
    NotificationType.BOOKING_UPDATE.value: "Booking update",
    NotificationType.SYSTEM.value: "Account update",
}


def compose_notification_email(
    kind: str,
    title: str,
    message: str,
    action_url: Optional[str] = None,
) -> Tuple[str, str]:
    """Plain text email mirroring an in-app notification. Returns (subject, body)."""
    prefix = SUBJECT_PREFIXES.get(kind, "TrueDest")
    subject = f"TrueDest {prefix}: {title}"

    lines: List[str] = []
    lines.append(title)
    lines.append("")
    lines.append(message)
    lines.append("")
    if action_url:
        lines.append("View in TrueDest:")
        lines.append(build_frontend_link(action_url))
        lines.append("")
    lines.append("You are receiving this because you have a TrueDest account.")
    lines.append("Email notifications can be turned off in your profile settings.")

    return subject, "\n".join(lines)


def compose_price_alert_email(alert, new_price: float, previous_price: Optional[float], drop_percentage: float) -> Tuple[str, str]:
    """
    Price alert email:
    route or city summary, new price, movement since the last check.
    """
    criteria = alert.search_criteria or {}
    if alert.alert_type == "HOTEL":
        place = criteria.get("cityCode") or criteria.get("city") or "your hotel search"
        label = f"Hotels in {place}"
    else:
        origin = criteria.get("originCode") or criteria.get("origin") or "?"
        destination = criteria.get("destinationCode") or criteria.get("destination") or "?"
        label = f"{origin} → {destination}"

    subject = f"Price drop: {label} now {alert.currency} {new_price:.2f}"
    if drop_percentage > 0:
        subject = f"{subject} (save {drop_percentage:.0f}%)"

    lines: List[str] = []
    lines.append(f"Search: {label}")
    lines.append(f"Current price: {alert.currency} {new_price:.2f}")
    if previous_price:
        lines.append(f"Previous price: {alert.currency} {previous_price:.2f}")
    if alert.target_price is not None:
        lines.append(f"Your target: {alert.currency} {alert.target_price:.2f}")
    if alert.lowest_price is not None:
        lines.append(f"Lowest seen: {alert.currency} {alert.lowest_price:.2f}")
    lines.append("")
    lines.append("Prices are subject to change and availability.")
    lines.append("Manage your alerts:")
    lines.append(build_frontend_link("/dashboard/alerts"))

    return subject, "\n".join(lines)
