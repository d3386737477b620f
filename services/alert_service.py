"""
services/alert_service.py

Price alert engine:
- evaluate_price: pure decision for one new price against one alert
- process_alert: fetch price, record the run, update bounds, notify on fire
- run_all_alerts_cycle: the cron entry point (POST /admin/run-alerts)
"""

from datetime import datetime
from typing import Callable, Dict, NamedTuple, Optional
from uuid import uuid4

import logging

from sqlalchemy.orm import Session

from config import alerts_globally_enabled, master_alerts_enabled
from db import SessionLocal
from errors import ConfigurationError, GatewayUnavailable
from models import AppUser, NotificationType, PriceAlert, PriceAlertRun
from notifications_email import compose_price_alert_email, smtp_configured
from providers.pricing import fetch_current_price
from services.notification_service import NotificationDispatcher, get_dispatcher

logger = logging.getLogger(__name__)

# Duplicate guard, a second cron worker must not re-check the same alert
RECHECK_GUARD_SECONDS = 300


# =====================================================================
# SECTION: DECISION
# =====================================================================

class PriceEvaluation(NamedTuple):
    new_price: float
    previous_price: Optional[float]
    drop_percentage: float
    lowest_price: float
    highest_price: float
    should_fire: bool
    reason: str


def _money(value) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), 2)


def compute_drop_percentage(previous_price: Optional[float], new_price: float) -> float:
    """Percent drop from previous to new. 0 when there is no usable previous price."""
    if not previous_price:
        return 0.0
    return (previous_price - new_price) / previous_price * 100


def evaluate_price(alert: PriceAlert, new_price: float) -> PriceEvaluation:
    new_price = _money(new_price)
    previous = _money(alert.current_price) or None

    drop = compute_drop_percentage(previous, new_price)

    seen = [p for p in (_money(alert.lowest_price), previous, new_price) if p is not None]
    lowest = min(seen)
    seen = [p for p in (_money(alert.highest_price), previous, new_price) if p is not None]
    highest = max(seen)

    threshold = _money(alert.drop_percentage)
    target = _money(alert.target_price)

    if previous is not None and new_price == previous:
        should_fire, reason = False, "unchanged_price"
    elif alert.notify_on_any_drop and previous is not None and new_price < previous:
        should_fire, reason = True, "any_drop"
    elif threshold and drop >= threshold:
        should_fire, reason = True, "drop_threshold"
    elif target is not None and new_price <= target:
        should_fire, reason = True, "target_reached"
    else:
        should_fire, reason = False, "no_trigger"

    return PriceEvaluation(
        new_price=new_price,
        previous_price=previous,
        drop_percentage=round(drop, 2),
        lowest_price=lowest,
        highest_price=highest,
        should_fire=should_fire,
        reason=reason,
    )


# =====================================================================
# SECTION: PROCESS SINGLE ALERT
# =====================================================================

def _alert_label(alert: PriceAlert) -> str:
    criteria = alert.search_criteria or {}
    if alert.alert_type == "HOTEL":
        return f"hotels in {criteria.get('cityCode') or criteria.get('city') or 'your destination'}"
    origin = criteria.get("originCode") or criteria.get("origin")
    destination = criteria.get("destinationCode") or criteria.get("destination")
    if origin and destination:
        return f"{origin} → {destination}"
    return "your saved search"


def process_alert(
    db: Session,
    alert: PriceAlert,
    fetch_price: Callable[[PriceAlert], Optional[float]] = fetch_current_price,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> PriceAlertRun:
    now = datetime.utcnow()
    dispatcher = dispatcher or get_dispatcher()

    run = PriceAlertRun(id=str(uuid4()), alert_id=alert.id, run_at=now, fired=False, reason="started")
    alert.last_checked_at = now
    alert.updated_at = now

    try:
        new_price = fetch_price(alert)
    except (GatewayUnavailable, ConfigurationError) as e:
        logger.error(f"[alerts] price fetch failed alert_id={alert.id}: {e}")
        run.reason = "price_fetch_failed"
        db.add(run)
        db.commit()
        return run

    if new_price is None:
        run.reason = "no_price"
        db.add(run)
        db.commit()
        return run

    evaluation = evaluate_price(alert, new_price)

    run.price_found = evaluation.new_price
    run.previous_price = evaluation.previous_price
    run.drop_percentage = evaluation.drop_percentage
    run.fired = evaluation.should_fire
    run.reason = evaluation.reason

    try:
        # History widens even when nothing fires
        alert.lowest_price = evaluation.lowest_price
        alert.highest_price = evaluation.highest_price
        alert.current_price = evaluation.new_price

        if evaluation.should_fire:
            user = db.get(AppUser, alert.user_id)
            email = compose_price_alert_email(
                alert,
                evaluation.new_price,
                evaluation.previous_price,
                evaluation.drop_percentage,
            )
            message = f"Prices for {_alert_label(alert)} are now {alert.currency} {evaluation.new_price:.2f}"
            if evaluation.drop_percentage > 0:
                message = f"{message}, down {evaluation.drop_percentage:.0f}%"
            dispatcher.notify(
                db,
                user,
                NotificationType.PRICE_ALERT.value,
                "Price Drop Alert!",
                f"{message}.",
                action_url="/dashboard/alerts",
                metadata={
                    "alertId": alert.id,
                    "newPrice": evaluation.new_price,
                    "previousPrice": evaluation.previous_price,
                    "dropPercentage": evaluation.drop_percentage,
                    "reason": evaluation.reason,
                },
                email=email,
            )
            alert.times_triggered = (alert.times_triggered or 0) + 1
            alert.last_notified_at = now
            alert.last_notified_price = evaluation.new_price

        db.add(run)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"[alerts] evaluated alert_id={alert.id} price={evaluation.new_price} "
        f"previous={evaluation.previous_price} drop={evaluation.drop_percentage} "
        f"fired={evaluation.should_fire} reason={evaluation.reason}"
    )
    return run


# =====================================================================
# SECTION: ALERTS CYCLE (CRON ENTRY POINT)
# =====================================================================

def _claim_alert(db: Session, alert_id: str) -> Optional[PriceAlert]:
    """Row lock for the duration of one evaluation. Locked rows belong to another worker."""
    return (
        db.query(PriceAlert)
        .filter(PriceAlert.id == alert_id, PriceAlert.is_active == True)  # noqa: E712
        .with_for_update(skip_locked=True)
        .first()
    )


def run_all_alerts_cycle(
    fetch_price: Callable[[PriceAlert], Optional[float]] = fetch_current_price,
    dispatcher: Optional[NotificationDispatcher] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Dict[str, int]:
    summary = {"checked": 0, "fired": 0, "expired": 0, "skipped": 0, "errors": 0}

    if not master_alerts_enabled():
        logger.info("[alerts] ALERTS_ENABLED is false, skipping alerts cycle")
        return summary

    if not smtp_configured():
        logger.warning("[alerts] SMTP not fully configured, alerts will be in-app only")

    db = session_factory()
    try:
        if not alerts_globally_enabled(db):
            logger.info("[alerts] Global alerts disabled in admin_config, skipping alerts cycle")
            return summary

        now = datetime.utcnow()

        # Expire alerts past their expiry date, they are kept for history
        expiring = (
            db.query(PriceAlert)
            .filter(PriceAlert.is_active == True)  # noqa: E712
            .filter(PriceAlert.expires_at.isnot(None))
            .filter(PriceAlert.expires_at < now)
            .all()
        )
        if expiring:
            for a in expiring:
                a.is_active = False
                a.updated_at = now
            db.commit()
            summary["expired"] = len(expiring)
            logger.info(f"[alerts] Expired {len(expiring)} alerts")

        alert_ids = [
            row.id
            for row in db.query(PriceAlert.id)
            .filter(PriceAlert.is_active == True)  # noqa: E712
            .order_by(PriceAlert.created_at.asc())
            .all()
        ]
        logger.info(f"[alerts] Running alerts cycle for {len(alert_ids)} active alerts")

        for alert_id in alert_ids:
            try:
                alert = _claim_alert(db, alert_id)
                if alert is None:
                    summary["skipped"] += 1
                    continue

                if alert.last_checked_at is not None:
                    age_seconds = (datetime.utcnow() - alert.last_checked_at).total_seconds()
                    if age_seconds < RECHECK_GUARD_SECONDS:
                        db.rollback()
                        summary["skipped"] += 1
                        continue

                run = process_alert(db, alert, fetch_price, dispatcher)
                summary["checked"] += 1
                if run.fired:
                    summary["fired"] += 1

            except Exception:
                logger.exception(f"[alerts] Error processing alert {alert_id}")
                summary["errors"] += 1
                db.rollback()

    finally:
        db.close()

    logger.info(f"[alerts] cycle done {summary}")
    return summary
