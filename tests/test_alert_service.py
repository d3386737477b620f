"""
Unit tests for the price alert evaluator and the alerts cycle.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest

from errors import GatewayUnavailable
from models import AdminConfig, Notification, NotificationType, PriceAlert, PriceAlertRun
from services.alert_service import (
    compute_drop_percentage,
    evaluate_price,
    process_alert,
    run_all_alerts_cycle,
)


def _alert_state(**overrides):
    """Detached stand-in with the fields evaluate_price reads."""
    fields = dict(
        current_price=None,
        lowest_price=None,
        highest_price=None,
        target_price=None,
        drop_percentage=None,
        notify_on_any_drop=False,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def make_alert(db):
    def _make(user, **overrides):
        now = datetime.utcnow()
        fields = dict(
            id=str(uuid4()),
            user_id=user.id,
            alert_type="FLIGHT",
            search_criteria={"originCode": "LHR", "destinationCode": "JFK", "departureDate": "2026-12-01"},
            currency="USD",
            is_active=True,
            notify_on_any_drop=False,
            times_triggered=0,
            created_at=now,
            updated_at=now,
        )
        fields.update(overrides)
        alert = PriceAlert(**fields)
        db.add(alert)
        db.commit()
        db.refresh(alert)
        return alert
    return _make


def _price_feed(*prices):
    feed = list(prices)

    def fetch(alert):
        return feed.pop(0)
    return fetch


class TestDecision:
    def test_bounds_only_widen(self):
        state = _alert_state()
        for price in (600.0, 650.0, 520.0, 580.0, 700.0):
            ev = evaluate_price(state, price)
            if state.lowest_price is not None:
                assert ev.lowest_price <= state.lowest_price
                assert ev.highest_price >= state.highest_price
            assert ev.lowest_price <= ev.new_price <= ev.highest_price
            state.lowest_price = ev.lowest_price
            state.highest_price = ev.highest_price
            state.current_price = ev.new_price

        assert state.lowest_price == 520.0
        assert state.highest_price == 700.0

    def test_no_previous_price_means_no_drop(self):
        ev = evaluate_price(_alert_state(drop_percentage=5), 400.0)
        assert ev.drop_percentage == 0
        assert ev.previous_price is None
        assert not ev.should_fire

    def test_zero_previous_price_does_not_divide_by_zero(self):
        assert compute_drop_percentage(0, 100.0) == 0.0
        ev = evaluate_price(_alert_state(current_price=0, drop_percentage=10), 100.0)
        assert ev.drop_percentage == 0

    def test_drop_threshold_fires(self):
        ev = evaluate_price(_alert_state(current_price=600.0, drop_percentage=10), 520.0)
        assert ev.should_fire
        assert ev.reason == "drop_threshold"
        assert ev.drop_percentage == pytest.approx(13.33, abs=0.01)

    def test_drop_below_threshold_does_not_fire(self):
        ev = evaluate_price(_alert_state(current_price=600.0, drop_percentage=20), 520.0)
        assert not ev.should_fire

    def test_any_drop_fires_on_a_small_drop(self):
        ev = evaluate_price(_alert_state(current_price=600.0, notify_on_any_drop=True), 599.0)
        assert ev.should_fire
        assert ev.reason == "any_drop"

    def test_target_reached_fires(self):
        ev = evaluate_price(_alert_state(current_price=800.0, target_price=500.0), 499.0)
        assert ev.should_fire
        assert ev.reason == "target_reached"

    def test_first_price_at_target_fires(self):
        ev = evaluate_price(_alert_state(target_price=700.0), 600.0)
        assert ev.should_fire

    def test_rising_price_still_under_target_fires(self):
        ev = evaluate_price(_alert_state(current_price=400.0, target_price=500.0), 450.0)
        assert ev.should_fire

    def test_unchanged_price_never_fires(self):
        ev = evaluate_price(
            _alert_state(current_price=450.0, target_price=500.0, notify_on_any_drop=True, drop_percentage=1),
            450.0,
        )
        assert not ev.should_fire
        assert ev.reason == "unchanged_price"

    def test_no_target_skips_target_clause(self):
        ev = evaluate_price(_alert_state(current_price=500.0), 100.0)
        assert not ev.should_fire


class TestProcessAlert:
    def test_drop_from_600_to_520_notifies_once(self, db, user, make_alert, dispatcher, emails):
        """600 -> 520 with a 10% threshold: fires, one notification, one email, bounds kept."""
        alert = make_alert(user, drop_percentage=10)

        first = process_alert(db, alert, _price_feed(600.0), dispatcher)
        assert not first.fired

        second = process_alert(db, alert, _price_feed(520.0), dispatcher)

        db.refresh(alert)
        assert second.fired
        assert second.previous_price == 600.0
        assert second.drop_percentage == pytest.approx(13.33, abs=0.01)
        assert alert.current_price == 520.0
        assert alert.lowest_price == 520.0
        assert alert.highest_price == 600.0
        assert alert.times_triggered == 1
        assert alert.last_notified_price == 520.0

        notes = db.query(Notification).filter(Notification.type == NotificationType.PRICE_ALERT.value).all()
        assert len(notes) == 1
        assert notes[0].meta["alertId"] == alert.id
        assert len(emails.sent) == 1
        assert "LHR → JFK" in emails.sent[0]["subject"]

        assert db.query(PriceAlertRun).filter(PriceAlertRun.alert_id == alert.id).count() == 2

    def test_unchanged_price_updates_bookkeeping_only(self, db, user, make_alert, dispatcher, emails):
        alert = make_alert(user, current_price=450.0, lowest_price=450.0, highest_price=450.0, target_price=500.0)

        run = process_alert(db, alert, _price_feed(450.0), dispatcher)

        db.refresh(alert)
        assert not run.fired
        assert alert.last_checked_at is not None
        assert alert.times_triggered == 0
        assert emails.sent == []

    def test_fetch_failure_is_recorded_and_prices_untouched(self, db, user, make_alert, dispatcher):
        alert = make_alert(user, current_price=300.0, lowest_price=300.0, highest_price=300.0)

        def unavailable(a):
            raise GatewayUnavailable("Price search failed: timeout")

        run = process_alert(db, alert, unavailable, dispatcher)

        db.refresh(alert)
        assert run.reason == "price_fetch_failed"
        assert not run.fired
        assert alert.current_price == 300.0

    def test_no_price_is_recorded(self, db, user, make_alert, dispatcher):
        alert = make_alert(user)
        run = process_alert(db, alert, lambda a: None, dispatcher)
        assert run.reason == "no_price"
        assert run.price_found is None

    def test_user_without_email_preference_gets_in_app_only(self, db, user, make_alert, dispatcher, emails):
        user.email_notifications_enabled = False
        db.commit()
        alert = make_alert(user, current_price=600.0, notify_on_any_drop=True)

        run = process_alert(db, alert, _price_feed(590.0), dispatcher)

        assert run.fired
        assert db.query(Notification).count() == 1
        assert emails.sent == []


class TestAlertsCycle:
    def test_cycle_expires_and_evaluates(self, db, user, make_alert, dispatcher):
        expired = make_alert(user, expires_at=datetime.utcnow() - timedelta(days=1))
        live = make_alert(user, current_price=600.0, drop_percentage=10)

        summary = run_all_alerts_cycle(fetch_price=lambda a: 500.0, dispatcher=dispatcher)

        db.expire_all()
        assert summary["expired"] == 1
        assert summary["checked"] == 1
        assert summary["fired"] == 1
        assert db.get(PriceAlert, expired.id).is_active is False
        assert db.get(PriceAlert, live.id).current_price == 500.0

    def test_one_failing_alert_does_not_stop_the_cycle(self, db, user, make_alert, dispatcher):
        bad = make_alert(user, current_price=100.0)
        good = make_alert(user, current_price=100.0, notify_on_any_drop=True)

        def fetch(alert):
            if alert.id == bad.id:
                raise RuntimeError("unexpected payload")
            return 90.0

        summary = run_all_alerts_cycle(fetch_price=fetch, dispatcher=dispatcher)

        db.expire_all()
        assert summary["errors"] == 1
        assert summary["checked"] == 1
        assert db.get(PriceAlert, good.id).current_price == 90.0

    def test_recently_checked_alerts_are_skipped(self, db, user, make_alert, dispatcher):
        make_alert(user, last_checked_at=datetime.utcnow())

        summary = run_all_alerts_cycle(fetch_price=lambda a: 100.0, dispatcher=dispatcher)

        assert summary["skipped"] == 1
        assert summary["checked"] == 0

    def test_master_switch_off_skips_everything(self, db, user, make_alert, dispatcher, monkeypatch):
        make_alert(user)
        monkeypatch.setenv("ALERTS_ENABLED", "false")

        summary = run_all_alerts_cycle(fetch_price=lambda a: 100.0, dispatcher=dispatcher)

        assert summary["checked"] == 0
        assert db.query(PriceAlertRun).count() == 0

    def test_global_admin_switch_off_skips_everything(self, db, user, make_alert, dispatcher):
        make_alert(user)
        db.add(AdminConfig(key="GLOBAL_ALERTS", alerts_enabled=False))
        db.commit()

        summary = run_all_alerts_cycle(fetch_price=lambda a: 100.0, dispatcher=dispatcher)

        assert summary["checked"] == 0
        assert db.query(PriceAlertRun).count() == 0
