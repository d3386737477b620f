"""
providers/pricing.py

Current-price lookup for price alerts.
- POSTs the alert's saved search criteria to the search service at PRICE_SEARCH_URL
- Response is expected to carry a list of offers with a numeric price
- Returns the cheapest price in the alert currency, or None when nothing came back
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from config import PRICE_SEARCH_API_KEY, PRICE_SEARCH_TIMEOUT_SECONDS, PRICE_SEARCH_URL
from errors import ConfigurationError, GatewayUnavailable

logger = logging.getLogger(__name__)


def _extract_offers(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return [o for o in data if isinstance(o, dict)]
    if isinstance(data, dict):
        for key in ("offers", "results", "data"):
            value = data.get(key)
            if isinstance(value, list):
                return [o for o in value if isinstance(o, dict)]
    return []


def _offer_price(offer: Dict[str, Any]) -> Optional[float]:
    raw = offer.get("price")
    if isinstance(raw, dict):
        raw = raw.get("total") or raw.get("amount")
    if raw is None:
        raw = offer.get("total_price") or offer.get("totalPrice")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def cheapest_price(data: Any) -> Optional[float]:
    prices = [p for p in (_offer_price(o) for o in _extract_offers(data)) if p is not None]
    return min(prices) if prices else None


def fetch_current_price(alert) -> Optional[float]:
    """
    Canonical price source for the alert cycle.
    Raises GatewayUnavailable on transport or HTTP errors so the run is recorded as failed.
    """
    if not PRICE_SEARCH_URL:
        raise ConfigurationError("PRICE_SEARCH_URL is not configured")

    payload = {
        "type": alert.alert_type,
        "currency": alert.currency,
        "criteria": alert.search_criteria or {},
    }
    headers = {"Accept": "application/json"}
    if PRICE_SEARCH_API_KEY:
        headers["Authorization"] = f"Bearer {PRICE_SEARCH_API_KEY}"

    try:
        res = requests.post(
            PRICE_SEARCH_URL,
            json=payload,
            headers=headers,
            timeout=PRICE_SEARCH_TIMEOUT_SECONDS,
        )
        res.raise_for_status()
        data = res.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"[pricing] search failed alert_id={alert.id}: {e}")
        raise GatewayUnavailable(f"Price search failed: {e}") from e

    price = cheapest_price(data)
    logger.info(f"[pricing] alert_id={alert.id} offers_price={price}")
    return price
