"""
providers/factory.py

Routes payment calls to the correct gateway based on PAYMENT_PROVIDER env var.

Currently supported values:
  stripe: Stripe (default, production)
  mock:   in-process fake, local development only

To switch providers without code changes:
  dokku config:set truedest PAYMENT_PROVIDER=mock

Revert instantly:
  dokku config:set truedest PAYMENT_PROVIDER=stripe
"""

from typing import Optional

import config
from errors import ConfigurationError

_GATEWAY = None


def get_payment_gateway(provider: Optional[str] = None):
    """
    Canonical entry point for every gateway call.
    The gateway is built once per process, it holds no per-request state.
    """
    global _GATEWAY

    provider = (provider or config.PAYMENT_PROVIDER).lower().strip()

    if _GATEWAY is not None and _GATEWAY.name == provider:
        return _GATEWAY

    if provider == "mock":
        from providers.mock_gateway import MockGateway
        _GATEWAY = MockGateway()
        return _GATEWAY

    if provider == "stripe":
        from providers.stripe_gateway import StripeGateway
        _GATEWAY = StripeGateway()
        return _GATEWAY

    raise ConfigurationError(f"Unknown PAYMENT_PROVIDER: {provider}")
