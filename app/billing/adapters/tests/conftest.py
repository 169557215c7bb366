"""
Pytest fixtures for Stripe adapter tests.

The adapter is built on a MagicMock standing in for stripe.StripeClient,
so every test asserts on the exact service call the adapter made.

Sections:
    - Mock Stripe Client Fixtures
    - Stripe Response Fixtures
    - Error Response Fixtures
"""

from unittest.mock import MagicMock

import pytest
import stripe

from billing.adapters import StripeAdapter


WEBHOOK_SECRET = "whsec_adapter_test"


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture
def stripe_client():
    """Mock stripe.StripeClient with service attributes auto-created."""
    return MagicMock()


@pytest.fixture
def adapter(stripe_client):
    return StripeAdapter(
        api_key="sk_test_adapter",
        webhook_secret=WEBHOOK_SECRET,
        timeout=5,
        client=stripe_client,
    )


# =============================================================================
# Stripe Response Fixtures
# =============================================================================


@pytest.fixture
def account_response():
    """Create a Stripe account response."""

    def _create(
        id: str = "acct_test123",
        charges_enabled: bool = False,
        payouts_enabled: bool = False,
        currently_due: list[str] | None = None,
        disabled_reason: str | None = None,
    ) -> dict:
        return {
            "id": id,
            "object": "account",
            "country": "BR",
            "email": "owner@example.com",
            "business_type": "individual",
            "charges_enabled": charges_enabled,
            "payouts_enabled": payouts_enabled,
            "details_submitted": charges_enabled,
            "capabilities": {"card_payments": "inactive", "transfers": "inactive"},
            "requirements": {
                "currently_due": currently_due or [],
                "eventually_due": [],
                "past_due": [],
                "pending_verification": [],
                "disabled_reason": disabled_reason,
            },
        }

    return _create


@pytest.fixture
def subscription_response():
    """Create a Stripe subscription response with one item."""

    def _create(
        id: str = "sub_test123",
        status: str = "active",
        price_id: str = "price_old",
        cancel_at_period_end: bool = False,
    ) -> dict:
        return {
            "id": id,
            "object": "subscription",
            "status": status,
            "cancel_at_period_end": cancel_at_period_end,
            "items": {"data": [{"id": "si_test123", "price": {"id": price_id}}]},
        }

    return _create


# =============================================================================
# Error Response Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""
    return stripe.CardError(
        message="Your card was declined.",
        param=None,
        code="card_declined",
    )


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such price: 'price_missing'",
        param: str | None = "price",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    return stripe.APIConnectionError(message="Could not connect to Stripe.")


@pytest.fixture
def timeout_error():
    return stripe.APIConnectionError(message="Request to Stripe timed out.")


@pytest.fixture
def api_error():
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided.")
