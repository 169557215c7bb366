"""
Billing adapters for external services.

All Stripe API calls go through StripeAdapter to ensure consistent error
handling, timeouts, idempotency, and observability. Services take an
adapter in their constructor; get_processor_client() builds the default.

Usage:
    from billing.adapters import get_processor_client

    adapter = get_processor_client()
    status = adapter.retrieve_account("acct_123")
"""

from billing.adapters.stripe_adapter import (
    AccountResult,
    CheckoutSessionParams,
    CheckoutSessionResult,
    CreateAccountParams,
    IdempotencyKeyGenerator,
    PriceResult,
    StripeAdapter,
    SubscriptionResult,
    backoff_delay,
    get_processor_client,
)

__all__ = [
    "AccountResult",
    "CheckoutSessionParams",
    "CheckoutSessionResult",
    "CreateAccountParams",
    "IdempotencyKeyGenerator",
    "PriceResult",
    "StripeAdapter",
    "SubscriptionResult",
    "backoff_delay",
    "get_processor_client",
]
