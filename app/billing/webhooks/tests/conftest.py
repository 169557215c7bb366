"""
Pytest fixtures for webhook tests.

Provides a StripeAdapter wired to a mock Stripe client and the test
webhook secret, a signer producing valid Stripe-Signature headers, event
payload builders, and tenant/subscription fixtures.
"""

import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from billing.adapters import StripeAdapter
from billing.services import AccountRegistry, SubscriptionLedger, TransactionLedger
from billing.tests.factories import (
    AccountFactory,
    CommunityFactory,
    PlanFactory,
    RevenueSplitFactory,
    SubscriptionFactory,
)
from billing.webhooks.handlers import HandlerContext
from billing.webhooks.ingestion import WebhookIngestionEngine

WEBHOOK_SECRET = "whsec_test_billing"


# =============================================================================
# Adapter and Signing
# =============================================================================


@pytest.fixture
def stripe_client():
    """Mock stripe.StripeClient; webhook tests never reach the API."""
    return MagicMock()


@pytest.fixture
def adapter(stripe_client):
    return StripeAdapter(
        api_key="sk_test_billing",
        webhook_secret=WEBHOOK_SECRET,
        client=stripe_client,
    )


def sign_payload(body: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for body."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{body}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def signed_delivery():
    """
    Encode a payload and sign it.

    Usage:
        body, header = signed_delivery(payload)
        engine.ingest(body, header)
    """

    def _sign(
        payload: dict | str,
        secret: str = WEBHOOK_SECRET,
        timestamp: int | None = None,
    ) -> tuple[bytes, str]:
        body = payload if isinstance(payload, str) else json.dumps(payload)
        return body.encode(), sign_payload(body, secret, timestamp)

    return _sign


@pytest.fixture
def handler_context(adapter):
    return HandlerContext(
        accounts=AccountRegistry(adapter),
        subscriptions=SubscriptionLedger(adapter),
        transactions=TransactionLedger(),
    )


@pytest.fixture
def engine(adapter, handler_context):
    return WebhookIngestionEngine(adapter, context=handler_context)


# =============================================================================
# Payload Builders
# =============================================================================


@pytest.fixture
def make_event():
    """
    Build a Stripe event payload.

    Usage:
        payload = make_event("charge.refunded", {"id": "ch_1", ...}, account="acct_1")
    """

    def _make(
        event_type: str,
        obj: dict,
        account: str | None = None,
        event_id: str | None = None,
        created: int = 1767225600,
    ) -> dict:
        payload = {
            "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "created": created,
            "livemode": False,
            "data": {"object": obj},
        }
        if account:
            payload["account"] = account
        return payload

    return _make


# =============================================================================
# Tenant Fixtures
# =============================================================================


@pytest.fixture
def community(db):
    return CommunityFactory()


@pytest.fixture
def chargeable_account(db, community):
    return AccountFactory(tenant=community)


@pytest.fixture
def revenue_split(db, community):
    """Active 10% platform split for the community."""
    return RevenueSplitFactory(tenant=community, platform_percentage=Decimal("10.00"))


@pytest.fixture
def member_plan(db, community):
    return PlanFactory(tenant=community)


@pytest.fixture
def active_subscription(db, community, member_plan):
    return SubscriptionFactory(
        tenant=community,
        plan=member_plan,
        payer_id="user_active",
        external_subscription_id="sub_webhook_1",
    )
