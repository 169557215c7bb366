"""
Pytest fixtures for billing tests.

This module provides fixtures for tenants, connected accounts, plans and
subscriptions in common states, plus a processor double standing in for
StripeAdapter.

Usage:
    def test_member_checkout(subscription_ledger, chargeable_account, member_plan):
        ref = subscription_ledger.create_checkout(
            SubscriptionVariant.MEMBER,
            chargeable_account.tenant_id,
            member_plan.id,
            payer_id="user_1",
        )
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from billing.adapters import (
    AccountResult,
    CheckoutSessionResult,
    PriceResult,
    StripeAdapter,
    SubscriptionResult,
)
from billing.services import (
    AccountRegistry,
    RevenueSplitPolicy,
    SubscriptionLedger,
    TransactionLedger,
)
from billing.state_machines import SubscriptionStatus, SubscriptionVariant, VerificationStatus
from billing.tests.factories import (
    AccountFactory,
    CommunityFactory,
    PlanFactory,
    RevenueSplitFactory,
    SubscriptionFactory,
)


# =============================================================================
# Processor Double
# =============================================================================


@pytest.fixture
def processor():
    """
    StripeAdapter double with successful default responses.

    Override per test, e.g.:
        processor.retrieve_account.side_effect = StripeAPIUnavailableError("down")
    """
    mock = MagicMock(spec=StripeAdapter)
    mock.create_connected_account.return_value = AccountResult(id="acct_test_new")
    mock.create_account_link.return_value = "https://connect.stripe.com/setup/e/acct_test_new/abc"
    mock.retrieve_account.return_value = AccountResult(
        id="acct_test_new",
        charges_enabled=True,
        payouts_enabled=True,
        details_submitted=True,
        requirements={"currently_due": [], "eventually_due": [], "past_due": []},
    )
    mock.create_checkout_session.return_value = CheckoutSessionResult(
        id="cs_test_123",
        url="https://checkout.stripe.com/c/pay/cs_test_123",
    )
    mock.cancel_subscription.return_value = SubscriptionResult(
        id="sub_test", status="active", cancel_at_period_end=True
    )
    mock.update_subscription_price.return_value = SubscriptionResult(id="sub_test", status="active")
    mock.create_product_and_price.return_value = PriceResult(
        product_id="prod_test_synced",
        price_id="price_test_synced",
    )
    return mock


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def split_policy():
    return RevenueSplitPolicy()


@pytest.fixture
def account_registry(processor):
    return AccountRegistry(processor)


@pytest.fixture
def subscription_ledger(processor):
    return SubscriptionLedger(processor)


@pytest.fixture
def transaction_ledger():
    return TransactionLedger()


# =============================================================================
# Tenant and Account Fixtures
# =============================================================================


@pytest.fixture
def community(db):
    """Create a community without a payment account."""
    return CommunityFactory()


@pytest.fixture
def chargeable_account(db, community):
    """Create a verified account that can accept charges."""
    return AccountFactory(tenant=community)


@pytest.fixture
def pending_account(db, community):
    """Create an account whose onboarding is not finished."""
    return AccountFactory(
        tenant=community,
        verification_status=VerificationStatus.PENDING,
        charges_enabled=False,
        payouts_enabled=False,
        details_submitted=False,
    )


@pytest.fixture
def revenue_split(db, community):
    """Active 20% platform split for the community."""
    return RevenueSplitFactory(tenant=community, platform_percentage=Decimal("20.00"))


# =============================================================================
# Plan Fixtures
# =============================================================================


@pytest.fixture
def member_plan(db, community):
    return PlanFactory(tenant=community, variant=SubscriptionVariant.MEMBER)


@pytest.fixture
def platform_plan(db):
    return PlanFactory(tenant=None, variant=SubscriptionVariant.PLATFORM, price_cents=9900)


# =============================================================================
# Subscription State Fixtures
# =============================================================================


@pytest.fixture
def active_subscription(db, community, member_plan):
    """Create an active member subscription."""
    return SubscriptionFactory(tenant=community, plan=member_plan, payer_id="user_active")


@pytest.fixture
def canceled_subscription(db, community, member_plan):
    """Create a canceled member subscription."""
    return SubscriptionFactory(
        tenant=community,
        plan=member_plan,
        payer_id="user_canceled",
        status=SubscriptionStatus.CANCELED,
    )


@pytest.fixture
def platform_subscription(db, community, platform_plan):
    """Create an active platform subscription for the community owner."""
    return SubscriptionFactory(
        tenant=community,
        plan=platform_plan,
        variant=SubscriptionVariant.PLATFORM,
        payer_id=community.owner_user_id,
        amount_cents=9900,
    )
