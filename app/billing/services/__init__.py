"""
Billing services.

This module provides:
- AccountRegistry: Connected account onboarding and status sync
- RevenueSplitPolicy / compute_split: Platform and creator shares
- SubscriptionLedger: Checkout, lifecycle mirroring, cancellation
- TransactionLedger: Append-only money movement records

Every service that talks to Stripe takes the processor client in its
constructor:

    from billing.adapters import get_processor_client
    from billing.services import AccountRegistry

    registry = AccountRegistry(get_processor_client())
"""

from billing.services.account_registry import AccountRegistry, derive_verification_status
from billing.services.revenue_split import RevenueSplitPolicy, compute_split, reverse_split
from billing.services.subscription_ledger import SubscriptionLedger
from billing.services.transaction_ledger import TransactionLedger
from billing.services.types import (
    AccountStatus,
    CheckoutSessionRef,
    LifecycleOutcome,
    LifecycleUpdate,
    OnboardingResult,
    RevenueSummary,
    SplitAmounts,
)

__all__ = [
    "AccountRegistry",
    "AccountStatus",
    "CheckoutSessionRef",
    "LifecycleOutcome",
    "LifecycleUpdate",
    "OnboardingResult",
    "RevenueSplitPolicy",
    "RevenueSummary",
    "SplitAmounts",
    "SubscriptionLedger",
    "TransactionLedger",
    "compute_split",
    "derive_verification_status",
    "reverse_split",
]
