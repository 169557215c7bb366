"""
Billing models.

Models:
    Account: Tenant's Stripe Connected Account
    RevenueSplit: Platform/creator split policy per tenant
    Plan: Subscription plan catalog
    Subscription: Platform or member subscription mirrored from Stripe
    SubscriptionAnomaly: Lifecycle event outside the transition graph
    Transaction: Append-only ledger of money movements
    ProcessedEvent: Webhook deduplication and retry state
"""

from billing.models.account import Account
from billing.models.plan import Plan
from billing.models.processed_event import ProcessedEvent
from billing.models.revenue_split import RevenueSplit
from billing.models.subscription import Subscription, SubscriptionAnomaly
from billing.models.transaction import Transaction

__all__ = [
    "Account",
    "Plan",
    "ProcessedEvent",
    "RevenueSplit",
    "Subscription",
    "SubscriptionAnomaly",
    "Transaction",
]
