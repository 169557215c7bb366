"""
State machine enums for billing models.

This module exposes the choice enums used by billing models, including
the django-fsm status of Subscription.
"""

from billing.state_machines.states import (
    AccountType,
    BillingInterval,
    EventStatus,
    SubscriptionStatus,
    SubscriptionVariant,
    TransactionKind,
    TransactionStatus,
    VerificationStatus,
)

__all__ = [
    "AccountType",
    "BillingInterval",
    "EventStatus",
    "SubscriptionStatus",
    "SubscriptionVariant",
    "TransactionKind",
    "TransactionStatus",
    "VerificationStatus",
]
