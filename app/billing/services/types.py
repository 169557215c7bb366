"""
Value types returned by billing services.

These are plain dataclasses; views serialize them with dataclasses.asdict
or dedicated serializers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class SplitAmounts:
    """
    Division of an amount between platform and creator.

    Invariant: platform_amount + creator_amount == amount
    """

    platform_amount: int
    creator_amount: int
    platform_percentage: Decimal = Decimal("0")


@dataclass
class OnboardingResult:
    """Connected account id and hosted onboarding URL."""

    account_id: str
    onboarding_url: str


@dataclass
class AccountStatus:
    """
    Current capability state of a connected account.

    Attributes:
        account_id: Stripe Account ID (acct_xxx)
        verification_status: pending, verified, rejected or restricted
        charges_enabled / payouts_enabled / details_submitted: Stripe flags
        requirements: Outstanding requirement lists
        onboarding_completed: Whether the tenant has been marked complete
    """

    account_id: str
    verification_status: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    requirements: dict[str, list[str]] = field(default_factory=dict)
    onboarding_completed: bool = False


@dataclass
class CheckoutSessionRef:
    """Reference to a hosted checkout session the payer is redirected to."""

    id: str
    url: str
    customer_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class LifecycleUpdate:
    """
    Fields carried by a subscription lifecycle event.

    Timestamps are aware datetimes; None means "not present in the event".
    """

    status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    cancel_at_period_end: bool | None = None
    canceled_at: datetime | None = None
    customer_id: str | None = None
    price_id: str | None = None
    amount_cents: int | None = None
    currency: str | None = None
    interval: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    event_created_at: datetime | None = None
    source_event_id: str = ""


@dataclass
class LifecycleOutcome:
    """
    What apply_lifecycle_event did.

    Attributes:
        subscription: The row after the update (None if skipped)
        created: True if the row was inserted by this event
        transitioned: True if the status changed
        anomaly: True if the requested transition was rejected
        skipped_reason: Why nothing was applied, if so
    """

    subscription: Any = None
    created: bool = False
    transitioned: bool = False
    anomaly: bool = False
    skipped_reason: str | None = None


@dataclass
class RevenueSummary:
    """Aggregated revenue of a tenant over a period, in minor units."""

    total_revenue: int
    platform_revenue: int
    creator_revenue: int
    transaction_count: int
    active_subscriptions: int
    period_start: datetime
    period_end: datetime
    currency: str | None = None
