"""
Subscription model for platform rent and member access.

A Subscription mirrors a Stripe subscription. Platform subscriptions bill
the tenant owner for using the platform; member subscriptions bill an end
user for access to a community and are created on the tenant's connected
account.

Status changes are driven by Stripe webhooks only. The lifecycle graph is
encoded as django-fsm transitions:

    incomplete -> active | incomplete_expired
    trialing   -> active | past_due | canceled
    active     -> past_due | canceled
    past_due   -> active | unpaid | canceled
    canceled, incomplete_expired: terminal

Usage:
    from django_fsm import can_proceed

    transition = subscription.transition_for(SubscriptionStatus.PAST_DUE)
    if transition is not None and can_proceed(transition):
        transition()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import OptimisticLockMixin, UUIDPrimaryKeyMixin

from billing.state_machines import (
    BillingInterval,
    SubscriptionStatus,
    SubscriptionVariant,
)

if TYPE_CHECKING:
    from collections.abc import Callable


# Statuses that count as a live subscription for duplicate checks
LIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class Subscription(UUIDPrimaryKeyMixin, OptimisticLockMixin, BaseModel):
    """
    Tracks a recurring subscription mirrored from Stripe.

    Fields:
        variant: platform or member
        tenant: Community the subscription belongs to
        payer_id: Tenant owner id (platform) or end-user id (member)
        plan: Plan purchased (nullable; unknown prices stay unlinked)
        external_subscription_id: Stripe Subscription ID (sub_xxx), unique
        external_customer_id: Stripe Customer ID (cus_xxx)
        external_price_id: Stripe Price ID of the first item
        status: Current FSM status
        current_period_start/end, trial_start/end: Period timestamps
        cancel_at_period_end: Whether cancellation is scheduled
        canceled_at: When Stripe canceled the subscription
        cancel_requested_at: When cancellation was requested through the API
        amount_cents / currency / billing_interval: Price of the period
        invoiced_period_start: Period whose amount and currency are frozen
        last_event_at: Stripe timestamp of the last applied event
        version: Optimistic locking version
        metadata: Flexible JSON storage
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    variant = models.CharField(
        max_length=20,
        choices=SubscriptionVariant.choices,
        db_index=True,
        help_text="Platform rent or member access",
    )

    tenant = models.ForeignKey(
        "communities.Community",
        on_delete=models.PROTECT,
        related_name="subscriptions",
        help_text="Community this subscription belongs to",
    )

    payer_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Tenant owner id (platform) or end-user id (member)",
    )

    plan = models.ForeignKey(
        "billing.Plan",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subscriptions",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    external_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe Subscription ID (sub_xxx)",
    )

    external_customer_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Stripe Customer ID (cus_xxx)",
    )

    external_price_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Price ID (price_xxx)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=SubscriptionStatus.INCOMPLETE,
        choices=SubscriptionStatus.choices,
        db_index=True,
        help_text="Current status of the subscription (managed by FSM)",
    )

    # ==========================================================================
    # Billing Period
    # ==========================================================================

    current_period_start = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    trial_start = models.DateTimeField(null=True, blank=True)
    trial_end = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Cancellation
    # ==========================================================================

    cancel_at_period_end = models.BooleanField(
        default=False,
        help_text="Whether subscription will cancel at period end",
    )

    canceled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When Stripe canceled the subscription",
    )

    cancel_requested_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When cancellation was requested through the API",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Amount per interval in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="brl",
        help_text="ISO 4217 currency code (lowercase)",
    )

    billing_interval = models.CharField(
        max_length=10,
        choices=BillingInterval.choices,
        default=BillingInterval.MONTH,
    )

    invoiced_period_start = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Start of the period whose amount and currency are frozen",
    )

    last_event_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Stripe timestamp of the last applied lifecycle event",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        indexes = [
            models.Index(
                fields=["tenant", "variant", "status"],
                name="billing_sub_tenant__a71c3d_idx",
            ),
            models.Index(
                fields=["payer_id", "status"],
                name="billing_sub_payer_i_2f6e90_idx",
            ),
            models.Index(
                fields=["status", "current_period_end"],
                name="billing_sub_status_c4d812_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, status, and amount."""
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return (
            f"Subscription({self.external_subscription_id}, {self.variant}, "
            f"{self.status}, {amount_display}/{self.billing_interval})"
        )

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[
            SubscriptionStatus.INCOMPLETE,
            SubscriptionStatus.TRIALING,
            SubscriptionStatus.PAST_DUE,
        ],
        target=SubscriptionStatus.ACTIVE,
    )
    def activate(self):
        """
        Activate after the first successful payment, trial conversion or
        a recovered retry.

        Transition: INCOMPLETE/TRIALING/PAST_DUE -> ACTIVE
        """

    @transition(
        field=status,
        source=SubscriptionStatus.INCOMPLETE,
        target=SubscriptionStatus.INCOMPLETE_EXPIRED,
    )
    def expire(self):
        """
        Initial payment was never completed.

        Transition: INCOMPLETE -> INCOMPLETE_EXPIRED
        """

    @transition(
        field=status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING],
        target=SubscriptionStatus.PAST_DUE,
    )
    def mark_past_due(self):
        """
        Mark subscription as past due after payment failure.

        Transition: ACTIVE/TRIALING -> PAST_DUE

        Stripe Smart Retries will attempt to collect payment.
        """

    @transition(
        field=status,
        source=SubscriptionStatus.PAST_DUE,
        target=SubscriptionStatus.UNPAID,
    )
    def mark_unpaid(self):
        """
        Retries exhausted without cancellation.

        Transition: PAST_DUE -> UNPAID
        """

    @transition(
        field=status,
        source=[
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.TRIALING,
        ],
        target=SubscriptionStatus.CANCELED,
    )
    def cancel(self):
        """
        Cancel the subscription.

        Transition: ACTIVE/PAST_DUE/TRIALING -> CANCELED

        Triggered by customer.subscription.deleted, or by an update whose
        status is canceled.
        """
        if self.canceled_at is None:
            self.canceled_at = timezone.now()

    # Target status -> transition method name
    TRANSITIONS = {
        SubscriptionStatus.ACTIVE: "activate",
        SubscriptionStatus.INCOMPLETE_EXPIRED: "expire",
        SubscriptionStatus.PAST_DUE: "mark_past_due",
        SubscriptionStatus.UNPAID: "mark_unpaid",
        SubscriptionStatus.CANCELED: "cancel",
    }

    def transition_for(self, target_status: str) -> Callable[[], None] | None:
        """Return the bound transition reaching target_status, if any."""
        name = self.TRANSITIONS.get(target_status)
        return getattr(self, name) if name else None

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    @property
    def is_live(self) -> bool:
        """Check if subscription currently grants access."""
        return self.status in LIVE_STATUSES

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED

    @property
    def will_cancel_at_period_end(self) -> bool:
        """Check if subscription is scheduled for cancellation."""
        return self.cancel_at_period_end and not self.is_canceled


class SubscriptionAnomaly(UUIDPrimaryKeyMixin, BaseModel):
    """
    A lifecycle event that requested a transition outside the graph.

    The subscription's status is left unchanged; the row is kept for
    manual review.
    """

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.PROTECT,
        related_name="anomalies",
    )

    from_status = models.CharField(max_length=30, choices=SubscriptionStatus.choices)

    requested_status = models.CharField(max_length=30)

    source_event_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe event that requested the transition",
    )

    reason = models.TextField(blank=True, default="")

    resolved = models.BooleanField(default=False, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscription Anomaly"
        verbose_name_plural = "Subscription Anomalies"

    def __str__(self) -> str:
        return (
            f"SubscriptionAnomaly({self.subscription_id}, "
            f"{self.from_status} -> {self.requested_status})"
        )
