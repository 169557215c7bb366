"""
Plan model: subscription plan catalog.

Platform plans (tenant is null) are what the platform charges creators.
Member plans belong to a tenant and are priced on the tenant's connected
account.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from billing.state_machines import BillingInterval, SubscriptionVariant


class Plan(UUIDPrimaryKeyMixin, BaseModel):
    """
    A purchasable subscription plan.

    Fields:
        variant: platform or member
        tenant: Owning community for member plans, null for platform plans
        name / description: Display fields
        price_cents: Price per interval in smallest currency unit
        currency: ISO 4217 currency code (lowercase)
        interval: month or year
        trial_days: Default trial length offered at checkout
        features: List of feature strings for display
        max_members: Optional member cap advertised by the plan
        is_active: Inactive plans cannot be purchased
        stripe_product_id / stripe_price_id: Set once synced to Stripe
    """

    variant = models.CharField(
        max_length=20,
        choices=SubscriptionVariant.choices,
        db_index=True,
        help_text="Whether this is a platform or a member plan",
    )

    tenant = models.ForeignKey(
        "communities.Community",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="plans",
        help_text="Community selling this plan (member plans only)",
    )

    name = models.CharField(max_length=200)

    description = models.TextField(blank=True, default="")

    price_cents = models.PositiveBigIntegerField(
        help_text="Price per interval in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="brl",
        help_text="ISO 4217 currency code (lowercase)",
    )

    interval = models.CharField(
        max_length=10,
        choices=BillingInterval.choices,
        default=BillingInterval.MONTH,
    )

    trial_days = models.PositiveSmallIntegerField(default=0)

    features = models.JSONField(default=list, blank=True)

    max_members = models.PositiveIntegerField(null=True, blank=True)

    is_active = models.BooleanField(default=True, db_index=True)

    stripe_product_id = models.CharField(max_length=255, blank=True, default="")

    stripe_price_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
    )

    class Meta:
        ordering = ["price_cents", "name"]
        verbose_name = "Plan"
        verbose_name_plural = "Plans"
        constraints = [
            models.CheckConstraint(
                check=(
                    models.Q(variant=SubscriptionVariant.PLATFORM, tenant__isnull=True)
                    | models.Q(variant=SubscriptionVariant.MEMBER, tenant__isnull=False)
                ),
                name="plan_tenant_matches_variant",
            ),
        ]

    def __str__(self) -> str:
        return f"Plan({self.name}, {self.variant}, {self.price_cents} {self.currency.upper()}/{self.interval})"

    @property
    def is_synced(self) -> bool:
        """True once the plan has a Stripe price."""
        return bool(self.stripe_price_id)
