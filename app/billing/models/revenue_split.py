"""
RevenueSplit model: how a tenant's payments are divided.

Each tenant has exactly one active row. Changing the split deactivates the
current row and inserts a new one, so history is never rewritten.
Transactions copy the percentage they were computed with.

Usage:
    from billing.services.revenue_split import RevenueSplitPolicy

    policy = RevenueSplitPolicy()
    split = policy.set_split(tenant_id, Decimal("12.5"))
    split.creator_percentage  # Decimal("87.5")
"""

from __future__ import annotations

from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class RevenueSplit(UUIDPrimaryKeyMixin, BaseModel):
    """
    Platform/creator split policy for a tenant.

    Fields:
        tenant: Community the policy applies to
        platform_percentage: Platform share, 0-100 with two decimals
        effective_from: When this row became the active policy
        is_active: Exactly one active row per tenant

    Properties:
        creator_percentage: Always 100 - platform_percentage

    Constraints:
        - One active row per tenant (partial unique constraint)
        - platform_percentage within [0, 100]
    """

    tenant = models.ForeignKey(
        "communities.Community",
        on_delete=models.PROTECT,
        related_name="revenue_splits",
        help_text="Community this split applies to",
    )

    platform_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))],
        help_text="Platform share of each payment, in percent",
    )

    effective_from = models.DateTimeField(
        help_text="When this split became effective",
    )

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether this is the tenant's current split",
    )

    class Meta:
        ordering = ["-effective_from"]
        verbose_name = "Revenue Split"
        verbose_name_plural = "Revenue Splits"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant"],
                condition=models.Q(is_active=True),
                name="revenue_split_one_active_per_tenant",
            ),
            models.CheckConstraint(
                check=models.Q(platform_percentage__gte=0)
                & models.Q(platform_percentage__lte=100),
                name="revenue_split_percentage_range",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with both shares."""
        return (
            f"RevenueSplit({self.tenant_id}, platform={self.platform_percentage}%, "
            f"creator={self.creator_percentage}%)"
        )

    @property
    def creator_percentage(self) -> Decimal:
        """Creator share, derived from the platform share."""
        return Decimal("100") - Decimal(self.platform_percentage)
