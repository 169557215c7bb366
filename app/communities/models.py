"""
Community model: the tenant of the billing core.

Usage:
    from communities.models import Community

    community = Community.objects.create(
        name="Guitar Lab",
        slug="guitar-lab",
        owner_user_id="user_123",
        owner_email="owner@example.com",
    )

    # Set by billing.services.AccountRegistry when both processor
    # capabilities (charges and payouts) become enabled
    community.stripe_onboarding_completed
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class Community(UUIDPrimaryKeyMixin, BaseModel):
    """
    A creator community (tenant).

    Fields:
        name: Display name
        slug: Unique URL identifier
        owner_user_id: Identifier of the owning user (auth lives elsewhere)
        owner_email: Contact email, used as the processor customer email
            for platform subscriptions
        stripe_account_id: Cached external account id (acct_xxx)
        stripe_onboarding_url: Most recent onboarding link
        stripe_onboarding_completed: Set once charges and payouts are both
            enabled; never cleared automatically

    Note:
        The stripe_* fields are denormalized for the community UI. The
        authoritative account state is billing.Account.
    """

    name = models.CharField(
        max_length=200,
        help_text="Community display name",
    )

    slug = models.SlugField(
        max_length=200,
        unique=True,
        help_text="Unique URL identifier",
    )

    owner_user_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Identifier of the user who owns the community",
    )

    owner_email = models.EmailField(
        blank=True,
        default="",
        help_text="Owner contact email",
    )

    # ==========================================================================
    # Payment Onboarding (written by billing.services.AccountRegistry)
    # ==========================================================================

    stripe_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe connected account ID (acct_xxx)",
    )

    stripe_onboarding_url = models.URLField(
        max_length=1000,
        blank=True,
        default="",
        help_text="Most recent Stripe onboarding link",
    )

    stripe_onboarding_completed = models.BooleanField(
        default=False,
        help_text="Whether charges and payouts have been enabled",
    )

    class Meta:
        ordering = ["name"]
        verbose_name = "Community"
        verbose_name_plural = "Communities"

    def __str__(self) -> str:
        """Return string representation with name and slug."""
        return f"Community({self.name}, {self.slug})"
