"""
Account model: a tenant's connected payment account at Stripe.

This model caches the state of a Stripe Connect account that belongs to a
community. Stripe owns the account's state machine; the local row is
created on onboarding start and afterwards mutated only by account status
events or explicit status refreshes.

Usage:
    from billing.models import Account

    account = Account.objects.create(
        tenant=community,
        external_account_id="acct_1234567890",
        account_type=AccountType.EXPRESS,
        country="BR",
    )

    if account.can_accept_charges:
        # Member checkouts may be created for this tenant
        pass
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import OptimisticLockMixin, UUIDPrimaryKeyMixin

from billing.state_machines import AccountType, VerificationStatus


def default_requirements() -> dict:
    """Empty requirement lists in the shape Stripe reports them."""
    return {
        "currently_due": [],
        "eventually_due": [],
        "past_due": [],
        "pending_verification": [],
    }


class Account(UUIDPrimaryKeyMixin, OptimisticLockMixin, BaseModel):
    """
    Represents a tenant's Stripe Connected Account.

    Fields:
        tenant: OneToOne link to the Community (at most one Account per tenant)
        external_account_id: Unique Stripe Account ID (acct_xxx)
        account_type: standard, express or custom
        country: ISO 3166-1 alpha-2 country of the account
        business_type: individual, company, etc. (optional)
        email: Account email given at onboarding
        verification_status: pending, verified, rejected or restricted
        charges_enabled: Whether Stripe allows charges
        payouts_enabled: Whether Stripe allows payouts
        details_submitted: Whether the onboarding form was completed
        requirements: Outstanding requirement lists reported by Stripe
        capabilities: Capability map reported by Stripe
        metadata: Flexible JSON storage
        is_disabled / disabled_at: Soft-disable on account closure
        last_synced_at: Last time status was applied from Stripe
        version: Optimistic locking version

    Note:
        Accounts are never hard-deleted. The tenant FK uses PROTECT.
    """

    tenant = models.OneToOneField(
        "communities.Community",
        on_delete=models.PROTECT,
        related_name="payment_account",
        help_text="Community this account belongs to",
    )

    external_account_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe Account ID (acct_xxx)",
    )

    account_type = models.CharField(
        max_length=20,
        choices=AccountType.choices,
        default=AccountType.EXPRESS,
        help_text="Stripe Connect account type",
    )

    country = models.CharField(
        max_length=2,
        default="BR",
        help_text="ISO 3166-1 alpha-2 country code",
    )

    business_type = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Business type given at onboarding",
    )

    email = models.EmailField(
        blank=True,
        default="",
        help_text="Account email given at onboarding",
    )

    # ==========================================================================
    # Capability State (mirrored from Stripe)
    # ==========================================================================

    verification_status = models.CharField(
        max_length=20,
        choices=VerificationStatus.choices,
        default=VerificationStatus.PENDING,
        db_index=True,
        help_text="Derived verification state",
    )

    charges_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled charges",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled payouts",
    )

    details_submitted = models.BooleanField(
        default=False,
        help_text="Whether the onboarding form was submitted",
    )

    requirements = models.JSONField(
        default=default_requirements,
        blank=True,
        help_text="Outstanding requirements (currently_due, eventually_due, past_due, pending_verification)",
    )

    capabilities = models.JSONField(
        default=dict,
        blank=True,
        help_text="Capability map reported by Stripe",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    is_disabled = models.BooleanField(
        default=False,
        help_text="Soft-disabled after account closure or deauthorization",
    )

    disabled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the account was soft-disabled",
    )

    last_synced_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time status was applied from Stripe",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Account"
        verbose_name_plural = "Payment Accounts"
        indexes = [
            models.Index(
                fields=["verification_status", "charges_enabled"],
                name="billing_acc_verific_5b1c2e_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with Stripe ID and status."""
        return f"Account({self.external_account_id}, {self.verification_status})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def can_accept_charges(self) -> bool:
        """True if member checkouts may be created for this tenant."""
        return self.charges_enabled and not self.is_disabled

    @property
    def is_fully_enabled(self) -> bool:
        """True if both charges and payouts are enabled."""
        return self.charges_enabled and self.payouts_enabled
