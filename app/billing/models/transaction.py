"""
Transaction model: append-only ledger of money movements.

Every payment, refund and chargeback reported by Stripe is recorded as one
row carrying the split that applied at the time. Corrections are new rows
with a negative amount; a succeeded row is never modified.

Idempotency keys:
    payment:{payment_intent_id or charge_id}
    refund:{charge_id}:{amount refunded before this row}
    chargeback:{dispute_id}
    failed_payment:{invoice_id}:{attempt_count}

Usage:
    from billing.services.transaction_ledger import TransactionLedger

    ledger = TransactionLedger()
    txn = ledger.record_payment(tenant_id, "pi_123", 1000, "brl")
    txn.platform_amount_cents + txn.creator_amount_cents == txn.amount_cents
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from billing.exceptions import ImmutableTransactionError
from billing.state_machines import (
    SubscriptionVariant,
    TransactionKind,
    TransactionStatus,
)


class Transaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    One recorded money movement for a tenant.

    Fields:
        tenant: Community the money belongs to
        external_charge_id: Stripe PaymentIntent/Charge ID (optional)
        external_reference_id: Secondary Stripe id (dispute, invoice)
        subscription: Subscription the payment was for (optional)
        variant: Subscription variant, blank for one-off payments
        kind: payment, refund, chargeback or split
        amount_cents: Signed amount; refunds and chargebacks are negative
        currency: ISO 4217 currency code (lowercase)
        platform_percentage: Percentage applied when the split was computed
        platform_amount_cents / creator_amount_cents: Split of amount_cents
        status: pending, succeeded, failed or canceled
        failure_reason: Why a payment failed
        processed_at: When the movement happened at Stripe
        idempotency_key: Unique key derived from the Stripe identifiers
        metadata: Flexible JSON storage

    Note:
        A row whose stored status is succeeded can never be saved again.
    """

    tenant = models.ForeignKey(
        "communities.Community",
        on_delete=models.PROTECT,
        related_name="transactions",
    )

    external_charge_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Stripe PaymentIntent or Charge ID",
    )

    external_reference_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Secondary Stripe ID (dispute or invoice)",
    )

    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
    )

    variant = models.CharField(
        max_length=20,
        choices=SubscriptionVariant.choices,
        blank=True,
        default="",
    )

    kind = models.CharField(
        max_length=20,
        choices=TransactionKind.choices,
        db_index=True,
    )

    amount_cents = models.BigIntegerField(
        help_text="Signed amount in smallest currency unit",
    )

    currency = models.CharField(max_length=3)

    platform_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0"),
        help_text="Platform percentage applied to this row",
    )

    platform_amount_cents = models.BigIntegerField(default=0)

    creator_amount_cents = models.BigIntegerField(default=0)

    status = models.CharField(
        max_length=20,
        choices=TransactionStatus.choices,
        default=TransactionStatus.PENDING,
        db_index=True,
    )

    failure_reason = models.TextField(blank=True, default="")

    processed_at = models.DateTimeField(null=True, blank=True, db_index=True)

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique key derived from Stripe identifiers",
    )

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction"
        verbose_name_plural = "Transactions"
        indexes = [
            models.Index(
                fields=["tenant", "status", "processed_at"],
                name="billing_tra_tenant__9e02b4_idx",
            ),
            models.Index(
                fields=["tenant", "kind"],
                name="billing_tra_tenant__61f7ad_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                check=models.Q(
                    platform_amount_cents=models.F("amount_cents") - models.F("creator_amount_cents")
                ),
                name="transaction_split_sums_to_amount",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Transaction({self.kind}, {amount_display}, {self.status})"

    def save(self, *args, **kwargs):
        """
        Insert-only for succeeded rows.

        Raises:
            ImmutableTransactionError: If the stored row is already succeeded
        """
        if not self._state.adding:
            stored = (
                type(self)
                .objects.filter(pk=self.pk, status=TransactionStatus.SUCCEEDED)
                .exists()
            )
            if stored:
                raise ImmutableTransactionError(
                    "Succeeded transactions cannot be modified",
                    details={"transaction_id": str(self.pk)},
                )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        """Ledger rows are never deleted."""
        raise ImmutableTransactionError(
            "Transactions cannot be deleted",
            details={"transaction_id": str(self.pk)},
        )

    @property
    def is_credit(self) -> bool:
        return self.amount_cents >= 0
