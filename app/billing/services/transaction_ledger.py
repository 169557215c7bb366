"""
Transaction ledger: append-only record of money movements.

Rows are only ever inserted. Each insert carries an idempotency key
derived from Stripe identifiers, so the unique constraint on that key is
the ledger's own dedup guard, independent of webhook event dedup:

    payment:{payment_intent_id or charge_id}
    refund:{payment_intent_id or charge_id}:{amount refunded before this row}
    chargeback:{dispute_id}
    failed_payment:{invoice_id}:{attempt_count}

Refunds and chargebacks are negative rows whose split reverses the
percentage applied to the original payment. Platform rent (platform
variant subscriptions) is recorded 100% on the platform side and left
out of creator revenue reports.

Usage:
    from billing.services import TransactionLedger

    ledger = TransactionLedger()
    try:
        ledger.record_payment(tenant_id, "pi_123", 1000, "brl")
    except DuplicateTransactionError:
        pass  # already recorded, treat as success
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, Sum
from django.utils import timezone

from billing.exceptions import DuplicateTransactionError, StaleRecordError
from billing.models import Account, Subscription, Transaction
from billing.models.subscription import LIVE_STATUSES
from billing.services.revenue_split import RevenueSplitPolicy, compute_split, reverse_split
from billing.services.types import RevenueSummary, SplitAmounts
from billing.state_machines import SubscriptionVariant, TransactionKind, TransactionStatus
from communities.models import Community

logger = logging.getLogger(__name__)

REVENUE_KINDS = (TransactionKind.PAYMENT, TransactionKind.REFUND, TransactionKind.CHARGEBACK)

# Re-reads of the refunded total when a concurrent refund takes the next slot
REFUND_APPEND_ATTEMPTS = 3


def platform_only_split(amount: int) -> SplitAmounts:
    """Split for platform rent: everything goes to the platform."""
    return SplitAmounts(
        platform_amount=amount,
        creator_amount=0,
        platform_percentage=Decimal("100"),
    )


class TransactionLedger:
    """
    Records payments, refunds, chargebacks and failed payments.

    Args:
        split_policy: RevenueSplitPolicy used for the tenant's active split
    """

    def __init__(self, split_policy: RevenueSplitPolicy | None = None):
        self.split_policy = split_policy or RevenueSplitPolicy()

    # =========================================================================
    # Recording
    # =========================================================================

    def record_payment(
        self,
        tenant_id: uuid.UUID | str,
        external_charge_id: str,
        amount: int,
        currency: str,
        subscription: Subscription | None = None,
        processed_at: datetime | None = None,
        reference_id: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> Transaction:
        """
        Record a succeeded payment with the tenant's active split.

        Raises:
            DuplicateTransactionError: A payment for this charge exists
            TenantNotFoundError: Unknown tenant
        """
        variant = subscription.variant if subscription is not None else ""
        if variant == SubscriptionVariant.PLATFORM:
            split = platform_only_split(amount)
        else:
            split = compute_split(amount, currency, self.split_policy.get_active_split(tenant_id))

        return self._insert(
            idempotency_key=f"payment:{external_charge_id}",
            tenant_id=tenant_id,
            external_charge_id=external_charge_id,
            external_reference_id=reference_id,
            subscription=subscription,
            variant=variant,
            kind=TransactionKind.PAYMENT,
            amount_cents=amount,
            currency=currency.lower(),
            split=split,
            status=TransactionStatus.SUCCEEDED,
            processed_at=processed_at or timezone.now(),
            metadata=metadata or {},
        )

    def record_refund(
        self,
        tenant_id: uuid.UUID | str,
        external_charge_id: str,
        amount_refunded_total: int,
        currency: str,
        processed_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Transaction:
        """
        Record the newly refunded part of a charge as a negative row.

        Refund rows for a charge form a chain: each row is keyed on the
        refunded total recorded before it. Two deliveries that read the same
        total compete for the same key, so only one appends; the other
        re-reads and appends whatever is still missing.

        Args:
            amount_refunded_total: Cumulative amount refunded on the charge,
                as reported by Stripe. The row amount is the difference to
                what the ledger already holds for this charge.

        Raises:
            DuplicateTransactionError: This refund total is already recorded
            StaleRecordError: Lost the append race on every attempt
        """
        original = self._original_payment(external_charge_id)

        for _ in range(REFUND_APPEND_ATTEMPTS):
            already_refunded = self._refunded_total(external_charge_id)
            key = f"refund:{external_charge_id}:{already_refunded}"
            delta = amount_refunded_total - already_refunded
            if delta <= 0:
                raise DuplicateTransactionError(
                    "Refund already recorded",
                    details={
                        "idempotency_key": key,
                        "charge_id": external_charge_id,
                        "amount_refunded_total": amount_refunded_total,
                    },
                )

            amount = -delta
            try:
                return self._insert(
                    idempotency_key=key,
                    tenant_id=tenant_id,
                    external_charge_id=external_charge_id,
                    subscription=original.subscription if original is not None else None,
                    variant=original.variant if original is not None else "",
                    kind=TransactionKind.REFUND,
                    amount_cents=amount,
                    currency=currency.lower(),
                    split=self._reversal_split(tenant_id, amount, original, currency),
                    status=TransactionStatus.SUCCEEDED,
                    processed_at=processed_at or timezone.now(),
                    metadata={**(metadata or {}), "amount_refunded_total": amount_refunded_total},
                )
            except DuplicateTransactionError:
                # Another refund of this charge took the slot; re-read the total
                logger.info(
                    "Refund append raced, re-reading refunded total",
                    extra={"charge_id": external_charge_id, "idempotency_key": key},
                )

        raise StaleRecordError(
            "Could not append refund after concurrent updates",
            details={"charge_id": external_charge_id},
        )

    def record_chargeback(
        self,
        tenant_id: uuid.UUID | str,
        external_dispute_id: str,
        external_charge_id: str,
        amount: int,
        currency: str,
        processed_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Transaction:
        """
        Record a dispute as a negative row reversing the original split.

        Raises:
            DuplicateTransactionError: This dispute is already recorded
        """
        original = self._original_payment(external_charge_id)
        negative = -abs(amount)
        return self._insert(
            idempotency_key=f"chargeback:{external_dispute_id}",
            tenant_id=tenant_id,
            external_charge_id=external_charge_id,
            external_reference_id=external_dispute_id,
            subscription=original.subscription if original is not None else None,
            variant=original.variant if original is not None else "",
            kind=TransactionKind.CHARGEBACK,
            amount_cents=negative,
            currency=currency.lower(),
            split=self._reversal_split(tenant_id, negative, original, currency),
            status=TransactionStatus.SUCCEEDED,
            processed_at=processed_at or timezone.now(),
            metadata=metadata or {},
        )

    def record_failed_payment(
        self,
        tenant_id: uuid.UUID | str,
        invoice_id: str,
        attempt_count: int,
        amount: int,
        currency: str,
        failure_reason: str = "",
        external_charge_id: str = "",
        subscription: Subscription | None = None,
        processed_at: datetime | None = None,
    ) -> Transaction:
        """
        Record a failed invoice payment attempt.

        No split applies; the amount is carried on the creator side with a
        0% platform percentage so the row still satisfies the split check.

        Raises:
            DuplicateTransactionError: This attempt is already recorded
        """
        return self._insert(
            idempotency_key=f"failed_payment:{invoice_id}:{attempt_count}",
            tenant_id=tenant_id,
            external_charge_id=external_charge_id,
            external_reference_id=invoice_id,
            subscription=subscription,
            variant=subscription.variant if subscription is not None else "",
            kind=TransactionKind.PAYMENT,
            amount_cents=amount,
            currency=currency.lower(),
            split=SplitAmounts(platform_amount=0, creator_amount=amount),
            status=TransactionStatus.FAILED,
            failure_reason=failure_reason,
            processed_at=processed_at or timezone.now(),
            metadata={"attempt_count": attempt_count},
        )

    # =========================================================================
    # Reporting
    # =========================================================================

    def revenue_for_period(
        self,
        tenant_id: uuid.UUID | str,
        start: datetime,
        end: datetime,
        currency: str | None = None,
    ) -> RevenueSummary:
        """
        Aggregate succeeded revenue rows with processed_at in [start, end).

        Refunds and chargebacks are negative, so sums are net of them.
        Platform rent is excluded. Without a currency the configured
        default currency is reported; amounts in different currencies are
        never added together.
        """
        currency = (currency or settings.BILLING_DEFAULT_CURRENCY).lower()
        totals = (
            Transaction.objects.filter(
                tenant_id=tenant_id,
                status=TransactionStatus.SUCCEEDED,
                kind__in=REVENUE_KINDS,
                currency=currency,
                processed_at__gte=start,
                processed_at__lt=end,
            )
            .exclude(variant=SubscriptionVariant.PLATFORM)
            .aggregate(
                total=Sum("amount_cents"),
                platform=Sum("platform_amount_cents"),
                creator=Sum("creator_amount_cents"),
                count=Count("id"),
            )
        )
        active_subscriptions = Subscription.objects.filter(
            tenant_id=tenant_id,
            variant=SubscriptionVariant.MEMBER,
            status__in=LIVE_STATUSES,
        ).count()

        return RevenueSummary(
            total_revenue=totals["total"] or 0,
            platform_revenue=totals["platform"] or 0,
            creator_revenue=totals["creator"] or 0,
            transaction_count=totals["count"] or 0,
            active_subscriptions=active_subscriptions,
            period_start=start,
            period_end=end,
            currency=currency,
        )

    # =========================================================================
    # Tenant resolution
    # =========================================================================

    def resolve_tenant(
        self,
        metadata: dict[str, Any] | None = None,
        external_subscription_id: str | None = None,
        connected_account_id: str | None = None,
        external_charge_id: str | None = None,
    ) -> uuid.UUID | None:
        """
        Find the tenant a Stripe object belongs to.

        Tried in order: metadata community_id, the local subscription,
        the recorded payment for the charge, then the connected account
        the event was sent for.
        """
        community_id = (metadata or {}).get("community_id")
        if community_id:
            try:
                tenant_id = (
                    Community.objects.filter(pk=community_id).values_list("id", flat=True).first()
                )
            except (ValueError, TypeError, DjangoValidationError):
                tenant_id = None
            if tenant_id is not None:
                return tenant_id

        if external_subscription_id:
            tenant_id = (
                Subscription.objects.filter(external_subscription_id=external_subscription_id)
                .values_list("tenant_id", flat=True)
                .first()
            )
            if tenant_id is not None:
                return tenant_id

        if external_charge_id:
            original = self._original_payment(external_charge_id)
            if original is not None:
                return original.tenant_id

        if connected_account_id:
            return (
                Account.objects.filter(external_account_id=connected_account_id)
                .values_list("tenant_id", flat=True)
                .first()
            )
        return None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _original_payment(self, external_charge_id: str) -> Transaction | None:
        return (
            Transaction.objects.select_related("subscription")
            .filter(
                kind=TransactionKind.PAYMENT,
                status=TransactionStatus.SUCCEEDED,
                external_charge_id=external_charge_id,
            )
            .first()
        )

    def _refunded_total(self, external_charge_id: str) -> int:
        refunded = Transaction.objects.filter(
            kind=TransactionKind.REFUND,
            external_charge_id=external_charge_id,
        ).aggregate(total=Sum("amount_cents"))["total"]
        return -(refunded or 0)

    def _reversal_split(self, tenant_id, amount: int, original: Transaction | None, currency: str):
        if original is None:
            logger.warning(
                "Reversal without original payment, using active split",
                extra={"tenant_id": str(tenant_id)},
            )
            return compute_split(amount, currency, self.split_policy.get_active_split(tenant_id))
        return reverse_split(amount, original, currency, None)

    def _insert(self, idempotency_key: str, split: SplitAmounts, **fields) -> Transaction:
        existing = (
            Transaction.objects.filter(idempotency_key=idempotency_key)
            .values_list("id", flat=True)
            .first()
        )
        if existing is not None:
            raise DuplicateTransactionError(
                "Transaction already recorded",
                details={"idempotency_key": idempotency_key, "transaction_id": str(existing)},
            )

        try:
            with transaction.atomic():
                txn = Transaction.objects.create(
                    idempotency_key=idempotency_key,
                    platform_percentage=split.platform_percentage,
                    platform_amount_cents=split.platform_amount,
                    creator_amount_cents=split.creator_amount,
                    **fields,
                )
        except IntegrityError as e:
            # Lost an insert race on the idempotency key
            raise DuplicateTransactionError(
                "Transaction already recorded",
                details={"idempotency_key": idempotency_key},
            ) from e

        logger.info(
            "Transaction recorded",
            extra={
                "transaction_id": str(txn.id),
                "tenant_id": str(txn.tenant_id),
                "kind": txn.kind,
                "status": txn.status,
                "amount_cents": txn.amount_cents,
                "idempotency_key": idempotency_key,
            },
        )
        return txn
