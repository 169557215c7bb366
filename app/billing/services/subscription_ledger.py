"""
Subscription ledger: checkout, lifecycle mirroring and cancellation.

Stripe is the system of record for subscription state. Local status is
written only from lifecycle webhooks (apply_lifecycle_event); API calls
such as cancel() and change_plan() ask Stripe to act and record only the
request, so there is a single writer path for status.

Lifecycle application:
    1. Insert-if-absent by external subscription id (get_or_create,
       tolerant of a concurrent insert)
    2. Skip events older than the last applied one
    3. Same status: accept idempotently, refresh period fields
    4. Transition inside the graph: apply through the django-fsm method
    5. Transition outside the graph: keep status, record SubscriptionAnomaly
    6. Write with a version-guarded conditional UPDATE, retried when stale

Usage:
    from billing.adapters import get_processor_client
    from billing.services import SubscriptionLedger

    ledger = SubscriptionLedger(get_processor_client())
    ref = ledger.create_checkout(SubscriptionVariant.MEMBER, tenant_id, plan_id, user_id)
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone
from django_fsm import can_proceed

from core.exceptions import ValidationError
from billing.adapters import CheckoutSessionParams, IdempotencyKeyGenerator
from billing.exceptions import (
    AccountNotChargeableError,
    AccountNotFoundError,
    DuplicateActiveSubscriptionError,
    InvalidStateTransitionError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    TenantNotFoundError,
)
from billing.locks import retry_on_stale, update_if_version
from billing.models import Account, Plan, Subscription, SubscriptionAnomaly
from billing.models.subscription import LIVE_STATUSES
from billing.services.revenue_split import RevenueSplitPolicy
from billing.services.types import CheckoutSessionRef, LifecycleOutcome, LifecycleUpdate
from billing.state_machines import SubscriptionStatus, SubscriptionVariant
from communities.models import Community

if TYPE_CHECKING:
    from datetime import datetime

    from billing.adapters import StripeAdapter


logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset(
    [SubscriptionStatus.CANCELED, SubscriptionStatus.INCOMPLETE_EXPIRED]
)


class SubscriptionLedger:
    """
    Platform and member subscriptions for tenants.

    Args:
        processor: StripeAdapter (or a test double with the same interface)
        split_policy: RevenueSplitPolicy used for member application fees
    """

    def __init__(self, processor: StripeAdapter, split_policy: RevenueSplitPolicy | None = None):
        self.processor = processor
        self.split_policy = split_policy or RevenueSplitPolicy()

    # =========================================================================
    # Checkout
    # =========================================================================

    def create_checkout(
        self,
        variant: str,
        tenant_id: uuid.UUID | str,
        plan_id: uuid.UUID | str,
        payer_id: str | None = None,
        trial_days: int | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> CheckoutSessionRef:
        """
        Start a hosted checkout for a platform or member subscription.

        The local Subscription row is created later by the
        customer.subscription.created webhook, from the metadata attached
        here.

        Raises:
            TenantNotFoundError: Unknown tenant
            ValidationError: Member checkout without a payer
            PlanNotFoundError: Unknown, inactive or foreign plan
            AccountNotChargeableError: Member checkout on a tenant that
                cannot accept charges
            DuplicateActiveSubscriptionError: Payer already has an active
                or trialing subscription of this variant for the tenant
        """
        tenant = self._get_tenant(tenant_id)
        plan = self._get_plan(plan_id, variant, tenant)

        account = None
        if variant == SubscriptionVariant.MEMBER:
            if not payer_id:
                raise ValidationError("user_id is required for member subscriptions")
            account = Account.objects.filter(tenant=tenant).first()
            if account is None or not account.can_accept_charges:
                raise AccountNotChargeableError(
                    "Community payment processing is not set up or not verified",
                    details={"tenant_id": str(tenant.id)},
                )
        else:
            payer_id = tenant.owner_user_id

        live = Subscription.objects.filter(
            tenant=tenant,
            payer_id=payer_id,
            variant=variant,
            status__in=LIVE_STATUSES,
        ).first()
        if live is not None:
            raise DuplicateActiveSubscriptionError(
                "An active subscription already exists",
                details={"subscription_id": str(live.id), "status": live.status},
            )

        if not plan.is_synced:
            plan = self.sync_plan(plan.id)

        metadata = {
            "community_id": str(tenant.id),
            "subscription_type": variant,
            "user_id": str(payer_id),
            "plan_id": str(plan.id),
        }
        application_fee_percent = None
        if account is not None:
            split = self.split_policy.get_active_split(tenant.id)
            application_fee_percent = float(split.platform_percentage)

        session = self.processor.create_checkout_session(
            CheckoutSessionParams(
                price_id=plan.stripe_price_id,
                success_url=success_url or self._success_url(variant, tenant.id),
                cancel_url=cancel_url or self._cancel_url(variant, tenant.id),
                idempotency_key=IdempotencyKeyGenerator.generate("create_checkout", uuid.uuid4()),
                metadata=metadata,
                customer_email=(
                    (tenant.owner_email or None)
                    if variant == SubscriptionVariant.PLATFORM
                    else None
                ),
                trial_days=trial_days if trial_days is not None else (plan.trial_days or None),
                stripe_account=account.external_account_id if account is not None else None,
                application_fee_percent=application_fee_percent,
            )
        )

        logger.info(
            "Checkout session created",
            extra={
                "tenant_id": str(tenant.id),
                "variant": variant,
                "plan_id": str(plan.id),
                "session_id": session.id,
            },
        )
        return CheckoutSessionRef(
            id=session.id,
            url=session.url,
            customer_id=session.customer_id,
            metadata=session.metadata or metadata,
        )

    # =========================================================================
    # Lifecycle (webhook-driven)
    # =========================================================================

    def apply_lifecycle_event(
        self,
        external_subscription_id: str,
        update: LifecycleUpdate,
        connected_account_id: str | None = None,
    ) -> LifecycleOutcome:
        """
        Mirror a Stripe subscription event into the local row.

        Args:
            external_subscription_id: Stripe Subscription ID (sub_xxx)
            update: Status and period fields carried by the event
            connected_account_id: event.account for connected-account events

        Returns:
            LifecycleOutcome describing what happened. Illegal transitions
            are reported through outcome.anomaly, never raised.
        """

        def attempt() -> LifecycleOutcome:
            subscription = Subscription.objects.filter(
                external_subscription_id=external_subscription_id
            ).first()

            if subscription is None:
                defaults = self._defaults_for_new(update, connected_account_id)
                if defaults is None:
                    logger.warning(
                        "Subscription event for unknown tenant, skipping",
                        extra={
                            "subscription_id": external_subscription_id,
                            "event_id": update.source_event_id,
                        },
                    )
                    return LifecycleOutcome(skipped_reason="tenant_unresolved")
                try:
                    with transaction.atomic():
                        subscription, created = Subscription.objects.get_or_create(
                            external_subscription_id=external_subscription_id,
                            defaults=defaults,
                        )
                except IntegrityError:
                    subscription = Subscription.objects.get(
                        external_subscription_id=external_subscription_id
                    )
                    created = False
                if created:
                    logger.info(
                        "Subscription recorded",
                        extra={
                            "subscription_id": external_subscription_id,
                            "status": subscription.status,
                            "variant": subscription.variant,
                        },
                    )
                    return LifecycleOutcome(subscription=subscription, created=True)

            if (
                update.event_created_at is not None
                and subscription.last_event_at is not None
                and update.event_created_at < subscription.last_event_at
            ):
                logger.info(
                    "Ignoring out-of-order subscription event",
                    extra={
                        "subscription_id": external_subscription_id,
                        "event_id": update.source_event_id,
                    },
                )
                return LifecycleOutcome(subscription=subscription, skipped_reason="stale_event")

            from_status = subscription.status
            values = self._period_values(subscription, update)
            transitioned = anomaly = False

            if update.status and update.status != from_status:
                transition = subscription.transition_for(update.status)
                if transition is not None and can_proceed(transition):
                    transition()
                    values["status"] = subscription.status
                    if subscription.status == SubscriptionStatus.CANCELED:
                        values["canceled_at"] = update.canceled_at or subscription.canceled_at
                    transitioned = True
                else:
                    anomaly = True

            with transaction.atomic():
                update_if_version(Subscription, subscription.pk, subscription.version, **values)
                if anomaly:
                    SubscriptionAnomaly.objects.create(
                        subscription_id=subscription.pk,
                        from_status=from_status,
                        requested_status=update.status,
                        source_event_id=update.source_event_id,
                        reason=f"Transition {from_status} -> {update.status} is not allowed",
                    )

            if anomaly:
                logger.warning(
                    "Rejected subscription transition",
                    extra={
                        "subscription_id": external_subscription_id,
                        "from_status": from_status,
                        "requested_status": update.status,
                        "event_id": update.source_event_id,
                    },
                )
            elif transitioned:
                logger.info(
                    "Subscription transitioned",
                    extra={
                        "subscription_id": external_subscription_id,
                        "from_status": from_status,
                        "to_status": update.status,
                    },
                )

            subscription.refresh_from_db()
            return LifecycleOutcome(
                subscription=subscription,
                transitioned=transitioned,
                anomaly=anomaly,
            )

        return retry_on_stale(attempt)

    def mark_invoiced(
        self,
        external_subscription_id: str,
        period_start: datetime,
        amount_cents: int | None = None,
        currency: str | None = None,
    ) -> Subscription | None:
        """
        Freeze amount and currency for the invoiced period.

        Returns:
            The updated Subscription, or None if it is unknown locally
        """

        def attempt() -> Subscription | None:
            subscription = Subscription.objects.filter(
                external_subscription_id=external_subscription_id
            ).first()
            if subscription is None:
                return None
            if subscription.invoiced_period_start == period_start:
                return subscription
            values: dict[str, Any] = {
                "invoiced_period_start": period_start,
                "updated_at": timezone.now(),
            }
            if amount_cents is not None:
                values["amount_cents"] = amount_cents
            if currency:
                values["currency"] = currency.lower()
            update_if_version(Subscription, subscription.pk, subscription.version, **values)
            subscription.refresh_from_db()
            return subscription

        return retry_on_stale(attempt)

    # =========================================================================
    # Commands (Stripe first, webhook applies the status)
    # =========================================================================

    def cancel(
        self,
        subscription_id: uuid.UUID | str,
        at_period_end: bool = True,
        variant: str | None = None,
    ) -> Subscription:
        """
        Ask Stripe to cancel, then record the request locally.

        The status change arrives through customer.subscription.updated or
        customer.subscription.deleted.

        Raises:
            SubscriptionNotFoundError: Unknown subscription
            InvalidStateTransitionError: Subscription already ended
            StripeError: Stripe call failed (nothing written locally)
        """
        subscription = self._get_subscription(subscription_id, variant)
        if subscription.status in TERMINAL_STATUSES:
            raise InvalidStateTransitionError(
                f"Cannot cancel a subscription in '{subscription.status}' status",
                details={
                    "current_status": subscription.status,
                    "target_status": SubscriptionStatus.CANCELED,
                },
            )

        operation = "cancel_at_period_end" if at_period_end else "cancel_now"
        self.processor.cancel_subscription(
            subscription.external_subscription_id,
            at_period_end=at_period_end,
            idempotency_key=IdempotencyKeyGenerator.generate(operation, subscription.id),
            stripe_account=self._stripe_account_for(subscription),
        )

        def record() -> None:
            current = Subscription.objects.get(pk=subscription.pk)
            now = timezone.now()
            update_if_version(
                Subscription,
                current.pk,
                current.version,
                cancel_at_period_end=at_period_end,
                cancel_requested_at=now,
                updated_at=now,
            )

        retry_on_stale(record)
        logger.info(
            "Subscription cancellation requested",
            extra={
                "subscription_id": subscription.external_subscription_id,
                "at_period_end": at_period_end,
            },
        )
        subscription.refresh_from_db()
        return subscription

    def change_plan(
        self,
        subscription_id: uuid.UUID | str,
        new_plan_id: uuid.UUID | str,
        variant: str | None = None,
    ) -> Subscription:
        """
        Swap the subscription's price at Stripe.

        The local plan and amount follow from the next
        customer.subscription.updated event.

        Raises:
            SubscriptionNotFoundError: Unknown subscription
            PlanNotFoundError: Plan not purchasable for this subscription
            InvalidStateTransitionError: Subscription already ended
        """
        subscription = self._get_subscription(subscription_id, variant)
        if subscription.status in TERMINAL_STATUSES:
            raise InvalidStateTransitionError(
                f"Cannot change plan of a subscription in '{subscription.status}' status",
                details={"current_status": subscription.status},
            )
        plan = self._get_plan(new_plan_id, subscription.variant, subscription.tenant)
        if not plan.is_synced:
            plan = self.sync_plan(plan.id)

        self.processor.update_subscription_price(
            subscription.external_subscription_id,
            plan.stripe_price_id,
            idempotency_key=IdempotencyKeyGenerator.generate(
                "change_plan", f"{subscription.id}:{plan.id}"
            ),
            stripe_account=self._stripe_account_for(subscription),
        )
        logger.info(
            "Subscription plan change requested",
            extra={
                "subscription_id": subscription.external_subscription_id,
                "plan_id": str(plan.id),
            },
        )
        return subscription

    def sync_plan(self, plan_id: uuid.UUID | str) -> Plan:
        """
        Create the plan's product and price at Stripe if missing.

        Member plans are created on the tenant's connected account.

        Raises:
            PlanNotFoundError: Unknown plan
            AccountNotFoundError: Member plan whose tenant has no Account
        """
        plan = Plan.objects.select_related("tenant").filter(pk=plan_id).first()
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found", details={"plan_id": str(plan_id)})
        if plan.is_synced:
            return plan

        stripe_account = None
        if plan.variant == SubscriptionVariant.MEMBER:
            account = Account.objects.filter(tenant_id=plan.tenant_id).first()
            if account is None:
                raise AccountNotFoundError(
                    "Community does not have a Stripe account",
                    details={"tenant_id": str(plan.tenant_id)},
                )
            stripe_account = account.external_account_id

        metadata = {"plan_id": str(plan.id), "subscription_type": plan.variant}
        if plan.tenant_id:
            metadata["community_id"] = str(plan.tenant_id)

        price = self.processor.create_product_and_price(
            name=plan.name,
            unit_amount=plan.price_cents,
            currency=plan.currency,
            interval=plan.interval,
            idempotency_key=IdempotencyKeyGenerator.generate("sync_plan", plan.id),
            metadata=metadata,
            stripe_account=stripe_account,
        )
        Plan.objects.filter(pk=plan.pk).update(
            stripe_product_id=price.product_id,
            stripe_price_id=price.price_id,
            updated_at=timezone.now(),
        )
        plan.refresh_from_db()
        logger.info(
            "Plan synced to Stripe",
            extra={"plan_id": str(plan.id), "price_id": plan.stripe_price_id},
        )
        return plan

    def sync_member_plans(self, tenant_id: uuid.UUID | str) -> list[Plan]:
        """Sync every active member plan of a tenant."""
        tenant = self._get_tenant(tenant_id)
        return [
            self.sync_plan(plan.id)
            for plan in Plan.objects.filter(
                tenant=tenant, variant=SubscriptionVariant.MEMBER, is_active=True
            )
        ]

    # =========================================================================
    # Queries
    # =========================================================================

    def list_plans(self, variant: str, tenant_id: uuid.UUID | str | None = None) -> list[Plan]:
        plans = Plan.objects.filter(variant=variant, is_active=True)
        if variant == SubscriptionVariant.MEMBER:
            plans = plans.filter(tenant_id=tenant_id)
        return list(plans)

    def get_member_subscription(self, tenant_id: uuid.UUID | str, user_id: str) -> Subscription:
        subscription = (
            Subscription.objects.filter(
                tenant_id=tenant_id,
                payer_id=str(user_id),
                variant=SubscriptionVariant.MEMBER,
            )
            .select_related("plan")
            .order_by("-created_at")
            .first()
        )
        if subscription is None:
            raise SubscriptionNotFoundError(
                "No subscription found for this user in this community",
                details={"tenant_id": str(tenant_id), "user_id": str(user_id)},
            )
        return subscription

    def list_member_subscriptions(self, tenant_id: uuid.UUID | str) -> list[Subscription]:
        return list(
            Subscription.objects.filter(tenant_id=tenant_id, variant=SubscriptionVariant.MEMBER)
            .select_related("plan")
            .order_by("-created_at")
        )

    def get_platform_subscription(self, tenant_id: uuid.UUID | str) -> Subscription:
        subscription = (
            Subscription.objects.filter(tenant_id=tenant_id, variant=SubscriptionVariant.PLATFORM)
            .select_related("plan")
            .order_by("-created_at")
            .first()
        )
        if subscription is None:
            raise SubscriptionNotFoundError(
                "No platform subscription found for this community",
                details={"tenant_id": str(tenant_id)},
            )
        return subscription

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_tenant(self, tenant_id) -> Community:
        tenant = Community.objects.filter(pk=tenant_id).first()
        if tenant is None:
            raise TenantNotFoundError(
                f"Community {tenant_id} not found",
                details={"tenant_id": str(tenant_id)},
            )
        return tenant

    def _get_plan(self, plan_id, variant: str, tenant: Community) -> Plan:
        plans = Plan.objects.filter(pk=plan_id, variant=variant, is_active=True)
        if variant == SubscriptionVariant.MEMBER:
            plans = plans.filter(tenant=tenant)
        plan = plans.first()
        if plan is None:
            raise PlanNotFoundError(
                f"Plan {plan_id} not found",
                details={"plan_id": str(plan_id), "variant": variant},
            )
        return plan

    def _get_subscription(self, subscription_id, variant: str | None = None) -> Subscription:
        subscriptions = Subscription.objects.select_related("tenant").filter(pk=subscription_id)
        if variant:
            subscriptions = subscriptions.filter(variant=variant)
        subscription = subscriptions.first()
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found",
                details={"subscription_id": str(subscription_id)},
            )
        return subscription

    def _stripe_account_for(self, subscription: Subscription) -> str | None:
        if subscription.variant != SubscriptionVariant.MEMBER:
            return None
        return (
            Account.objects.filter(tenant_id=subscription.tenant_id)
            .values_list("external_account_id", flat=True)
            .first()
        )

    def _success_url(self, variant: str, tenant_id) -> str:
        if variant == SubscriptionVariant.MEMBER:
            return (
                f"{settings.FRONTEND_URL}/communities/{tenant_id}/subscription/success"
                "?session_id={CHECKOUT_SESSION_ID}"
            )
        return f"{settings.FRONTEND_URL}/settings/billing/success?session_id={{CHECKOUT_SESSION_ID}}"

    def _cancel_url(self, variant: str, tenant_id) -> str:
        if variant == SubscriptionVariant.MEMBER:
            return f"{settings.FRONTEND_URL}/communities/{tenant_id}/subscription/cancel"
        return f"{settings.FRONTEND_URL}/settings/billing/cancel"

    def _defaults_for_new(
        self,
        update: LifecycleUpdate,
        connected_account_id: str | None,
    ) -> dict[str, Any] | None:
        """Field values for a subscription first seen through a webhook."""
        metadata = update.metadata or {}

        tenant = None
        community_id = metadata.get("community_id")
        if community_id:
            try:
                tenant = Community.objects.filter(pk=community_id).first()
            except (ValueError, TypeError, DjangoValidationError):
                tenant = None
        if tenant is None and connected_account_id:
            account = (
                Account.objects.select_related("tenant")
                .filter(external_account_id=connected_account_id)
                .first()
            )
            tenant = account.tenant if account is not None else None
        if tenant is None:
            return None

        variant = metadata.get("subscription_type")
        if variant not in SubscriptionVariant.values:
            variant = (
                SubscriptionVariant.MEMBER if connected_account_id else SubscriptionVariant.PLATFORM
            )

        payer_id = metadata.get("user_id")
        if not payer_id:
            payer_id = (
                tenant.owner_user_id
                if variant == SubscriptionVariant.PLATFORM
                else (update.customer_id or "")
            )

        status = update.status
        if status not in SubscriptionStatus.values:
            logger.warning(
                "Unknown subscription status, recording as incomplete",
                extra={"status": status, "event_id": update.source_event_id},
            )
            status = SubscriptionStatus.INCOMPLETE

        defaults: dict[str, Any] = {
            "variant": variant,
            "tenant": tenant,
            "payer_id": str(payer_id),
            "status": status,
            "plan": self._plan_for(metadata.get("plan_id"), update.price_id),
            "external_customer_id": update.customer_id or "",
            "external_price_id": update.price_id or "",
            "current_period_start": update.current_period_start,
            "current_period_end": update.current_period_end,
            "trial_start": update.trial_start,
            "trial_end": update.trial_end,
            "cancel_at_period_end": bool(update.cancel_at_period_end),
            "canceled_at": update.canceled_at,
            "last_event_at": update.event_created_at,
            "metadata": metadata,
        }
        if update.amount_cents is not None:
            defaults["amount_cents"] = update.amount_cents
        if update.currency:
            defaults["currency"] = update.currency.lower()
        if update.interval in ("month", "year"):
            defaults["billing_interval"] = update.interval
        return defaults

    def _plan_for(self, plan_id: str | None, price_id: str | None) -> Plan | None:
        if plan_id:
            try:
                plan = Plan.objects.filter(pk=plan_id).first()
            except (ValueError, TypeError, DjangoValidationError):
                plan = None
            if plan is not None:
                return plan
        if price_id:
            return Plan.objects.filter(stripe_price_id=price_id).first()
        return None

    def _period_values(self, subscription: Subscription, update: LifecycleUpdate) -> dict[str, Any]:
        """Non-status fields to write for an existing subscription."""
        values: dict[str, Any] = {"updated_at": timezone.now()}

        for name in ("current_period_start", "current_period_end", "trial_start", "trial_end"):
            value = getattr(update, name)
            if value is not None:
                values[name] = value
        if update.cancel_at_period_end is not None:
            values["cancel_at_period_end"] = update.cancel_at_period_end
        if update.customer_id:
            values["external_customer_id"] = update.customer_id
        if update.event_created_at is not None:
            values["last_event_at"] = update.event_created_at
        if update.metadata:
            values["metadata"] = {**(subscription.metadata or {}), **update.metadata}

        period_start = update.current_period_start or subscription.current_period_start
        frozen = (
            subscription.invoiced_period_start is not None
            and subscription.invoiced_period_start == period_start
        )
        if not frozen:
            if update.price_id:
                values["external_price_id"] = update.price_id
                plan = self._plan_for(None, update.price_id)
                if plan is not None:
                    values["plan"] = plan
            if update.amount_cents is not None:
                values["amount_cents"] = update.amount_cents
            if update.currency:
                values["currency"] = update.currency.lower()
            if update.interval in ("month", "year"):
                values["billing_interval"] = update.interval
        return values
