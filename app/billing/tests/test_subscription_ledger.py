"""
Tests for SubscriptionLedger.

Tests cover:
- Checkout for member and platform subscriptions
- Lifecycle mirroring from webhook data, including illegal transitions
  and out-of-order events
- Amount freezing for invoiced periods
- Cancel and plan change commands (Stripe first, webhook applies status)
- Plan sync and queries
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from core.exceptions import ValidationError
from billing.adapters import PriceResult
from billing.exceptions import (
    AccountNotChargeableError,
    AccountNotFoundError,
    DuplicateActiveSubscriptionError,
    InvalidStateTransitionError,
    PlanNotFoundError,
    StripeAPIUnavailableError,
    SubscriptionNotFoundError,
    TenantNotFoundError,
)
from billing.models import Subscription, SubscriptionAnomaly
from billing.services import LifecycleUpdate
from billing.state_machines import SubscriptionStatus, SubscriptionVariant
from billing.tests.factories import CommunityFactory, PlanFactory, SubscriptionFactory


def lifecycle(status, **kwargs):
    kwargs.setdefault("source_event_id", f"evt_{uuid.uuid4().hex[:12]}")
    return LifecycleUpdate(status=status, **kwargs)


# =============================================================================
# Checkout
# =============================================================================


@pytest.mark.django_db
class TestMemberCheckout:
    def test_creates_session_on_connected_account(
        self, subscription_ledger, processor, chargeable_account, member_plan, revenue_split
    ):
        ref = subscription_ledger.create_checkout(
            SubscriptionVariant.MEMBER,
            chargeable_account.tenant_id,
            member_plan.id,
            payer_id="user_42",
        )

        assert ref.id == "cs_test_123"
        assert ref.url.startswith("https://checkout.stripe.com/")

        params = processor.create_checkout_session.call_args.args[0]
        assert params.price_id == member_plan.stripe_price_id
        assert params.stripe_account == chargeable_account.external_account_id
        assert params.application_fee_percent == 20.0
        assert params.customer_email is None
        assert params.metadata == {
            "community_id": str(chargeable_account.tenant_id),
            "subscription_type": SubscriptionVariant.MEMBER,
            "user_id": "user_42",
            "plan_id": str(member_plan.id),
        }

    def test_no_local_row_until_webhook(
        self, subscription_ledger, chargeable_account, member_plan
    ):
        subscription_ledger.create_checkout(
            SubscriptionVariant.MEMBER, chargeable_account.tenant_id, member_plan.id, "user_42"
        )

        assert not Subscription.objects.filter(payer_id="user_42").exists()

    def test_requires_payer(self, subscription_ledger, chargeable_account, member_plan):
        with pytest.raises(ValidationError):
            subscription_ledger.create_checkout(
                SubscriptionVariant.MEMBER, chargeable_account.tenant_id, member_plan.id
            )

    def test_pending_account_not_chargeable(
        self, subscription_ledger, processor, pending_account, member_plan
    ):
        with pytest.raises(AccountNotChargeableError):
            subscription_ledger.create_checkout(
                SubscriptionVariant.MEMBER, pending_account.tenant_id, member_plan.id, "user_1"
            )

        processor.create_checkout_session.assert_not_called()

    def test_tenant_without_account_not_chargeable(self, subscription_ledger, community, member_plan):
        with pytest.raises(AccountNotChargeableError):
            subscription_ledger.create_checkout(
                SubscriptionVariant.MEMBER, community.id, member_plan.id, "user_1"
            )

    def test_live_subscription_blocks_second_checkout(
        self, subscription_ledger, processor, chargeable_account, active_subscription
    ):
        with pytest.raises(DuplicateActiveSubscriptionError):
            subscription_ledger.create_checkout(
                SubscriptionVariant.MEMBER,
                chargeable_account.tenant_id,
                active_subscription.plan_id,
                active_subscription.payer_id,
            )

        processor.create_checkout_session.assert_not_called()

    def test_canceled_subscription_allows_new_checkout(
        self, subscription_ledger, chargeable_account, canceled_subscription
    ):
        ref = subscription_ledger.create_checkout(
            SubscriptionVariant.MEMBER,
            chargeable_account.tenant_id,
            canceled_subscription.plan_id,
            canceled_subscription.payer_id,
        )

        assert ref.id == "cs_test_123"

    def test_plan_of_another_tenant(self, subscription_ledger, chargeable_account):
        foreign_plan = PlanFactory(tenant=CommunityFactory())

        with pytest.raises(PlanNotFoundError):
            subscription_ledger.create_checkout(
                SubscriptionVariant.MEMBER, chargeable_account.tenant_id, foreign_plan.id, "user_1"
            )

    def test_inactive_plan(self, subscription_ledger, chargeable_account, member_plan):
        member_plan.is_active = False
        member_plan.save()

        with pytest.raises(PlanNotFoundError):
            subscription_ledger.create_checkout(
                SubscriptionVariant.MEMBER, chargeable_account.tenant_id, member_plan.id, "user_1"
            )

    def test_unknown_tenant(self, subscription_ledger, member_plan):
        with pytest.raises(TenantNotFoundError):
            subscription_ledger.create_checkout(
                SubscriptionVariant.MEMBER, uuid.uuid4(), member_plan.id, "user_1"
            )

    def test_unsynced_plan_is_synced_first(
        self, subscription_ledger, processor, chargeable_account, member_plan
    ):
        member_plan.stripe_product_id = ""
        member_plan.stripe_price_id = ""
        member_plan.save()

        subscription_ledger.create_checkout(
            SubscriptionVariant.MEMBER, chargeable_account.tenant_id, member_plan.id, "user_1"
        )

        sync_kwargs = processor.create_product_and_price.call_args.kwargs
        assert sync_kwargs["stripe_account"] == chargeable_account.external_account_id
        assert sync_kwargs["unit_amount"] == member_plan.price_cents
        params = processor.create_checkout_session.call_args.args[0]
        assert params.price_id == "price_test_synced"

    def test_plan_trial_days_used(self, subscription_ledger, processor, chargeable_account):
        plan = PlanFactory(tenant=chargeable_account.tenant, trial_days=7)

        subscription_ledger.create_checkout(
            SubscriptionVariant.MEMBER, chargeable_account.tenant_id, plan.id, "user_1"
        )

        assert processor.create_checkout_session.call_args.args[0].trial_days == 7


@pytest.mark.django_db
class TestPlatformCheckout:
    def test_uses_owner_as_payer(self, subscription_ledger, processor, community, platform_plan):
        subscription_ledger.create_checkout(
            SubscriptionVariant.PLATFORM, community.id, platform_plan.id
        )

        params = processor.create_checkout_session.call_args.args[0]
        assert params.customer_email == community.owner_email
        assert params.stripe_account is None
        assert params.application_fee_percent is None
        assert params.metadata["user_id"] == community.owner_user_id
        assert params.metadata["subscription_type"] == SubscriptionVariant.PLATFORM

    def test_no_connected_account_needed(self, subscription_ledger, pending_account, platform_plan):
        ref = subscription_ledger.create_checkout(
            SubscriptionVariant.PLATFORM, pending_account.tenant_id, platform_plan.id
        )
        assert ref.id == "cs_test_123"

    def test_member_plan_rejected(self, subscription_ledger, community, member_plan):
        with pytest.raises(PlanNotFoundError):
            subscription_ledger.create_checkout(
                SubscriptionVariant.PLATFORM, community.id, member_plan.id
            )

    def test_existing_platform_subscription(
        self, subscription_ledger, community, platform_plan, platform_subscription
    ):
        with pytest.raises(DuplicateActiveSubscriptionError):
            subscription_ledger.create_checkout(
                SubscriptionVariant.PLATFORM, community.id, platform_plan.id
            )


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.django_db
class TestApplyLifecycleEvent:
    def test_creates_row_from_checkout_metadata(self, subscription_ledger, community, member_plan):
        start = timezone.now()
        outcome = subscription_ledger.apply_lifecycle_event(
            "sub_new_1",
            lifecycle(
                SubscriptionStatus.ACTIVE,
                customer_id="cus_new",
                price_id=member_plan.stripe_price_id,
                amount_cents=2990,
                currency="BRL",
                interval="month",
                current_period_start=start,
                current_period_end=start + timedelta(days=30),
                metadata={
                    "community_id": str(community.id),
                    "subscription_type": SubscriptionVariant.MEMBER,
                    "user_id": "user_9",
                    "plan_id": str(member_plan.id),
                },
            ),
        )

        assert outcome.created is True
        subscription = Subscription.objects.get(external_subscription_id="sub_new_1")
        assert subscription.tenant_id == community.id
        assert subscription.variant == SubscriptionVariant.MEMBER
        assert subscription.payer_id == "user_9"
        assert subscription.plan_id == member_plan.id
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.currency == "brl"
        assert subscription.external_customer_id == "cus_new"

    def test_tenant_from_connected_account(self, subscription_ledger, chargeable_account):
        outcome = subscription_ledger.apply_lifecycle_event(
            "sub_new_2",
            lifecycle(SubscriptionStatus.INCOMPLETE, customer_id="cus_abc"),
            connected_account_id=chargeable_account.external_account_id,
        )

        assert outcome.created is True
        subscription = outcome.subscription
        assert subscription.tenant_id == chargeable_account.tenant_id
        assert subscription.variant == SubscriptionVariant.MEMBER
        assert subscription.payer_id == "cus_abc"

    def test_platform_payer_defaults_to_owner(self, subscription_ledger, community):
        outcome = subscription_ledger.apply_lifecycle_event(
            "sub_new_3",
            lifecycle(SubscriptionStatus.ACTIVE, metadata={"community_id": str(community.id)}),
        )

        assert outcome.subscription.variant == SubscriptionVariant.PLATFORM
        assert outcome.subscription.payer_id == community.owner_user_id

    def test_unresolvable_tenant_is_skipped(self, subscription_ledger, db):
        outcome = subscription_ledger.apply_lifecycle_event(
            "sub_orphan",
            lifecycle(SubscriptionStatus.ACTIVE, metadata={"community_id": "not-a-uuid"}),
        )

        assert outcome.skipped_reason == "tenant_unresolved"
        assert not Subscription.objects.filter(external_subscription_id="sub_orphan").exists()

    def test_unknown_status_recorded_as_incomplete(self, subscription_ledger, community):
        outcome = subscription_ledger.apply_lifecycle_event(
            "sub_odd",
            lifecycle("paused", metadata={"community_id": str(community.id)}),
        )

        assert outcome.subscription.status == SubscriptionStatus.INCOMPLETE

    def test_replayed_creation_is_idempotent(self, subscription_ledger, community):
        update = lifecycle(SubscriptionStatus.ACTIVE, metadata={"community_id": str(community.id)})

        first = subscription_ledger.apply_lifecycle_event("sub_twice", update)
        second = subscription_ledger.apply_lifecycle_event("sub_twice", update)

        assert first.created is True
        assert second.created is False
        assert second.transitioned is False
        assert Subscription.objects.filter(external_subscription_id="sub_twice").count() == 1

    def test_legal_transition(self, subscription_ledger, active_subscription):
        outcome = subscription_ledger.apply_lifecycle_event(
            active_subscription.external_subscription_id,
            lifecycle(SubscriptionStatus.PAST_DUE),
        )

        assert outcome.transitioned is True
        assert outcome.anomaly is False
        active_subscription.refresh_from_db()
        assert active_subscription.status == SubscriptionStatus.PAST_DUE
        assert active_subscription.version == 2

    def test_deletion_cancels(self, subscription_ledger, active_subscription):
        canceled_at = timezone.now()

        subscription_ledger.apply_lifecycle_event(
            active_subscription.external_subscription_id,
            lifecycle(SubscriptionStatus.CANCELED, canceled_at=canceled_at),
        )

        active_subscription.refresh_from_db()
        assert active_subscription.status == SubscriptionStatus.CANCELED
        assert active_subscription.canceled_at == canceled_at

    def test_illegal_transition_records_anomaly(self, subscription_ledger, canceled_subscription):
        outcome = subscription_ledger.apply_lifecycle_event(
            canceled_subscription.external_subscription_id,
            lifecycle(SubscriptionStatus.ACTIVE, source_event_id="evt_reactivate"),
        )

        assert outcome.anomaly is True
        assert outcome.transitioned is False
        canceled_subscription.refresh_from_db()
        assert canceled_subscription.status == SubscriptionStatus.CANCELED

        anomaly = SubscriptionAnomaly.objects.get(subscription=canceled_subscription)
        assert anomaly.from_status == SubscriptionStatus.CANCELED
        assert anomaly.requested_status == SubscriptionStatus.ACTIVE
        assert anomaly.source_event_id == "evt_reactivate"
        assert anomaly.resolved is False

    def test_same_status_refreshes_period(self, subscription_ledger, active_subscription):
        new_end = timezone.now() + timedelta(days=60)

        outcome = subscription_ledger.apply_lifecycle_event(
            active_subscription.external_subscription_id,
            lifecycle(SubscriptionStatus.ACTIVE, current_period_end=new_end, cancel_at_period_end=True),
        )

        assert outcome.transitioned is False
        assert outcome.anomaly is False
        active_subscription.refresh_from_db()
        assert active_subscription.current_period_end == new_end
        assert active_subscription.cancel_at_period_end is True

    def test_out_of_order_event_skipped(self, subscription_ledger, active_subscription):
        now = timezone.now()
        Subscription.objects.filter(pk=active_subscription.pk).update(last_event_at=now)

        outcome = subscription_ledger.apply_lifecycle_event(
            active_subscription.external_subscription_id,
            lifecycle(SubscriptionStatus.PAST_DUE, event_created_at=now - timedelta(minutes=5)),
        )

        assert outcome.skipped_reason == "stale_event"
        active_subscription.refresh_from_db()
        assert active_subscription.status == SubscriptionStatus.ACTIVE

    def test_newer_event_applies_and_advances_marker(self, subscription_ledger, active_subscription):
        now = timezone.now()
        Subscription.objects.filter(pk=active_subscription.pk).update(
            last_event_at=now - timedelta(minutes=5)
        )

        subscription_ledger.apply_lifecycle_event(
            active_subscription.external_subscription_id,
            lifecycle(SubscriptionStatus.PAST_DUE, event_created_at=now),
        )

        active_subscription.refresh_from_db()
        assert active_subscription.status == SubscriptionStatus.PAST_DUE
        assert active_subscription.last_event_at == now


@pytest.mark.django_db
class TestMarkInvoiced:
    def test_amount_frozen_for_invoiced_period(self, subscription_ledger, active_subscription):
        subscription_ledger.mark_invoiced(
            active_subscription.external_subscription_id,
            active_subscription.current_period_start,
            amount_cents=2990,
            currency="brl",
        )

        subscription_ledger.apply_lifecycle_event(
            active_subscription.external_subscription_id,
            lifecycle(SubscriptionStatus.ACTIVE, amount_cents=5000),
        )

        active_subscription.refresh_from_db()
        assert active_subscription.amount_cents == 2990

    def test_new_period_takes_new_amount(self, subscription_ledger, active_subscription):
        subscription_ledger.mark_invoiced(
            active_subscription.external_subscription_id,
            active_subscription.current_period_start,
        )
        next_start = active_subscription.current_period_end

        subscription_ledger.apply_lifecycle_event(
            active_subscription.external_subscription_id,
            lifecycle(SubscriptionStatus.ACTIVE, amount_cents=5000, current_period_start=next_start),
        )

        active_subscription.refresh_from_db()
        assert active_subscription.amount_cents == 5000

    def test_records_invoiced_amount(self, subscription_ledger, active_subscription):
        subscription = subscription_ledger.mark_invoiced(
            active_subscription.external_subscription_id,
            active_subscription.current_period_start,
            amount_cents=3500,
            currency="BRL",
        )

        assert subscription.amount_cents == 3500
        assert subscription.currency == "brl"
        assert subscription.invoiced_period_start == active_subscription.current_period_start

    def test_unknown_subscription(self, subscription_ledger, db):
        assert subscription_ledger.mark_invoiced("sub_missing", timezone.now()) is None


# =============================================================================
# Commands
# =============================================================================


@pytest.mark.django_db
class TestCancel:
    def test_cancel_at_period_end(
        self, subscription_ledger, processor, chargeable_account, active_subscription
    ):
        subscription = subscription_ledger.cancel(active_subscription.id)

        call = processor.cancel_subscription.call_args
        assert call.args[0] == active_subscription.external_subscription_id
        assert call.kwargs["at_period_end"] is True
        assert call.kwargs["stripe_account"] == chargeable_account.external_account_id

        # Status follows the webhook, not the API call
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.cancel_at_period_end is True
        assert subscription.cancel_requested_at is not None

    def test_cancel_immediately(self, subscription_ledger, processor, active_subscription):
        subscription = subscription_ledger.cancel(active_subscription.id, at_period_end=False)

        assert processor.cancel_subscription.call_args.kwargs["at_period_end"] is False
        assert subscription.cancel_at_period_end is False

    def test_platform_cancel_uses_platform_account(
        self, subscription_ledger, processor, platform_subscription
    ):
        subscription_ledger.cancel(platform_subscription.id, variant=SubscriptionVariant.PLATFORM)

        assert processor.cancel_subscription.call_args.kwargs["stripe_account"] is None

    def test_terminal_subscription(self, subscription_ledger, processor, canceled_subscription):
        with pytest.raises(InvalidStateTransitionError):
            subscription_ledger.cancel(canceled_subscription.id)

        processor.cancel_subscription.assert_not_called()

    def test_processor_failure_records_nothing(
        self, subscription_ledger, processor, active_subscription
    ):
        processor.cancel_subscription.side_effect = StripeAPIUnavailableError("down")

        with pytest.raises(StripeAPIUnavailableError):
            subscription_ledger.cancel(active_subscription.id)

        active_subscription.refresh_from_db()
        assert active_subscription.cancel_requested_at is None
        assert active_subscription.version == 1

    def test_variant_mismatch(self, subscription_ledger, active_subscription):
        with pytest.raises(SubscriptionNotFoundError):
            subscription_ledger.cancel(active_subscription.id, variant=SubscriptionVariant.PLATFORM)


@pytest.mark.django_db
class TestChangePlan:
    def test_swaps_price_at_processor(self, subscription_ledger, processor, active_subscription):
        new_plan = PlanFactory(tenant=active_subscription.tenant, price_cents=4990)

        subscription = subscription_ledger.change_plan(active_subscription.id, new_plan.id)

        call = processor.update_subscription_price.call_args
        assert call.args == (active_subscription.external_subscription_id, new_plan.stripe_price_id)
        # Local plan follows the next subscription.updated event
        assert subscription.plan_id == active_subscription.plan_id

    def test_plan_from_other_tenant(self, subscription_ledger, active_subscription):
        foreign_plan = PlanFactory(tenant=CommunityFactory())

        with pytest.raises(PlanNotFoundError):
            subscription_ledger.change_plan(active_subscription.id, foreign_plan.id)

    def test_terminal_subscription(self, subscription_ledger, processor, canceled_subscription):
        plan = PlanFactory(tenant=canceled_subscription.tenant)

        with pytest.raises(InvalidStateTransitionError):
            subscription_ledger.change_plan(canceled_subscription.id, plan.id)

        processor.update_subscription_price.assert_not_called()


@pytest.mark.django_db
class TestSyncPlans:
    def test_sync_member_plans(self, subscription_ledger, processor, chargeable_account):
        tenant = chargeable_account.tenant
        plans = [
            PlanFactory(tenant=tenant, stripe_product_id="", stripe_price_id=""),
            PlanFactory(tenant=tenant, stripe_product_id="", stripe_price_id=""),
        ]
        PlanFactory(tenant=tenant, stripe_product_id="", stripe_price_id="", is_active=False)
        processor.create_product_and_price.side_effect = [
            PriceResult(product_id="prod_a", price_id="price_a"),
            PriceResult(product_id="prod_b", price_id="price_b"),
        ]

        synced = subscription_ledger.sync_member_plans(tenant.id)

        assert len(synced) == 2
        assert {plan.stripe_price_id for plan in synced} == {"price_a", "price_b"}
        assert {plan.pk for plan in synced} == {plan.pk for plan in plans}

    def test_synced_plan_not_resent(self, subscription_ledger, processor, member_plan):
        plan = subscription_ledger.sync_plan(member_plan.id)

        assert plan.stripe_price_id == member_plan.stripe_price_id
        processor.create_product_and_price.assert_not_called()

    def test_platform_plan_synced_on_platform_account(
        self, subscription_ledger, processor, db
    ):
        plan = PlanFactory(
            variant=SubscriptionVariant.PLATFORM,
            tenant=None,
            stripe_product_id="",
            stripe_price_id="",
        )

        subscription_ledger.sync_plan(plan.id)

        assert processor.create_product_and_price.call_args.kwargs["stripe_account"] is None

    def test_member_plan_without_account(self, subscription_ledger, community):
        plan = PlanFactory(tenant=community, stripe_product_id="", stripe_price_id="")

        with pytest.raises(AccountNotFoundError):
            subscription_ledger.sync_plan(plan.id)

    def test_unknown_plan(self, subscription_ledger, db):
        with pytest.raises(PlanNotFoundError):
            subscription_ledger.sync_plan(uuid.uuid4())


# =============================================================================
# Queries
# =============================================================================


@pytest.mark.django_db
class TestQueries:
    def test_list_member_plans_scoped_to_tenant(self, subscription_ledger, community, member_plan):
        PlanFactory()
        PlanFactory(tenant=community, is_active=False)

        plans = subscription_ledger.list_plans(SubscriptionVariant.MEMBER, community.id)

        assert [plan.pk for plan in plans] == [member_plan.pk]

    def test_list_platform_plans(self, subscription_ledger, platform_plan, member_plan):
        plans = subscription_ledger.list_plans(SubscriptionVariant.PLATFORM)
        assert [plan.pk for plan in plans] == [platform_plan.pk]

    def test_get_member_subscription_returns_latest(self, subscription_ledger, community, member_plan):
        older = SubscriptionFactory(
            tenant=community, plan=member_plan, payer_id="user_7", status=SubscriptionStatus.CANCELED
        )
        latest = SubscriptionFactory(tenant=community, plan=member_plan, payer_id="user_7")
        Subscription.objects.filter(pk=older.pk).update(
            created_at=latest.created_at - timedelta(days=1)
        )

        assert subscription_ledger.get_member_subscription(community.id, "user_7").pk == latest.pk

    def test_get_member_subscription_missing(self, subscription_ledger, community):
        with pytest.raises(SubscriptionNotFoundError):
            subscription_ledger.get_member_subscription(community.id, "nobody")

    def test_list_member_subscriptions_excludes_platform(
        self, subscription_ledger, community, active_subscription, platform_subscription
    ):
        subscriptions = subscription_ledger.list_member_subscriptions(community.id)
        assert [s.pk for s in subscriptions] == [active_subscription.pk]

    def test_get_platform_subscription(self, subscription_ledger, community, platform_subscription):
        assert subscription_ledger.get_platform_subscription(community.id).pk == platform_subscription.pk

    def test_get_platform_subscription_missing(self, subscription_ledger, community):
        with pytest.raises(SubscriptionNotFoundError):
            subscription_ledger.get_platform_subscription(community.id)
