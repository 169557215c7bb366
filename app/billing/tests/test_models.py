"""
Tests for billing models.

Tests cover:
- Account capability properties
- RevenueSplit derived creator percentage and one-active constraint
- Plan/tenant variant constraint
- Subscription FSM transitions, including illegal ones
- Transaction immutability and split check constraint
- ProcessedEvent helpers
"""

from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django_fsm import TransitionNotAllowed, can_proceed

from billing.exceptions import ImmutableTransactionError
from billing.state_machines import (
    EventStatus,
    SubscriptionStatus,
    SubscriptionVariant,
    TransactionStatus,
)
from billing.tests.factories import (
    AccountFactory,
    CommunityFactory,
    PlanFactory,
    ProcessedEventFactory,
    RevenueSplitFactory,
    SubscriptionFactory,
    TransactionFactory,
)


# =============================================================================
# Account
# =============================================================================


@pytest.mark.django_db
class TestAccount:
    def test_can_accept_charges_when_enabled(self):
        account = AccountFactory()
        assert account.can_accept_charges is True
        assert account.is_fully_enabled is True

    def test_disabled_account_cannot_accept_charges(self):
        account = AccountFactory(is_disabled=True)
        assert account.can_accept_charges is False

    def test_charges_only_is_not_fully_enabled(self):
        account = AccountFactory(payouts_enabled=False)
        assert account.can_accept_charges is True
        assert account.is_fully_enabled is False

    def test_one_account_per_tenant(self):
        account = AccountFactory()
        with pytest.raises(IntegrityError), transaction.atomic():
            AccountFactory(tenant=account.tenant)

    def test_save_increments_version(self):
        account = AccountFactory()
        assert account.version == 1

        account.email = "new@example.com"
        account.save()

        assert account.version == 2

    def test_default_requirements_shape(self):
        account = AccountFactory()
        assert set(account.requirements) == {
            "currently_due",
            "eventually_due",
            "past_due",
            "pending_verification",
        }


# =============================================================================
# RevenueSplit
# =============================================================================


@pytest.mark.django_db
class TestRevenueSplit:
    def test_creator_percentage_is_derived(self):
        split = RevenueSplitFactory(platform_percentage=Decimal("12.50"))
        assert split.creator_percentage == Decimal("87.50")

    def test_only_one_active_split_per_tenant(self):
        split = RevenueSplitFactory()
        with pytest.raises(IntegrityError), transaction.atomic():
            RevenueSplitFactory(tenant=split.tenant)

    def test_inactive_history_rows_allowed(self):
        split = RevenueSplitFactory()
        RevenueSplitFactory(tenant=split.tenant, is_active=False)
        RevenueSplitFactory(tenant=split.tenant, is_active=False)

        assert split.tenant.revenue_splits.count() == 3

    def test_percentage_above_hundred_rejected_by_database(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            RevenueSplitFactory(platform_percentage=Decimal("100.01"))


# =============================================================================
# Plan
# =============================================================================


@pytest.mark.django_db
class TestPlan:
    def test_member_plan_requires_tenant(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PlanFactory(variant=SubscriptionVariant.MEMBER, tenant=None)

    def test_platform_plan_must_not_have_tenant(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PlanFactory(variant=SubscriptionVariant.PLATFORM, tenant=CommunityFactory())

    def test_is_synced(self):
        assert PlanFactory().is_synced is True
        assert PlanFactory(stripe_price_id="").is_synced is False


# =============================================================================
# Subscription FSM
# =============================================================================


@pytest.mark.django_db
class TestSubscriptionTransitions:
    @pytest.mark.parametrize(
        "source,target",
        [
            (SubscriptionStatus.INCOMPLETE, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.INCOMPLETE, SubscriptionStatus.INCOMPLETE_EXPIRED),
            (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.TRIALING, SubscriptionStatus.PAST_DUE),
            (SubscriptionStatus.TRIALING, SubscriptionStatus.CANCELED),
            (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE),
            (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED),
            (SubscriptionStatus.PAST_DUE, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.PAST_DUE, SubscriptionStatus.UNPAID),
            (SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED),
        ],
    )
    def test_allowed_transitions(self, source, target):
        subscription = SubscriptionFactory(status=source)
        step = subscription.transition_for(target)

        assert step is not None
        assert can_proceed(step)
        step()
        assert subscription.status == target

    @pytest.mark.parametrize(
        "source,target",
        [
            (SubscriptionStatus.CANCELED, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.INCOMPLETE_EXPIRED, SubscriptionStatus.ACTIVE),
            (SubscriptionStatus.ACTIVE, SubscriptionStatus.UNPAID),
            (SubscriptionStatus.UNPAID, SubscriptionStatus.CANCELED),
            (SubscriptionStatus.INCOMPLETE, SubscriptionStatus.PAST_DUE),
        ],
    )
    def test_disallowed_transitions(self, source, target):
        subscription = SubscriptionFactory(status=source)
        step = subscription.transition_for(target)

        assert not can_proceed(step)
        with pytest.raises(TransitionNotAllowed):
            step()
        assert subscription.status == source

    def test_no_transition_into_trialing(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.INCOMPLETE)
        assert subscription.transition_for(SubscriptionStatus.TRIALING) is None

    def test_cancel_sets_canceled_at(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.ACTIVE)
        subscription.cancel()

        assert subscription.canceled_at is not None
        assert subscription.is_canceled is True
        assert subscription.is_live is False

    def test_will_cancel_at_period_end(self):
        subscription = SubscriptionFactory(cancel_at_period_end=True)
        assert subscription.will_cancel_at_period_end is True

    def test_factory_plan_follows_variant(self):
        member = SubscriptionFactory()
        platform = SubscriptionFactory(variant=SubscriptionVariant.PLATFORM)

        assert member.plan.tenant_id == member.tenant_id
        assert platform.plan.tenant_id is None


# =============================================================================
# Transaction
# =============================================================================


@pytest.mark.django_db
class TestTransaction:
    def test_succeeded_transaction_cannot_be_modified(self):
        txn = TransactionFactory()
        txn.amount_cents = 5

        with pytest.raises(ImmutableTransactionError):
            txn.save()

    def test_pending_transaction_can_be_updated(self):
        txn = TransactionFactory(status=TransactionStatus.PENDING)
        txn.status = TransactionStatus.SUCCEEDED
        txn.save()

        txn.refresh_from_db()
        assert txn.status == TransactionStatus.SUCCEEDED

    def test_transactions_cannot_be_deleted(self):
        txn = TransactionFactory()
        with pytest.raises(ImmutableTransactionError):
            txn.delete()

    def test_split_must_sum_to_amount(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            TransactionFactory(amount_cents=1000, platform_amount_cents=100, creator_amount_cents=800)

    def test_idempotency_key_unique(self):
        TransactionFactory(external_charge_id="pi_dup")
        with pytest.raises(IntegrityError), transaction.atomic():
            TransactionFactory(external_charge_id="pi_dup")

    def test_is_credit(self):
        assert TransactionFactory().is_credit is True
        refund = TransactionFactory(
            amount_cents=-300,
            platform_amount_cents=-30,
            creator_amount_cents=-270,
            idempotency_key="refund:pi_x:300",
        )
        assert refund.is_credit is False


# =============================================================================
# ProcessedEvent
# =============================================================================


@pytest.mark.django_db
class TestProcessedEvent:
    def test_external_event_id_unique(self):
        event = ProcessedEventFactory()
        with pytest.raises(IntegrityError), transaction.atomic():
            ProcessedEventFactory(external_event_id=event.external_event_id)

    def test_get_object_id(self):
        event = ProcessedEventFactory()
        assert event.get_object_id() == "cus_test"

    def test_is_dead_lettered(self):
        assert ProcessedEventFactory(status=EventStatus.DEAD_LETTERED).is_dead_lettered is True
        assert ProcessedEventFactory().is_dead_lettered is False
