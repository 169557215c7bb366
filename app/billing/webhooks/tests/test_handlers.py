"""
Tests for webhook handlers.

Handlers are called with typed events and a HandlerContext built on real
services; the database is the observable effect.

Tests cover:
- Registry and dispatch
- Account, subscription, invoice, payment, refund and dispute handlers
- Expected failures returned as ServiceResult, unexpected ones raised
"""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from core.exceptions import ProcessingError
from core.services import ServiceResult
from billing.exceptions import StripeAPIUnavailableError
from billing.models import Account, Subscription, SubscriptionAnomaly, Transaction
from billing.state_machines import SubscriptionStatus, TransactionKind, TransactionStatus
from billing.tests.factories import AccountFactory
from billing.webhooks.events import Unhandled, parse_event
from billing.webhooks.handlers import WEBHOOK_HANDLERS, dispatch, register_handler


# =============================================================================
# Registry
# =============================================================================


class TestDispatch:
    def test_unhandled_event_succeeds(self, handler_context):
        event = Unhandled(event_id="evt_1", event_type="customer.created")

        result = dispatch(event, handler_context)

        assert result.success is True
        assert result.data is None

    def test_register_handler(self, handler_context):
        handler = MagicMock(return_value=ServiceResult.success("ok"))
        event = Unhandled(event_id="evt_1", event_type="customer.created")

        with patch.dict(WEBHOOK_HANDLERS):
            register_handler(Unhandled)(handler)
            result = dispatch(event, handler_context)

        assert result.data == "ok"
        handler.assert_called_once_with(event, handler_context)
        assert Unhandled not in WEBHOOK_HANDLERS


# =============================================================================
# Account Handlers
# =============================================================================


@pytest.mark.django_db
class TestAccountHandlers:
    def test_account_updated_syncs_from_stripe(self, handler_context, stripe_client, make_event):
        account = AccountFactory(charges_enabled=False, payouts_enabled=False)
        stripe_client.accounts.retrieve.return_value = {
            "id": account.external_account_id,
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
            "requirements": {},
        }
        event = parse_event(make_event("account.updated", {"id": account.external_account_id}))

        result = dispatch(event, handler_context)

        assert result.success is True
        stripe_client.accounts.retrieve.assert_called_once_with(account.external_account_id)
        account.refresh_from_db()
        assert account.charges_enabled is True
        account.tenant.refresh_from_db()
        assert account.tenant.stripe_onboarding_completed is True

    def test_older_snapshot_does_not_roll_back(self, handler_context, stripe_client, make_event):
        account = AccountFactory(charges_enabled=False, payouts_enabled=False)
        enabled = {
            "id": account.external_account_id,
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
            "requirements": {},
        }
        stripe_client.accounts.retrieve.return_value = enabled
        newer = make_event("account.updated", enabled, created=1767225700)
        older = make_event(
            "account.updated",
            {**enabled, "charges_enabled": False, "payouts_enabled": False},
            created=1767225600,
        )

        dispatch(parse_event(newer), handler_context)
        dispatch(parse_event(older), handler_context)

        account.refresh_from_db()
        assert account.charges_enabled is True
        assert account.payouts_enabled is True
        assert stripe_client.accounts.retrieve.call_count == 2

    def test_account_updated_unknown_account(self, handler_context, stripe_client, make_event, db):
        event = parse_event(make_event("account.updated", {"id": "acct_unknown"}))

        result = dispatch(event, handler_context)

        assert result.success is False
        assert result.error_code == "ACCOUNT_NOT_FOUND"
        stripe_client.accounts.retrieve.assert_not_called()

    def test_account_updated_stripe_failure_raises(self, handler_context, stripe_client, make_event):
        account = AccountFactory()
        stripe_client.accounts.retrieve.side_effect = stripe.APIConnectionError(
            message="Could not connect to Stripe."
        )
        event = parse_event(make_event("account.updated", {"id": account.external_account_id}))

        with pytest.raises(StripeAPIUnavailableError):
            dispatch(event, handler_context)

    def test_deauthorized(self, handler_context, make_event, chargeable_account):
        event = parse_event(
            make_event(
                "account.application.deauthorized",
                {"id": "ca_1"},
                account=chargeable_account.external_account_id,
            )
        )

        result = dispatch(event, handler_context)

        assert result.success is True
        assert Account.objects.get(pk=chargeable_account.pk).is_disabled is True


# =============================================================================
# Subscription Handlers
# =============================================================================


@pytest.mark.django_db
class TestSubscriptionHandlers:
    def test_created_from_metadata(self, handler_context, make_event, community, member_plan):
        event = parse_event(
            make_event(
                "customer.subscription.created",
                {
                    "id": "sub_created",
                    "status": "active",
                    "customer": "cus_1",
                    "metadata": {
                        "community_id": str(community.id),
                        "subscription_type": "member",
                        "user_id": "user_5",
                        "plan_id": str(member_plan.id),
                    },
                },
            )
        )

        result = dispatch(event, handler_context)

        assert result.success is True
        assert result.data.created is True
        subscription = Subscription.objects.get(external_subscription_id="sub_created")
        assert subscription.payer_id == "user_5"

    def test_unresolved_tenant(self, handler_context, make_event, db):
        event = parse_event(
            make_event("customer.subscription.created", {"id": "sub_x", "status": "active"})
        )

        result = dispatch(event, handler_context)

        assert result.success is False
        assert result.error_code == "TENANT_NOT_RESOLVED"

    def test_deleted_cancels(self, handler_context, make_event, active_subscription):
        event = parse_event(
            make_event(
                "customer.subscription.deleted",
                {"id": active_subscription.external_subscription_id, "status": "canceled"},
            )
        )

        dispatch(event, handler_context)

        active_subscription.refresh_from_db()
        assert active_subscription.status == SubscriptionStatus.CANCELED

    def test_illegal_transition_is_success_with_anomaly(
        self, handler_context, make_event, active_subscription
    ):
        event = parse_event(
            make_event(
                "customer.subscription.updated",
                {"id": active_subscription.external_subscription_id, "status": "unpaid"},
            )
        )

        result = dispatch(event, handler_context)

        assert result.success is True
        assert result.data.anomaly is True
        assert SubscriptionAnomaly.objects.filter(subscription=active_subscription).count() == 1

    def test_checkout_completed_writes_nothing(self, handler_context, make_event, community):
        event = parse_event(
            make_event(
                "checkout.session.completed",
                {
                    "id": "cs_1",
                    "subscription": "sub_from_checkout",
                    "metadata": {"community_id": str(community.id)},
                },
            )
        )

        result = dispatch(event, handler_context)

        assert result.success is True
        assert not Subscription.objects.filter(
            external_subscription_id="sub_from_checkout"
        ).exists()


# =============================================================================
# Invoice Handlers
# =============================================================================


@pytest.mark.django_db
class TestInvoiceHandlers:
    def test_invoice_paid_records_payment(
        self, handler_context, make_event, active_subscription, revenue_split
    ):
        event = parse_event(
            make_event(
                "invoice.paid",
                {
                    "id": "in_1",
                    "subscription": active_subscription.external_subscription_id,
                    "payment_intent": "pi_inv_1",
                    "amount_paid": 2990,
                    "currency": "brl",
                    "lines": {"data": [{"period": {"start": 1767225600}}]},
                },
            )
        )

        result = dispatch(event, handler_context)

        assert result.success is True
        txn = Transaction.objects.get(idempotency_key="payment:pi_inv_1")
        assert txn.tenant_id == active_subscription.tenant_id
        assert txn.subscription_id == active_subscription.pk
        assert txn.amount_cents == 2990
        assert txn.platform_amount_cents == 299
        assert txn.creator_amount_cents == 2691
        assert txn.external_reference_id == "in_1"
        active_subscription.refresh_from_db()
        assert active_subscription.invoiced_period_start is not None

    def test_invoice_paid_replay(self, handler_context, make_event, active_subscription, revenue_split):
        event = parse_event(
            make_event(
                "invoice.paid",
                {
                    "id": "in_2",
                    "subscription": active_subscription.external_subscription_id,
                    "payment_intent": "pi_inv_2",
                    "amount_paid": 2990,
                    "currency": "brl",
                },
            )
        )

        dispatch(event, handler_context)
        second = dispatch(event, handler_context)

        assert second.success is True
        assert Transaction.objects.filter(external_charge_id="pi_inv_2").count() == 1

    def test_invoice_for_unknown_subscription_raises(self, handler_context, make_event, db):
        event = parse_event(
            make_event(
                "invoice.paid",
                {"id": "in_3", "subscription": "sub_not_yet", "amount_paid": 100, "currency": "brl"},
            )
        )

        with pytest.raises(ProcessingError):
            dispatch(event, handler_context)

    def test_zero_amount_invoice(self, handler_context, make_event, active_subscription):
        event = parse_event(
            make_event(
                "invoice.paid",
                {
                    "id": "in_trial",
                    "subscription": active_subscription.external_subscription_id,
                    "amount_paid": 0,
                    "currency": "brl",
                },
            )
        )

        result = dispatch(event, handler_context)

        assert result.success is True
        assert not Transaction.objects.exists()

    def test_payment_failed(self, handler_context, make_event, active_subscription):
        event = parse_event(
            make_event(
                "invoice.payment_failed",
                {
                    "id": "in_4",
                    "subscription": active_subscription.external_subscription_id,
                    "attempt_count": 1,
                    "amount_due": 2990,
                    "currency": "brl",
                },
            )
        )

        result = dispatch(event, handler_context)

        assert result.success is True
        txn = Transaction.objects.get(idempotency_key="failed_payment:in_4:1")
        assert txn.status == TransactionStatus.FAILED
        # Status changes arrive through customer.subscription.updated
        active_subscription.refresh_from_db()
        assert active_subscription.status == SubscriptionStatus.ACTIVE


# =============================================================================
# Payment Handlers
# =============================================================================


@pytest.mark.django_db
class TestPaymentHandlers:
    def test_one_off_payment_on_connected_account(
        self, handler_context, make_event, chargeable_account, revenue_split
    ):
        event = parse_event(
            make_event(
                "payment_intent.succeeded",
                {"id": "pi_once", "amount_received": 1000, "currency": "brl"},
                account=chargeable_account.external_account_id,
            )
        )

        result = dispatch(event, handler_context)

        assert result.success is True
        txn = Transaction.objects.get(external_charge_id="pi_once")
        assert txn.tenant_id == chargeable_account.tenant_id
        assert txn.platform_amount_cents == 100

    def test_invoice_intent_left_to_invoice_handler(self, handler_context, make_event, chargeable_account):
        event = parse_event(
            make_event(
                "payment_intent.succeeded",
                {"id": "pi_inv", "amount_received": 1000, "currency": "brl", "invoice": "in_1"},
                account=chargeable_account.external_account_id,
            )
        )

        result = dispatch(event, handler_context)

        assert result.success is True
        assert not Transaction.objects.exists()

    def test_refund_and_replay(self, handler_context, make_event, chargeable_account, revenue_split):
        dispatch(
            parse_event(
                make_event(
                    "payment_intent.succeeded",
                    {"id": "pi_r", "amount_received": 1000, "currency": "brl"},
                    account=chargeable_account.external_account_id,
                )
            ),
            handler_context,
        )
        refund = parse_event(
            make_event(
                "charge.refunded",
                {"id": "ch_r", "payment_intent": "pi_r", "amount_refunded": 300, "currency": "brl"},
            )
        )

        first = dispatch(refund, handler_context)
        second = dispatch(refund, handler_context)

        assert first.success is True
        assert second.success is True
        refunds = Transaction.objects.filter(kind=TransactionKind.REFUND)
        assert refunds.count() == 1
        assert refunds.get().amount_cents == -300

    def test_dispute(self, handler_context, make_event, chargeable_account, revenue_split):
        dispatch(
            parse_event(
                make_event(
                    "payment_intent.succeeded",
                    {"id": "pi_d", "amount_received": 1000, "currency": "brl"},
                    account=chargeable_account.external_account_id,
                )
            ),
            handler_context,
        )

        result = dispatch(
            parse_event(
                make_event(
                    "charge.dispute.created",
                    {"id": "dp_1", "charge": "ch_d", "payment_intent": "pi_d", "amount": 1000, "currency": "brl"},
                )
            ),
            handler_context,
        )

        assert result.success is True
        chargeback = Transaction.objects.get(kind=TransactionKind.CHARGEBACK)
        assert chargeback.tenant_id == chargeable_account.tenant_id
        assert chargeback.amount_cents == -1000
        assert chargeback.platform_amount_cents == -100

    def test_refund_for_unknown_tenant(self, handler_context, make_event, db):
        result = dispatch(
            parse_event(
                make_event("charge.refunded", {"id": "ch_x", "amount_refunded": 100, "currency": "brl"})
            ),
            handler_context,
        )

        assert result.success is False
        assert result.error_code == "TENANT_NOT_RESOLVED"
