"""
Tests for AccountRegistry.

Tests cover:
- Verification status derivation
- Onboarding: processor call ordering, conflicts, failures
- Onboarding link refresh
- Status application and the tenant onboarding flag
- Soft-disable on deauthorization
"""

import uuid

import pytest

from billing.adapters import AccountResult
from billing.exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    StripeAPIUnavailableError,
    TenantNotFoundError,
)
from billing.models import Account
from billing.services import derive_verification_status
from billing.state_machines import VerificationStatus


# =============================================================================
# derive_verification_status
# =============================================================================


class TestDeriveVerificationStatus:
    def test_rejected_wins(self):
        status = derive_verification_status(True, True, {}, "rejected.fraud")
        assert status == VerificationStatus.REJECTED

    def test_pending_until_both_capabilities(self):
        assert derive_verification_status(True, False, {}) == VerificationStatus.PENDING
        assert derive_verification_status(False, True, {}) == VerificationStatus.PENDING

    def test_restricted_with_outstanding_requirements(self):
        status = derive_verification_status(True, True, {"currently_due": ["external_account"]})
        assert status == VerificationStatus.RESTRICTED

        status = derive_verification_status(True, True, {"past_due": ["tos_acceptance.date"]})
        assert status == VerificationStatus.RESTRICTED

    def test_verified(self):
        status = derive_verification_status(True, True, {"eventually_due": ["individual.id_number"]})
        assert status == VerificationStatus.VERIFIED

    def test_disabled_reason_other_than_rejected(self):
        status = derive_verification_status(False, False, {}, "requirements.past_due")
        assert status == VerificationStatus.PENDING


# =============================================================================
# Onboarding
# =============================================================================


@pytest.mark.django_db
class TestBeginOnboarding:
    def test_creates_account_and_link(self, account_registry, processor, community):
        result = account_registry.begin_onboarding(community.id, country="br", email="a@b.co")

        assert result.account_id == "acct_test_new"
        assert result.onboarding_url.startswith("https://connect.stripe.com/")

        account = Account.objects.get(tenant=community)
        assert account.external_account_id == "acct_test_new"
        assert account.verification_status == VerificationStatus.PENDING
        assert account.charges_enabled is False

        community.refresh_from_db()
        assert community.stripe_account_id == "acct_test_new"
        assert community.stripe_onboarding_url == result.onboarding_url
        assert community.stripe_onboarding_completed is False

    def test_idempotency_key_derived_from_tenant(self, account_registry, processor, community):
        account_registry.begin_onboarding(community.id)

        params = processor.create_connected_account.call_args.args[0]
        assert params.idempotency_key.startswith(f"create_account:{community.id}:")
        assert params.metadata == {"community_id": str(community.id)}
        assert params.country == "BR"

    def test_second_onboarding_conflicts_without_processor_call(
        self, account_registry, processor, community
    ):
        account_registry.begin_onboarding(community.id)
        processor.create_connected_account.reset_mock()

        with pytest.raises(AccountAlreadyExistsError):
            account_registry.begin_onboarding(community.id)

        processor.create_connected_account.assert_not_called()
        assert Account.objects.filter(tenant=community).count() == 1

    def test_unknown_tenant(self, account_registry, processor):
        with pytest.raises(TenantNotFoundError):
            account_registry.begin_onboarding(uuid.uuid4())

        processor.create_connected_account.assert_not_called()

    def test_processor_failure_writes_nothing(self, account_registry, processor, community):
        processor.create_connected_account.side_effect = StripeAPIUnavailableError("down")

        with pytest.raises(StripeAPIUnavailableError):
            account_registry.begin_onboarding(community.id)

        assert not Account.objects.filter(tenant=community).exists()
        community.refresh_from_db()
        assert community.stripe_account_id == ""


@pytest.mark.django_db
class TestRefreshOnboardingLink:
    def test_returns_new_link(self, account_registry, processor, pending_account):
        processor.create_account_link.return_value = "https://connect.stripe.com/setup/e/new"

        url, account_id = account_registry.refresh_onboarding_link(pending_account.tenant_id)

        assert url == "https://connect.stripe.com/setup/e/new"
        assert account_id == pending_account.external_account_id
        pending_account.tenant.refresh_from_db()
        assert pending_account.tenant.stripe_onboarding_url == url

    def test_without_account(self, account_registry, community):
        with pytest.raises(AccountNotFoundError):
            account_registry.refresh_onboarding_link(community.id)


# =============================================================================
# Status
# =============================================================================


@pytest.mark.django_db
class TestApplyStatus:
    def test_enabling_both_completes_onboarding(self, account_registry, pending_account):
        snapshot = AccountResult(
            id=pending_account.external_account_id,
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
            requirements={"currently_due": [], "past_due": []},
        )

        status = account_registry.apply_status(snapshot)

        assert status.verification_status == VerificationStatus.VERIFIED
        assert status.onboarding_completed is True
        pending_account.refresh_from_db()
        assert pending_account.charges_enabled is True
        assert pending_account.payouts_enabled is True
        assert pending_account.last_synced_at is not None
        assert pending_account.version == 2
        pending_account.tenant.refresh_from_db()
        assert pending_account.tenant.stripe_onboarding_completed is True

    def test_charges_only_keeps_onboarding_open(self, account_registry, pending_account):
        snapshot = AccountResult(id=pending_account.external_account_id, charges_enabled=True)

        status = account_registry.apply_status(snapshot)

        assert status.verification_status == VerificationStatus.PENDING
        assert status.onboarding_completed is False

    def test_completion_flag_never_cleared(self, account_registry, chargeable_account):
        community = chargeable_account.tenant
        community.stripe_onboarding_completed = True
        community.save()

        status = account_registry.apply_status(
            AccountResult(id=chargeable_account.external_account_id, charges_enabled=False)
        )

        assert status.onboarding_completed is True
        community.refresh_from_db()
        assert community.stripe_onboarding_completed is True

    def test_apply_is_idempotent(self, account_registry, pending_account):
        snapshot = AccountResult(
            id=pending_account.external_account_id,
            charges_enabled=True,
            payouts_enabled=True,
        )

        first = account_registry.apply_status(snapshot)
        second = account_registry.apply_status(snapshot)

        assert first == second

    def test_unknown_account(self, account_registry, db):
        with pytest.raises(AccountNotFoundError):
            account_registry.apply_status(AccountResult(id="acct_unknown"))

    def test_sync_status_fetches_from_processor(self, account_registry, processor, pending_account):
        processor.retrieve_account.return_value = AccountResult(
            id=pending_account.external_account_id,
            charges_enabled=True,
            payouts_enabled=True,
            requirements={"currently_due": ["external_account"]},
        )

        status = account_registry.sync_status(pending_account.external_account_id)

        processor.retrieve_account.assert_called_once_with(pending_account.external_account_id)
        assert status.verification_status == VerificationStatus.RESTRICTED

    def test_sync_status_unknown_account_skips_processor(self, account_registry, processor, db):
        with pytest.raises(AccountNotFoundError):
            account_registry.sync_status("acct_missing")

        processor.retrieve_account.assert_not_called()


@pytest.mark.django_db
class TestGetAccountWithStatus:
    def test_returns_live_status(self, account_registry, processor, chargeable_account):
        processor.retrieve_account.return_value = AccountResult(
            id=chargeable_account.external_account_id,
            charges_enabled=True,
            payouts_enabled=True,
        )

        account, status = account_registry.get_account_with_status(chargeable_account.tenant_id)

        assert account.pk == chargeable_account.pk
        assert status.verification_status == VerificationStatus.VERIFIED

    def test_processor_failure_yields_none(self, account_registry, processor, chargeable_account):
        processor.retrieve_account.side_effect = StripeAPIUnavailableError("down")

        account, status = account_registry.get_account_with_status(chargeable_account.tenant_id)

        assert account.pk == chargeable_account.pk
        assert status is None


@pytest.mark.django_db
class TestDisable:
    def test_soft_disables(self, account_registry, chargeable_account):
        account = account_registry.disable(chargeable_account.external_account_id)

        assert account.is_disabled is True
        assert account.disabled_at is not None
        assert account.charges_enabled is False
        assert Account.objects.filter(pk=chargeable_account.pk).exists()

    def test_disable_twice_is_noop(self, account_registry, chargeable_account):
        first = account_registry.disable(chargeable_account.external_account_id)
        second = account_registry.disable(chargeable_account.external_account_id)

        assert second.version == first.version

    def test_unknown_account_returns_none(self, account_registry, db):
        assert account_registry.disable("acct_missing") is None
