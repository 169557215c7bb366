"""
Account registry: connected account onboarding and status sync.

Stripe owns the connected account's state machine. This service creates
the account, hands out onboarding links and mirrors capability state into
the local Account row.

Cross-boundary ordering for begin_onboarding:
    1. Local check that no Account exists (no Stripe call on conflict)
    2. Stripe account creation with an idempotency key derived from the
       tenant id
    3. Local insert

If step 3 fails after step 2 succeeded, a retry replays step 2 with the
same key and Stripe returns the account it already created, so the
recoverable case is "Stripe succeeded, local write failed".

Usage:
    from billing.adapters import get_processor_client
    from billing.services import AccountRegistry

    registry = AccountRegistry(get_processor_client())
    result = registry.begin_onboarding(tenant_id, country="BR")
    redirect(result.onboarding_url)
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from billing.adapters import AccountResult, CreateAccountParams, IdempotencyKeyGenerator
from billing.exceptions import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    StripeError,
    TenantNotFoundError,
)
from billing.locks import retry_on_stale, update_if_version
from billing.models import Account
from billing.services.types import AccountStatus, OnboardingResult
from billing.state_machines import VerificationStatus
from communities.models import Community

if TYPE_CHECKING:
    from billing.adapters import StripeAdapter


logger = logging.getLogger(__name__)


def derive_verification_status(
    charges_enabled: bool,
    payouts_enabled: bool,
    requirements: dict[str, Any] | None,
    disabled_reason: str | None = None,
) -> str:
    """
    Derive the local verification status from Stripe's account state.

    Order of precedence:
        rejected   - disabled_reason starts with "rejected"
        pending    - charges or payouts not enabled
        restricted - currently_due or past_due requirements remain
        verified   - otherwise
    """
    requirements = requirements or {}
    if disabled_reason and disabled_reason.startswith("rejected"):
        return VerificationStatus.REJECTED
    if not (charges_enabled and payouts_enabled):
        return VerificationStatus.PENDING
    if requirements.get("currently_due") or requirements.get("past_due"):
        return VerificationStatus.RESTRICTED
    return VerificationStatus.VERIFIED


def default_return_url(tenant_id) -> str:
    return f"{settings.FRONTEND_URL}/settings/billing/stripe/return?community_id={tenant_id}"


def default_refresh_url(tenant_id) -> str:
    return f"{settings.FRONTEND_URL}/settings/billing/stripe/refresh?community_id={tenant_id}"


class AccountRegistry:
    """
    Connected account lifecycle for tenants.

    Args:
        processor: StripeAdapter (or a test double with the same interface)
    """

    def __init__(self, processor: StripeAdapter):
        self.processor = processor

    # =========================================================================
    # Onboarding
    # =========================================================================

    def begin_onboarding(
        self,
        tenant_id: uuid.UUID | str,
        country: str | None = None,
        business_type: str | None = None,
        email: str | None = None,
        return_url: str | None = None,
        refresh_url: str | None = None,
    ) -> OnboardingResult:
        """
        Create the tenant's connected account and an onboarding link.

        Returns:
            OnboardingResult with the account id and onboarding URL

        Raises:
            TenantNotFoundError: Unknown tenant
            AccountAlreadyExistsError: Tenant already has an Account
            StripeError: Stripe call failed (nothing written locally)
        """
        tenant = Community.objects.filter(pk=tenant_id).first()
        if tenant is None:
            raise TenantNotFoundError(
                f"Community {tenant_id} not found",
                details={"tenant_id": str(tenant_id)},
            )

        existing = Account.objects.filter(tenant=tenant).first()
        if existing is not None:
            raise AccountAlreadyExistsError(
                "Community already has a Stripe account",
                details={"account_id": existing.external_account_id},
            )

        country = country or settings.STRIPE_CONNECT_DEFAULT_COUNTRY
        account_type = settings.STRIPE_CONNECT_ACCOUNT_TYPE

        remote = self.processor.create_connected_account(
            CreateAccountParams(
                country=country,
                account_type=account_type,
                email=email or None,
                business_type=business_type or None,
                metadata={"community_id": str(tenant.id)},
                idempotency_key=IdempotencyKeyGenerator.generate("create_account", tenant.id),
            )
        )
        onboarding_url = self.processor.create_account_link(
            remote.id,
            refresh_url=refresh_url or default_refresh_url(tenant.id),
            return_url=return_url or default_return_url(tenant.id),
        )

        try:
            with transaction.atomic():
                Account.objects.create(
                    tenant=tenant,
                    external_account_id=remote.id,
                    account_type=account_type,
                    country=country,
                    business_type=business_type or "",
                    email=email or "",
                    verification_status=VerificationStatus.PENDING,
                    charges_enabled=False,
                    payouts_enabled=False,
                )
                Community.objects.filter(pk=tenant.id).update(
                    stripe_account_id=remote.id,
                    stripe_onboarding_url=onboarding_url,
                    stripe_onboarding_completed=False,
                )
        except IntegrityError as e:
            logger.warning(
                "Concurrent onboarding for tenant",
                extra={"tenant_id": str(tenant.id), "account_id": remote.id},
            )
            raise AccountAlreadyExistsError(
                "Community already has a Stripe account",
                details={"tenant_id": str(tenant.id)},
            ) from e

        logger.info(
            "Started Stripe Connect onboarding",
            extra={"tenant_id": str(tenant.id), "account_id": remote.id},
        )
        return OnboardingResult(account_id=remote.id, onboarding_url=onboarding_url)

    def refresh_onboarding_link(self, tenant_id: uuid.UUID | str) -> tuple[str, str]:
        """
        Issue a new onboarding link for the tenant's existing account.

        Returns:
            (onboarding_url, account_id)

        Raises:
            AccountNotFoundError: Tenant has no Account
        """
        account = self._account_for_tenant(tenant_id)
        onboarding_url = self.processor.create_account_link(
            account.external_account_id,
            refresh_url=default_refresh_url(account.tenant_id),
            return_url=default_return_url(account.tenant_id),
        )
        Community.objects.filter(pk=account.tenant_id).update(stripe_onboarding_url=onboarding_url)
        return onboarding_url, account.external_account_id

    # =========================================================================
    # Status
    # =========================================================================

    def sync_status(self, external_account_id: str) -> AccountStatus:
        """
        Fetch the account from Stripe and apply its status locally.

        Raises:
            AccountNotFoundError: No local Account with this id
            StripeError: Stripe call failed
        """
        if not Account.objects.filter(external_account_id=external_account_id).exists():
            raise AccountNotFoundError(
                f"No account {external_account_id}",
                details={"account_id": external_account_id},
            )
        remote = self.processor.retrieve_account(external_account_id)
        return self.apply_status(remote)

    def apply_status(self, remote: AccountResult) -> AccountStatus:
        """
        Apply an account snapshot to the local row. Idempotent.

        The Account update is a version-guarded conditional UPDATE; the
        tenant's onboarding flag flips False -> True in the same database
        transaction once charges and payouts are both enabled.

        Raises:
            AccountNotFoundError: No local Account with this id
        """
        verification_status = derive_verification_status(
            remote.charges_enabled,
            remote.payouts_enabled,
            remote.requirements,
            remote.disabled_reason,
        )

        def apply() -> AccountStatus:
            account = Account.objects.filter(external_account_id=remote.id).first()
            if account is None:
                raise AccountNotFoundError(
                    f"No account {remote.id}",
                    details={"account_id": remote.id},
                )
            with transaction.atomic():
                update_if_version(
                    Account,
                    account.pk,
                    account.version,
                    verification_status=verification_status,
                    charges_enabled=remote.charges_enabled,
                    payouts_enabled=remote.payouts_enabled,
                    details_submitted=remote.details_submitted,
                    requirements=remote.requirements,
                    capabilities=remote.capabilities,
                    last_synced_at=timezone.now(),
                    updated_at=timezone.now(),
                )
                completed_now = False
                if remote.charges_enabled and remote.payouts_enabled:
                    completed_now = bool(
                        Community.objects.filter(
                            pk=account.tenant_id,
                            stripe_onboarding_completed=False,
                        ).update(stripe_onboarding_completed=True)
                    )
            if completed_now:
                logger.info(
                    "Tenant onboarding completed",
                    extra={"tenant_id": str(account.tenant_id), "account_id": remote.id},
                )
            onboarding_completed = Community.objects.filter(
                pk=account.tenant_id, stripe_onboarding_completed=True
            ).exists()
            return AccountStatus(
                account_id=remote.id,
                verification_status=verification_status,
                charges_enabled=remote.charges_enabled,
                payouts_enabled=remote.payouts_enabled,
                details_submitted=remote.details_submitted,
                requirements=remote.requirements,
                onboarding_completed=onboarding_completed,
            )

        return retry_on_stale(apply)

    def get_account_with_status(self, tenant_id: uuid.UUID | str) -> tuple[Account, AccountStatus | None]:
        """
        Return the tenant's Account and its live Stripe status.

        A Stripe failure yields a None status rather than an error.

        Raises:
            AccountNotFoundError: Tenant has no Account
        """
        account = self._account_for_tenant(tenant_id)
        try:
            remote = self.processor.retrieve_account(account.external_account_id)
        except StripeError as e:
            logger.warning(
                "Could not fetch live account status",
                extra={"account_id": account.external_account_id, "error_code": e.error_code},
            )
            return account, None

        status = AccountStatus(
            account_id=remote.id,
            verification_status=derive_verification_status(
                remote.charges_enabled,
                remote.payouts_enabled,
                remote.requirements,
                remote.disabled_reason,
            ),
            charges_enabled=remote.charges_enabled,
            payouts_enabled=remote.payouts_enabled,
            details_submitted=remote.details_submitted,
            requirements=remote.requirements,
            onboarding_completed=account.tenant.stripe_onboarding_completed,
        )
        return account, status

    def disable(self, external_account_id: str) -> Account | None:
        """
        Soft-disable an account after closure or deauthorization.

        Returns:
            The disabled Account, or None if it is unknown locally
        """
        def apply() -> Account | None:
            account = Account.objects.filter(external_account_id=external_account_id).first()
            if account is None:
                return None
            if account.is_disabled:
                return account
            now = timezone.now()
            update_if_version(
                Account,
                account.pk,
                account.version,
                is_disabled=True,
                disabled_at=now,
                charges_enabled=False,
                payouts_enabled=False,
                updated_at=now,
            )
            account.refresh_from_db()
            return account

        account = retry_on_stale(apply)
        if account is None:
            logger.warning(
                "Deauthorization for unknown account",
                extra={"account_id": external_account_id},
            )
        else:
            logger.info(
                "Account disabled",
                extra={"account_id": external_account_id, "tenant_id": str(account.tenant_id)},
            )
        return account

    # =========================================================================
    # Helpers
    # =========================================================================

    def _account_for_tenant(self, tenant_id: uuid.UUID | str) -> Account:
        account = Account.objects.select_related("tenant").filter(tenant_id=tenant_id).first()
        if account is None:
            raise AccountNotFoundError(
                "No Stripe account found for this community",
                details={"tenant_id": str(tenant_id)},
            )
        return account
