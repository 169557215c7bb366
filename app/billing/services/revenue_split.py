"""
Revenue split policy.

compute_split divides an integer amount of minor units between platform
and creator. Rounding is banker's rounding on the platform share and the
creator gets the remainder, so the two parts always add up to the amount.

    compute_split(1005, "brl", Decimal("10"))
    # SplitAmounts(platform_amount=100, creator_amount=905)

RevenueSplitPolicy keeps one active RevenueSplit row per tenant. Changing
the split deactivates the current row and inserts a new one in the same
transaction.
"""

from __future__ import annotations

import logging
import uuid
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from billing.exceptions import InvalidPercentageError, TenantNotFoundError
from billing.models import RevenueSplit
from billing.services.types import SplitAmounts
from communities.models import Community

if TYPE_CHECKING:
    from billing.models import Transaction


logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _as_percentage(value) -> Decimal:
    try:
        pct = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidPercentageError(
            "Percentage must be a number",
            details={"platform_percentage": str(value)},
        ) from e
    if not pct.is_finite() or pct < 0 or pct > HUNDRED:
        raise InvalidPercentageError(
            "Percentage must be between 0 and 100",
            details={"platform_percentage": str(value)},
        )
    return pct


def compute_split(amount: int, currency: str, policy) -> SplitAmounts:
    """
    Split an amount of minor units between platform and creator.

    Args:
        amount: Amount in smallest currency unit (may be negative)
        currency: ISO 4217 code (carried for callers; no conversion)
        policy: A RevenueSplit, or a platform percentage

    Returns:
        SplitAmounts whose parts add up to amount exactly
    """
    pct = _as_percentage(getattr(policy, "platform_percentage", policy))
    platform = int((Decimal(amount) * pct / HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))
    return SplitAmounts(
        platform_amount=platform,
        creator_amount=amount - platform,
        platform_percentage=pct,
    )


def reverse_split(amount: int, original: Transaction | None, currency: str, policy) -> SplitAmounts:
    """
    Split a negative correction with the percentage of the original payment.

    Falls back to the given policy when the original payment is unknown.
    """
    source = original.platform_percentage if original is not None else policy
    return compute_split(amount, currency, source)


class RevenueSplitPolicy:
    """
    Manage the active RevenueSplit of each tenant.

    Usage:
        policy = RevenueSplitPolicy()
        split = policy.get_active_split(tenant_id)
        policy.set_split(tenant_id, Decimal("15"))
    """

    def get_active_split(self, tenant_id: uuid.UUID | str) -> RevenueSplit:
        """
        Return the tenant's active split, creating the default lazily.

        The default platform percentage comes from PLATFORM_FEE_PERCENT.

        Raises:
            TenantNotFoundError: If the tenant doesn't exist
        """
        split = RevenueSplit.objects.filter(tenant_id=tenant_id, is_active=True).first()
        if split is not None:
            return split

        if not Community.objects.filter(pk=tenant_id).exists():
            raise TenantNotFoundError(
                f"Community {tenant_id} not found",
                details={"tenant_id": str(tenant_id)},
            )

        default_pct = _as_percentage(getattr(settings, "PLATFORM_FEE_PERCENT", 10))
        try:
            with transaction.atomic():
                split = RevenueSplit.objects.create(
                    tenant_id=tenant_id,
                    platform_percentage=default_pct,
                    effective_from=timezone.now(),
                    is_active=True,
                )
        except IntegrityError:
            # A concurrent caller created the default first
            return RevenueSplit.objects.get(tenant_id=tenant_id, is_active=True)

        logger.info(
            "Created default revenue split",
            extra={"tenant_id": str(tenant_id), "platform_percentage": str(default_pct)},
        )
        return split

    def set_split(self, tenant_id: uuid.UUID | str, platform_percentage) -> RevenueSplit:
        """
        Replace the tenant's active split.

        Args:
            tenant_id: Community id
            platform_percentage: New platform share, 0-100

        Returns:
            The new active RevenueSplit

        Raises:
            InvalidPercentageError: If the percentage is outside [0, 100]
            TenantNotFoundError: If the tenant doesn't exist
        """
        pct = _as_percentage(platform_percentage)
        if pct != pct.quantize(Decimal("0.01")):
            raise InvalidPercentageError(
                "Percentage supports at most two decimal places",
                details={"platform_percentage": str(platform_percentage)},
            )

        with transaction.atomic():
            tenant = Community.objects.select_for_update().filter(pk=tenant_id).first()
            if tenant is None:
                raise TenantNotFoundError(
                    f"Community {tenant_id} not found",
                    details={"tenant_id": str(tenant_id)},
                )
            RevenueSplit.objects.filter(tenant=tenant, is_active=True).update(is_active=False)
            split = RevenueSplit.objects.create(
                tenant=tenant,
                platform_percentage=pct,
                effective_from=timezone.now(),
                is_active=True,
            )

        logger.info(
            "Revenue split changed",
            extra={"tenant_id": str(tenant_id), "platform_percentage": str(pct)},
        )
        return split

