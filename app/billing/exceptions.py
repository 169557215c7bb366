"""
Billing-specific exceptions.

This module provides the exception hierarchy for the billing core,
including domain errors, concurrency control errors and Stripe errors.
Every class inherits from a core.exceptions base so the API layer maps
it to the right HTTP status.

Exception Hierarchy:
    ConflictError (400)
    ├── AccountAlreadyExistsError - Tenant already has a connected account
    ├── DuplicateActiveSubscriptionError - Active/trialing subscription exists
    ├── DuplicateTransactionError - Same external charge already recorded
    ├── StaleRecordError - Optimistic locking conflict
    ├── InvalidStateTransitionError - Transition outside the lifecycle graph
    └── ImmutableTransactionError - Write to a succeeded transaction
    NotFoundError (404)
    ├── AccountNotFoundError
    ├── PlanNotFoundError
    ├── SubscriptionNotFoundError
    └── TenantNotFoundError
    ValidationError (400)
    ├── InvalidPercentageError - Split percentage outside [0, 100]
    └── AccountNotChargeableError - Tenant account cannot accept charges
    ExternalServiceError (500)
    └── StripeError - Base for all Stripe errors
        ├── StripeInvalidRequestError - Invalid request params (permanent)
        ├── StripeInvalidAccountError - Invalid connected account (permanent)
        ├── StripeCardDeclinedError - Card declined (permanent)
        ├── StripeRateLimitError - Rate limited (transient, retry)
        ├── StripeAPIUnavailableError - API unavailable (transient, retry)
        └── StripeTimeoutError - Request timeout (transient, retry)

Usage:
    from billing.exceptions import AccountAlreadyExistsError

    if Account.objects.filter(tenant_id=tenant_id).exists():
        raise AccountAlreadyExistsError(
            "Community already has a payment account",
            details={"tenant_id": str(tenant_id)},
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Account Registry
# =============================================================================


class AccountAlreadyExistsError(ConflictError):
    """
    Raised when onboarding is started for a tenant that already has an Account.

    Checked before any processor call so no orphaned external account is
    created.
    """

    default_error_code: str = "ACCOUNT_ALREADY_EXISTS"


class AccountNotFoundError(NotFoundError):
    """Raised when no Account exists for a tenant or external account id."""

    default_error_code: str = "ACCOUNT_NOT_FOUND"


class TenantNotFoundError(NotFoundError):
    """Raised when the tenant (Community) does not exist."""

    default_error_code: str = "TENANT_NOT_FOUND"


class AccountNotChargeableError(ValidationError):
    """
    Raised when a member checkout targets a tenant whose Account cannot
    accept charges (missing, disabled, or charges not enabled yet).
    """

    default_error_code: str = "ACCOUNT_NOT_CHARGEABLE"


# =============================================================================
# Revenue Split Policy
# =============================================================================


class InvalidPercentageError(ValidationError):
    """Raised when a platform percentage is outside [0, 100]."""

    default_error_code: str = "INVALID_PERCENTAGE"


# =============================================================================
# Subscription Ledger
# =============================================================================


class DuplicateActiveSubscriptionError(ConflictError):
    """
    Raised when an active or trialing subscription already exists for the
    same (tenant, payer, variant).
    """

    default_error_code: str = "DUPLICATE_ACTIVE_SUBSCRIPTION"


class PlanNotFoundError(NotFoundError):
    """Raised when a plan is unknown, inactive, or belongs to another tenant."""

    default_error_code: str = "PLAN_NOT_FOUND"


class SubscriptionNotFoundError(NotFoundError):
    """Raised when a subscription lookup fails."""

    default_error_code: str = "SUBSCRIPTION_NOT_FOUND"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a subscription transition is outside the lifecycle graph.

    Lifecycle events never raise this: they record a SubscriptionAnomaly
    and leave the status unchanged. It is raised for explicit commands,
    such as cancelling an already canceled subscription.

    Example:
        raise InvalidStateTransitionError(
            "Cannot cancel a subscription in 'canceled' status",
            details={"current_status": "canceled", "target_status": "canceled"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


# =============================================================================
# Transaction Ledger
# =============================================================================


class DuplicateTransactionError(ConflictError):
    """
    Raised when a transaction with the same idempotency key exists.

    Callers inside webhook dispatch treat this as success: the money
    movement is already recorded.

    Attributes:
        existing: The transaction that was recorded first
    """

    default_error_code: str = "DUPLICATE_TRANSACTION"

    def __init__(self, message: str, existing=None, **kwargs):
        super().__init__(message, **kwargs)
        self.existing = existing


class ImmutableTransactionError(ConflictError):
    """Raised when code attempts to modify a succeeded transaction."""

    default_error_code: str = "IMMUTABLE_TRANSACTION"


# =============================================================================
# Concurrency Control
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    The record was modified by another writer between read and update.
    The caller should re-read and retry, or abort.

    Example:
        rows = Subscription.objects.filter(pk=pk, version=expected).update(...)
        if rows == 0:
            raise StaleRecordError(
                f"Subscription {pk} has been modified",
                details={"pk": str(pk), "expected_version": expected},
            )
    """

    default_error_code: str = "STALE_RECORD"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(ExternalServiceError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's internal error code
        decline_code: Card decline code (if applicable)
        is_retryable: Whether the operation can be retried

    Use is_retryable to decide retry behavior:
    - True: Transient error, safe to retry with backoff
    - False: Permanent error, do not retry

    Note:
        Creation calls are only safe to retry with the same idempotency key.
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    """Card was declined by the issuing bank."""

    default_error_code: str = "CARD_DECLINED"
    is_retryable: bool = False


class StripeInvalidAccountError(StripeError):
    """
    Invalid Stripe Connect account.

    Raised when the connected account is not found, disabled or not
    onboarded. Requires manual intervention.
    """

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"
    is_retryable: bool = False


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    The request will never succeed with the same parameters. This usually
    indicates a bug or a stale identifier, not a user error.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Rate limited by the Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    Covers network connectivity issues and Stripe server errors (5xx).
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    IMPORTANT: The operation may have succeeded on Stripe's side. Retry
    with the same idempotency key so Stripe returns the original result.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Account registry
    "AccountAlreadyExistsError",
    "AccountNotChargeableError",
    "AccountNotFoundError",
    "TenantNotFoundError",
    # Revenue split
    "InvalidPercentageError",
    # Subscription ledger
    "DuplicateActiveSubscriptionError",
    "InvalidStateTransitionError",
    "PlanNotFoundError",
    "SubscriptionNotFoundError",
    # Transaction ledger
    "DuplicateTransactionError",
    "ImmutableTransactionError",
    # Concurrency control
    "StaleRecordError",
    # Stripe-specific
    "StripeError",
    "StripeAPIUnavailableError",
    "StripeCardDeclinedError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeTimeoutError",
]
