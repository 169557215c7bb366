"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the API
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Missing/malformed input (400, never retried)
    ├── NotFoundError - Unknown tenant/account/subscription (404)
    ├── ConflictError - Duplicates and state conflicts (400)
    ├── ExternalServiceError - Payment processor call failed (500)
    ├── SignatureError - Webhook authenticity check failed
    └── ProcessingError - Webhook dispatch failed after verification

Usage:
    from core.exceptions import ValidationError, NotFoundError

    # Raise with message only
    raise ValidationError("tenant_id is required")

    # Raise with error code for client handling
    raise ConflictError("Account already exists", error_code="ACCOUNT_EXISTS")

    # Convert to dict for API response
    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=400)

Note:
    These exceptions are for domain/business logic errors.
    DRF handles API-layer exceptions (parsing, method not allowed, etc.).
    core.api.exception_handler renders both in the same envelope.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, identifiers, etc.)

    Example:
        try:
            account = registry.refresh_onboarding_link(tenant_id)
        except NotFoundError as e:
            logger.warning(f"Account not found: {e.error_code}")
            return Response(e.to_dict(), status=404)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, and details keys

        Example:
            {
                "error": "Account not found",
                "error_code": "ACCOUNT_NOT_FOUND",
                "details": {"tenant_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for:
    - Missing required fields
    - Out-of-range values (percentages, trial days)
    - Business rule violations detected before any side effect

    Example:
        raise ValidationError(
            "Validation failed",
            error_code="VALIDATION_ERROR",
            details={"tenant_id": ["This field is required."]}
        )

    Note:
        For DRF serializer validation, use DRF's built-in validation.
        Use this for service-layer validation logic.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        account = Account.objects.filter(tenant_id=tenant_id).first()
        if not account:
            raise NotFoundError(
                f"No account for tenant {tenant_id}",
                error_code="ACCOUNT_NOT_FOUND",
                details={"tenant_id": str(tenant_id)}
            )

    Note:
        Return empty lists for list queries.
        Use NotFoundError for single-resource lookups where existence is expected.
    """

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Duplicate entries (account, active subscription, transaction)
    - Concurrent modification conflicts
    - Invalid state transitions

    Example:
        if Account.objects.filter(tenant_id=tenant_id).exists():
            raise ConflictError(
                "Account already exists for this community",
                error_code="ACCOUNT_EXISTS",
                details={"tenant_id": str(tenant_id)}
            )

    Note:
        Callers often treat a duplicate as idempotent success.
        The HTTP layer reports these as 400.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Use for:
    - Payment processor API failures
    - Network timeouts
    - Unexpected external service responses

    Example:
        try:
            stripe.Account.retrieve(account_id)
        except stripe.error.APIError as e:
            raise ExternalServiceError(
                "Payment service unavailable",
                error_code="STRIPE_ERROR",
                details={"service": "stripe", "original_error": str(e)}
            )

    Note:
        Read-only calls are safe to retry with backoff. Creation calls are
        only safe to retry with the same idempotency key.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"


class SignatureError(BaseApplicationError):
    """
    Raised when a webhook payload fails authenticity verification.

    The payload must not be processed and its contents must not be logged.
    No ProcessedEvent row is written for an unverified payload.
    """

    default_error_code: str = "SIGNATURE_INVALID"


class ProcessingError(BaseApplicationError):
    """
    Raised when dispatching a verified webhook event fails.

    Never surfaced to the processor: the event is acknowledged and recorded
    for asynchronous retry by the sweeper.
    """

    default_error_code: str = "PROCESSING_ERROR"
