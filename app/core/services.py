"""
Base service layer patterns for business logic encapsulation.

This module provides ServiceResult, the standard result wrapper for
consistent success/failure handling in the service layer.

Service Layer Philosophy:
    Services encapsulate business logic separate from views and models.
    Views handle HTTP concerns, models handle data, services handle logic.

Pattern Comparison:
    - ServiceResult: Use for expected failures (unknown object in a webhook,
      business rules a handler can report without raising)
    - Exceptions: Use for failures the caller must stop on (validation,
      conflicts, processor errors)

Usage:
    from core.services import ServiceResult

    @register_handler(ChargeRefunded)
    def handle_charge_refunded(event: ChargeRefunded, context) -> ServiceResult:
        tenant_id = resolve_tenant(event)
        if tenant_id is None:
            return ServiceResult.failure("Unknown tenant", "TENANT_NOT_RESOLVED")
        ...
        return ServiceResult.success(transaction)

Related:
    - core.exceptions: For unexpected/exceptional errors
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from typing import Any

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        # Success case
        return ServiceResult.success(transaction)

        # Failure case
        return ServiceResult.failure("Charge not found", "CHARGE_NOT_FOUND")

        # Check result
        result = dispatch(event)
        if result.success:
            ...
        else:
            print(f"Error: {result.error} ({result.error_code})")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Args:
            exc: The caught exception
            error_code: Optional error code (defaults to the exception's
                error_code, then its class name)

        Returns:
            ServiceResult with error details from exception
        """
        return cls(
            success=False,
            error=getattr(exc, "message", None) or str(exc),
            error_code=(
                error_code
                or getattr(exc, "error_code", None)
                or exc.__class__.__name__.upper()
            ),
        )

    def to_response(self) -> dict[str, Any]:
        """
        Convert to API response format.

        Returns:
            Dict with success status and data or error details
        """
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error_code or "ERROR",
            "message": self.error,
        }
        if self.errors:
            response["errors"] = self.errors
        return response

    def __bool__(self) -> bool:
        """
        Allow using result in boolean context.

        Example:
            result = handler(event)
            if result:  # Same as: if result.success
                ...
        """
        return self.success
