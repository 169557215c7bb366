"""
Core Application - Infrastructure & Base Classes

This app contains infrastructure code shared by the domain apps:

- Generic, reusable base classes (no domain-specific logic)
- The API response envelope and exception handler
- The exception hierarchy services raise

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - OptimisticLockMixin: Version column for optimistic locking

Services (import from core.services):
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Input validation failures
    - NotFoundError: Resource not found
    - ConflictError: State conflicts (duplicates, stale versions, etc.)
    - ExternalServiceError: Third-party service failures
    - SignatureError: Webhook authenticity failures
    - ProcessingError: Webhook dispatch failures

API (import from core.api):
    - success_response / error_response: Response envelope
    - exception_handler: DRF exception handler

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin
    from core.services import ServiceResult
    from core.exceptions import ValidationError, NotFoundError

Note:
    Django models, model mixins and the DRF helpers are NOT imported here
    to avoid AppRegistryNotReady errors. Import them from their modules.
"""

# Services (no Django model dependencies)
from .services import ServiceResult

# Exceptions (no Django dependencies)
from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ProcessingError,
    SignatureError,
    ValidationError,
)

__all__ = [
    # Services
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
    "SignatureError",
    "ProcessingError",
]
