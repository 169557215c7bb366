"""
API response envelope and DRF exception handling.

Every endpoint answers with the same envelope:

    Success:  {"success": true, "data": ...}
    Failure:  {"success": false, "error": "<ERROR_CODE>", "message": "..."}

Domain exceptions (core.exceptions) map to HTTP status codes:

    ValidationError, ConflictError  -> 400
    NotFoundError                   -> 404
    SignatureError                  -> 400
    ExternalServiceError and any unexpected exception -> 500

Configured in settings:
    REST_FRAMEWORK = {"EXCEPTION_HANDLER": "core.api.exception_handler", ...}

Usage:
    from core.api import success_response

    class PlanListView(APIView):
        def get(self, request, tenant_id):
            plans = ledger.list_plans(PlanVariant.MEMBER, tenant_id)
            return success_response(PlanSerializer(plans, many=True).data)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    SignatureError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


logger = logging.getLogger(__name__)


# Checked in order; the first matching class wins
STATUS_BY_ERROR: list[tuple[type[BaseApplicationError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_400_BAD_REQUEST),
    (SignatureError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ExternalServiceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def success_response(data: Any, http_status: int = status.HTTP_200_OK) -> Response:
    """Wrap data in the success envelope."""
    return Response({"success": True, "data": data}, status=http_status)


def error_response(
    error: str,
    message: str,
    http_status: int,
    details: dict[str, Any] | None = None,
) -> Response:
    """Build a failure envelope response."""
    body: dict[str, Any] = {"success": False, "error": error, "message": message}
    if details:
        body["details"] = details
    return Response(body, status=http_status)


def status_for_error(exc: BaseApplicationError) -> int:
    """Return the HTTP status for a domain exception."""
    for error_class, http_status in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return http_status
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    """
    DRF exception handler producing the failure envelope.

    Handles domain exceptions, DRF API exceptions and Http404. Anything
    else is logged with its traceback and reported as a 500 without
    leaking internal details.
    """
    view_name = context.get("view").__class__.__name__ if context.get("view") else None

    if isinstance(exc, BaseApplicationError):
        http_status = status_for_error(exc)
        log = logger.error if http_status >= 500 else logger.info
        log(
            f"Request failed: {exc.error_code}",
            extra={"view": view_name, "error_code": exc.error_code},
        )
        return error_response(exc.error_code, exc.message, http_status, exc.details)

    if isinstance(exc, Http404):
        return error_response("NOT_FOUND", str(exc) or "Not found", status.HTTP_404_NOT_FOUND)

    if isinstance(exc, drf_exceptions.ValidationError):
        return error_response(
            "VALIDATION_ERROR",
            "Invalid request data",
            status.HTTP_400_BAD_REQUEST,
            details={"fields": exc.detail},
        )

    if isinstance(exc, drf_exceptions.APIException):
        codes = exc.get_codes()
        code = codes.upper() if isinstance(codes, str) else "API_ERROR"
        return error_response(code, str(exc.detail), exc.status_code)

    logger.exception(
        f"Unhandled exception in API view: {type(exc).__name__}",
        extra={"view": view_name},
    )
    return error_response(
        "INTERNAL_ERROR",
        "An unexpected error occurred",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
