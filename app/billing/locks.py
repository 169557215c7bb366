"""
Concurrency control utilities for billing rows.

Account and Subscription rows are shared by every request and webhook for
a tenant. Writers coordinate through per-row optimistic locking only:

1. **Conditional update** (update_if_version)
   - Single UPDATE ... WHERE pk = ? AND version = ?
   - Increments version in the same statement
   - Use for: webhook-driven mutations of Account and Subscription

2. **Retry on staleness** (retry_on_stale)
   - Re-runs a read-modify-write function when another writer won

Usage:

    from billing.locks import retry_on_stale, update_if_version

    def apply():
        sub = Subscription.objects.get(pk=pk)
        update_if_version(Subscription, sub.pk, sub.version, status="past_due")

    retry_on_stale(apply)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from django.db import models
from django.db.models import F

from core.exceptions import NotFoundError
from billing.exceptions import StaleRecordError

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

T = TypeVar("T", bound=models.Model)
R = TypeVar("R")

logger = logging.getLogger(__name__)

# Attempts made by retry_on_stale before giving up
DEFAULT_STALE_RETRIES = 3


def _raise_missing_or_stale(model_class: type[models.Model], pk: Any, expected_version: int):
    model_name = model_class.__name__
    current = model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
    if current is None:
        raise NotFoundError(
            f"{model_name} {pk} not found",
            error_code=f"{model_name.upper()}_NOT_FOUND",
            details={"pk": str(pk)},
        )
    raise StaleRecordError(
        f"{model_name} {pk} has been modified "
        f"(expected version {expected_version}, current {current})",
        details={
            "pk": str(pk),
            "expected_version": expected_version,
            "current_version": current,
        },
    )


def update_if_version(
    model_class: type[T],
    pk: Any,
    expected_version: int,
    **values: Any,
) -> int:
    """
    Apply values with a single conditional UPDATE guarded by version.

    Args:
        model_class: Django model class (must have 'version' field)
        pk: Primary key of the record
        expected_version: Version the caller read
        **values: Field values to write

    Returns:
        The new version

    Raises:
        StaleRecordError: If another writer updated the row first
        NotFoundError: If the row doesn't exist
    """
    rows = model_class.objects.filter(pk=pk, version=expected_version).update(
        version=F("version") + 1,
        **values,
    )
    if rows == 0:
        _raise_missing_or_stale(model_class, pk, expected_version)
    return expected_version + 1


def retry_on_stale(
    func: Callable[[], R],
    attempts: int = DEFAULT_STALE_RETRIES,
) -> R:
    """
    Run a read-modify-write function, retrying when it hits a stale row.

    The function must re-read the row on every call.

    Raises:
        StaleRecordError: If every attempt lost the race
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except StaleRecordError:
            if attempt == attempts:
                raise
            logger.info(
                "Stale record, retrying",
                extra={"attempt": attempt, "max_attempts": attempts},
            )
    raise AssertionError("unreachable")


__all__ = [
    "retry_on_stale",
    "update_if_version",
]
