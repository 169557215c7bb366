"""
Abstract base model shared by the tenant and billing models.

Base Classes:
    BaseModel: created_at / updated_at timestamps and default ordering

Identity and concurrency mixins (UUIDPrimaryKeyMixin, OptimisticLockMixin)
live in core.model_mixins.

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class Plan(UUIDPrimaryKeyMixin, BaseModel):
        name = models.CharField(max_length=100)

Note:
    Mixins go before BaseModel in the bases list so their Meta and save()
    take precedence.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    Abstract model with creation and modification timestamps.

    Fields:
        created_at: Set once on insert; indexed for period queries
        updated_at: Refreshed by save(). Queryset update() calls that must
            move it set it explicitly.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When this row was inserted",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When this row was last written",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.pk})"
