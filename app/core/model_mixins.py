"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    OptimisticLockMixin: Version column incremented on every save

Usage:
    from core.models import BaseModel
    from core.model_mixins import OptimisticLockMixin, UUIDPrimaryKeyMixin

    class Account(UUIDPrimaryKeyMixin, OptimisticLockMixin, BaseModel):
        external_account_id = models.CharField(max_length=255)

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Fields:
        id: UUIDField as primary key (auto-generated)

    Note:
        IDs are non-guessable and can be generated before insert, which lets
        services derive processor idempotency keys from them.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class OptimisticLockMixin(models.Model):
    """
    Optimistic concurrency control through a version column.

    save() increments the version in the database with an F() expression
    and reloads it. Writers that must not lose updates use a conditional
    UPDATE guarded by the version they read (see billing.locks).

    Fields:
        version: Incremented on every save
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])
