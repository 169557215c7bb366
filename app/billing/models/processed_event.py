"""
ProcessedEvent model for Stripe webhook deduplication.

Stores every verified webhook event received from Stripe. The unique
external_event_id constraint makes the first delivery win; later
deliveries of a processed event are no-ops.

Usage:
    from billing.models import ProcessedEvent

    event, created = ProcessedEvent.objects.get_or_create(
        external_event_id="evt_1234567890",
        defaults={"event_type": "invoice.paid", "payload": payload},
    )

    if event.processed:
        # Duplicate delivery - already applied
        return
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from billing.state_machines import EventStatus


class ProcessedEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks Stripe webhook events for exactly-once processing.

    Processing Flow:
        1. Webhook arrives, verify Stripe signature (no row on failure)
        2. get_or_create by external_event_id
        3. If processed -> duplicate no-op
        4. Claim with a conditional UPDATE (status=processing, attempt+1)
        5. Dispatch the typed event inside a DB transaction
        6. Mark processed, or failed with next_attempt_at
        7. The sweeper retries failed rows until WEBHOOK_MAX_ATTEMPTS,
           then the row is dead-lettered

    Fields:
        external_event_id: Unique Stripe Event ID (evt_xxx)
        event_type: Type of webhook event
        payload: Full verified JSON payload
        processed: True once dispatch committed
        status: received, processing, processed, failed or dead_lettered
        attempt_count: Number of dispatch attempts
        last_error: Error from the last failed attempt
        received_at / processed_at / claimed_at / next_attempt_at: Timestamps

    Note:
        Rows are never deleted; they are the audit trail of deliveries.
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    external_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'invoice.paid')",
    )

    payload = models.JSONField(
        help_text="Full verified webhook payload from Stripe (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    processed = models.BooleanField(default=False, db_index=True)

    status = models.CharField(
        max_length=20,
        choices=EventStatus.choices,
        default=EventStatus.RECEIVED,
        db_index=True,
    )

    attempt_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of dispatch attempts",
    )

    last_error = models.TextField(blank=True, default="")

    received_at = models.DateTimeField(auto_now_add=True)

    processed_at = models.DateTimeField(null=True, blank=True)

    claimed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the current processing claim was taken",
    )

    next_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Earliest time the sweeper may retry this event",
    )

    class Meta:
        ordering = ["-received_at"]
        verbose_name = "Processed Event"
        verbose_name_plural = "Processed Events"
        indexes = [
            models.Index(
                fields=["processed", "status", "next_attempt_at"],
                name="billing_pro_process_8d4f1a_idx",
            ),
            models.Index(
                fields=["event_type", "received_at"],
                name="billing_pro_event_t_3e9b7c_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with event ID and type."""
        return f"ProcessedEvent({self.external_event_id}, {self.event_type}, {self.status})"

    @property
    def is_dead_lettered(self) -> bool:
        return self.status == EventStatus.DEAD_LETTERED

    def get_object_id(self) -> str | None:
        """Return payload.data.object.id if present."""
        data_object = (self.payload or {}).get("data", {}).get("object", {})
        return data_object.get("id") if isinstance(data_object, dict) else None
