"""
Webhook ingestion engine.

Turns a raw Stripe delivery into exactly one application of its effects:

    1. Verify the signature (SignatureError, nothing written)
    2. get_or_create the ProcessedEvent row on the unique event id
    3. Already processed -> duplicate, no-op
    4. Claim the row with one conditional UPDATE; only the winner of
       concurrent deliveries dispatches
    5. Parse into a typed event and dispatch inside a DB transaction that
       also marks the row processed
    6. On error: record failed + next_attempt_at, or dead_lettered once
       WEBHOOK_MAX_ATTEMPTS is reached

Stripe is always answered 2xx after step 1. Failed rows are retried by
billing.tasks.retry_unprocessed_events, which calls process() again.

Usage:
    engine = WebhookIngestionEngine(get_processor_client())
    result = engine.ingest(request.body, request.headers.get("Stripe-Signature"))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from core.exceptions import NotFoundError, ValidationError
from core.services import ServiceResult

from billing.adapters import backoff_delay
from billing.models import ProcessedEvent
from billing.services import AccountRegistry, SubscriptionLedger, TransactionLedger
from billing.state_machines import EventStatus
from billing.webhooks.events import parse_event
from billing.webhooks.handlers import HandlerContext, dispatch

if TYPE_CHECKING:
    from uuid import UUID

    from billing.adapters import StripeAdapter


logger = logging.getLogger(__name__)


class IngestStatus:
    """Outcome labels returned to the HTTP view and tasks."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"
    IGNORED = "ignored"


@dataclass
class IngestResult:
    """
    Result of ingesting or processing one event.

    Attributes:
        event_id: Stripe Event ID
        event_type: Stripe event type
        status: One of IngestStatus
        handler_result: ServiceResult from the handler, when dispatched
    """

    event_id: str
    event_type: str
    status: str
    handler_result: ServiceResult | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.status == IngestStatus.DUPLICATE


class WebhookIngestionEngine:
    """
    Verifies, deduplicates and dispatches Stripe webhook events.

    Args:
        processor: StripeAdapter used for signature verification and passed
            to the services handlers act on
        context: Handler services (built from processor when omitted)
    """

    def __init__(self, processor: StripeAdapter, context: HandlerContext | None = None):
        self.processor = processor
        self.context = context or HandlerContext(
            accounts=AccountRegistry(processor),
            subscriptions=SubscriptionLedger(processor),
            transactions=TransactionLedger(),
        )

    # =========================================================================
    # Entry points
    # =========================================================================

    def ingest(self, raw_body: bytes, signature_header: str | None) -> IngestResult:
        """
        Verify, store and process one delivery.

        Raises:
            SignatureError: Missing or invalid signature (no row written)
            ValidationError: Verified body is not an event
        """
        payload = self.processor.verify_webhook(raw_body, signature_header)

        event_id = payload.get("id")
        event_type = payload.get("type")
        if not event_id or not event_type:
            raise ValidationError("Webhook event requires id and type")

        logger.info(
            f"Received Stripe webhook: {event_type}",
            extra={"stripe_event_id": event_id, "event_type": event_type},
        )

        row, created = ProcessedEvent.objects.get_or_create(
            external_event_id=event_id,
            defaults={"event_type": event_type, "payload": payload},
        )

        if row.processed:
            logger.info(
                "Webhook already processed, returning success",
                extra={"stripe_event_id": event_id},
            )
            return IngestResult(event_id, event_type, IngestStatus.DUPLICATE)

        return self.process(row)

    def process(self, row: ProcessedEvent) -> IngestResult:
        """
        Claim and dispatch a stored event.

        Shared by ingest() and the retry sweeper. Never raises for dispatch
        failures; they are recorded on the row.
        """
        event_id = row.external_event_id

        if not self._claim(row):
            row.refresh_from_db()
            if row.processed:
                return IngestResult(event_id, row.event_type, IngestStatus.DUPLICATE)
            if row.is_dead_lettered:
                return IngestResult(event_id, row.event_type, IngestStatus.DEAD_LETTERED)
            logger.info(
                "Webhook claimed by another worker",
                extra={"stripe_event_id": event_id, "status": row.status},
            )
            return IngestResult(event_id, row.event_type, IngestStatus.IN_PROGRESS)

        row.refresh_from_db()

        try:
            event = parse_event(row.payload)
            with transaction.atomic():
                result = dispatch(event, self.context)
                now = timezone.now()
                ProcessedEvent.objects.filter(pk=row.pk).update(
                    processed=True,
                    status=EventStatus.PROCESSED,
                    processed_at=now,
                    next_attempt_at=None,
                    updated_at=now,
                )
        except Exception as e:
            # Recorded on the row for the sweeper; Stripe still gets 2xx
            status = self._record_failure(row, e)
            return IngestResult(event_id, row.event_type, status)

        if result.success:
            logger.info(
                "Webhook processed successfully",
                extra={"stripe_event_id": event_id, "event_type": row.event_type},
            )
        else:
            logger.warning(
                f"Webhook handler reported failure: {result.error}",
                extra={
                    "stripe_event_id": event_id,
                    "event_type": row.event_type,
                    "error_code": result.error_code,
                },
            )
        return IngestResult(event_id, row.event_type, IngestStatus.PROCESSED, result)

    def requeue_dead_letter(self, external_event_id: str) -> ProcessedEvent:
        """
        Reset a dead-lettered event so the sweeper retries it.

        Raises:
            NotFoundError: No dead-lettered event with this id
        """
        now = timezone.now()
        updated = ProcessedEvent.objects.filter(
            external_event_id=external_event_id,
            status=EventStatus.DEAD_LETTERED,
        ).update(
            status=EventStatus.FAILED,
            attempt_count=0,
            next_attempt_at=now,
            claimed_at=None,
            updated_at=now,
        )
        if not updated:
            raise NotFoundError(
                f"No dead-lettered event {external_event_id}",
                details={"event_id": external_event_id},
            )
        logger.info("Dead-lettered webhook requeued", extra={"stripe_event_id": external_event_id})
        return ProcessedEvent.objects.get(external_event_id=external_event_id)

    # =========================================================================
    # Sweeper support
    # =========================================================================

    @staticmethod
    def due_event_ids(limit: int = 100) -> list[UUID]:
        """
        Ids of unprocessed events the sweeper should retry now.

        Includes failed rows whose backoff has elapsed, rows stuck in
        processing past the claim timeout, and received rows whose inline
        processing never started.
        """
        now = timezone.now()
        stale_before = now - timedelta(minutes=settings.WEBHOOK_CLAIM_TIMEOUT_MINUTES)
        due = Q(status=EventStatus.FAILED) & (
            Q(next_attempt_at__isnull=True) | Q(next_attempt_at__lte=now)
        )
        stuck = Q(status=EventStatus.PROCESSING, claimed_at__lt=stale_before)
        orphaned = Q(status=EventStatus.RECEIVED, received_at__lt=now - timedelta(minutes=1))
        return list(
            ProcessedEvent.objects.filter(
                processed=False,
                attempt_count__lt=settings.WEBHOOK_MAX_ATTEMPTS,
            )
            .filter(due | stuck | orphaned)
            .order_by("received_at")
            .values_list("id", flat=True)[:limit]
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _claim(self, row: ProcessedEvent) -> bool:
        """Take the processing claim with a single conditional UPDATE."""
        now = timezone.now()
        stale_before = now - timedelta(minutes=settings.WEBHOOK_CLAIM_TIMEOUT_MINUTES)
        claimed = (
            ProcessedEvent.objects.filter(pk=row.pk, processed=False)
            .exclude(status=EventStatus.DEAD_LETTERED)
            .filter(~Q(status=EventStatus.PROCESSING) | Q(claimed_at__lt=stale_before))
            .update(
                status=EventStatus.PROCESSING,
                attempt_count=F("attempt_count") + 1,
                claimed_at=now,
                updated_at=now,
            )
        )
        return bool(claimed)

    def _record_failure(self, row: ProcessedEvent, error: Exception) -> str:
        attempts = row.attempt_count
        error_text = f"{type(error).__name__}: {error}"[:2000]
        now = timezone.now()

        if attempts >= settings.WEBHOOK_MAX_ATTEMPTS:
            status = EventStatus.DEAD_LETTERED
            next_attempt_at = None
            logger.error(
                "Webhook dead-lettered after repeated failures",
                extra={
                    "stripe_event_id": row.external_event_id,
                    "event_type": row.event_type,
                    "attempt_count": attempts,
                    "error": error_text,
                },
            )
        else:
            status = EventStatus.FAILED
            next_attempt_at = now + timedelta(
                seconds=backoff_delay(
                    attempts - 1,
                    base=settings.WEBHOOK_RETRY_BASE_SECONDS,
                    max_delay=settings.WEBHOOK_RETRY_MAX_SECONDS,
                )
            )
            logger.exception(
                "Webhook processing failed",
                extra={
                    "stripe_event_id": row.external_event_id,
                    "event_type": row.event_type,
                    "attempt_count": attempts,
                    "next_attempt_at": next_attempt_at.isoformat(),
                },
            )

        ProcessedEvent.objects.filter(pk=row.pk).update(
            status=status,
            last_error=error_text,
            next_attempt_at=next_attempt_at,
            claimed_at=None,
            updated_at=now,
        )
        return IngestStatus.DEAD_LETTERED if status == EventStatus.DEAD_LETTERED else IngestStatus.FAILED
