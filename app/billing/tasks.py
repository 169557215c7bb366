"""
Celery tasks for webhook retries.

This module provides async tasks for:
- Re-processing a single stored webhook event
- The periodic sweeper that queues due retries (scheduled by celery-beat,
  see migration 0002_add_webhook_retry_schedule)

Retries go through WebhookIngestionEngine.process, so they use the same
claim, dispatch and failure bookkeeping as the inline path. Backoff is
tracked on the row (next_attempt_at), not by Celery retries.

Usage:
    from billing.tasks import process_event

    process_event.delay(str(processed_event.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from kombu.exceptions import OperationalError

from billing.adapters import get_processor_client
from billing.models import ProcessedEvent
from billing.webhooks.ingestion import WebhookIngestionEngine

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SWEEP_BATCH_SIZE = 100


# =============================================================================
# Webhook Retry Tasks
# =============================================================================


@shared_task(acks_late=True)
def process_event(event_id: str) -> dict:
    """
    Claim and dispatch one stored webhook event.

    Args:
        event_id: UUID of the ProcessedEvent row

    Returns:
        Dict with the processing status
    """
    if isinstance(event_id, str):
        event_id = UUID(event_id)

    row = ProcessedEvent.objects.filter(id=event_id).first()
    if row is None:
        logger.error("ProcessedEvent not found", extra={"processed_event_id": str(event_id)})
        return {"status": "not_found", "processed_event_id": str(event_id)}

    if row.processed:
        return {"status": "already_processed", "stripe_event_id": row.external_event_id}

    result = WebhookIngestionEngine(get_processor_client()).process(row)
    return {"status": result.status, "stripe_event_id": result.event_id}


@shared_task
def retry_unprocessed_events(limit: int = SWEEP_BATCH_SIZE) -> dict:
    """
    Periodic sweeper: queue unprocessed events that are due for retry.

    Scheduled every minute via django-celery-beat.

    Returns:
        Dict with count of events queued
    """
    queued_count = 0
    for event_id in WebhookIngestionEngine.due_event_ids(limit):
        try:
            process_event.delay(str(event_id))
        except OperationalError as e:
            logger.error(
                f"Failed to queue webhook retry: {e}",
                extra={"processed_event_id": str(event_id)},
            )
            break
        queued_count += 1

    if queued_count:
        logger.info(
            f"Queued {queued_count} webhook events for retry",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}
