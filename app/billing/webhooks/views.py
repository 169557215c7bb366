"""
Webhook endpoint view for Stripe.

The view verifies and processes the delivery inline through
WebhookIngestionEngine and answers:

    200: Event accepted (processed, duplicate, in progress, or failed and
         recorded for retry), or a verified body that is not an event
    400: Missing or invalid signature

A dispatch failure still answers 200 so Stripe does not redeliver a
payload whose failure needs remediation here; the retry sweeper owns
those. A signed body that is not an event is acknowledged and logged,
since redelivering the same bytes cannot make it one.

Usage:
    # In urls.py
    from billing.webhooks.views import payments_webhook

    urlpatterns = [
        path("webhooks/payments/", payments_webhook, name="payments-webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.exceptions import SignatureError, ValidationError

from billing.adapters import get_processor_client
from billing.webhooks.ingestion import IngestStatus, WebhookIngestionEngine


logger = logging.getLogger(__name__)


def _error(error: str, message: str) -> JsonResponse:
    return JsonResponse({"success": False, "error": error, "message": message}, status=400)


def _accepted(event_id: str | None, status: str) -> JsonResponse:
    return JsonResponse(
        {"success": True, "data": {"received": True, "event_id": event_id, "status": status}},
        status=200,
    )


@csrf_exempt
@require_POST
def payments_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive a Stripe webhook delivery.

    Security:
    - Signature verification rejects spoofed payloads before any write
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return _error("SIGNATURE_MISSING", "Missing Stripe-Signature header")

    engine = WebhookIngestionEngine(get_processor_client())
    try:
        result = engine.ingest(request.body, signature)
    except SignatureError as e:
        logger.warning("Webhook signature verification failed", extra={"error_code": e.error_code})
        return _error(e.error_code, "Invalid signature")
    except ValidationError as e:
        logger.warning(
            "Verified webhook body is not an event, ignoring",
            extra={"error_code": e.error_code, "reason": e.message},
        )
        return _accepted(None, IngestStatus.IGNORED)

    return _accepted(result.event_id, result.status)
