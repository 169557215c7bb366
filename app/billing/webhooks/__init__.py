"""
Stripe webhook ingestion.

This package provides:
- events: Typed event dataclasses and parse_event
- handlers: Handler registry and per-event handlers
- ingestion: WebhookIngestionEngine (verify, dedup, claim, dispatch)
- views: The HTTP endpoint Stripe posts to

Handlers register themselves on import; billing.apps.BillingConfig.ready
imports billing.webhooks.handlers.
"""
