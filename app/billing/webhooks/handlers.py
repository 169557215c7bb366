"""
Webhook event handlers.

Handlers are registered per typed event class and receive the services
they act on through a HandlerContext, so tests can pass doubles and no
handler reaches for a global Stripe client.

Expected failures (unknown tenant, unknown account) are returned as
ServiceResult failures: the event is marked processed and the failure is
logged, because retrying cannot fix them. Unexpected errors propagate so
the ingestion engine records them for retry.

Usage:
    from billing.webhooks.handlers import dispatch, register_handler

    @register_handler(InvoicePaid)
    def handle_invoice_paid(event: InvoicePaid, context: HandlerContext) -> ServiceResult:
        ...

    result = dispatch(event, context)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from core.exceptions import ProcessingError
from core.services import ServiceResult

from billing.exceptions import AccountNotFoundError, DuplicateTransactionError
from billing.models import Subscription
from billing.services import AccountRegistry, SubscriptionLedger, TransactionLedger
from billing.webhooks.events import (
    AccountDeauthorized,
    AccountUpdated,
    ChargeRefunded,
    CheckoutCompleted,
    DisputeCreated,
    InvoicePaid,
    InvoicePaymentFailed,
    PaymentIntentSucceeded,
    SubscriptionChanged,
    WebhookEvent,
)


logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    """Services available to webhook handlers."""

    accounts: AccountRegistry
    subscriptions: SubscriptionLedger
    transactions: TransactionLedger


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event classes to handler functions
WEBHOOK_HANDLERS: dict[type[WebhookEvent], Callable[[WebhookEvent, HandlerContext], ServiceResult]] = {}


def register_handler(event_class: type[WebhookEvent]) -> Callable:
    """
    Decorator to register a handler for a typed event class.

    Args:
        event_class: WebhookEvent subclass the handler accepts
    """

    def decorator(func: Callable[[WebhookEvent, HandlerContext], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_class] = func
        logger.debug(f"Registered webhook handler for {event_class.__name__}")
        return func

    return decorator


def dispatch(event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """
    Dispatch a typed event to its handler.

    Events without a handler (Unhandled) succeed with no side effect.
    """
    handler = WEBHOOK_HANDLERS.get(type(event))

    if not handler:
        logger.info(
            f"No handler registered for event type: {event.event_type}",
            extra={"stripe_event_id": event.event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {event.event_type} to handler",
        extra={"stripe_event_id": event.event_id},
    )
    return handler(event, context)


def _tenant_unresolved(event: WebhookEvent) -> ServiceResult:
    logger.warning(
        f"{event.event_type}: could not resolve tenant",
        extra={"stripe_event_id": event.event_id, "account": event.account},
    )
    return ServiceResult.failure(
        "Could not resolve the community for this event",
        error_code="TENANT_NOT_RESOLVED",
    )


def _already_recorded(event: WebhookEvent, error: DuplicateTransactionError) -> ServiceResult:
    logger.info(
        f"{event.event_type}: transaction already recorded",
        extra={
            "stripe_event_id": event.event_id,
            "idempotency_key": error.details.get("idempotency_key"),
        },
    )
    return ServiceResult.success(None)


# =============================================================================
# Account Handlers
# =============================================================================


@register_handler(AccountUpdated)
def handle_account_updated(event: AccountUpdated, context: HandlerContext) -> ServiceResult:
    """
    Re-sync the Account from Stripe.

    The event only says the account changed. Its embedded snapshot may be
    older than state already applied, so the current account is fetched
    instead. A Stripe failure propagates and the event is retried.
    """
    try:
        status = context.accounts.sync_status(event.snapshot.id)
    except AccountNotFoundError as e:
        logger.warning(
            "account.updated for unknown account",
            extra={"stripe_event_id": event.event_id, "account_id": event.snapshot.id},
        )
        return ServiceResult.from_exception(e)
    return ServiceResult.success(status)


@register_handler(AccountDeauthorized)
def handle_account_deauthorized(event: AccountDeauthorized, context: HandlerContext) -> ServiceResult:
    """Soft-disable the Account the platform lost access to."""
    account = context.accounts.disable(event.account)
    if account is None:
        return ServiceResult.failure(
            f"No account {event.account}",
            error_code="ACCOUNT_NOT_FOUND",
        )
    return ServiceResult.success(account)


# =============================================================================
# Subscription Handlers
# =============================================================================


@register_handler(SubscriptionChanged)
def handle_subscription_changed(event: SubscriptionChanged, context: HandlerContext) -> ServiceResult:
    """Apply customer.subscription.created/updated/deleted."""
    outcome = context.subscriptions.apply_lifecycle_event(
        event.subscription_id,
        event.update,
        connected_account_id=event.account,
    )
    if outcome.skipped_reason == "tenant_unresolved":
        return _tenant_unresolved(event)
    return ServiceResult.success(outcome)


@register_handler(CheckoutCompleted)
def handle_checkout_completed(event: CheckoutCompleted, context: HandlerContext) -> ServiceResult:
    """
    Log the completed checkout.

    The subscription row is created by customer.subscription.created,
    which carries the same metadata; doing it here too would give two
    writers for one row.
    """
    logger.info(
        "Checkout session completed",
        extra={
            "stripe_event_id": event.event_id,
            "session_id": event.session_id,
            "subscription_id": event.subscription_id,
            "community_id": event.metadata.get("community_id"),
        },
    )
    return ServiceResult.success(None)


# =============================================================================
# Invoice Handlers
# =============================================================================


@register_handler(InvoicePaid)
def handle_invoice_paid(event: InvoicePaid, context: HandlerContext) -> ServiceResult:
    """
    Freeze the invoiced period and record the payment.

    Raises:
        ProcessingError: The subscription is not known locally yet. The
            event is retried once customer.subscription.created has been
            applied.
    """
    subscription = None
    if event.subscription_id:
        subscription = Subscription.objects.filter(
            external_subscription_id=event.subscription_id
        ).first()
        if subscription is None:
            raise ProcessingError(
                "Invoice for a subscription that has not been recorded yet",
                details={"subscription_id": event.subscription_id},
            )
        if event.period_start is not None:
            context.subscriptions.mark_invoiced(
                event.subscription_id,
                event.period_start,
                amount_cents=event.amount_paid or None,
                currency=event.currency or None,
            )

    if event.amount_paid <= 0:
        logger.info(
            "Zero-amount invoice, nothing to record",
            extra={"stripe_event_id": event.event_id, "invoice_id": event.invoice_id},
        )
        return ServiceResult.success(None)

    tenant_id = (
        subscription.tenant_id
        if subscription is not None
        else context.transactions.resolve_tenant(
            metadata=event.metadata,
            connected_account_id=event.account,
        )
    )
    if tenant_id is None:
        return _tenant_unresolved(event)

    try:
        txn = context.transactions.record_payment(
            tenant_id,
            event.payment_reference,
            event.amount_paid,
            event.currency,
            subscription=subscription,
            processed_at=event.created,
            reference_id=event.invoice_id,
            metadata={"invoice_id": event.invoice_id, "billing_reason": event.billing_reason},
        )
    except DuplicateTransactionError as e:
        return _already_recorded(event, e)
    return ServiceResult.success(txn)


@register_handler(InvoicePaymentFailed)
def handle_invoice_payment_failed(event: InvoicePaymentFailed, context: HandlerContext) -> ServiceResult:
    """
    Record the failed attempt.

    The subscription moves to past_due through customer.subscription.updated.
    """
    subscription = None
    if event.subscription_id:
        subscription = Subscription.objects.filter(
            external_subscription_id=event.subscription_id
        ).first()

    tenant_id = (
        subscription.tenant_id
        if subscription is not None
        else context.transactions.resolve_tenant(
            metadata=event.metadata,
            connected_account_id=event.account,
        )
    )
    if tenant_id is None:
        return _tenant_unresolved(event)

    try:
        txn = context.transactions.record_failed_payment(
            tenant_id,
            event.invoice_id,
            event.attempt_count,
            event.amount_due,
            event.currency,
            failure_reason=event.failure_reason,
            external_charge_id=event.payment_intent_id or "",
            subscription=subscription,
            processed_at=event.created,
        )
    except DuplicateTransactionError as e:
        return _already_recorded(event, e)
    return ServiceResult.success(txn)


# =============================================================================
# Payment Handlers
# =============================================================================


@register_handler(PaymentIntentSucceeded)
def handle_payment_intent_succeeded(event: PaymentIntentSucceeded, context: HandlerContext) -> ServiceResult:
    """
    Record a one-off payment.

    Intents created for invoices are recorded by the invoice handler,
    keyed on the same payment intent id.
    """
    if event.invoice_id:
        logger.info(
            "Invoice payment intent, recorded via invoice event",
            extra={"stripe_event_id": event.event_id, "invoice_id": event.invoice_id},
        )
        return ServiceResult.success(None)

    tenant_id = context.transactions.resolve_tenant(
        metadata=event.metadata,
        connected_account_id=event.account,
    )
    if tenant_id is None:
        return _tenant_unresolved(event)

    try:
        txn = context.transactions.record_payment(
            tenant_id,
            event.payment_intent_id,
            event.amount_received,
            event.currency,
            processed_at=event.created,
            metadata=event.metadata,
        )
    except DuplicateTransactionError as e:
        return _already_recorded(event, e)
    return ServiceResult.success(txn)


@register_handler(ChargeRefunded)
def handle_charge_refunded(event: ChargeRefunded, context: HandlerContext) -> ServiceResult:
    """Record the newly refunded amount as a negative transaction."""
    tenant_id = context.transactions.resolve_tenant(
        metadata=event.metadata,
        external_charge_id=event.payment_reference,
        connected_account_id=event.account,
    )
    if tenant_id is None:
        return _tenant_unresolved(event)

    try:
        txn = context.transactions.record_refund(
            tenant_id,
            event.payment_reference,
            event.amount_refunded,
            event.currency,
            processed_at=event.created,
            metadata={"charge_id": event.charge_id},
        )
    except DuplicateTransactionError as e:
        return _already_recorded(event, e)
    return ServiceResult.success(txn)


@register_handler(DisputeCreated)
def handle_dispute_created(event: DisputeCreated, context: HandlerContext) -> ServiceResult:
    """Record the disputed amount as a negative transaction."""
    tenant_id = context.transactions.resolve_tenant(
        metadata=event.metadata,
        external_charge_id=event.payment_reference,
        connected_account_id=event.account,
    )
    if tenant_id is None:
        return _tenant_unresolved(event)

    try:
        txn = context.transactions.record_chargeback(
            tenant_id,
            event.dispute_id,
            event.payment_reference,
            event.amount,
            event.currency,
            processed_at=event.created,
            metadata={"charge_id": event.charge_id, "reason": event.reason},
        )
    except DuplicateTransactionError as e:
        return _already_recorded(event, e)
    return ServiceResult.success(txn)
