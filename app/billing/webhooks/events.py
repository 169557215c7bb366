"""
Typed webhook events.

Verified Stripe payloads are loosely typed JSON. parse_event turns them
into a closed set of dataclasses keyed by event type, so handlers work
with explicit fields instead of nested dict lookups:

    account.updated                          -> AccountUpdated
    account.application.deauthorized         -> AccountDeauthorized
    customer.subscription.created/updated/deleted -> SubscriptionChanged
    invoice.payment_succeeded, invoice.paid  -> InvoicePaid
    invoice.payment_failed                   -> InvoicePaymentFailed
    payment_intent.succeeded                 -> PaymentIntentSucceeded
    charge.refunded                          -> ChargeRefunded
    charge.dispute.created                   -> DisputeCreated
    checkout.session.completed               -> CheckoutCompleted
    anything else                            -> Unhandled

Usage:
    event = parse_event(payload)
    if isinstance(event, InvoicePaid):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from core.exceptions import ValidationError

from billing.adapters import AccountResult
from billing.services.types import LifecycleUpdate


# =============================================================================
# Event types
# =============================================================================


@dataclass
class WebhookEvent:
    """
    Fields common to every Stripe event.

    Attributes:
        event_id: Stripe Event ID (evt_xxx)
        event_type: Stripe event type string
        created: When Stripe created the event
        account: Connected account the event was sent for (Connect events)
    """

    event_id: str
    event_type: str
    created: datetime | None = None
    account: str | None = None


@dataclass
class AccountUpdated(WebhookEvent):
    snapshot: AccountResult | None = None


@dataclass
class AccountDeauthorized(WebhookEvent):
    pass


@dataclass
class SubscriptionChanged(WebhookEvent):
    """customer.subscription.created, .updated or .deleted."""

    action: str = ""
    subscription_id: str = ""
    update: LifecycleUpdate | None = None


@dataclass
class InvoicePaid(WebhookEvent):
    invoice_id: str = ""
    subscription_id: str | None = None
    payment_intent_id: str | None = None
    charge_id: str | None = None
    amount_paid: int = 0
    currency: str = ""
    period_start: datetime | None = None
    billing_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def payment_reference(self) -> str:
        """Identifier the payment row is keyed on."""
        return self.payment_intent_id or self.charge_id or self.invoice_id


@dataclass
class InvoicePaymentFailed(WebhookEvent):
    invoice_id: str = ""
    subscription_id: str | None = None
    payment_intent_id: str | None = None
    attempt_count: int = 0
    amount_due: int = 0
    currency: str = ""
    failure_reason: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentIntentSucceeded(WebhookEvent):
    payment_intent_id: str = ""
    amount_received: int = 0
    currency: str = ""
    invoice_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChargeRefunded(WebhookEvent):
    charge_id: str = ""
    payment_intent_id: str | None = None
    amount_refunded: int = 0
    currency: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def payment_reference(self) -> str:
        return self.payment_intent_id or self.charge_id


@dataclass
class DisputeCreated(WebhookEvent):
    dispute_id: str = ""
    charge_id: str = ""
    payment_intent_id: str | None = None
    amount: int = 0
    currency: str = ""
    reason: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def payment_reference(self) -> str:
        return self.payment_intent_id or self.charge_id


@dataclass
class CheckoutCompleted(WebhookEvent):
    session_id: str = ""
    subscription_id: str | None = None
    customer_id: str | None = None
    mode: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Unhandled(WebhookEvent):
    """Stored and marked processed, never dispatched."""


# =============================================================================
# Payload helpers
# =============================================================================


def _timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _id(value: Any) -> str | None:
    """Stripe fields may hold an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _first_item(obj: dict[str, Any]) -> dict[str, Any]:
    items = (obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Top-level subscription, or parent.subscription_details on newer API versions."""
    subscription = _id(invoice.get("subscription"))
    if subscription:
        return subscription
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _id(details.get("subscription"))


def _invoice_metadata(invoice: dict[str, Any]) -> dict[str, Any]:
    details = invoice.get("subscription_details") or (invoice.get("parent") or {}).get(
        "subscription_details"
    ) or {}
    return {**(invoice.get("metadata") or {}), **(details.get("metadata") or {})}


def _invoice_period_start(invoice: dict[str, Any]) -> datetime | None:
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        period = lines[0].get("period") or {}
        if period.get("start"):
            return _timestamp(period["start"])
    return _timestamp(invoice.get("period_start"))


def lifecycle_update_from(subscription: dict[str, Any], base: WebhookEvent) -> LifecycleUpdate:
    """Build a LifecycleUpdate from a Stripe subscription object."""
    item = _first_item(subscription)
    price = item.get("price") or {}
    recurring = price.get("recurring") or {}

    amount = price.get("unit_amount")
    if amount is not None:
        amount = int(amount) * int(item.get("quantity") or 1)

    return LifecycleUpdate(
        status=subscription.get("status") or "",
        current_period_start=_timestamp(
            subscription.get("current_period_start") or item.get("current_period_start")
        ),
        current_period_end=_timestamp(
            subscription.get("current_period_end") or item.get("current_period_end")
        ),
        trial_start=_timestamp(subscription.get("trial_start")),
        trial_end=_timestamp(subscription.get("trial_end")),
        cancel_at_period_end=subscription.get("cancel_at_period_end"),
        canceled_at=_timestamp(subscription.get("canceled_at") or subscription.get("ended_at")),
        customer_id=_id(subscription.get("customer")),
        price_id=price.get("id"),
        amount_cents=amount,
        currency=price.get("currency") or subscription.get("currency"),
        interval=recurring.get("interval"),
        metadata=dict(subscription.get("metadata") or {}),
        event_created_at=base.created,
        source_event_id=base.event_id,
    )


# =============================================================================
# Parsers
# =============================================================================


def _require_id(obj: dict[str, Any], event_type: str) -> str:
    object_id = obj.get("id")
    if not object_id:
        raise ValidationError(
            f"{event_type} payload has no object id",
            details={"event_type": event_type},
        )
    return object_id


def _parse_account_updated(base: WebhookEvent, obj: dict[str, Any]) -> AccountUpdated:
    _require_id(obj, base.event_type)
    return AccountUpdated(**vars(base), snapshot=AccountResult.from_stripe(obj))


def _parse_account_deauthorized(base: WebhookEvent, obj: dict[str, Any]) -> AccountDeauthorized:
    if not base.account:
        raise ValidationError(
            "Deauthorization event has no account",
            details={"event_type": base.event_type},
        )
    return AccountDeauthorized(**vars(base))


def _parse_subscription(base: WebhookEvent, obj: dict[str, Any]) -> SubscriptionChanged:
    return SubscriptionChanged(
        **vars(base),
        action=base.event_type.rsplit(".", 1)[-1],
        subscription_id=_require_id(obj, base.event_type),
        update=lifecycle_update_from(obj, base),
    )


def _parse_invoice_paid(base: WebhookEvent, obj: dict[str, Any]) -> InvoicePaid:
    return InvoicePaid(
        **vars(base),
        invoice_id=_require_id(obj, base.event_type),
        subscription_id=_invoice_subscription_id(obj),
        payment_intent_id=_id(obj.get("payment_intent")),
        charge_id=_id(obj.get("charge")),
        amount_paid=int(obj.get("amount_paid") or 0),
        currency=obj.get("currency") or "",
        period_start=_invoice_period_start(obj),
        billing_reason=obj.get("billing_reason"),
        metadata=_invoice_metadata(obj),
    )


def _parse_invoice_failed(base: WebhookEvent, obj: dict[str, Any]) -> InvoicePaymentFailed:
    error = obj.get("last_finalization_error") or {}
    return InvoicePaymentFailed(
        **vars(base),
        invoice_id=_require_id(obj, base.event_type),
        subscription_id=_invoice_subscription_id(obj),
        payment_intent_id=_id(obj.get("payment_intent")),
        attempt_count=int(obj.get("attempt_count") or 0),
        amount_due=int(obj.get("amount_due") or 0),
        currency=obj.get("currency") or "",
        failure_reason=error.get("message") or "invoice_payment_failed",
        metadata=_invoice_metadata(obj),
    )


def _parse_payment_intent(base: WebhookEvent, obj: dict[str, Any]) -> PaymentIntentSucceeded:
    return PaymentIntentSucceeded(
        **vars(base),
        payment_intent_id=_require_id(obj, base.event_type),
        amount_received=int(obj.get("amount_received") or obj.get("amount") or 0),
        currency=obj.get("currency") or "",
        invoice_id=_id(obj.get("invoice")),
        metadata=dict(obj.get("metadata") or {}),
    )


def _parse_charge_refunded(base: WebhookEvent, obj: dict[str, Any]) -> ChargeRefunded:
    return ChargeRefunded(
        **vars(base),
        charge_id=_require_id(obj, base.event_type),
        payment_intent_id=_id(obj.get("payment_intent")),
        amount_refunded=int(obj.get("amount_refunded") or 0),
        currency=obj.get("currency") or "",
        metadata=dict(obj.get("metadata") or {}),
    )


def _parse_dispute(base: WebhookEvent, obj: dict[str, Any]) -> DisputeCreated:
    return DisputeCreated(
        **vars(base),
        dispute_id=_require_id(obj, base.event_type),
        charge_id=_id(obj.get("charge")) or "",
        payment_intent_id=_id(obj.get("payment_intent")),
        amount=int(obj.get("amount") or 0),
        currency=obj.get("currency") or "",
        reason=obj.get("reason") or "",
        metadata=dict(obj.get("metadata") or {}),
    )


def _parse_checkout(base: WebhookEvent, obj: dict[str, Any]) -> CheckoutCompleted:
    return CheckoutCompleted(
        **vars(base),
        session_id=_require_id(obj, base.event_type),
        subscription_id=_id(obj.get("subscription")),
        customer_id=_id(obj.get("customer")),
        mode=obj.get("mode") or "",
        metadata=dict(obj.get("metadata") or {}),
    )


PARSERS: dict[str, Callable[[WebhookEvent, dict[str, Any]], WebhookEvent]] = {
    "account.updated": _parse_account_updated,
    "account.application.deauthorized": _parse_account_deauthorized,
    "customer.subscription.created": _parse_subscription,
    "customer.subscription.updated": _parse_subscription,
    "customer.subscription.deleted": _parse_subscription,
    "invoice.payment_succeeded": _parse_invoice_paid,
    "invoice.paid": _parse_invoice_paid,
    "invoice.payment_failed": _parse_invoice_failed,
    "payment_intent.succeeded": _parse_payment_intent,
    "charge.refunded": _parse_charge_refunded,
    "charge.dispute.created": _parse_dispute,
    "checkout.session.completed": _parse_checkout,
}


def parse_event(payload: dict[str, Any]) -> WebhookEvent:
    """
    Parse a verified Stripe event payload into a typed event.

    Raises:
        ValidationError: Missing id/type, or a known type whose object is
            malformed
    """
    event_id = payload.get("id")
    event_type = payload.get("type")
    if not event_id or not event_type:
        raise ValidationError("Event payload requires id and type")

    base = WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        created=_timestamp(payload.get("created")),
        account=payload.get("account"),
    )

    parser = PARSERS.get(event_type)
    if parser is None:
        return Unhandled(**vars(base))

    obj = (payload.get("data") or {}).get("object")
    if not isinstance(obj, dict):
        raise ValidationError(
            f"{event_type} payload has no data.object",
            details={"event_type": event_type},
        )
    return parser(base, obj)
