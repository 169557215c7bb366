"""
Stripe API adapter for billing operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions used by the billing core. Services receive an
adapter instance in their constructor; nothing reads a module-level
Stripe client.

Features:
- Bounded timeout on every API call, no SDK retries on the request path
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency keys on every creating call
- Webhook signature verification

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_WEBHOOK_TOLERANCE_SECONDS: Allowed timestamp skew (default: 300)
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: SDK network retries (default: 0)

Usage:
    from billing.adapters import CreateAccountParams, get_processor_client

    adapter = get_processor_client()
    result = adapter.create_connected_account(
        CreateAccountParams(
            country="BR",
            email="owner@example.com",
            metadata={"community_id": str(community.id)},
            idempotency_key=IdempotencyKeyGenerator.generate("create_account", community.id),
        )
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import stripe
from django.conf import settings

from core.exceptions import SignatureError, ValidationError
from billing.exceptions import (
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreateAccountParams:
    """
    Parameters for creating a Stripe Connect account.

    Attributes:
        country: ISO 3166-1 alpha-2 country code
        idempotency_key: Unique key derived from the tenant id
        account_type: standard, express or custom (default: express)
        email: Optional account email
        business_type: Optional business type (individual, company, ...)
        metadata: Key-value pairs to attach to the account
    """

    country: str
    idempotency_key: str
    account_type: str = "express"
    email: str | None = None
    business_type: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if len(self.country) != 2:
            raise ValueError("country must be an ISO 3166-1 alpha-2 code")


@dataclass
class AccountResult:
    """
    Snapshot of a Stripe Connect account.

    Attributes:
        id: Account ID (acct_xxx)
        charges_enabled / payouts_enabled / details_submitted: Capability flags
        requirements: Requirement lists (currently_due, eventually_due, ...)
        disabled_reason: requirements.disabled_reason, if any
        capabilities: Capability map
        country / email / business_type: Account profile fields
        raw_response: Full Stripe response dict
    """

    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    requirements: dict[str, list[str]] = field(default_factory=dict)
    disabled_reason: str | None = None
    capabilities: dict[str, str] = field(default_factory=dict)
    country: str | None = None
    email: str | None = None
    business_type: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_stripe(cls, account: dict[str, Any]) -> AccountResult:
        """Build from a Stripe account object or an account.updated payload."""
        requirements = account.get("requirements") or {}
        return cls(
            id=account["id"],
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
            requirements={
                key: list(requirements.get(key) or [])
                for key in ("currently_due", "eventually_due", "past_due", "pending_verification")
            },
            disabled_reason=requirements.get("disabled_reason"),
            capabilities=dict(account.get("capabilities") or {}),
            country=account.get("country"),
            email=account.get("email"),
            business_type=account.get("business_type"),
            raw_response=_to_dict(account),
        )


@dataclass
class CheckoutSessionParams:
    """
    Parameters for creating a subscription Checkout Session.

    Attributes:
        price_id: Stripe Price ID (price_xxx)
        success_url / cancel_url: Redirect targets after checkout
        idempotency_key: Unique key for idempotent creation
        metadata: Copied to the session and to the subscription
        customer_email: Optional prefilled email
        trial_days: Optional trial length
        stripe_account: Connected account to create the session on (member)
        application_fee_percent: Platform fee for connected-account sessions
    """

    price_id: str
    success_url: str
    cancel_url: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)
    customer_email: str | None = None
    trial_days: int | None = None
    stripe_account: str | None = None
    application_fee_percent: float | None = None


@dataclass
class CheckoutSessionResult:
    """
    Result from Checkout Session creation.

    Attributes:
        id: Session ID (cs_xxx)
        url: Hosted checkout URL
        customer_id: Stripe Customer ID if already known
        metadata: Attached metadata
    """

    id: str
    url: str
    customer_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class SubscriptionResult:
    """
    Result from Stripe Subscription operations.

    Attributes:
        id: Subscription ID (sub_xxx)
        status: Stripe subscription status
        cancel_at_period_end: Whether cancellation is scheduled
        item_id: ID of the first subscription item
        price_id: Price of the first subscription item
        raw_response: Full Stripe response dict
    """

    id: str
    status: str
    cancel_at_period_end: bool = False
    item_id: str | None = None
    price_id: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PriceResult:
    """
    Result from product and price creation.

    Attributes:
        product_id: Product ID (prod_xxx)
        price_id: Price ID (price_xxx)
    """

    product_id: str
    price_id: str


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    Keys derived from a stable entity id let a retry after a failed local
    write reattach to the object Stripe already created.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="create_account",
            entity_id=community.id,
        )
        # "create_account:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        """
        Generate a deterministic idempotency key.

        Args:
            operation: The Stripe operation (create_account, cancel, etc.)
            entity_id: The domain entity ID
            attempt: Attempt number (default: 1)

        Returns:
            Formatted idempotency key string
        """
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Retry Helpers
# =============================================================================


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def _to_dict(obj: Any) -> dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj) if isinstance(obj, dict) else {}


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    Holds its own stripe.StripeClient so tests and callers never share
    ambient client state. Thread-safe for use from Celery workers.

    Args:
        api_key: Stripe secret key (default: settings.STRIPE_SECRET_KEY)
        webhook_secret: Webhook signing secret (default: settings.STRIPE_WEBHOOK_SECRET)
        timeout: Per-call timeout in seconds
        client: Pre-built stripe.StripeClient (tests)

    Usage:
        adapter = StripeAdapter()
        status = adapter.retrieve_account("acct_123")
    """

    def __init__(
        self,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        timeout: float | None = None,
        client: stripe.StripeClient | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        )
        self.timeout = timeout or getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        self.tolerance = getattr(settings, "STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300)
        self.client = client or stripe.StripeClient(
            self.api_key,
            max_network_retries=getattr(settings, "STRIPE_MAX_RETRIES", 0),
            http_client=stripe.RequestsClient(timeout=self.timeout),
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def _call(self, operation: str, log_context: dict[str, Any], func, *args, **kwargs):
        """Run one Stripe call with timing logs and error translation."""
        logger = self.get_logger()
        log_context = {"operation": operation, **log_context}

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return result

    # =========================================================================
    # Connect Accounts
    # =========================================================================

    def create_connected_account(self, params: CreateAccountParams) -> AccountResult:
        """
        Create a Stripe Connect account.

        Args:
            params: Parameters for the account

        Returns:
            AccountResult for the created (or idempotently replayed) account

        Raises:
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
        """
        request: dict[str, Any] = {
            "type": params.account_type,
            "country": params.country,
            "metadata": params.metadata,
            "capabilities": {
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
        }
        if params.email:
            request["email"] = params.email
        if params.business_type:
            request["business_type"] = params.business_type

        account = self._call(
            "create_connected_account",
            {"country": params.country, "idempotency_key": params.idempotency_key},
            self.client.accounts.create,
            params=request,
            options={"idempotency_key": params.idempotency_key},
        )
        return AccountResult.from_stripe(account)

    def create_account_link(
        self,
        account_id: str,
        refresh_url: str,
        return_url: str,
    ) -> str:
        """
        Create a hosted onboarding link for a connected account.

        Returns:
            The onboarding URL
        """
        link = self._call(
            "create_account_link",
            {"account_id": account_id},
            self.client.account_links.create,
            params={
                "account": account_id,
                "refresh_url": refresh_url,
                "return_url": return_url,
                "type": "account_onboarding",
            },
        )
        return link["url"]

    def retrieve_account(self, account_id: str) -> AccountResult:
        """
        Fetch the current state of a connected account.

        Raises:
            StripeInvalidAccountError: Unknown account
        """
        account = self._call(
            "retrieve_account",
            {"account_id": account_id},
            self.client.accounts.retrieve,
            account_id,
        )
        return AccountResult.from_stripe(account)

    # =========================================================================
    # Checkout & Subscriptions
    # =========================================================================

    def create_checkout_session(self, params: CheckoutSessionParams) -> CheckoutSessionResult:
        """
        Create a subscription-mode Checkout Session.

        Member sessions are created on the tenant's connected account with
        an application fee; platform sessions on the platform account.
        """
        subscription_data: dict[str, Any] = {"metadata": params.metadata}
        if params.trial_days:
            subscription_data["trial_period_days"] = params.trial_days
        if params.application_fee_percent is not None:
            subscription_data["application_fee_percent"] = params.application_fee_percent

        request: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": params.price_id, "quantity": 1}],
            "success_url": params.success_url,
            "cancel_url": params.cancel_url,
            "metadata": params.metadata,
            "subscription_data": subscription_data,
        }
        if params.customer_email:
            request["customer_email"] = params.customer_email

        options: dict[str, Any] = {"idempotency_key": params.idempotency_key}
        if params.stripe_account:
            options["stripe_account"] = params.stripe_account

        session = self._call(
            "create_checkout_session",
            {
                "price_id": params.price_id,
                "stripe_account": params.stripe_account,
                "idempotency_key": params.idempotency_key,
            },
            self.client.checkout.sessions.create,
            params=request,
            options=options,
        )
        return CheckoutSessionResult(
            id=session["id"],
            url=session["url"],
            customer_id=session.get("customer"),
            metadata=dict(session.get("metadata") or {}),
        )

    def cancel_subscription(
        self,
        subscription_id: str,
        at_period_end: bool,
        idempotency_key: str,
        stripe_account: str | None = None,
    ) -> SubscriptionResult:
        """
        Cancel a subscription now or schedule it for the end of the period.

        The local status is not touched here; Stripe reports the change
        through customer.subscription.updated/deleted.
        """
        options: dict[str, Any] = {"idempotency_key": idempotency_key}
        if stripe_account:
            options["stripe_account"] = stripe_account

        log_context = {
            "subscription_id": subscription_id,
            "at_period_end": at_period_end,
            "stripe_account": stripe_account,
        }
        if at_period_end:
            subscription = self._call(
                "schedule_subscription_cancel",
                log_context,
                self.client.subscriptions.update,
                subscription_id,
                params={"cancel_at_period_end": True},
                options=options,
            )
        else:
            subscription = self._call(
                "cancel_subscription",
                log_context,
                self.client.subscriptions.cancel,
                subscription_id,
                options=options,
            )
        return self._subscription_result(subscription)

    def update_subscription_price(
        self,
        subscription_id: str,
        new_price_id: str,
        idempotency_key: str,
        stripe_account: str | None = None,
    ) -> SubscriptionResult:
        """Swap the price of the subscription's first item, with proration."""
        options: dict[str, Any] = {}
        if stripe_account:
            options["stripe_account"] = stripe_account

        current = self._call(
            "retrieve_subscription",
            {"subscription_id": subscription_id},
            self.client.subscriptions.retrieve,
            subscription_id,
            options=options,
        )
        item_id = self._subscription_result(current).item_id

        subscription = self._call(
            "update_subscription_price",
            {"subscription_id": subscription_id, "new_price_id": new_price_id},
            self.client.subscriptions.update,
            subscription_id,
            params={
                "items": [{"id": item_id, "price": new_price_id}],
                "proration_behavior": "create_prorations",
            },
            options={**options, "idempotency_key": idempotency_key},
        )
        return self._subscription_result(subscription)

    def create_product_and_price(
        self,
        name: str,
        unit_amount: int,
        currency: str,
        interval: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
        stripe_account: str | None = None,
    ) -> PriceResult:
        """Create a product with one recurring price."""
        options: dict[str, Any] = {}
        if stripe_account:
            options["stripe_account"] = stripe_account

        product = self._call(
            "create_product",
            {"name": name, "stripe_account": stripe_account},
            self.client.products.create,
            params={"name": name, "metadata": metadata or {}},
            options={**options, "idempotency_key": f"{idempotency_key}:product"},
        )
        price = self._call(
            "create_price",
            {"product_id": product["id"], "unit_amount": unit_amount},
            self.client.prices.create,
            params={
                "product": product["id"],
                "unit_amount": unit_amount,
                "currency": currency,
                "recurring": {"interval": interval},
                "metadata": metadata or {},
            },
            options={**options, "idempotency_key": f"{idempotency_key}:price"},
        )
        return PriceResult(product_id=product["id"], price_id=price["id"])

    @staticmethod
    def _subscription_result(subscription: dict[str, Any]) -> SubscriptionResult:
        items = (subscription.get("items") or {}).get("data") or []
        first = items[0] if items else {}
        return SubscriptionResult(
            id=subscription["id"],
            status=subscription.get("status", ""),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            item_id=first.get("id"),
            price_id=(first.get("price") or {}).get("id"),
            raw_response=_to_dict(subscription),
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Verify a webhook signature and parse the event.

        Uses Stripe's HMAC-SHA256 scheme with constant-time comparison and
        timestamp tolerance.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            Parsed event dict

        Raises:
            SignatureError: Missing or invalid signature
            ValidationError: Verified body is not a JSON object
        """
        if not signature:
            raise SignatureError("Missing Stripe-Signature header")
        if not self.webhook_secret:
            raise SignatureError("Webhook secret is not configured")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            # Stripe signs UTF-8 text, so no valid signature can cover this body
            raise SignatureError(
                "Invalid webhook signature",
                details={"reason": "Body is not valid UTF-8"},
            ) from e

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                self.tolerance,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureError(
                "Invalid webhook signature",
                details={"reason": str(e)},
            ) from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise ValidationError("Webhook body is not valid JSON") from e
        if not isinstance(event, dict):
            raise ValidationError("Webhook body must be a JSON object")
        return event

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInvalidAccountError: Invalid Connect account
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out
            StripeAPIUnavailableError: API unavailable
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, StripeError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            if "account" in str(error).lower():
                raise StripeInvalidAccountError(
                    str(error),
                    stripe_code=error.code,
                ) from error
            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            ) from error

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        elif isinstance(error, stripe.APIConnectionError):
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                logger.error("Stripe request timed out", extra=log_context)
                raise StripeTimeoutError(
                    "Stripe request timed out. Retry with the same idempotency key.",
                    stripe_code="timeout",
                ) from error
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            ) from error


def get_processor_client() -> StripeAdapter:
    """Default processor client built from settings, for views and tasks."""
    return StripeAdapter()
