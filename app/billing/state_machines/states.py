"""
State enums for billing models.

These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Subscription Status (mirrors the processor's subscription lifecycle):
    incomplete → active | incomplete_expired
    trialing   → active | past_due | canceled
    active     → past_due | canceled
    past_due   → active | unpaid | canceled
    canceled, incomplete_expired: terminal

ProcessedEvent Status (webhook ingestion):
    received → processing → processed
    processing → failed → processing (sweeper retry)
    failed → dead_lettered (attempt ceiling reached)
"""

from django.db import models


class AccountType(models.TextChoices):
    """Stripe Connect account types."""

    STANDARD = "standard", "Standard"
    EXPRESS = "express", "Express"
    CUSTOM = "custom", "Custom"


class VerificationStatus(models.TextChoices):
    """
    Verification state of a connected account.

    Derived from the processor's account object:
        REJECTED: requirements.disabled_reason starts with "rejected"
        PENDING: charges or payouts not yet enabled
        RESTRICTED: enabled, but currently_due or past_due requirements exist
        VERIFIED: enabled with no outstanding requirements
    """

    PENDING = "pending", "Pending"
    VERIFIED = "verified", "Verified"
    REJECTED = "rejected", "Rejected"
    RESTRICTED = "restricted", "Restricted"


class SubscriptionVariant(models.TextChoices):
    """
    Which two parties a subscription binds.

    PLATFORM: the platform operator charges the tenant (rent)
    MEMBER: an end user pays the tenant for community access
    """

    PLATFORM = "platform", "Platform"
    MEMBER = "member", "Member"


class SubscriptionStatus(models.TextChoices):
    """
    Subscription lifecycle states (same graph for both variants).

    Terminal states: CANCELED, INCOMPLETE_EXPIRED
    """

    INCOMPLETE = "incomplete", "Incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired", "Incomplete Expired"
    TRIALING = "trialing", "Trialing"
    ACTIVE = "active", "Active"
    PAST_DUE = "past_due", "Past Due"
    CANCELED = "canceled", "Canceled"
    UNPAID = "unpaid", "Unpaid"


class BillingInterval(models.TextChoices):
    """Recurring billing intervals."""

    MONTH = "month", "Month"
    YEAR = "year", "Year"


class TransactionKind(models.TextChoices):
    """Kinds of money movement recorded in the transaction ledger."""

    PAYMENT = "payment", "Payment"
    REFUND = "refund", "Refund"
    CHARGEBACK = "chargeback", "Chargeback"
    SPLIT = "split", "Split"


class TransactionStatus(models.TextChoices):
    """
    Transaction states.

    A SUCCEEDED transaction is immutable; corrections are new rows.
    """

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    CANCELED = "canceled", "Canceled"


class EventStatus(models.TextChoices):
    """
    Processing states of a received webhook event.

    Terminal states: PROCESSED, DEAD_LETTERED
    """

    RECEIVED = "received", "Received"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
    DEAD_LETTERED = "dead_lettered", "Dead Lettered"
