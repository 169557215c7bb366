"""
Billing admin configuration.

Ledger-like models (Transaction, ProcessedEvent, SubscriptionAnomaly) are
read-only audit trails here; state changes go through the service layer.
"""

from django.contrib import admin

from billing.adapters import get_processor_client
from billing.models import (
    Account,
    Plan,
    ProcessedEvent,
    RevenueSplit,
    Subscription,
    SubscriptionAnomaly,
    Transaction,
)
from billing.state_machines import EventStatus
from billing.webhooks.ingestion import WebhookIngestionEngine


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for Account.

    Provides visibility into Stripe Connect account status.
    """

    list_display = [
        "external_account_id",
        "tenant",
        "verification_status",
        "charges_enabled",
        "payouts_enabled",
        "is_disabled",
        "last_synced_at",
    ]
    list_filter = ["verification_status", "charges_enabled", "payouts_enabled", "is_disabled"]
    search_fields = ["external_account_id", "tenant__name", "tenant__slug", "email"]
    readonly_fields = ["id", "created_at", "updated_at", "version", "last_synced_at"]
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "tenant", "external_account_id", "account_type", "country")}),
        (
            "Status",
            {
                "fields": (
                    "verification_status",
                    "charges_enabled",
                    "payouts_enabled",
                    "details_submitted",
                    "is_disabled",
                    "disabled_at",
                ),
            },
        ),
        (
            "Requirements",
            {"fields": ("requirements", "capabilities"), "classes": ("collapse",)},
        ),
        ("Metadata", {"fields": ("metadata", "version"), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("last_synced_at", "created_at", "updated_at")}),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        """Accounts are soft-disabled, never deleted."""
        return False


@admin.register(RevenueSplit)
class RevenueSplitAdmin(admin.ModelAdmin):
    """Split history per tenant. Changes go through RevenueSplitPolicy.set_split."""

    list_display = ["tenant", "platform_percentage", "creator_percentage", "effective_from", "is_active"]
    list_filter = ["is_active"]
    search_fields = ["tenant__name", "tenant__slug"]
    readonly_fields = ["id", "tenant", "platform_percentage", "effective_from", "is_active", "created_at"]
    ordering = ["-effective_from"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ["name", "variant", "tenant", "price_cents", "currency", "interval", "is_active"]
    list_filter = ["variant", "interval", "is_active", "currency"]
    search_fields = ["name", "tenant__name", "stripe_price_id"]
    readonly_fields = ["id", "stripe_product_id", "stripe_price_id", "created_at", "updated_at"]


class SubscriptionAnomalyInline(admin.TabularInline):
    model = SubscriptionAnomaly
    extra = 0
    can_delete = False
    readonly_fields = ["from_status", "requested_status", "source_event_id", "reason", "created_at"]
    fields = ["from_status", "requested_status", "source_event_id", "reason", "resolved", "created_at"]


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    """
    Admin configuration for Subscription.

    Status mirrors Stripe and is written only by lifecycle webhooks, so it
    is read-only here.
    """

    list_display = [
        "external_subscription_id",
        "variant",
        "tenant",
        "payer_id",
        "status",
        "current_period_end",
        "cancel_at_period_end",
    ]
    list_filter = ["variant", "status", "cancel_at_period_end"]
    search_fields = ["external_subscription_id", "external_customer_id", "payer_id", "tenant__name"]
    readonly_fields = [
        "id",
        "status",
        "version",
        "invoiced_period_start",
        "last_event_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [SubscriptionAnomalyInline]

    def has_delete_permission(self, request, obj=None) -> bool:
        """Subscriptions are closed by status, never deleted."""
        return False


@admin.register(SubscriptionAnomaly)
class SubscriptionAnomalyAdmin(admin.ModelAdmin):
    """Rejected lifecycle transitions awaiting review."""

    list_display = ["subscription", "from_status", "requested_status", "source_event_id", "resolved", "created_at"]
    list_filter = ["resolved", "requested_status"]
    search_fields = ["subscription__external_subscription_id", "source_event_id"]
    readonly_fields = ["id", "subscription", "from_status", "requested_status", "source_event_id", "reason", "created_at"]
    actions = ["mark_resolved"]

    @admin.action(description="Mark selected anomalies as resolved")
    def mark_resolved(self, request, queryset):
        count = queryset.filter(resolved=False).update(resolved=True)
        self.message_user(request, f"Marked {count} anomalies as resolved.")

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    """
    Admin configuration for Transaction.

    The ledger is append-only; rows cannot be added, changed or deleted here.
    """

    list_display = [
        "idempotency_key",
        "tenant",
        "kind",
        "amount_display",
        "platform_amount_cents",
        "creator_amount_cents",
        "status",
        "processed_at",
    ]
    list_filter = ["kind", "status", "variant", "currency"]
    search_fields = ["idempotency_key", "external_charge_id", "external_reference_id", "tenant__name"]
    date_hierarchy = "processed_at"
    ordering = ["-processed_at"]

    def amount_display(self, obj: Transaction) -> str:
        """Format amount for display."""
        return f"{obj.amount_cents / 100:.2f} {obj.currency.upper()}"

    amount_display.short_description = "Amount"

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ProcessedEvent)
class ProcessedEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for ProcessedEvent.

    Provides visibility into webhook processing and a requeue action for
    dead-lettered events. Events are immutable once received.
    """

    list_display = [
        "external_event_id",
        "event_type",
        "status",
        "attempt_count",
        "received_at",
        "processed_at",
        "next_attempt_at",
    ]
    list_filter = ["status", "processed", "event_type"]
    search_fields = ["external_event_id", "event_type"]
    date_hierarchy = "received_at"
    ordering = ["-received_at"]
    actions = ["requeue_dead_lettered"]

    fieldsets = (
        (None, {"fields": ("id", "external_event_id", "event_type", "status", "processed")}),
        (
            "Processing",
            {"fields": ("attempt_count", "claimed_at", "next_attempt_at", "processed_at")},
        ),
        ("Error Info", {"fields": ("last_error",), "classes": ("collapse",)}),
        ("Payload", {"fields": ("payload",), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("received_at", "created_at", "updated_at")}),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in ProcessedEvent._meta.fields]

    @admin.action(description="Requeue selected dead-lettered events")
    def requeue_dead_lettered(self, request, queryset):
        """Reset dead-lettered events so the sweeper retries them."""
        engine = WebhookIngestionEngine(get_processor_client())
        event_ids = queryset.filter(status=EventStatus.DEAD_LETTERED).values_list(
            "external_event_id", flat=True
        )
        count = 0
        for event_id in event_ids:
            engine.requeue_dead_letter(event_id)
            count += 1
        self.message_user(request, f"Requeued {count} dead-lettered events.")

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False
