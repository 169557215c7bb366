"""
Serializers for the billing API.

Provides:
- Request serializers: OnboardSerializer, RefreshLinkSerializer,
  MemberSubscribeSerializer, PlatformSubscribeSerializer,
  CancelSubscriptionSerializer, ChangePlanSerializer,
  RevenueQuerySerializer, SetSplitSerializer
- Response serializers for models (Account, Plan, Subscription,
  RevenueSplit) and for service result dataclasses (AccountStatus,
  OnboardingResult, CheckoutSessionRef, RevenueSummary)
"""

from __future__ import annotations

from rest_framework import serializers

from billing.models import Account, Plan, RevenueSplit, Subscription


# =============================================================================
# Request Serializers
# =============================================================================


class OnboardSerializer(serializers.Serializer):
    """Start connected account onboarding for a tenant."""

    tenant_id = serializers.UUIDField()
    country = serializers.CharField(max_length=2, required=False, allow_blank=True)
    business_type = serializers.ChoiceField(
        choices=["individual", "company", "non_profit", "government_entity"],
        required=False,
    )
    email = serializers.EmailField(required=False, allow_blank=True)
    return_url = serializers.URLField(required=False)
    refresh_url = serializers.URLField(required=False)

    def validate_country(self, value: str) -> str:
        return value.upper()


class RefreshLinkSerializer(serializers.Serializer):
    tenant_id = serializers.UUIDField()


class MemberSubscribeSerializer(serializers.Serializer):
    """Checkout for an end user subscribing to a community."""

    tenant_id = serializers.UUIDField()
    user_id = serializers.CharField(max_length=255)
    plan_id = serializers.UUIDField()
    trial_days = serializers.IntegerField(required=False, min_value=0, max_value=730)


class PlatformSubscribeSerializer(serializers.Serializer):
    """Checkout for a community subscribing to the platform."""

    tenant_id = serializers.UUIDField()
    plan_id = serializers.UUIDField()
    trial_days = serializers.IntegerField(required=False, min_value=0, max_value=730)


class CancelSubscriptionSerializer(serializers.Serializer):
    at_period_end = serializers.BooleanField(default=True)


class ChangePlanSerializer(serializers.Serializer):
    new_plan_id = serializers.UUIDField()


class RevenueQuerySerializer(serializers.Serializer):
    """Query parameters of the revenue report."""

    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
    currency = serializers.CharField(max_length=3, required=False)

    def validate(self, attrs: dict) -> dict:
        if attrs["end"] <= attrs["start"]:
            raise serializers.ValidationError({"end": "end must be after start"})
        return attrs


class SetSplitSerializer(serializers.Serializer):
    tenant_id = serializers.UUIDField()
    platform_percentage = serializers.DecimalField(max_digits=6, decimal_places=2)


# =============================================================================
# Model Serializers
# =============================================================================


class AccountSerializer(serializers.ModelSerializer):
    """Local Account row."""

    tenant_id = serializers.UUIDField(read_only=True)
    is_fully_enabled = serializers.BooleanField(read_only=True)

    class Meta:
        model = Account
        fields = [
            "id",
            "tenant_id",
            "external_account_id",
            "account_type",
            "country",
            "business_type",
            "email",
            "verification_status",
            "charges_enabled",
            "payouts_enabled",
            "details_submitted",
            "is_fully_enabled",
            "requirements",
            "capabilities",
            "metadata",
            "is_disabled",
            "disabled_at",
            "last_synced_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PlanSerializer(serializers.ModelSerializer):
    tenant_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Plan
        fields = [
            "id",
            "variant",
            "tenant_id",
            "name",
            "description",
            "price_cents",
            "currency",
            "interval",
            "trial_days",
            "features",
            "max_members",
            "is_active",
            "stripe_price_id",
        ]
        read_only_fields = fields


class SubscriptionSerializer(serializers.ModelSerializer):
    """Subscription with its plan inlined."""

    tenant_id = serializers.UUIDField(read_only=True)
    plan = PlanSerializer(read_only=True, allow_null=True)

    class Meta:
        model = Subscription
        fields = [
            "id",
            "variant",
            "tenant_id",
            "payer_id",
            "plan",
            "external_subscription_id",
            "external_customer_id",
            "status",
            "current_period_start",
            "current_period_end",
            "trial_start",
            "trial_end",
            "cancel_at_period_end",
            "canceled_at",
            "cancel_requested_at",
            "amount_cents",
            "currency",
            "billing_interval",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class RevenueSplitSerializer(serializers.ModelSerializer):
    tenant_id = serializers.UUIDField(read_only=True)
    creator_percentage = serializers.DecimalField(max_digits=5, decimal_places=2, read_only=True)

    class Meta:
        model = RevenueSplit
        fields = [
            "id",
            "tenant_id",
            "platform_percentage",
            "creator_percentage",
            "effective_from",
            "is_active",
        ]
        read_only_fields = fields


# =============================================================================
# Service Result Serializers
# =============================================================================


class AccountStatusSerializer(serializers.Serializer):
    account_id = serializers.CharField()
    verification_status = serializers.CharField()
    charges_enabled = serializers.BooleanField()
    payouts_enabled = serializers.BooleanField()
    details_submitted = serializers.BooleanField()
    requirements = serializers.DictField(child=serializers.ListField(child=serializers.CharField()))
    onboarding_completed = serializers.BooleanField()


class OnboardingResultSerializer(serializers.Serializer):
    account_id = serializers.CharField()
    onboarding_url = serializers.URLField()


class CheckoutSessionSerializer(serializers.Serializer):
    session_id = serializers.CharField(source="id")
    url = serializers.URLField()
    customer_id = serializers.CharField(allow_null=True)
    metadata = serializers.DictField(child=serializers.CharField())


class RevenueSummarySerializer(serializers.Serializer):
    """Revenue of a tenant over a period, in minor units."""

    total_revenue = serializers.IntegerField()
    platform_revenue = serializers.IntegerField()
    creator_revenue = serializers.IntegerField()
    transaction_count = serializers.IntegerField()
    active_subscriptions = serializers.IntegerField()
    period_start = serializers.DateTimeField()
    period_end = serializers.DateTimeField()
    currency = serializers.CharField(allow_null=True)
