"""
API views for connected accounts, subscriptions and revenue.

Provides:
- Connect: ConnectOnboardView, ConnectRefreshView, ConnectStatusView,
  ConnectAccountView
- Member subscriptions: MemberPlansView, MemberPlansSyncView,
  MemberSubscribeView, MemberSubscriptionView, MemberSubscriptionsView
- Platform subscriptions: PlatformPlansView, PlatformSubscribeView,
  PlatformSubscriptionView
- Shared: SubscriptionCancelView, SubscriptionChangePlanView (routed per
  variant)
- Revenue: RevenueView, RevenueSplitView

Authentication is handled upstream; endpoints take identifiers explicitly.
Domain exceptions raised by services are rendered by
core.api.exception_handler.
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.views import APIView

from core.api import success_response

from billing.adapters import get_processor_client
from billing.serializers import (
    AccountSerializer,
    AccountStatusSerializer,
    CancelSubscriptionSerializer,
    ChangePlanSerializer,
    CheckoutSessionSerializer,
    MemberSubscribeSerializer,
    OnboardingResultSerializer,
    OnboardSerializer,
    PlanSerializer,
    PlatformSubscribeSerializer,
    RefreshLinkSerializer,
    RevenueQuerySerializer,
    RevenueSplitSerializer,
    RevenueSummarySerializer,
    SetSplitSerializer,
    SubscriptionSerializer,
)
from billing.services import (
    AccountRegistry,
    RevenueSplitPolicy,
    SubscriptionLedger,
    TransactionLedger,
)
from billing.state_machines import SubscriptionVariant


# =============================================================================
# Connect
# =============================================================================


class ConnectOnboardView(APIView):
    """
    POST /api/v1/connect/onboard/
        Create the tenant's Stripe connected account and onboarding link.

    Response:
        201 Created: {account_id, onboarding_url}
        400 Bad Request: Missing tenant_id, or the tenant already has an account
        404 Not Found: Unknown tenant
    """

    @extend_schema(
        operation_id="connect_onboard",
        summary="Start Stripe Connect onboarding",
        request=OnboardSerializer,
        responses={
            201: OpenApiResponse(response=OnboardingResultSerializer),
            400: OpenApiResponse(description="Validation error or account already exists"),
            404: OpenApiResponse(description="Community not found"),
        },
        tags=["Connect"],
    )
    def post(self, request):
        serializer = OnboardSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = AccountRegistry(get_processor_client()).begin_onboarding(
            data["tenant_id"],
            country=data.get("country") or None,
            business_type=data.get("business_type"),
            email=data.get("email") or None,
            return_url=data.get("return_url"),
            refresh_url=data.get("refresh_url"),
        )
        return success_response(
            OnboardingResultSerializer(result).data,
            http_status=status.HTTP_201_CREATED,
        )


class ConnectRefreshView(APIView):
    """
    POST /api/v1/connect/refresh/
        Issue a new onboarding link for the tenant's existing account.
    """

    @extend_schema(
        operation_id="connect_refresh",
        summary="Refresh onboarding link",
        request=RefreshLinkSerializer,
        responses={
            200: OpenApiResponse(response=OnboardingResultSerializer),
            404: OpenApiResponse(description="No account for this community"),
        },
        tags=["Connect"],
    )
    def post(self, request):
        serializer = RefreshLinkSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        onboarding_url, account_id = AccountRegistry(get_processor_client()).refresh_onboarding_link(
            serializer.validated_data["tenant_id"]
        )
        return success_response({"onboarding_url": onboarding_url, "account_id": account_id})


class ConnectStatusView(APIView):
    """
    GET /api/v1/connect/status/{account_id}/
        Fetch the live account status from Stripe and apply it locally.
    """

    @extend_schema(
        operation_id="connect_status",
        summary="Sync and return account status",
        responses={
            200: OpenApiResponse(response=AccountStatusSerializer),
            404: OpenApiResponse(description="Unknown account"),
        },
        tags=["Connect"],
    )
    def get(self, request, account_id):
        account_status = AccountRegistry(get_processor_client()).sync_status(account_id)
        return success_response(AccountStatusSerializer(account_status).data)


class ConnectAccountView(APIView):
    """
    GET /api/v1/connect/account/{tenant_id}/
        Local Account row plus live Stripe status (stripe_status is null
        when Stripe cannot be reached).
    """

    @extend_schema(
        operation_id="connect_account",
        summary="Get community payment account",
        responses={
            200: OpenApiResponse(response=AccountSerializer),
            404: OpenApiResponse(description="No account for this community"),
        },
        tags=["Connect"],
    )
    def get(self, request, tenant_id):
        account, live_status = AccountRegistry(get_processor_client()).get_account_with_status(
            tenant_id
        )
        data = dict(AccountSerializer(account).data)
        data["stripe_status"] = (
            AccountStatusSerializer(live_status).data if live_status is not None else None
        )
        return success_response(data)


# =============================================================================
# Member Subscriptions
# =============================================================================


class MemberPlansView(APIView):
    """GET /api/v1/member/plans/{tenant_id}/ - active plans of a community."""

    @extend_schema(
        operation_id="member_plans",
        summary="List community plans",
        responses={200: PlanSerializer(many=True)},
        tags=["Member Subscriptions"],
    )
    def get(self, request, tenant_id):
        plans = SubscriptionLedger(get_processor_client()).list_plans(
            SubscriptionVariant.MEMBER, tenant_id
        )
        return success_response(PlanSerializer(plans, many=True).data)


class MemberPlansSyncView(APIView):
    """POST /api/v1/member/plans/{tenant_id}/sync/ - create missing Stripe prices."""

    @extend_schema(
        operation_id="member_plans_sync",
        summary="Sync community plans to Stripe",
        request=None,
        responses={
            200: PlanSerializer(many=True),
            404: OpenApiResponse(description="Community or account not found"),
        },
        tags=["Member Subscriptions"],
    )
    def post(self, request, tenant_id):
        plans = SubscriptionLedger(get_processor_client()).sync_member_plans(tenant_id)
        return success_response(PlanSerializer(plans, many=True).data)


class MemberSubscribeView(APIView):
    """
    POST /api/v1/member/subscribe/
        Create a checkout session for an end user.

    Response:
        200 OK: Checkout session reference
        400 Bad Request: Missing fields, active subscription exists, or
            the community cannot accept charges
    """

    @extend_schema(
        operation_id="member_subscribe",
        summary="Subscribe to a community",
        request=MemberSubscribeSerializer,
        responses={
            200: OpenApiResponse(response=CheckoutSessionSerializer),
            400: OpenApiResponse(description="Validation error or subscription exists"),
            404: OpenApiResponse(description="Community or plan not found"),
        },
        tags=["Member Subscriptions"],
    )
    def post(self, request):
        serializer = MemberSubscribeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        session = SubscriptionLedger(get_processor_client()).create_checkout(
            SubscriptionVariant.MEMBER,
            data["tenant_id"],
            data["plan_id"],
            payer_id=data["user_id"],
            trial_days=data.get("trial_days"),
        )
        return success_response(CheckoutSessionSerializer(session).data)


class MemberSubscriptionView(APIView):
    """GET /api/v1/member/subscription/{tenant_id}/{user_id}/"""

    @extend_schema(
        operation_id="member_subscription",
        summary="Get a member's subscription",
        responses={
            200: SubscriptionSerializer,
            404: OpenApiResponse(description="No subscription"),
        },
        tags=["Member Subscriptions"],
    )
    def get(self, request, tenant_id, user_id):
        subscription = SubscriptionLedger(get_processor_client()).get_member_subscription(
            tenant_id, user_id
        )
        return success_response(SubscriptionSerializer(subscription).data)


class MemberSubscriptionsView(APIView):
    """GET /api/v1/member/subscriptions/{tenant_id}/"""

    @extend_schema(
        operation_id="member_subscriptions",
        summary="List member subscriptions of a community",
        responses={200: SubscriptionSerializer(many=True)},
        tags=["Member Subscriptions"],
    )
    def get(self, request, tenant_id):
        subscriptions = SubscriptionLedger(get_processor_client()).list_member_subscriptions(
            tenant_id
        )
        return success_response(SubscriptionSerializer(subscriptions, many=True).data)


# =============================================================================
# Platform Subscriptions
# =============================================================================


class PlatformPlansView(APIView):
    """GET /api/v1/platform/plans/"""

    @extend_schema(
        operation_id="platform_plans",
        summary="List platform plans",
        responses={200: PlanSerializer(many=True)},
        tags=["Platform Subscriptions"],
    )
    def get(self, request):
        plans = SubscriptionLedger(get_processor_client()).list_plans(SubscriptionVariant.PLATFORM)
        return success_response(PlanSerializer(plans, many=True).data)


class PlatformSubscribeView(APIView):
    """POST /api/v1/platform/subscribe/ - checkout for the community owner."""

    @extend_schema(
        operation_id="platform_subscribe",
        summary="Subscribe a community to the platform",
        request=PlatformSubscribeSerializer,
        responses={
            200: OpenApiResponse(response=CheckoutSessionSerializer),
            400: OpenApiResponse(description="Validation error or subscription exists"),
            404: OpenApiResponse(description="Community or plan not found"),
        },
        tags=["Platform Subscriptions"],
    )
    def post(self, request):
        serializer = PlatformSubscribeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        session = SubscriptionLedger(get_processor_client()).create_checkout(
            SubscriptionVariant.PLATFORM,
            data["tenant_id"],
            data["plan_id"],
            trial_days=data.get("trial_days"),
        )
        return success_response(CheckoutSessionSerializer(session).data)


class PlatformSubscriptionView(APIView):
    """GET /api/v1/platform/subscription/{tenant_id}/"""

    @extend_schema(
        operation_id="platform_subscription",
        summary="Get the community's platform subscription",
        responses={
            200: SubscriptionSerializer,
            404: OpenApiResponse(description="No platform subscription"),
        },
        tags=["Platform Subscriptions"],
    )
    def get(self, request, tenant_id):
        subscription = SubscriptionLedger(get_processor_client()).get_platform_subscription(
            tenant_id
        )
        return success_response(SubscriptionSerializer(subscription).data)


# =============================================================================
# Subscription Commands (member and platform routes)
# =============================================================================


class SubscriptionCancelView(APIView):
    """
    POST /api/v1/{member,platform}/subscription/{subscription_id}/cancel/
        Ask Stripe to cancel. The status follows via webhook.
    """

    variant: str | None = None

    @extend_schema(
        summary="Cancel a subscription",
        request=CancelSubscriptionSerializer,
        responses={
            200: SubscriptionSerializer,
            400: OpenApiResponse(description="Subscription already ended"),
            404: OpenApiResponse(description="Subscription not found"),
        },
        tags=["Subscriptions"],
    )
    def post(self, request, subscription_id):
        serializer = CancelSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        subscription = SubscriptionLedger(get_processor_client()).cancel(
            subscription_id,
            at_period_end=serializer.validated_data["at_period_end"],
            variant=self.variant,
        )
        return success_response(SubscriptionSerializer(subscription).data)


class SubscriptionChangePlanView(APIView):
    """
    POST /api/v1/{member,platform}/subscription/{subscription_id}/change/
        Swap the subscription's price at Stripe. Plan and amount follow
        via webhook.
    """

    variant: str | None = None

    @extend_schema(
        summary="Change a subscription's plan",
        request=ChangePlanSerializer,
        responses={
            200: SubscriptionSerializer,
            400: OpenApiResponse(description="Subscription already ended"),
            404: OpenApiResponse(description="Subscription or plan not found"),
        },
        tags=["Subscriptions"],
    )
    def post(self, request, subscription_id):
        serializer = ChangePlanSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        subscription = SubscriptionLedger(get_processor_client()).change_plan(
            subscription_id,
            serializer.validated_data["new_plan_id"],
            variant=self.variant,
        )
        return success_response(SubscriptionSerializer(subscription).data)


# =============================================================================
# Revenue
# =============================================================================


class RevenueView(APIView):
    """GET /api/v1/revenue/{tenant_id}/?start=&end=&currency="""

    @extend_schema(
        operation_id="revenue_for_period",
        summary="Community revenue for a period",
        parameters=[
            OpenApiParameter("start", str, description="ISO 8601 start (inclusive)", required=True),
            OpenApiParameter("end", str, description="ISO 8601 end (exclusive)", required=True),
            OpenApiParameter("currency", str, description="ISO 4217 code", required=False),
        ],
        responses={200: RevenueSummarySerializer},
        tags=["Revenue"],
    )
    def get(self, request, tenant_id):
        query = RevenueQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        summary = TransactionLedger().revenue_for_period(
            tenant_id,
            params["start"],
            params["end"],
            currency=params.get("currency"),
        )
        return success_response(RevenueSummarySerializer(summary).data)


class RevenueSplitView(APIView):
    """
    GET  /api/v1/revenue/split/{tenant_id}/ - active split
    POST /api/v1/revenue/split/             - replace the active split
    """

    @extend_schema(
        operation_id="revenue_split_get",
        summary="Get the active revenue split",
        responses={
            200: RevenueSplitSerializer,
            404: OpenApiResponse(description="Community not found"),
        },
        tags=["Revenue"],
    )
    def get(self, request, tenant_id):
        split = RevenueSplitPolicy().get_active_split(tenant_id)
        return success_response(RevenueSplitSerializer(split).data)

    @extend_schema(
        operation_id="revenue_split_set",
        summary="Set the revenue split",
        request=SetSplitSerializer,
        responses={
            201: RevenueSplitSerializer,
            400: OpenApiResponse(description="Invalid percentage"),
            404: OpenApiResponse(description="Community not found"),
        },
        tags=["Revenue"],
    )
    def post(self, request):
        serializer = SetSplitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        split = RevenueSplitPolicy().set_split(
            serializer.validated_data["tenant_id"],
            serializer.validated_data["platform_percentage"],
        )
        return success_response(
            RevenueSplitSerializer(split).data,
            http_status=status.HTTP_201_CREATED,
        )
