"""
URL configuration for the billing API (mounted at /api/v1/).

Command routes under subscription/{id}/ are listed before
subscription/{tenant_id}/{user_id}/ so "cancel" and "change" are never
read as a user id.
"""

from django.urls import path

from billing import views
from billing.state_machines import SubscriptionVariant
from billing.webhooks.views import payments_webhook

app_name = "billing"

urlpatterns = [
    # Connect
    path("connect/onboard/", views.ConnectOnboardView.as_view(), name="connect-onboard"),
    path("connect/refresh/", views.ConnectRefreshView.as_view(), name="connect-refresh"),
    path(
        "connect/status/<str:account_id>/",
        views.ConnectStatusView.as_view(),
        name="connect-status",
    ),
    path(
        "connect/account/<uuid:tenant_id>/",
        views.ConnectAccountView.as_view(),
        name="connect-account",
    ),
    # Member subscriptions
    path("member/plans/<uuid:tenant_id>/", views.MemberPlansView.as_view(), name="member-plans"),
    path(
        "member/plans/<uuid:tenant_id>/sync/",
        views.MemberPlansSyncView.as_view(),
        name="member-plans-sync",
    ),
    path("member/subscribe/", views.MemberSubscribeView.as_view(), name="member-subscribe"),
    path(
        "member/subscription/<uuid:subscription_id>/cancel/",
        views.SubscriptionCancelView.as_view(variant=SubscriptionVariant.MEMBER),
        name="member-subscription-cancel",
    ),
    path(
        "member/subscription/<uuid:subscription_id>/change/",
        views.SubscriptionChangePlanView.as_view(variant=SubscriptionVariant.MEMBER),
        name="member-subscription-change",
    ),
    path(
        "member/subscription/<uuid:tenant_id>/<str:user_id>/",
        views.MemberSubscriptionView.as_view(),
        name="member-subscription",
    ),
    path(
        "member/subscriptions/<uuid:tenant_id>/",
        views.MemberSubscriptionsView.as_view(),
        name="member-subscriptions",
    ),
    # Platform subscriptions
    path("platform/plans/", views.PlatformPlansView.as_view(), name="platform-plans"),
    path("platform/subscribe/", views.PlatformSubscribeView.as_view(), name="platform-subscribe"),
    path(
        "platform/subscription/<uuid:subscription_id>/cancel/",
        views.SubscriptionCancelView.as_view(variant=SubscriptionVariant.PLATFORM),
        name="platform-subscription-cancel",
    ),
    path(
        "platform/subscription/<uuid:subscription_id>/change/",
        views.SubscriptionChangePlanView.as_view(variant=SubscriptionVariant.PLATFORM),
        name="platform-subscription-change",
    ),
    path(
        "platform/subscription/<uuid:tenant_id>/",
        views.PlatformSubscriptionView.as_view(),
        name="platform-subscription",
    ),
    # Revenue
    path("revenue/split/", views.RevenueSplitView.as_view(), name="revenue-split"),
    path(
        "revenue/split/<uuid:tenant_id>/",
        views.RevenueSplitView.as_view(),
        name="revenue-split-detail",
    ),
    path("revenue/<uuid:tenant_id>/", views.RevenueView.as_view(), name="revenue"),
    # Webhooks
    path("webhooks/payments/", payments_webhook, name="payments-webhook"),
]
