"""
URL configuration for the community billing service.

URL Structure:
    /                                   - ReDoc API documentation
    /admin/                             - Django admin interface
    /health/                            - Health check endpoint (load balancers, Docker)
    /schema/                            - OpenAPI schema (YAML)
    /api/v1/connect/                    - Connected account onboarding and status
        onboard/                        - Start onboarding (POST)
        refresh/                        - New onboarding link (POST)
        status/{account_id}/            - Live account status (GET)
        account/{tenant_id}/            - Local account plus live status (GET)
    /api/v1/member/                     - Member (end user -> tenant) subscriptions
        plans/{tenant_id}/              - Tenant plan catalog (GET)
        plans/{tenant_id}/sync/         - Create missing Stripe prices (POST)
        subscribe/                      - Create checkout session (POST)
        subscription/{tenant_id}/{user_id}/ - Subscription of a member (GET)
        subscriptions/{tenant_id}/      - All member subscriptions of a tenant (GET)
        subscription/{id}/cancel/       - Cancel (POST)
        subscription/{id}/change/       - Change plan (POST)
    /api/v1/platform/                   - Platform (tenant -> platform) subscriptions
        plans/                          - Platform plan catalog (GET)
        subscribe/                      - Create checkout session (POST)
        subscription/{tenant_id}/       - Current platform subscription (GET)
        subscription/{id}/change/       - Change plan (POST)
        subscription/{id}/cancel/       - Cancel (POST)
    /api/v1/revenue/                    - Revenue analytics and split policy
        {tenant_id}/                    - Revenue for a period (GET)
        split/                          - Set revenue split (POST)
        split/{tenant_id}/              - Active revenue split (GET)
    /api/v1/webhooks/payments/          - Processor webhook endpoint (POST)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include("billing.urls")),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Community Billing Admin"
admin.site.site_title = "Billing Admin Portal"
admin.site.index_title = "Accounts, subscriptions and webhook events"
