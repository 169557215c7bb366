"""
Django admin configuration for communities.
"""

from django.contrib import admin

from communities.models import Community


@admin.register(Community)
class CommunityAdmin(admin.ModelAdmin):
    """Admin for Community tenants."""

    list_display = [
        "name",
        "slug",
        "owner_email",
        "stripe_account_id",
        "stripe_onboarding_completed",
        "created_at",
    ]
    list_filter = ["stripe_onboarding_completed"]
    search_fields = ["name", "slug", "owner_email", "stripe_account_id"]
    readonly_fields = [
        "id",
        "stripe_account_id",
        "stripe_onboarding_url",
        "stripe_onboarding_completed",
        "created_at",
        "updated_at",
    ]
