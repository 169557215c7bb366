"""
Communities app configuration.
"""

from django.apps import AppConfig


class CommunitiesConfig(AppConfig):
    """Configuration for the communities application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "communities"
    verbose_name = "Communities"
