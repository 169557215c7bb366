"""
Root pytest configuration for the Django project.

Test defaults for the environment are applied here, before Django loads
settings. App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django

# Settings read these at import time; real values from the environment win
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_billing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_billing")
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "True")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
