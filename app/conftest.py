"""
Project-wide pytest configuration for the Django apps.

This module tunes settings for tests and auto-marks tests by filename.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import django
import pytest


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (webhook-to-ledger journeys)
    - test_views.py, test_webhooks.py, test_tasks.py, etc. → integration
    - test_models.py, test_events.py, test_locks.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_webhooks.py",
        "test_handlers.py",
        "test_ingestion.py",
        "test_account_registry.py",
        "test_subscription_ledger.py",
        "test_transaction_ledger.py",
        "test_api.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_events.py",
        "test_stripe_adapter.py",
        "test_locks.py",
        "test_revenue_split.py",
        "test_services.py",
        "test_state_machines.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
