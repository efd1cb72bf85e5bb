"""
Root pytest configuration for the settlement service.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django
import pytest

# Defaults so the suite runs without a .env file (SQLite, no Redis)
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DEBUG", "False")
os.environ.setdefault("DATABASE_URL", "sqlite:///escrow-test.sqlite3")
os.environ.setdefault("GATEWAY_API_KEY", "test-gateway-key")
os.environ.setdefault("GATEWAY_WEBHOOK_TOKEN", "test-webhook-token")
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")


def pytest_configure(config):
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # In-process cache instead of Redis; release locks are mocked per test
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    }
    settings.SESSION_ENGINE = "django.contrib.sessions.backends.db"

    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]
    settings.STORAGES["staticfiles"] = {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    }


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full settlement journeys)
    - test_views.py, test_*_service.py, test_tasks.py, ... → integration
    - test_models.py, test_fees.py, test_adapters.py, ... → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_webhook_views.py",
        "test_charge_service.py",
        "test_sync_service.py",
        "test_release_service.py",
        "test_retry_service.py",
        "test_delivery_service.py",
        "test_destination_service.py",
        "test_sync_worker.py",
        "test_transfer_worker.py",
        "test_sinks.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_fees.py",
        "test_retry.py",
        "test_cache.py",
        "test_destinations.py",
        "test_adapters.py",
        "test_state_transitions.py",
        "test_locks.py",
        "test_services.py",
        "test_exceptions.py",
    ]

    for item in items:
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
