"""
Tests for the escrow admin.

Tests cover:
- Splitting open release errors into the automatic and the manual queue
"""

from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone

from escrow.state_machines import ReleaseErrorType
from escrow.tests.factories import EscrowReleaseErrorFactory


CHANGELIST = "admin:escrow_escrowreleaseerror_changelist"


@pytest.fixture
def release_errors(db):
    return {
        "due": EscrowReleaseErrorFactory(next_retry_at=timezone.now() - timedelta(minutes=1)),
        "later": EscrowReleaseErrorFactory(next_retry_at=timezone.now() + timedelta(hours=1)),
        "manual": EscrowReleaseErrorFactory(
            error_type=ReleaseErrorType.MISSING_BANK_DATA, next_retry_at=None
        ),
        "resolved": EscrowReleaseErrorFactory(next_retry_at=None, resolved_at=timezone.now()),
    }


@pytest.mark.django_db
class TestRetryQueueFilter:
    def listed(self, admin_client, queue=None):
        params = {"queue": queue} if queue else {}
        response = admin_client.get(reverse(CHANGELIST), params)
        assert response.status_code == 200
        return set(response.context["cl"].queryset)

    def test_manual_queue(self, admin_client, release_errors):
        assert self.listed(admin_client, "manual") == {release_errors["manual"]}

    def test_due_for_retry(self, admin_client, release_errors):
        assert self.listed(admin_client, "due") == {release_errors["due"]}

    def test_unfiltered_lists_everything(self, admin_client, release_errors):
        assert self.listed(admin_client) == set(release_errors.values())

    def test_manual_column(self, admin_client, release_errors):
        response = admin_client.get(reverse(CHANGELIST))

        assert b"column-manual_display" in response.content
