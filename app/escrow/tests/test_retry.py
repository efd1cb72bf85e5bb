"""
Tests for retry policies.

Tests cover:
- Exponential backoff and attempt limits
- The transfer policy schedule (1h, 2h, 4h, then manual)
- Inline execution used by the charge fallback
"""

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from escrow.retry import CHARGE_FALLBACK_POLICY, RetryPolicy, transfer_retry_policy


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=dt_timezone.utc)


class TestRetryPolicy:
    def test_delay_doubles(self):
        policy = RetryPolicy(max_attempts=5, base_delay=timedelta(minutes=10))

        assert policy.delay_for(1) == timedelta(minutes=10)
        assert policy.delay_for(2) == timedelta(minutes=20)
        assert policy.delay_for(3) == timedelta(minutes=40)

    def test_can_retry_counts_first_attempt(self):
        policy = RetryPolicy(max_attempts=3)

        assert policy.can_retry(1)
        assert policy.can_retry(2)
        assert not policy.can_retry(3)

    def test_schedule_returns_none_when_exhausted(self):
        policy = RetryPolicy(max_attempts=2, base_delay=timedelta(hours=1))

        assert policy.schedule(1, now=NOW) == NOW + timedelta(hours=1)
        assert policy.schedule(2, now=NOW) is None

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=2).delay_for(0)


class TestTransferRetryPolicy:
    """Failed transfers are retried after 1h, 2h and 4h, then left for an operator."""

    def test_backoff_schedule(self, settings):
        settings.ESCROW_TRANSFER_MAX_ATTEMPTS = 3
        policy = transfer_retry_policy()

        assert policy.schedule(1, now=NOW) == NOW + timedelta(hours=1)
        assert policy.schedule(2, now=NOW) == NOW + timedelta(hours=2)
        assert policy.schedule(3, now=NOW) == NOW + timedelta(hours=4)
        assert policy.schedule(4, now=NOW) is None

    def test_max_attempts_from_settings(self, settings):
        settings.ESCROW_TRANSFER_MAX_ATTEMPTS = 1
        policy = transfer_retry_policy()

        assert policy.schedule(1, now=NOW) == NOW + timedelta(hours=1)
        assert policy.schedule(2, now=NOW) is None


class TestExecute:
    def test_returns_first_success(self):
        calls = []

        def operation(attempt):
            calls.append(attempt)
            return "ok"

        assert CHARGE_FALLBACK_POLICY.execute(operation, retry_on=(KeyError,)) == "ok"
        assert calls == [1]

    def test_retries_once_then_succeeds(self):
        def operation(attempt):
            if attempt == 1:
                raise KeyError("wallet")
            return attempt

        assert CHARGE_FALLBACK_POLICY.execute(operation, retry_on=(KeyError,)) == 2

    def test_reraises_after_last_attempt(self):
        calls = []

        def operation(attempt):
            calls.append(attempt)
            raise KeyError("wallet")

        with pytest.raises(KeyError):
            CHARGE_FALLBACK_POLICY.execute(operation, retry_on=(KeyError,))
        assert calls == [1, 2]

    def test_other_errors_not_retried(self):
        calls = []

        def operation(attempt):
            calls.append(attempt)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            CHARGE_FALLBACK_POLICY.execute(operation, retry_on=(KeyError,))
        assert calls == [1]

    def test_delayed_policy_cannot_run_inline(self):
        policy = RetryPolicy(max_attempts=3, base_delay=timedelta(seconds=1))

        with pytest.raises(ValueError):
            policy.execute(lambda attempt: None, retry_on=(KeyError,))
