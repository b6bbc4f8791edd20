"""Tests for the bounded exponential-backoff retry policy."""

from unittest.mock import MagicMock

import pytest

from arca_indexer.notifications.channels import DeliveryError
from arca_indexer.notifications.retry_policy import RetryPolicy


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    return RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleeps.append)


class TestRetryPolicy:
    """Test suite for RetryPolicy."""

    def test_delay_doubles_each_retry(self, policy):
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_success_on_first_attempt(self, policy, sleeps):
        action = MagicMock()
        assert policy.execute(action) is True
        assert action.call_count == 1
        assert sleeps == []

    def test_success_after_one_failure(self, policy, sleeps):
        action = MagicMock(side_effect=[DeliveryError("temporary"), None])
        assert policy.execute(action) is True
        assert action.call_count == 2
        assert sleeps == [1.0]

    def test_exhaustion(self, policy, sleeps, caplog):
        """An always-failing action is tried max_attempts times and then given up."""
        action = MagicMock(side_effect=DeliveryError("down"))
        result = policy.execute(action, description="webhook:x")

        assert result is False
        assert action.call_count == 3
        assert sleeps == [1.0, 2.0]
        assert "All 3 delivery attempts exhausted for webhook:x" in caplog.text

    def test_any_exception_is_retried(self, policy):
        action = MagicMock(side_effect=[ValueError("bad"), KeyError("k"), None])
        assert policy.execute(action) is True
        assert action.call_count == 3

    def test_single_attempt_never_sleeps(self, sleeps):
        policy = RetryPolicy(max_attempts=1, base_delay=5.0, sleep=sleeps.append)
        assert policy.execute(MagicMock(side_effect=DeliveryError("down"))) is False
        assert sleeps == []

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)
