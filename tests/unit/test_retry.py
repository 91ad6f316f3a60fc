"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for the retry policy and deadline.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from resultsync.client import RemoteRejection, RemoteTransientError
from resultsync.core.config import SubmissionConfig
from resultsync.retry import (
    Deadline,
    OperationCancelledError,
    RetryPolicy,
    TimeoutExceededError,
    call_with_retry,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.unit
class TestRetryPolicy:
    def test_exponential_backoff(self):
        policy = RetryPolicy(delay=1.0, backoff_factor=2.0, max_delay=60.0, jitter=False)
        assert [policy.compute_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_is_capped(self):
        policy = RetryPolicy(delay=10.0, backoff_factor=10.0, max_delay=15.0, jitter=False)
        assert policy.compute_delay(3) == 15.0

    def test_retry_after_raises_delay(self):
        policy = RetryPolicy(delay=1.0, jitter=False, max_delay=60.0)
        assert policy.compute_delay(1, retry_after=7.0) == 7.0
        assert policy.compute_delay(1, retry_after=600.0) == 60.0

    @patch("resultsync.retry.random.random", return_value=1.0)
    def test_jitter_adds_up_to_a_quarter(self, _random):
        policy = RetryPolicy(delay=4.0, jitter=True)
        assert policy.compute_delay(1) == 5.0

    def test_from_config(self):
        policy = RetryPolicy.from_config(
            SubmissionConfig(retry_attempts=5, retry_delay=0.5, backoff_factor=3.0, timeout=90)
        )
        assert (policy.attempts, policy.delay, policy.backoff_factor, policy.max_delay) == (5, 0.5, 3.0, 90)

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0)


@pytest.mark.unit
class TestDeadline:
    def test_remaining_and_expiry(self):
        clock = FakeClock()
        deadline = Deadline(10.0, clock=clock)

        assert deadline.remaining() == 10.0
        clock.now += 4
        assert deadline.remaining() == 6.0
        clock.now += 6
        assert deadline.expired
        with pytest.raises(TimeoutExceededError):
            deadline.check()

    def test_unbounded(self):
        deadline = Deadline(None)
        assert deadline.remaining() is None
        deadline.check()

    def test_sleep_past_deadline_raises_timeout(self):
        deadline = Deadline(0.01)
        with pytest.raises(TimeoutExceededError):
            deadline.sleep(5)

    def test_cancel_interrupts_sleep(self):
        deadline = Deadline(30.0)
        timer = threading.Timer(0.05, deadline.cancel)
        timer.start()
        try:
            with pytest.raises(OperationCancelledError):
                deadline.sleep(10)
        finally:
            timer.cancel()

    def test_check_after_cancel(self):
        event = threading.Event()
        deadline = Deadline(30.0, cancel_event=event)
        event.set()

        assert deadline.cancelled
        with pytest.raises(OperationCancelledError):
            deadline.check()


@pytest.mark.unit
class TestCallWithRetry:
    @pytest.fixture
    def policy(self):
        return RetryPolicy(attempts=3, delay=0.0, jitter=False)

    def test_succeeds_after_transient_failures(self, policy):
        func = MagicMock(side_effect=[RemoteTransientError("503"), RemoteTransientError("503"), "ok"])

        assert call_with_retry(func, policy) == "ok"
        assert func.call_count == 3

    def test_gives_up_after_attempts(self, policy):
        func = MagicMock(side_effect=RemoteTransientError("503"))

        with pytest.raises(RemoteTransientError):
            call_with_retry(func, policy)
        assert func.call_count == 3

    def test_rejection_is_not_retried(self, policy):
        func = MagicMock(side_effect=RemoteRejection("400", status_code=400))

        with pytest.raises(RemoteRejection):
            call_with_retry(func, policy)
        assert func.call_count == 1

    def test_cancelled_deadline_stops_before_first_call(self, policy):
        deadline = Deadline(10.0)
        deadline.cancel()
        func = MagicMock()

        with pytest.raises(OperationCancelledError):
            call_with_retry(func, policy, deadline)
        func.assert_not_called()

    def test_retry_after_beyond_deadline_times_out(self):
        policy = RetryPolicy(attempts=5, delay=0.0, jitter=False, max_delay=100.0)
        func = MagicMock(side_effect=RemoteTransientError("429", retry_after=50.0))

        with pytest.raises(TimeoutExceededError):
            call_with_retry(func, policy, Deadline(0.05))
        assert func.call_count == 1

    def test_retries_log_to_module_logger_by_default(self, policy, caplog):
        func = MagicMock(side_effect=[RemoteTransientError("503"), "ok"])

        with caplog.at_level("WARNING", logger="resultsync.retry"):
            call_with_retry(func, policy, operation="submit batch")

        assert [r.name for r in caplog.records] == ["resultsync.retry"]
        assert "submit batch failed: 503" in caplog.text
