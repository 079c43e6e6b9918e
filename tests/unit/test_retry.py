"""
Unit tests for the retry wrapper

Tests backoff timing, the retryable-status allow-list and exhaustion
"""
import warnings

import pytest

from finsync.utils.errors import ApiError, AuthExpiredError, RetryExhaustedError
from finsync.utils.retry import RetryPolicy, with_retry


class FlakyCall:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(seconds):
        sleeps.append(seconds)

    return sleep


@pytest.mark.unit
class TestWithRetry:
    """Test suite for with_retry"""

    async def test_returns_first_success_without_sleeping(self, fake_sleep, sleeps):
        """
        Given: A call that succeeds immediately
        When: with_retry() runs it
        Then: The result is returned after one attempt
        """
        call = FlakyCall()

        result = await with_retry(call, RetryPolicy(), sleep=fake_sleep)

        assert result == "ok"
        assert call.calls == 1
        assert sleeps == []

    async def test_server_error_retried_with_increasing_delay(self, fake_sleep, sleeps):
        """
        Given: A call failing with 500 on every attempt
        When: with_retry() runs it with 3 attempts and no jitter
        Then: It sleeps 1s then 2s and raises RetryExhaustedError wrapping the 500
        """
        # Arrange
        error = ApiError("boom", status_code=500)
        call = FlakyCall(error, error, error)
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0, jitter_max=0)

        # Act
        with pytest.raises(RetryExhaustedError) as exc_info:
            await with_retry(call, policy, sleep=fake_sleep)

        # Assert
        assert call.calls == 3
        assert sleeps == [1.0, 2.0]
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is error
        assert exc_info.value.status_code == 500

    async def test_not_found_fails_fast(self, fake_sleep, sleeps):
        """
        Given: A call failing with 404 (not in the allow-list)
        When: with_retry() runs it
        Then: The original error is raised after one attempt with no delay
        """
        error = ApiError("missing", status_code=404)
        call = FlakyCall(error)

        with pytest.raises(ApiError) as exc_info:
            await with_retry(call, RetryPolicy(max_attempts=5), sleep=fake_sleep)

        assert exc_info.value is error
        assert call.calls == 1
        assert sleeps == []

    async def test_recovers_after_transient_failures(self, fake_sleep, sleeps):
        """
        Given: A call failing with 429 then 503, then succeeding
        When: with_retry() runs it
        Then: The eventual result is returned
        """
        call = FlakyCall(ApiError("slow down", 429), ApiError("unavailable", 503), result=42)

        result = await with_retry(call, RetryPolicy(max_attempts=3, jitter_max=0), sleep=fake_sleep)

        assert result == 42
        assert call.calls == 3
        assert len(sleeps) == 2

    async def test_errors_without_status_are_retried(self, fake_sleep):
        """
        Given: A call raising a connection error (no status code)
        When: with_retry() runs it
        Then: It is retried like a transient failure
        """
        call = FlakyCall(ConnectionError("reset"), result="done")

        assert await with_retry(call, RetryPolicy(jitter_max=0), sleep=fake_sleep) == "done"
        assert call.calls == 2

    async def test_delay_capped_at_max(self, fake_sleep, sleeps):
        """
        Given: A large base delay and a low ceiling
        When: Every attempt fails
        Then: No sleep exceeds max_delay
        """
        error = ApiError("boom", 502)
        call = FlakyCall(*[error] * 4)
        policy = RetryPolicy(max_attempts=4, base_delay=5.0, max_delay=8.0, jitter_max=1.0)

        with pytest.raises(RetryExhaustedError):
            await with_retry(call, policy, sleep=fake_sleep)

        assert len(sleeps) == 3
        assert all(delay <= 8.0 for delay in sleeps)
        assert 5.0 <= sleeps[0] <= 6.0

    async def test_fractional_base_delay_scales_backoff_without_warnings(self, fake_sleep, sleeps):
        """
        Given: A half-second base delay and no jitter
        When: Every attempt fails
        Then: Delays double from the base and no DeprecationWarning is emitted
        """
        error = ApiError("boom", 503)
        policy = RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=10.0, jitter_max=0)

        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            with pytest.raises(RetryExhaustedError):
                await with_retry(FlakyCall(error, error, error), policy, sleep=fake_sleep)

        assert sleeps == [0.5, 1.0]

    async def test_no_allow_list_retries_everything(self, fake_sleep):
        """
        Given: retryable_statuses=None
        When: A call fails with 404 then succeeds
        Then: The 404 is retried
        """
        call = FlakyCall(ApiError("missing", 404))
        policy = RetryPolicy(retryable_statuses=None, jitter_max=0)

        assert await with_retry(call, policy, sleep=fake_sleep) == "ok"
        assert call.calls == 2

    async def test_auth_expired_never_retried(self, fake_sleep, sleeps):
        """
        Given: A call raising AuthExpiredError
        When: with_retry() runs it, even with no allow-list
        Then: The error propagates unchanged after one attempt
        """
        call = FlakyCall(AuthExpiredError())

        with pytest.raises(AuthExpiredError):
            await with_retry(call, RetryPolicy(retryable_statuses=None), sleep=fake_sleep)

        assert call.calls == 1
        assert sleeps == []

    async def test_single_attempt_wraps_failure(self, fake_sleep):
        """
        Given: max_attempts=1
        When: The only attempt fails with a retryable status
        Then: RetryExhaustedError reports one attempt
        """
        with pytest.raises(RetryExhaustedError) as exc_info:
            await with_retry(FlakyCall(ApiError("boom", 500)), RetryPolicy(max_attempts=1), sleep=fake_sleep)

        assert exc_info.value.attempts == 1

    def test_policy_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_policy_from_config(self):
        """
        Given: RetryConfig defaults
        When: RetryPolicy.from_config() is called
        Then: The documented defaults are used
        """
        from finsync.config.settings import RetryConfig

        policy = RetryPolicy.from_config(RetryConfig())

        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.max_delay == 10.0
        assert policy.retryable_statuses == (408, 429, 500, 502, 503, 504)
