"""Tests for the shared retry policy."""

from __future__ import annotations

import random
from unittest.mock import AsyncMock

import pytest

from tgingest.errors import AuthorizationError, ChannelNotFoundError, StatusCodeError
from tgingest.retry import (
    RetryPolicy,
    exponential_backoff,
    linear_backoff,
    protocol_policy,
    retry_except,
    retry_on,
    scraping_policy,
)


# ---------------------------------------------------------------------------
# Delay functions
# ---------------------------------------------------------------------------


class TestBackoff:
    def test_linear_backoff_grows_by_base(self) -> None:
        delay = linear_backoff(1.0)
        assert [delay(a) for a in range(3)] == [1.0, 2.0, 3.0]

    def test_exponential_backoff_without_jitter(self) -> None:
        delay = exponential_backoff(1.0, jitter=0.0)
        assert [delay(a) for a in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_exponential_backoff_jitter_is_bounded(self) -> None:
        delay = exponential_backoff(1.0, jitter=0.25, rng=random.Random(7))
        for attempt in range(4):
            base = 2 ** attempt
            for _ in range(20):
                value = delay(attempt)
                assert base <= value <= base * 1.25


class TestRetryPolicyConstruction:
    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(0, linear_backoff())

    def test_max_retries(self) -> None:
        assert RetryPolicy(4, linear_backoff()).max_retries == 3


class TestPredicates:
    def test_retry_on_matches_subclasses(self) -> None:
        predicate = retry_on(OSError)
        assert predicate(ConnectionError()) is True
        assert predicate(ValueError()) is False

    def test_retry_except_rejects_listed_types(self) -> None:
        predicate = retry_except(AuthorizationError)
        assert predicate(AuthorizationError("s.session")) is False
        assert predicate(RuntimeError()) is True


# ---------------------------------------------------------------------------
# RetryPolicy.call
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestRetryPolicy:
    async def test_returns_first_success(self, no_sleep) -> None:
        operation = AsyncMock(return_value="ok")
        policy = RetryPolicy(3, linear_backoff(), sleep=no_sleep)

        assert await policy.call(operation, "a", key="b") == "ok"
        operation.assert_awaited_once_with("a", key="b")
        no_sleep.assert_not_awaited()

    async def test_retries_until_success(self, no_sleep) -> None:
        operation = AsyncMock(side_effect=[ConnectionError("x"), ConnectionError("y"), "ok"])
        policy = RetryPolicy(3, linear_backoff(1.0), sleep=no_sleep)

        assert await policy.call(operation) == "ok"
        assert operation.await_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

    async def test_exhaustion_makes_exactly_max_retries_plus_one_attempts(self, no_sleep) -> None:
        operation = AsyncMock(side_effect=ConnectionError("down"))
        policy = RetryPolicy(4, linear_backoff(), sleep=no_sleep)

        with pytest.raises(ConnectionError, match="down"):
            await policy.call(operation)

        assert operation.await_count == policy.max_retries + 1 == 4
        assert no_sleep.await_count == 3

    async def test_last_error_is_reraised_unchanged(self, no_sleep) -> None:
        errors = [StatusCodeError(500), StatusCodeError(502), StatusCodeError(503)]
        operation = AsyncMock(side_effect=errors)
        policy = RetryPolicy(3, linear_backoff(), sleep=no_sleep)

        with pytest.raises(StatusCodeError) as exc_info:
            await policy.call(operation)
        assert exc_info.value is errors[-1]

    async def test_non_retryable_error_propagates_immediately(self, no_sleep) -> None:
        operation = AsyncMock(side_effect=ValueError("bad"))
        policy = RetryPolicy(3, linear_backoff(), retryable=retry_on(ConnectionError), sleep=no_sleep)

        with pytest.raises(ValueError):
            await policy.call(operation)
        assert operation.await_count == 1
        no_sleep.assert_not_awaited()

    async def test_with_sleep_keeps_settings(self, no_sleep) -> None:
        policy = RetryPolicy(2, linear_backoff(), name="x").with_sleep(no_sleep)
        operation = AsyncMock(side_effect=[ConnectionError(), "ok"])

        assert await policy.call(operation) == "ok"
        assert policy.max_attempts == 2
        assert policy.name == "x"
        no_sleep.assert_awaited_once()


# ---------------------------------------------------------------------------
# Preset policies
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestPresetPolicies:
    async def test_scraping_policy_three_attempts_linear(self, no_sleep) -> None:
        policy = scraping_policy((StatusCodeError,), sleep=no_sleep)
        operation = AsyncMock(side_effect=StatusCodeError(503))

        with pytest.raises(StatusCodeError):
            await policy.call(operation)

        assert operation.await_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

    async def test_scraping_policy_does_not_retry_other_errors(self, no_sleep) -> None:
        policy = scraping_policy((StatusCodeError,), sleep=no_sleep)
        operation = AsyncMock(side_effect=RuntimeError())

        with pytest.raises(RuntimeError):
            await policy.call(operation)
        assert operation.await_count == 1

    async def test_protocol_policy_four_attempts(self, no_sleep) -> None:
        policy = protocol_policy((AuthorizationError,), sleep=no_sleep, rng=random.Random(1))
        operation = AsyncMock(side_effect=ConnectionError())

        with pytest.raises(ConnectionError):
            await policy.call(operation)

        assert operation.await_count == 4
        delays = [c.args[0] for c in no_sleep.await_args_list]
        assert len(delays) == 3
        for attempt, value in enumerate(delays):
            assert 2 ** attempt <= value <= 2 ** attempt * 1.25

    async def test_protocol_policy_fatal_errors_are_not_retried(self, no_sleep) -> None:
        policy = protocol_policy((AuthorizationError, ChannelNotFoundError), sleep=no_sleep)
        operation = AsyncMock(side_effect=ChannelNotFoundError("nope"))

        with pytest.raises(ChannelNotFoundError):
            await policy.call(operation)
        assert operation.await_count == 1
