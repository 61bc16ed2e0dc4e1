import pytest

from lexsync.exceptions import UpstreamRejectedError, UpstreamTransientError
from lexsync.utils.backoff import compute_backoff_seconds, exponential_delay, fixed_delay
from lexsync.utils.retry import retry_async


def test_backoff_growth_and_cap():
    first = compute_backoff_seconds(1, base=1, factor=2, max_seconds=10)
    second = compute_backoff_seconds(2, base=1, factor=2, max_seconds=10)
    third = compute_backoff_seconds(3, base=1, factor=2, max_seconds=10)
    assert first == 1
    assert second == 2
    assert third == 4
    capped = compute_backoff_seconds(10, base=1, factor=2, max_seconds=5)
    assert capped == 5


def test_delay_functions():
    assert [fixed_delay(2.0)(n) for n in (1, 2, 3)] == [2.0, 2.0, 2.0]
    assert [exponential_delay(base=1, factor=2, max_seconds=30)(n) for n in (1, 2, 3)] == [1, 2, 4]


def _flaky(failures: int, error_factory=lambda: UpstreamTransientError("zoho", "503", status=503)):
    state = {"calls": 0}

    async def operation():
        state["calls"] += 1
        if state["calls"] <= failures:
            raise error_factory()
        return "ok"

    return operation, state


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 2])
async def test_fewer_failures_than_budget_succeeds(throttle, sleeps, failures):
    operation, state = _flaky(failures)
    outcome = await retry_async(operation, max_attempts=3, delay=fixed_delay(2.0), throttle=throttle, label="submit")
    assert outcome.success
    assert outcome.value == "ok"
    assert outcome.attempts == failures + 1
    assert sleeps == [2.0] * failures


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [3, 4])
async def test_failures_at_or_over_budget_fail(throttle, sleeps, failures):
    operation, state = _flaky(failures)
    outcome = await retry_async(operation, max_attempts=3, delay=fixed_delay(2.0), throttle=throttle, label="submit")
    assert not outcome.success
    assert outcome.attempts == 3
    assert state["calls"] == 3
    # no wait after the last attempt
    assert sleeps == [2.0, 2.0]
    assert isinstance(outcome.error, UpstreamTransientError)


@pytest.mark.asyncio
async def test_non_retryable_error_stops_immediately(throttle, sleeps):
    operation, state = _flaky(5, lambda: UpstreamRejectedError("zoho", "INVALID_DATA", status=400))
    outcome = await retry_async(operation, max_attempts=3, delay=fixed_delay(2.0), throttle=throttle, label="submit")
    assert not outcome.success
    assert outcome.attempts == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_exponential_waits_between_attempts(throttle, sleeps):
    operation, _ = _flaky(3)
    outcome = await retry_async(
        operation,
        max_attempts=4,
        delay=exponential_delay(base=1.0, factor=2, max_seconds=30),
        throttle=throttle,
        label="write_back",
    )
    assert outcome.success
    assert sleeps == [1.0, 2.0, 4.0]
    assert throttle.snapshot()["by_reason"] == {"write_back": 3}
