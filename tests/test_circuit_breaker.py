"""Circuit breaker state machine tests."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from linkresolver.circuit_breaker import CircuitBreaker
from linkresolver.enums import CallOutcome, CircuitState


async def _fail() -> None:
    raise ConnectionError("store unreachable")


async def _trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        await breaker.call(_fail)


@pytest.mark.asyncio
async def test_success_returns_value(breaker: CircuitBreaker) -> None:
    result = await breaker.call(AsyncMock(return_value="https://example.com"))

    assert result.value == "https://example.com"
    assert result.outcome is CallOutcome.SUCCESS
    assert result.succeeded
    assert breaker.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failure_is_recorded_not_raised(breaker: CircuitBreaker, clock) -> None:
    result = await breaker.call(_fail)

    assert result.value is None
    assert result.outcome is CallOutcome.FAILURE
    assert breaker.failure_count == 1
    assert breaker.last_failure_at == clock.now
    assert breaker.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_timeout_is_reported_as_timeout(breaker: CircuitBreaker) -> None:
    result = await breaker.call(AsyncMock(side_effect=TimeoutError()))

    assert result.outcome is CallOutcome.TIMEOUT
    assert breaker.failure_count == 1


@pytest.mark.asyncio
async def test_opens_at_threshold(breaker: CircuitBreaker) -> None:
    await breaker.call(_fail)
    await breaker.call(_fail)
    assert breaker.state is CircuitState.CLOSED

    await breaker.call(_fail)
    assert breaker.state is CircuitState.OPEN
    assert breaker.failure_count == 3


@pytest.mark.asyncio
async def test_open_breaker_does_not_invoke_operation(breaker: CircuitBreaker) -> None:
    await _trip(breaker)
    operation = AsyncMock(return_value="value")

    result = await breaker.call(operation)

    assert result.outcome is CallOutcome.REJECTED
    assert result.value is None
    operation.assert_not_called()


@pytest.mark.asyncio
async def test_success_in_closed_resets_failure_count(breaker: CircuitBreaker) -> None:
    await breaker.call(_fail)
    await breaker.call(_fail)
    await breaker.call(AsyncMock(return_value=1))

    assert breaker.failure_count == 0
    await breaker.call(_fail)
    assert breaker.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_still_open_before_recovery_timeout(breaker: CircuitBreaker, clock) -> None:
    await _trip(breaker)
    clock.advance(29.9)

    result = await breaker.call(AsyncMock(return_value=1))

    assert result.outcome is CallOutcome.REJECTED
    assert breaker.state is CircuitState.OPEN


@pytest.mark.asyncio
async def test_half_open_trial_success_closes(breaker: CircuitBreaker, clock) -> None:
    await _trip(breaker)
    clock.advance(30)

    result = await breaker.call(AsyncMock(return_value="ok"))

    assert result.value == "ok"
    assert breaker.state is CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_half_open_trial_failure_reopens(breaker: CircuitBreaker, clock) -> None:
    await _trip(breaker)
    clock.advance(30)

    result = await breaker.call(_fail)

    assert result.outcome is CallOutcome.FAILURE
    assert breaker.state is CircuitState.OPEN
    assert breaker.last_failure_at == clock.now

    # The recovery window restarts from the failed trial.
    clock.advance(10)
    assert (await breaker.call(AsyncMock())).outcome is CallOutcome.REJECTED


@pytest.mark.asyncio
async def test_half_open_admits_single_trial(breaker: CircuitBreaker, clock) -> None:
    await _trip(breaker)
    clock.advance(30)

    release = asyncio.Event()

    async def slow_trial() -> str:
        await release.wait()
        return "ok"

    trial = asyncio.create_task(breaker.call(slow_trial))
    await asyncio.sleep(0)
    assert breaker.state is CircuitState.HALF_OPEN

    concurrent = AsyncMock(return_value="other")
    rejected = await breaker.call(concurrent)
    assert rejected.outcome is CallOutcome.REJECTED
    concurrent.assert_not_called()

    release.set()
    assert (await trial).value == "ok"
    assert breaker.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_cancelled_trial_frees_slot(breaker: CircuitBreaker, clock) -> None:
    await _trip(breaker)
    clock.advance(30)

    trial = asyncio.create_task(breaker.call(lambda: asyncio.sleep(10)))
    await asyncio.sleep(0)
    trial.cancel()
    with pytest.raises(asyncio.CancelledError):
        await trial

    result = await breaker.call(AsyncMock(return_value="ok"))
    assert result.outcome is CallOutcome.SUCCESS
    assert breaker.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_late_success_does_not_close_open_breaker(breaker: CircuitBreaker) -> None:
    release = asyncio.Event()

    async def slow_success() -> str:
        await release.wait()
        return "late"

    slow = asyncio.create_task(breaker.call(slow_success))
    await asyncio.sleep(0)
    await _trip(breaker)
    assert breaker.state is CircuitState.OPEN

    release.set()
    result = await slow
    assert result.value == "late"
    assert breaker.state is CircuitState.OPEN
    assert breaker.failure_count == 3


@pytest.mark.asyncio
async def test_reset_closes_breaker(breaker: CircuitBreaker) -> None:
    await _trip(breaker)

    await breaker.reset()

    snapshot = breaker.snapshot()
    assert snapshot.state is CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.last_failure_at is None


@pytest.mark.parametrize(
    "kwargs",
    [{"failure_threshold": 0}, {"recovery_timeout_seconds": -1}],
)
def test_rejects_invalid_configuration(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        CircuitBreaker("bad", **kwargs)
