"""Circuit breaker guarding calls to the durable link store.

State Machine
=============
::
              failure_count >= threshold
    ┌────────┐ ─────────────────────────▶ ┌────────┐
    │ CLOSED │                            │  OPEN  │ ◀─┐
    └────────┘ ◀───────┐                  └───┬────┘   │
                       │ trial succeeds       │        │ trial fails
                       │                      │ recovery timeout elapsed
                       │                ┌─────▼─────┐  │
                       └─────────────── │ HALF_OPEN │ ─┘
                                        └───────────┘

How to Use
===========
::
    breaker = CircuitBreaker("link-store", failure_threshold=5, recovery_timeout_seconds=30)
    result = await breaker.call(lambda: store.fetch_active("abc123"))
    if result.value is None:
        ...  # not found, failed, timed out, or rejected; see result.outcome

Key Behaviours
===============
- The breaker never raises for a failing operation. The exception is recorded
  and the caller gets a ``CallResult`` with ``value=None``.
- While OPEN the operation is not invoked at all.
- In HALF_OPEN a single trial call runs at a time; other callers are rejected
  until the trial settles.
- State changes happen under an ``asyncio.Lock``. The operation itself runs
  outside the lock so slow calls never serialize the breaker.
- One breaker instance per dependency, owned by whoever wires the service.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from prometheus_client import Counter, Gauge

from linkresolver.enums import CallOutcome, CircuitState

__all__ = ["BreakerSnapshot", "CallResult", "CircuitBreaker"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

CIRCUIT_BREAKER_STATE = Gauge(
    "link_resolver_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["breaker"],
)
CIRCUIT_BREAKER_TRANSITIONS_TOTAL = Counter(
    "link_resolver_circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["breaker", "state"],
)
CIRCUIT_BREAKER_CALLS_TOTAL = Counter(
    "link_resolver_circuit_breaker_calls_total",
    "Calls routed through the circuit breaker, by outcome",
    ["breaker", "outcome"],
)

_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


@dataclass(frozen=True)
class CallResult(Generic[T]):
    """Result of a guarded call. ``value`` is ``None`` unless the call succeeded."""

    value: T | None
    outcome: CallOutcome

    @property
    def succeeded(self) -> bool:
        return self.outcome is CallOutcome.SUCCESS


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals for health checks and logs."""

    name: str
    state: CircuitState
    failure_count: int
    last_failure_at: float | None


class CircuitBreaker:
    """Async circuit breaker for a single downstream dependency."""

    def __init__(
        self,
        name: str = "link-store",
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if recovery_timeout_seconds < 0:
            raise ValueError("recovery_timeout_seconds must be non-negative")

        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_seconds = recovery_timeout_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: float | None = None
        self._trial_in_flight = False
        CIRCUIT_BREAKER_STATE.labels(breaker=name).set(_STATE_GAUGE_VALUES[self._state])

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_at(self) -> float | None:
        return self._last_failure_at

    def snapshot(self) -> BreakerSnapshot:
        return BreakerSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_at=self._last_failure_at,
        )

    async def call(self, operation: Callable[[], Awaitable[T]]) -> CallResult[T]:
        """Run ``operation`` unless the breaker is open.

        Args:
            operation: Zero-argument callable returning an awaitable.

        Returns:
            CallResult: the value on success, ``None`` plus the reason otherwise.
        """
        async with self._lock:
            if not self._admit():
                CIRCUIT_BREAKER_CALLS_TOTAL.labels(breaker=self.name, outcome=CallOutcome.REJECTED).inc()
                return CallResult(None, CallOutcome.REJECTED)
            trial = self._state is CircuitState.HALF_OPEN
            if trial:
                self._trial_in_flight = True

        try:
            value = await operation()
        except Exception as exc:
            outcome = CallOutcome.TIMEOUT if isinstance(exc, TimeoutError) else CallOutcome.FAILURE
            async with self._lock:
                self._record_failure(trial)
                failure_count = self._failure_count
            CIRCUIT_BREAKER_CALLS_TOTAL.labels(breaker=self.name, outcome=outcome).inc()
            logger.warning(
                f"{self.name} call failed ({outcome.value}): {exc!r}",
                extra={"breaker": self.name, "failure_count": failure_count},
            )
            return CallResult(None, outcome)
        except BaseException:
            # Cancellation must not leave the half-open trial slot taken.
            if trial:
                async with self._lock:
                    self._trial_in_flight = False
            raise

        async with self._lock:
            self._record_success(trial)
        CIRCUIT_BREAKER_CALLS_TOTAL.labels(breaker=self.name, outcome=CallOutcome.SUCCESS).inc()
        return CallResult(value, CallOutcome.SUCCESS)

    async def reset(self) -> None:
        """Force the breaker back to CLOSED with a clean failure count."""
        async with self._lock:
            self._failure_count = 0
            self._last_failure_at = None
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)

    # ========================================================================
    # STATE MACHINE (callers hold self._lock)
    # ========================================================================

    def _admit(self) -> bool:
        if self._state is CircuitState.OPEN:
            elapsed = self._clock() - (self._last_failure_at or 0.0)
            if elapsed < self.recovery_timeout_seconds:
                return False
            self._transition(CircuitState.HALF_OPEN)
        if self._state is CircuitState.HALF_OPEN and self._trial_in_flight:
            return False
        return True

    def _record_failure(self, trial: bool) -> None:
        if trial:
            self._trial_in_flight = False
        self._failure_count += 1
        self._last_failure_at = self._clock()
        if self._failure_count >= self.failure_threshold and self._state is not CircuitState.OPEN:
            self._transition(CircuitState.OPEN)

    def _record_success(self, trial: bool) -> None:
        if trial:
            self._trial_in_flight = False
        if self._state is CircuitState.OPEN:
            # Late success from a call admitted before the breaker opened.
            return
        self._failure_count = 0
        if self._state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.CLOSED)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is self._state:
            return
        old_state = self._state
        self._state = new_state
        CIRCUIT_BREAKER_STATE.labels(breaker=self.name).set(_STATE_GAUGE_VALUES[new_state])
        CIRCUIT_BREAKER_TRANSITIONS_TOTAL.labels(breaker=self.name, state=new_state).inc()
        log = logger.warning if new_state is CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker {self.name}: {old_state.value} -> {new_state.value}",
            extra={"breaker": self.name, "failure_count": self._failure_count},
        )
