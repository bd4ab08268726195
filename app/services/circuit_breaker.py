from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Literal

log = logging.getLogger(__name__)

BreakerState = Literal["closed", "open", "half-open"]


@dataclass(frozen=True)
class Admission:
    allowed: bool
    reason: str | None = None
    # True when this admission holds the half-open trial slot
    trial: bool = False


@dataclass(frozen=True)
class BreakerSnapshot:
    state: BreakerState
    failures: int
    last_failure_at: float | None
    open_until: float | None


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker for one outbound dependency.

    closed    -> open       after `failure_threshold` recorded failures
    open      -> half-open  lazily, on the first allow() after the cooldown
    half-open -> closed     on a recorded success
    half-open -> open       on a recorded failure

    allow() is called once per logical call. While half-open only
    `half_open_max_calls` trial calls are admitted at a time; each one must end
    with record_success(), record_failure() or release(). A trial slot that is
    never given back expires after `reset_timeout_seconds`.

    State lives in memory and resets with the process.
    """

    def __init__(
        self,
        *,
        name: str = "doordash",
        failure_threshold: int = 5,
        reset_timeout_seconds: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock
        self._lock = threading.Lock()

        self._state: BreakerState = "closed"
        self._failures = 0
        self._last_failure_at: float | None = None
        self._open_until: float | None = None
        self._trials_in_flight = 0
        self._trial_started_at: float | None = None

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def allow(self) -> Admission:
        with self._lock:
            now = self._clock()

            if self._state == "open":
                if self._open_until is not None and now < self._open_until:
                    remaining = math.ceil(self._open_until - now)
                    return Admission(False, f"Circuit breaker open. Retry after {remaining}s")
                self._state = "half-open"
                self._failures = 0
                self._trials_in_flight = 0
                log.info("circuit %s: half-open, allowing a trial request", self.name)

            if self._state == "half-open":
                if self._trials_in_flight >= self.half_open_max_calls:
                    started = self._trial_started_at
                    if started is None or now - started < self.reset_timeout_seconds:
                        return Admission(False, "Circuit breaker half-open. Trial request in progress")
                    log.warning("circuit %s: trial request never reported back, admitting another", self.name)
                    self._trials_in_flight = 0
                self._trials_in_flight += 1
                self._trial_started_at = now
                return Admission(True, trial=True)

            return Admission(True)

    def rejection(self) -> str | None:
        """Reason a call in progress should stop now, or None while the circuit is not open."""
        with self._lock:
            now = self._clock()
            if self._state == "open" and self._open_until is not None and now < self._open_until:
                return f"Circuit breaker open. Retry after {math.ceil(self._open_until - now)}s"
            return None

    def release(self, admission: Admission) -> None:
        """Give back a half-open trial slot when the call ended without an outcome."""
        if not admission.trial:
            return
        with self._lock:
            if self._state == "half-open" and self._trials_in_flight > 0:
                self._trials_in_flight -= 1

    def record_success(self) -> None:
        with self._lock:
            if self._state == "half-open":
                log.info("circuit %s: closed (recovered)", self.name)
            self._state = "closed"
            self._failures = 0
            self._open_until = None
            self._trials_in_flight = 0

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._failures += 1
            self._last_failure_at = now

            if self._state == "half-open" or self._failures >= self.failure_threshold:
                self._state = "open"
                self._open_until = now + self.reset_timeout_seconds
                self._trials_in_flight = 0
                log.warning(
                    "circuit %s: open for %ss after %d failures",
                    self.name, self.reset_timeout_seconds, self._failures,
                )

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            return BreakerSnapshot(
                state=self._state,
                failures=self._failures,
                last_failure_at=self._last_failure_at,
                open_until=self._open_until,
            )
