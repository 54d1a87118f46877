"""
Bounded polling with an injected clock.

Every wait in the builder (instance state, command status) is the same loop:
probe, check, sleep a fixed interval, give up after N attempts or when the
invocation deadline passes. ``Poller`` models that loop as a small state
machine so both waits share one implementation and tests can drive it with a
``ManualClock`` instead of real sleeps.

Architecture:
    ::

                 ┌──────────┐  probe() satisfies   ┌───────────┐
        start ──►│ WAITING  │─────────────────────►│ SATISFIED │
                 └────┬─────┘                      └───────────┘
                      │ attempts == max_attempts   ┌───────────┐
                      ├───────────────────────────►│ EXHAUSTED │
                      │ deadline.expired()         ┌───────────┐
                      └───────────────────────────►│ DEADLINE  │
                                                   └───────────┘

        probe() raising TransientRemoteError counts as an unsatisfied attempt.
        Any other exception propagates out of run().

Example:
    >>> clock = ManualClock()
    >>> states = iter(["pending", "pending", "running"])
    >>> poller = Poller(interval=10, max_attempts=30, clock=clock)
    >>> outcome = poller.run(lambda: next(states), lambda s: s == "running")
    >>> outcome.state, outcome.attempts, clock.slept
    (<PollState.SATISFIED: 'satisfied'>, 3, [10, 10])

Tags:
    polling, state-machine, deadline, clock, testability
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Protocol, TypeVar

from unity_builder.core.errors import TransientRemoteError
from unity_builder.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock time."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


@dataclass
class ManualClock:
    """Clock whose ``sleep`` only advances a counter.

    Records every sleep so tests can assert on the polling cadence.
    """

    now: float = 0.0
    slept: list[float] = field(default_factory=list)

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.now += max(0.0, seconds)

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Deadline:
    """Absolute point in monotonic time after which an invocation must stop."""

    expires_at: float
    clock: Clock

    @classmethod
    def after(cls, seconds: float, clock: Clock | None = None) -> Deadline:
        clock = clock or SystemClock()
        return cls(expires_at=clock.monotonic() + seconds, clock=clock)

    def remaining(self) -> float:
        return self.expires_at - self.clock.monotonic()

    def expired(self) -> bool:
        return self.remaining() <= 0


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------


class PollState(str, Enum):
    WAITING = "waiting"
    SATISFIED = "satisfied"
    EXHAUSTED = "exhausted"
    DEADLINE = "deadline"


@dataclass
class PollOutcome(Generic[T]):
    """Final state of a polling run.

    ``value`` is the last successfully probed value (None if every probe was
    transient).
    """

    state: PollState
    value: T | None
    attempts: int
    elapsed: float
    last_error: str | None = None

    @property
    def satisfied(self) -> bool:
        return self.state is PollState.SATISFIED


@dataclass
class Poller:
    """Fixed-interval poller bounded by attempts and an optional deadline.

    Args:
        interval: Seconds between probes.
        max_attempts: Probes before giving up.
        clock: Time source; ``SystemClock`` in production.
        deadline: Overall invocation deadline, checked before every probe and
            used to shorten the final sleep.
        name: Label for log events.
    """

    interval: float
    max_attempts: int
    clock: Clock = field(default_factory=SystemClock)
    deadline: Deadline | None = None
    name: str = "poll"

    def run(self, probe: Callable[[], T], done: Callable[[T], bool]) -> PollOutcome[T]:
        started = self.clock.monotonic()
        value: T | None = None
        last_error: str | None = None
        attempts = 0

        def finish(state: PollState) -> PollOutcome[T]:
            elapsed = self.clock.monotonic() - started
            logger.debug(
                "poll_finished", poll=self.name, state=state.value,
                attempts=attempts, elapsed=round(elapsed, 3),
            )
            return PollOutcome(state, value, attempts, elapsed, last_error)

        while attempts < self.max_attempts:
            if self.deadline is not None and self.deadline.expired():
                return finish(PollState.DEADLINE)

            attempts += 1
            try:
                value = probe()
            except TransientRemoteError as exc:
                last_error = exc.message
                logger.debug("poll_probe_transient", poll=self.name, attempt=attempts, error=exc.message)
            else:
                if done(value):
                    return finish(PollState.SATISFIED)

            if attempts >= self.max_attempts:
                break

            delay = self.interval
            if self.deadline is not None:
                delay = min(delay, max(0.0, self.deadline.remaining()))
            self.clock.sleep(delay)

        return finish(PollState.EXHAUSTED)


__all__ = [
    "Clock",
    "SystemClock",
    "ManualClock",
    "Deadline",
    "PollState",
    "PollOutcome",
    "Poller",
]
