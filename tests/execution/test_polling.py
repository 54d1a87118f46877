"""Tests for the Poller state machine, ManualClock and Deadline."""

import pytest

from unity_builder.core.errors import TerminalRemoteError, TransientRemoteError
from unity_builder.execution.polling import Deadline, ManualClock, Poller, PollState


def sequence(*values):
    it = iter(values)

    def probe():
        value = next(it)
        if isinstance(value, Exception):
            raise value
        return value

    return probe


class TestManualClock:
    def test_sleep_advances_and_records(self):
        clock = ManualClock()
        clock.sleep(5)
        clock.sleep(2.5)
        assert clock.monotonic() == 7.5
        assert clock.slept == [5, 2.5]

    def test_advance_is_not_recorded(self):
        clock = ManualClock()
        clock.advance(3)
        assert clock.monotonic() == 3
        assert clock.slept == []


class TestDeadline:
    def test_remaining_and_expired(self):
        clock = ManualClock()
        deadline = Deadline.after(10, clock)
        assert deadline.remaining() == 10
        clock.advance(10)
        assert deadline.expired()


class TestPoller:
    def test_satisfied_on_third_probe(self, clock):
        poller = Poller(interval=10, max_attempts=30, clock=clock)
        outcome = poller.run(sequence("pending", "pending", "running"), lambda s: s == "running")
        assert outcome.state is PollState.SATISFIED
        assert outcome.value == "running"
        assert outcome.attempts == 3
        assert clock.slept == [10, 10]

    def test_satisfied_on_first_probe_never_sleeps(self, clock):
        outcome = Poller(interval=10, max_attempts=30, clock=clock).run(lambda: "running", lambda s: s == "running")
        assert outcome.satisfied
        assert clock.slept == []

    def test_exhausted_after_max_attempts(self, clock):
        outcome = Poller(interval=10, max_attempts=30, clock=clock).run(lambda: "pending", lambda s: s == "running")
        assert outcome.state is PollState.EXHAUSTED
        assert outcome.attempts == 30
        # no sleep after the final attempt
        assert len(clock.slept) == 29
        assert outcome.elapsed == 290

    def test_transient_errors_count_as_attempts(self, clock):
        probe = sequence(TransientRemoteError("blip"), TransientRemoteError("blip"), "done")
        outcome = Poller(interval=5, max_attempts=5, clock=clock).run(probe, lambda v: v == "done")
        assert outcome.satisfied
        assert outcome.attempts == 3

    def test_transient_until_exhausted_keeps_last_error(self, clock):
        outcome = Poller(interval=1, max_attempts=2, clock=clock).run(
            sequence(TransientRemoteError("first"), TransientRemoteError("second")), lambda v: True
        )
        assert outcome.state is PollState.EXHAUSTED
        assert outcome.value is None
        assert outcome.last_error == "second"

    def test_other_errors_propagate(self, clock):
        with pytest.raises(TerminalRemoteError):
            Poller(interval=1, max_attempts=5, clock=clock).run(
                sequence(TerminalRemoteError("fatal")), lambda v: True
            )

    def test_deadline_stops_before_ceiling(self, clock):
        deadline = Deadline.after(25, clock)
        outcome = Poller(interval=10, max_attempts=30, clock=clock, deadline=deadline).run(
            lambda: "pending", lambda s: s == "running"
        )
        assert outcome.state is PollState.DEADLINE
        assert outcome.attempts == 3
        # last sleep shortened to what was left of the deadline
        assert clock.slept == [10, 10, 5]

    def test_expired_deadline_probes_nothing(self, clock):
        deadline = Deadline.after(0, clock)
        calls = []
        outcome = Poller(interval=10, max_attempts=30, clock=clock, deadline=deadline).run(
            lambda: calls.append(1), lambda v: True
        )
        assert outcome.state is PollState.DEADLINE
        assert calls == []
