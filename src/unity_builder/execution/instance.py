"""
Instance lifecycle controller.

Drives the persistent build instance to ``running`` before commands are sent
to it.

Architecture:
    ::

        ensure_running(instance)
          │
          ├── state == running   → ALREADY_RUNNING (no transition)
          │
          ├── state == stopping  → wait_until_stopped
          │                          └── not reached → FAILED (deadline)
          │
          ├── start_instances
          │     └── rejected → FAILED (terminal remote)
          ├── wait_until_running
          │     └── not reached → FAILED (deadline)
          └── grace delay        → READY

    Polls every 10 s, 30 attempts (5 minutes) by default.

The grace delay exists because "instance running" and "command channel
accepting commands" are separate signals and the backend never announces the
second one. Nothing here retries; a failed attempt is retried by the next
scheduled reconciliation.
"""

from __future__ import annotations

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from unity_builder.core.errors import (
    Failure,
    FailureKind,
    TransientRemoteError,
    describe_aws_error,
)
from unity_builder.core.logging import get_logger
from unity_builder.execution.models import (
    EnsureOutcome,
    EnsureStatus,
    InstanceState,
    WaitOutcome,
    deadline_failure,
)
from unity_builder.execution.polling import Clock, Deadline, Poller, PollState, SystemClock

logger = get_logger(__name__)


class InstanceLifecycleController:
    """Start/stop state machine over one EC2 instance.

    Args:
        ec2_client: boto3 EC2 client.
        clock: Time source for polling and the grace delay.
        poll_interval: Seconds between state probes.
        max_attempts: Probes per wait.
        grace_seconds: Delay after reaching ``running`` before the instance
            is reported ready for commands.
    """

    def __init__(
        self,
        ec2_client: Any,
        *,
        clock: Clock | None = None,
        poll_interval: float = 10.0,
        max_attempts: int = 30,
        grace_seconds: float = 60.0,
    ):
        self._ec2 = ec2_client
        self._clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.grace_seconds = grace_seconds

    def describe_state(self, instance_id: str) -> InstanceState:
        """Read the instance state from the backend. Never cached."""
        response = self._ec2.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return InstanceState.parse((instance.get("State") or {}).get("Name"))
        return InstanceState.OTHER

    def _probe_state(self, instance_id: str) -> InstanceState:
        # lookup errors mid-wait are blips; the attempt ceiling bounds them
        try:
            return self.describe_state(instance_id)
        except (BotoCoreError, ClientError) as exc:
            raise TransientRemoteError(
                f"Instance state lookup failed for {instance_id}",
                diagnostics=describe_aws_error(exc),
                cause=exc,
            ) from exc

    def _wait_for(
        self,
        instance_id: str,
        target: InstanceState,
        deadline: Deadline | None,
    ) -> WaitOutcome:
        poller = Poller(
            interval=self.poll_interval,
            max_attempts=self.max_attempts,
            clock=self._clock,
            deadline=deadline,
            name=f"instance_{target.value}",
        )
        outcome = poller.run(lambda: self._probe_state(instance_id), lambda s: s is target)
        if outcome.satisfied:
            logger.info("instance_state_reached", instance_id=instance_id, state=target.value, attempts=outcome.attempts)
            return WaitOutcome(True, target, outcome.value, outcome.attempts)

        what = f"instance {instance_id} to reach {target.value}"
        failure = deadline_failure(what, outcome.attempts)
        if outcome.state is PollState.DEADLINE:
            failure = Failure(FailureKind.DEADLINE_EXCEEDED, f"Invocation deadline reached waiting for {what}")
        logger.warning(
            "instance_wait_gave_up",
            instance_id=instance_id,
            target=target.value,
            last_state=outcome.value.value if outcome.value else None,
            attempts=outcome.attempts,
        )
        return WaitOutcome(False, target, outcome.value, outcome.attempts, failure)

    def wait_until_running(self, instance_id: str, deadline: Deadline | None = None) -> WaitOutcome:
        """Poll until ``running``. Returns a failed outcome instead of raising."""
        return self._wait_for(instance_id, InstanceState.RUNNING, deadline)

    def wait_until_stopped(self, instance_id: str, deadline: Deadline | None = None) -> WaitOutcome:
        """Poll until ``stopped``. Returns a failed outcome instead of raising."""
        return self._wait_for(instance_id, InstanceState.STOPPED, deadline)

    def _start(self, instance_id: str) -> Failure | None:
        try:
            self._ec2.start_instances(InstanceIds=[instance_id])
        except (BotoCoreError, ClientError) as exc:
            logger.error("instance_start_failed", instance_id=instance_id, error=describe_aws_error(exc))
            return Failure(
                FailureKind.TERMINAL_REMOTE,
                f"Start request for instance {instance_id} was rejected",
                diagnostics=describe_aws_error(exc),
            )
        logger.info("instance_start_requested", instance_id=instance_id)
        return None

    def _grace(self, deadline: Deadline | None) -> Failure | None:
        if self.grace_seconds <= 0:
            return None
        if deadline is not None and deadline.remaining() < self.grace_seconds:
            return Failure(
                FailureKind.DEADLINE_EXCEEDED,
                "Not enough time left for the command-channel grace delay",
            )
        logger.info("instance_grace_delay", seconds=self.grace_seconds)
        self._clock.sleep(self.grace_seconds)
        return None

    def ensure_running(self, instance_id: str, deadline: Deadline | None = None) -> EnsureOutcome:
        state = self.describe_state(instance_id)
        logger.info("instance_state_read", instance_id=instance_id, state=state.value)

        if state is InstanceState.RUNNING:
            return EnsureOutcome(EnsureStatus.ALREADY_RUNNING, state)

        if state is InstanceState.STOPPING:
            stopped = self.wait_until_stopped(instance_id, deadline)
            if not stopped.reached:
                return EnsureOutcome(EnsureStatus.FAILED, stopped.state, stopped.failure)

        failure = self._start(instance_id)
        if failure is not None:
            return EnsureOutcome(EnsureStatus.FAILED, state, failure)

        running = self.wait_until_running(instance_id, deadline)
        if not running.reached:
            return EnsureOutcome(EnsureStatus.FAILED, running.state, running.failure)

        failure = self._grace(deadline)
        if failure is not None:
            return EnsureOutcome(EnsureStatus.FAILED, InstanceState.RUNNING, failure)
        return EnsureOutcome(EnsureStatus.READY, InstanceState.RUNNING)


__all__ = ["InstanceLifecycleController"]
