"""
Dispatch types: targets, remote states and result envelopes.

Architecture:
    ::

        DispatchTarget = PersistentInstanceTarget | EphemeralTaskTarget

        InstanceState    pending | running | stopping | stopped | other
        CommandStatus    in-progress | success | failed | cancelled
                         | timed-out | not-yet-visible

        GuardDecision    busy, conflicting_job_ids, reason
        WaitOutcome      reached, state, attempts, failure
        EnsureOutcome    status (already_running | ready | failed), failure
        CommandResult    invocation, failure
        LaunchOutcome    task_arn, failure
        DispatchResult   what the invocation returns and logs

``DispatchResult.to_dict()`` is the wire shape of the invocation result::

    {"matchingAssetCount": 1, "dispatched": true, "backendKind": "task",
     "backendJobId": "arn:aws:ecs:...", "message": "...",
     "conflictingJobIds": [], "failure": null}

Tags:
    models, dataclasses, dispatch, result-envelope
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from unity_builder.core.errors import Failure, FailureKind


class BackendKind(str, Enum):
    PERSISTENT_INSTANCE = "instance"
    EPHEMERAL_TASK = "task"


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PersistentInstanceTarget:
    """A long-lived VM reached through the remote-command channel."""

    instance_id: str
    document_name: str = "AWS-RunShellScript"

    kind = BackendKind.PERSISTENT_INSTANCE


@dataclass(frozen=True)
class EphemeralTaskTarget:
    """A single-run container task.

    ``task_definition`` may be ``family``, ``family:revision`` or a full task
    definition ARN.
    """

    cluster: str
    task_definition: str
    subnets: tuple[str, ...] = ()
    security_groups: tuple[str, ...] = ()
    container_name: str = "unity-builder"
    assign_public_ip: bool = True

    kind = BackendKind.EPHEMERAL_TASK

    @property
    def family(self) -> str:
        return task_definition_family(self.task_definition)


DispatchTarget = PersistentInstanceTarget | EphemeralTaskTarget


def task_definition_family(task_definition: str) -> str:
    """Return the family name of a task definition reference.

    >>> task_definition_family("arn:aws:ecs:us-east-1:1:task-definition/unity-builder:7")
    'unity-builder'
    >>> task_definition_family("unity-builder:7")
    'unity-builder'
    """
    name = task_definition.rsplit("/", 1)[-1] if "task-definition/" in task_definition else task_definition
    return name.split(":", 1)[0]


# ---------------------------------------------------------------------------
# Remote states
# ---------------------------------------------------------------------------


class InstanceState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> InstanceState:
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.OTHER


class CommandStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed-out"
    NOT_YET_VISIBLE = "not-yet-visible"

    @classmethod
    def parse(cls, value: str | None) -> CommandStatus:
        """Map a remote-command status string onto the enum.

        Pending, Delayed, InProgress and Cancelling are all still in flight.
        """
        compact = (value or "").lower().replace(" ", "").replace("_", "").replace("-", "")
        mapping = {
            "success": cls.SUCCESS,
            "failed": cls.FAILED,
            "cancelled": cls.CANCELLED,
            "timedout": cls.TIMED_OUT,
        }
        return mapping.get(compact, cls.IN_PROGRESS)

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_COMMAND_STATUSES


_TERMINAL_COMMAND_STATUSES = frozenset({
    CommandStatus.SUCCESS,
    CommandStatus.FAILED,
    CommandStatus.CANCELLED,
    CommandStatus.TIMED_OUT,
})


@dataclass(frozen=True)
class CommandInvocation:
    """One remote-command submission and its last observed state."""

    command_id: str
    instance_id: str
    status: CommandStatus = CommandStatus.IN_PROGRESS
    status_details: str | None = None
    stdout: str = ""
    stderr: str = ""


# ---------------------------------------------------------------------------
# Component outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GuardDecision:
    busy: bool
    conflicting_job_ids: tuple[str, ...] = ()
    reason: str | None = None


@dataclass(frozen=True)
class WaitOutcome:
    """Result of waiting for an instance to reach a target state."""

    reached: bool
    target: InstanceState
    state: InstanceState | None
    attempts: int
    failure: Failure | None = None


class EnsureStatus(str, Enum):
    ALREADY_RUNNING = "already_running"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class EnsureOutcome:
    status: EnsureStatus
    state: InstanceState | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.status is EnsureStatus.READY


@dataclass(frozen=True)
class CommandResult:
    """Terminal view of a remote command.

    ``failure`` is None on success. A backend-reported time-out is
    ``TERMINAL_REMOTE``; giving up on polling is ``DEADLINE_EXCEEDED``.
    """

    invocation: CommandInvocation
    failure: Failure | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @property
    def stdout(self) -> str:
        return self.invocation.stdout

    @property
    def stderr(self) -> str:
        return self.invocation.stderr


@dataclass(frozen=True)
class LaunchOutcome:
    task_arn: str | None
    failure: Failure | None = None

    @property
    def launched(self) -> bool:
        return self.task_arn is not None and self.failure is None


# ---------------------------------------------------------------------------
# DispatchResult
# ---------------------------------------------------------------------------


@dataclass
class DispatchResult:
    """What one reconciliation-and-dispatch invocation produced."""

    matching_asset_count: int
    dispatched: bool
    backend_kind: BackendKind
    backend_job_id: str | None = None
    message: str | None = None
    conflicting_job_ids: list[str] = field(default_factory=list)
    failure: Failure | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @classmethod
    def skipped(
        cls,
        backend_kind: BackendKind,
        matching_asset_count: int,
        message: str,
        conflicting_job_ids: list[str] | None = None,
    ) -> DispatchResult:
        return cls(
            matching_asset_count=matching_asset_count,
            dispatched=False,
            backend_kind=backend_kind,
            message=message,
            conflicting_job_ids=list(conflicting_job_ids or []),
        )

    @classmethod
    def failed(
        cls,
        backend_kind: BackendKind,
        matching_asset_count: int,
        failure: Failure,
        *,
        dispatched: bool = False,
        backend_job_id: str | None = None,
    ) -> DispatchResult:
        return cls(
            matching_asset_count=matching_asset_count,
            dispatched=dispatched,
            backend_kind=backend_kind,
            backend_job_id=backend_job_id,
            message=failure.message,
            failure=failure,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "matchingAssetCount": self.matching_asset_count,
            "dispatched": self.dispatched,
            "backendKind": self.backend_kind.value,
            "backendJobId": self.backend_job_id,
            "message": self.message,
            "conflictingJobIds": list(self.conflicting_job_ids),
            "failure": self.failure.to_dict() if self.failure else None,
        }


def deadline_failure(what: str, attempts: int) -> Failure:
    return Failure(
        kind=FailureKind.DEADLINE_EXCEEDED,
        message=f"Gave up waiting for {what} after {attempts} attempts",
    )


__all__ = [
    "BackendKind",
    "PersistentInstanceTarget",
    "EphemeralTaskTarget",
    "DispatchTarget",
    "task_definition_family",
    "InstanceState",
    "CommandStatus",
    "CommandInvocation",
    "GuardDecision",
    "WaitOutcome",
    "EnsureStatus",
    "EnsureOutcome",
    "CommandResult",
    "LaunchOutcome",
    "DispatchResult",
    "deadline_failure",
]
