"""Dispatch execution: guards, instance lifecycle, remote commands and tasks.

Architecture:

    .. code-block:: text

        unity_builder.execution
        ├── models.py     ← targets, remote states, result envelopes
        ├── polling.py    ← Poller state machine, Clock, Deadline
        ├── guard.py      ← TaskFamilyGuard, InstanceStateGuard
        ├── instance.py   ← InstanceLifecycleController
        ├── commands.py   ← RemoteCommandExecutor, payload delivery
        └── tasks.py      ← EphemeralTaskDispatcher
"""

from unity_builder.execution.commands import (
    PayloadDelivery,
    RemoteCommandExecutor,
    build_command_lines,
)
from unity_builder.execution.guard import InstanceStateGuard, TaskFamilyGuard
from unity_builder.execution.instance import InstanceLifecycleController
from unity_builder.execution.models import (
    BackendKind,
    CommandInvocation,
    CommandResult,
    CommandStatus,
    DispatchResult,
    DispatchTarget,
    EnsureOutcome,
    EnsureStatus,
    EphemeralTaskTarget,
    GuardDecision,
    InstanceState,
    LaunchOutcome,
    PersistentInstanceTarget,
    WaitOutcome,
)
from unity_builder.execution.polling import Deadline, ManualClock, Poller, SystemClock
from unity_builder.execution.tasks import EphemeralTaskDispatcher

__all__ = [
    "PayloadDelivery",
    "RemoteCommandExecutor",
    "build_command_lines",
    "InstanceStateGuard",
    "TaskFamilyGuard",
    "InstanceLifecycleController",
    "BackendKind",
    "CommandInvocation",
    "CommandResult",
    "CommandStatus",
    "DispatchResult",
    "DispatchTarget",
    "EnsureOutcome",
    "EnsureStatus",
    "EphemeralTaskTarget",
    "GuardDecision",
    "InstanceState",
    "LaunchOutcome",
    "PersistentInstanceTarget",
    "WaitOutcome",
    "Deadline",
    "ManualClock",
    "Poller",
    "SystemClock",
    "EphemeralTaskDispatcher",
]
