"""
Dispatch service — reconcile, guard, then run the build on one backend.

Architecture:
    ::

        DispatchService.run(target, deadline)
          │
          ├── reconcile()            catalog refs × storage keys → MatchSet
          │     └── empty            → skipped (not an error)
          │
          ├── EphemeralTaskTarget
          │     ├── TaskFamilyGuard.check     busy → skipped + conflicting ids
          │     └── EphemeralTaskDispatcher.launch → task ARN | failure
          │
          └── PersistentInstanceTarget
                ├── InstanceStateGuard.check  running → skipped
                ├── InstanceLifecycleController.ensure_running
                ├── build_command_lines(MatchSet, payload delivery)
                └── RemoteCommandExecutor
                      fire-and-forget → submit, done
                      synchronous     → submit + wait

Every exception raised below ``run`` is converted into a ``DispatchResult``
carrying a ``Failure``: the function runtime that invokes us has no caller
that could do anything else with it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from unity_builder.catalog.store import CatalogStore
from unity_builder.core.errors import BuilderError, ConfigError, failure_from_exception
from unity_builder.core.logging import get_logger
from unity_builder.execution.commands import (
    PayloadDelivery,
    RemoteCommandExecutor,
    build_command_lines,
)
from unity_builder.execution.guard import InstanceStateGuard, TaskFamilyGuard
from unity_builder.execution.instance import InstanceLifecycleController
from unity_builder.execution.models import (
    BackendKind,
    DispatchResult,
    DispatchTarget,
    EnsureStatus,
    EphemeralTaskTarget,
    PersistentInstanceTarget,
)
from unity_builder.execution.polling import Deadline
from unity_builder.execution.tasks import EphemeralTaskDispatcher
from unity_builder.reconcile import MatchSet, reconcile
from unity_builder.storage import ObjectStore

logger = get_logger(__name__)

PRESUMED_IN_PROGRESS = "Build presumed already in progress"


@dataclass(frozen=True)
class CommandPlan:
    """How builds are started on the persistent instance."""

    script: str = "/opt/unity-builder/build.sh"
    user: str | None = "ubuntu"
    delivery: PayloadDelivery = field(default_factory=PayloadDelivery)
    fire_and_forget: bool = True
    log_path: str = "/var/log/unity-builder/build.log"
    execution_timeout: int = 3600


class DispatchService:
    """Reconciliation-and-dispatch flow for one invocation.

    Backend collaborators are optional so a service configured for only one
    backend does not need clients for the other; dispatching to a backend
    whose collaborators are missing is a configuration failure.
    """

    def __init__(
        self,
        *,
        catalog: CatalogStore,
        objects: ObjectStore,
        prefix: str,
        extension: str,
        task_guard: TaskFamilyGuard | None = None,
        task_dispatcher: EphemeralTaskDispatcher | None = None,
        instance_controller: InstanceLifecycleController | None = None,
        executor: RemoteCommandExecutor | None = None,
        command_plan: CommandPlan | None = None,
    ):
        self.catalog = catalog
        self.objects = objects
        self.prefix = prefix
        self.extension = extension
        self.task_guard = task_guard
        self.task_dispatcher = task_dispatcher
        self.instance_controller = instance_controller
        self.instance_guard = (
            InstanceStateGuard(instance_controller) if instance_controller is not None else None
        )
        self.executor = executor
        self.command_plan = command_plan or CommandPlan()

    def reconcile(self) -> MatchSet:
        references = self.catalog.asset_references()
        keys = self.objects.key_set(self.prefix)
        matches = reconcile(keys, references, prefix=self.prefix, extension=self.extension)
        logger.info(
            "reconcile_completed",
            references=len(references),
            storage_keys=len(keys),
            matching_asset_count=len(matches),
        )
        return matches

    def run(
        self,
        target: DispatchTarget,
        *,
        deadline: Deadline | None = None,
        dry_run: bool = False,
    ) -> DispatchResult:
        kind = target.kind
        count = 0
        try:
            matches = self.reconcile()
            count = len(matches)
            if not matches:
                return DispatchResult.skipped(kind, 0, "No catalog assets found in storage")
            if dry_run:
                return DispatchResult.skipped(kind, count, f"Dry run: {count} asset(s) would be dispatched")
            if isinstance(target, EphemeralTaskTarget):
                return self._dispatch_task(matches, target)
            return self._dispatch_instance(matches, target, deadline)
        except Exception as exc:
            failure = failure_from_exception(exc)
            logger.exception("dispatch_failed", backend=kind.value, kind=failure.kind.value)
            return DispatchResult.failed(kind, count, failure)

    # ── EphemeralTask ───────────────────────────────────────────────

    def _dispatch_task(self, matches: MatchSet, target: EphemeralTaskTarget) -> DispatchResult:
        if self.task_guard is None or self.task_dispatcher is None:
            raise ConfigError("Task backend is not configured")
        kind = BackendKind.EPHEMERAL_TASK

        decision = self.task_guard.check(target.cluster, target.family)
        if decision.busy:
            return DispatchResult.skipped(
                kind,
                len(matches),
                f"{PRESUMED_IN_PROGRESS}: {decision.reason}",
                list(decision.conflicting_job_ids),
            )

        outcome = self.task_dispatcher.launch(matches, target)
        if outcome.failure is not None:
            return DispatchResult.failed(kind, len(matches), outcome.failure)
        return DispatchResult(
            matching_asset_count=len(matches),
            dispatched=True,
            backend_kind=kind,
            backend_job_id=outcome.task_arn,
            message=f"Launched build task for {len(matches)} asset(s)",
        )

    # ── PersistentInstance ──────────────────────────────────────────

    def _dispatch_instance(
        self,
        matches: MatchSet,
        target: PersistentInstanceTarget,
        deadline: Deadline | None,
    ) -> DispatchResult:
        if self.instance_controller is None or self.instance_guard is None or self.executor is None:
            raise ConfigError("Instance backend is not configured")
        kind = BackendKind.PERSISTENT_INSTANCE
        instance_id = target.instance_id

        decision = self.instance_guard.check(instance_id)
        if decision.busy:
            return DispatchResult.skipped(
                kind, len(matches), PRESUMED_IN_PROGRESS, list(decision.conflicting_job_ids)
            )

        ensured = self.instance_controller.ensure_running(instance_id, deadline)
        if ensured.status is EnsureStatus.ALREADY_RUNNING:
            # started by someone else between the guard and here
            return DispatchResult.skipped(kind, len(matches), PRESUMED_IN_PROGRESS, [instance_id])
        if ensured.failure is not None:
            return DispatchResult.failed(kind, len(matches), ensured.failure)

        plan = self.command_plan
        lines = build_command_lines(
            matches,
            script=plan.script,
            delivery=plan.delivery,
            user=plan.user,
            fire_and_forget=plan.fire_and_forget,
            log_path=plan.log_path,
        )
        invocation = self.executor.submit(
            instance_id,
            lines,
            document_name=target.document_name,
            execution_timeout=plan.execution_timeout,
            comment=f"unity-builder: {len(matches)} asset(s)",
        )

        if plan.fire_and_forget:
            return DispatchResult(
                matching_asset_count=len(matches),
                dispatched=True,
                backend_kind=kind,
                backend_job_id=invocation.command_id,
                message=f"Build started detached on {instance_id}; progress is in {plan.log_path}",
            )

        try:
            result = self.executor.wait(invocation, deadline)
        except BuilderError as exc:
            return DispatchResult.failed(
                kind, len(matches), exc.to_failure(),
                dispatched=True, backend_job_id=invocation.command_id,
            )
        if result.failure is not None:
            return DispatchResult.failed(
                kind, len(matches), result.failure,
                dispatched=True, backend_job_id=invocation.command_id,
            )
        return DispatchResult(
            matching_asset_count=len(matches),
            dispatched=True,
            backend_kind=kind,
            backend_job_id=invocation.command_id,
            message=f"Build completed on {instance_id}",
        )


__all__ = ["CommandPlan", "DispatchService", "PRESUMED_IN_PROGRESS"]
