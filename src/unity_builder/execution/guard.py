"""
Concurrency guard — refuse to start a build while one is already in flight.

WHY
───
Uploads arrive in bursts and every burst can trigger a reconciliation. Two
overlapping invocations must not both launch a build on the same backend.

ARCHITECTURE
────────────
::

    TaskFamilyGuard(ecs_client)
      └── .check(cluster, family)   list_tasks(desiredStatus=PENDING)
                                     → describe_tasks → family of each task
                                     → busy if any family == requested

    InstanceStateGuard(controller)
      └── .check(instance_id)        busy if instance state is "running"

Both guards are advisory: read, then act. Two invocations that read at the
same moment can both see "not busy". Both guards fail OPEN: if the backend
query itself fails the decision is "not busy", so a broken listing call
cannot block every future dispatch.
"""

from __future__ import annotations

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from unity_builder.core.errors import describe_aws_error
from unity_builder.core.logging import get_logger
from unity_builder.execution.instance import InstanceLifecycleController
from unity_builder.execution.models import GuardDecision, InstanceState, task_definition_family

logger = get_logger(__name__)

# describe_tasks accepts at most 100 task ARNs per call
_DESCRIBE_BATCH = 100


class TaskFamilyGuard:
    """Busy check for ephemeral tasks, by task-definition family.

    Args:
        ecs_client: boto3 ECS client.
        statuses: Desired statuses that count as in flight.
    """

    def __init__(self, ecs_client: Any, *, statuses: tuple[str, ...] = ("PENDING",)):
        self._ecs = ecs_client
        self._statuses = statuses

    def _in_flight_task_arns(self, cluster: str) -> list[str]:
        arns: list[str] = []
        paginator = self._ecs.get_paginator("list_tasks")
        for status in self._statuses:
            for page in paginator.paginate(cluster=cluster, desiredStatus=status):
                arns.extend(page.get("taskArns", []))
        return arns

    def _families(self, cluster: str, task_arns: list[str]) -> dict[str, str]:
        families: dict[str, str] = {}
        for start in range(0, len(task_arns), _DESCRIBE_BATCH):
            batch = task_arns[start:start + _DESCRIBE_BATCH]
            response = self._ecs.describe_tasks(cluster=cluster, tasks=batch)
            for task in response.get("tasks", []):
                definition = task.get("taskDefinitionArn")
                if definition:
                    families[task["taskArn"]] = task_definition_family(definition)
        return families

    def check(self, cluster: str, family: str) -> GuardDecision:
        try:
            task_arns = self._in_flight_task_arns(cluster)
            families = self._families(cluster, task_arns) if task_arns else {}
        except (BotoCoreError, ClientError) as exc:
            reason = f"Task listing failed, assuming not busy: {describe_aws_error(exc)}"
            logger.warning("guard_fail_open", cluster=cluster, family=family, error=describe_aws_error(exc))
            return GuardDecision(busy=False, reason=reason)

        conflicting = tuple(arn for arn, fam in families.items() if fam == family)
        decision = GuardDecision(
            busy=bool(conflicting),
            conflicting_job_ids=conflicting,
            reason=(
                f"{len(conflicting)} in-flight task(s) from family {family!r}"
                if conflicting else None
            ),
        )
        logger.info(
            "guard_checked",
            backend="task",
            cluster=cluster,
            family=family,
            in_flight=len(task_arns),
            busy=decision.busy,
            conflicting=list(conflicting),
        )
        return decision


class InstanceStateGuard:
    """Busy check for the persistent instance: running means a build is on.

    No application-level lock on the instance is consulted; an instance left
    running by hand also reads as busy.
    """

    def __init__(self, controller: InstanceLifecycleController):
        self._controller = controller

    def check(self, instance_id: str) -> GuardDecision:
        try:
            state = self._controller.describe_state(instance_id)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("guard_fail_open", instance_id=instance_id, error=describe_aws_error(exc))
            return GuardDecision(
                busy=False,
                reason=f"Instance lookup failed, assuming not busy: {describe_aws_error(exc)}",
            )

        busy = state is InstanceState.RUNNING
        logger.info("guard_checked", backend="instance", instance_id=instance_id, state=state.value, busy=busy)
        if busy:
            return GuardDecision(
                busy=True,
                conflicting_job_ids=(instance_id,),
                reason=f"Instance {instance_id} is already running; a build is presumed in progress",
            )
        return GuardDecision(busy=False)


__all__ = ["TaskFamilyGuard", "InstanceStateGuard"]
