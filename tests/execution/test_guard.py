"""Tests for the concurrency guards."""

from unittest.mock import MagicMock

from botocore.exceptions import EndpointConnectionError

from unity_builder.execution.guard import InstanceStateGuard, TaskFamilyGuard
from unity_builder.execution.models import InstanceState
from conftest import make_client_error

CLUSTER = "builds"
ARN_BUILDER = "arn:aws:ecs:us-east-1:123:task-definition/unity-builder:7"
ARN_OTHER = "arn:aws:ecs:us-east-1:123:task-definition/thumbnailer:2"


def ecs_with_tasks(tasks: list[tuple[str, str]]) -> MagicMock:
    """ECS client whose cluster holds ``(task_arn, task_definition_arn)`` pairs."""
    client = MagicMock()
    client.get_paginator.return_value.paginate.return_value = [{"taskArns": [arn for arn, _ in tasks]}]
    client.describe_tasks.return_value = {
        "tasks": [{"taskArn": arn, "taskDefinitionArn": td} for arn, td in tasks]
    }
    return client


# ── TaskFamilyGuard ──────────────────────────────────────────


class TestTaskFamilyGuard:
    def test_pending_task_of_same_family_is_busy(self):
        ecs = ecs_with_tasks([("task/1", ARN_BUILDER)])
        decision = TaskFamilyGuard(ecs).check(CLUSTER, "unity-builder")
        assert decision.busy
        assert decision.conflicting_job_ids == ("task/1",)
        ecs.get_paginator.return_value.paginate.assert_called_once_with(
            cluster=CLUSTER, desiredStatus="PENDING"
        )

    def test_other_family_is_not_busy(self):
        ecs = ecs_with_tasks([("task/2", ARN_OTHER)])
        decision = TaskFamilyGuard(ecs).check(CLUSTER, "unity-builder")
        assert not decision.busy
        assert decision.conflicting_job_ids == ()

    def test_empty_cluster_skips_describe(self):
        ecs = ecs_with_tasks([])
        assert not TaskFamilyGuard(ecs).check(CLUSTER, "unity-builder").busy
        ecs.describe_tasks.assert_not_called()

    def test_each_configured_status_is_listed(self):
        ecs = ecs_with_tasks([])
        TaskFamilyGuard(ecs, statuses=("PENDING", "RUNNING")).check(CLUSTER, "unity-builder")
        statuses = [c.kwargs["desiredStatus"] for c in ecs.get_paginator.return_value.paginate.call_args_list]
        assert statuses == ["PENDING", "RUNNING"]

    def test_describe_is_batched_by_100(self):
        tasks = [(f"task/{i}", ARN_OTHER) for i in range(150)]
        ecs = ecs_with_tasks(tasks)
        TaskFamilyGuard(ecs).check(CLUSTER, "unity-builder")
        batch_sizes = [len(c.kwargs["tasks"]) for c in ecs.describe_tasks.call_args_list]
        assert batch_sizes == [100, 50]

    def test_listing_failure_fails_open(self):
        ecs = MagicMock()
        ecs.get_paginator.return_value.paginate.side_effect = make_client_error("AccessDeniedException", "no")
        decision = TaskFamilyGuard(ecs).check(CLUSTER, "unity-builder")
        assert not decision.busy
        assert "AccessDeniedException" in decision.reason

    def test_describe_failure_fails_open(self):
        ecs = ecs_with_tasks([("task/1", ARN_BUILDER)])
        ecs.describe_tasks.side_effect = EndpointConnectionError(endpoint_url="https://ecs")
        assert not TaskFamilyGuard(ecs).check(CLUSTER, "unity-builder").busy


# ── InstanceStateGuard ───────────────────────────────────────


class TestInstanceStateGuard:
    def _controller(self, state=None, error=None):
        controller = MagicMock()
        if error is not None:
            controller.describe_state.side_effect = error
        else:
            controller.describe_state.return_value = state
        return controller

    def test_running_is_busy(self):
        decision = InstanceStateGuard(self._controller(InstanceState.RUNNING)).check("i-1")
        assert decision.busy
        assert decision.conflicting_job_ids == ("i-1",)
        assert "presumed in progress" in decision.reason

    def test_stopped_is_not_busy(self):
        for state in (InstanceState.STOPPED, InstanceState.STOPPING, InstanceState.PENDING):
            assert not InstanceStateGuard(self._controller(state)).check("i-1").busy

    def test_lookup_failure_fails_open(self):
        guard = InstanceStateGuard(self._controller(error=make_client_error("InvalidInstanceID.NotFound")))
        decision = guard.check("i-1")
        assert not decision.busy
        assert "InvalidInstanceID.NotFound" in decision.reason
