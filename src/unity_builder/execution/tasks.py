"""Ephemeral task dispatcher.

Launches exactly one Fargate task of the configured task definition with the
MatchSet passed through container environment overrides. Rejections (capacity,
IAM, network configuration) come back as a ``LaunchOutcome`` failure and are
not retried here.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from unity_builder.catalog.models import AssetReference
from unity_builder.core.errors import Failure, FailureKind, describe_aws_error
from unity_builder.core.logging import get_logger
from unity_builder.execution.commands import serialize_match_set
from unity_builder.execution.models import EphemeralTaskTarget, LaunchOutcome

logger = get_logger(__name__)

# run_task rejects container overrides above this many bytes
MAX_OVERRIDES_BYTES = 8192


def _describe_failures(failures: list[dict[str, Any]]) -> str:
    parts = []
    for failure in failures:
        reason = failure.get("reason") or "unknown"
        detail = failure.get("detail")
        arn = failure.get("arn")
        text = reason if not detail else f"{reason} ({detail})"
        parts.append(f"{arn}: {text}" if arn else text)
    return "; ".join(parts)


class EphemeralTaskDispatcher:
    """Launch one-off build tasks on ECS.

    Args:
        ecs_client: boto3 ECS client.
        launch_type: ECS launch type for the task.
    """

    def __init__(self, ecs_client: Any, *, launch_type: str = "FARGATE"):
        self._ecs = ecs_client
        self.launch_type = launch_type

    def build_overrides(
        self, match_set: Sequence[AssetReference], target: EphemeralTaskTarget
    ) -> dict[str, Any]:
        return {
            "containerOverrides": [
                {
                    "name": target.container_name,
                    "environment": [
                        {"name": "MATCHING_ASSETS", "value": serialize_match_set(match_set)},
                        {"name": "MATCHING_ASSET_COUNT", "value": str(len(match_set))},
                    ],
                }
            ]
        }

    def build_request(
        self, match_set: Sequence[AssetReference], target: EphemeralTaskTarget
    ) -> dict[str, Any]:
        return {
            "cluster": target.cluster,
            "taskDefinition": target.task_definition,
            "launchType": self.launch_type,
            "count": 1,
            "networkConfiguration": {
                "awsvpcConfiguration": {
                    "subnets": list(target.subnets),
                    "securityGroups": list(target.security_groups),
                    "assignPublicIp": "ENABLED" if target.assign_public_ip else "DISABLED",
                }
            },
            "overrides": self.build_overrides(match_set, target),
        }

    def launch(
        self, match_set: Sequence[AssetReference], target: EphemeralTaskTarget
    ) -> LaunchOutcome:
        request = self.build_request(match_set, target)

        overrides_size = len(json.dumps(request["overrides"], separators=(",", ":")).encode("utf-8"))
        if overrides_size > MAX_OVERRIDES_BYTES:
            logger.error("task_overrides_too_large", size=overrides_size, limit=MAX_OVERRIDES_BYTES)
            return LaunchOutcome(
                None,
                Failure(
                    FailureKind.VALIDATION,
                    f"Task overrides are {overrides_size} bytes; the limit is {MAX_OVERRIDES_BYTES}",
                ),
            )

        try:
            response = self._ecs.run_task(**request)
        except (BotoCoreError, ClientError) as exc:
            logger.error("task_launch_rejected", cluster=target.cluster, error=describe_aws_error(exc))
            return LaunchOutcome(
                None,
                Failure(
                    FailureKind.TERMINAL_REMOTE,
                    f"Launch of {target.task_definition} was rejected",
                    diagnostics=describe_aws_error(exc),
                ),
            )

        failures = response.get("failures") or []
        tasks = response.get("tasks") or []
        if failures or not tasks:
            diagnostics = _describe_failures(failures) or "run_task returned no tasks"
            logger.error("task_launch_failed", cluster=target.cluster, diagnostics=diagnostics)
            return LaunchOutcome(
                None,
                Failure(
                    FailureKind.TERMINAL_REMOTE,
                    f"Launch of {target.task_definition} failed",
                    diagnostics=diagnostics,
                ),
            )

        task_arn = tasks[0]["taskArn"]
        logger.info(
            "task_launched",
            cluster=target.cluster,
            task_definition=target.task_definition,
            task_arn=task_arn,
            matching_asset_count=len(match_set),
        )
        return LaunchOutcome(task_arn)


__all__ = ["EphemeralTaskDispatcher", "MAX_OVERRIDES_BYTES"]
