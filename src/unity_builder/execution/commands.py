"""
Remote command executor.

Sends shell scripts to the persistent build instance over SSM and, in
synchronous mode, polls them to a terminal state.

Architecture:
    ::

        RemoteCommandExecutor(ssm_client)
          ├── submit(instance, lines, execution_timeout=3600) → CommandInvocation
          ├── poll(invocation)                                → CommandInvocation
          │     InvocationDoesNotExist → status not-yet-visible
          │     any other lookup error → CommandLookupError (raised)
          ├── wait(invocation, deadline)                      → CommandResult
          │     every 5 s, up to 360 attempts (30 minutes)
          └── run(instance, lines, ...)                       → submit + wait

        Terminal mapping (wait):

            success                     → CommandResult(failure=None)
            failed | cancelled | timed-out
                                        → TERMINAL_REMOTE + stdout/stderr
            attempts or deadline used up→ DEADLINE_EXCEEDED

    Payload and script construction:

        PayloadDelivery.lines(match_set)
            small  → export MATCHING_ASSETS='<json>'
            large  → heredoc to payload_path, chown/chmod,
                     export MATCHING_ASSETS_FILE=<path>
            always → export MATCHING_ASSET_COUNT=<n>

        detach(command, log_path)   → nohup <command> >> log 2>&1 &
                                       (fire-and-forget: shell returns at once)

Fire-and-forget runs are never polled; the build script reports through its
own log and state files on the instance.
"""

from __future__ import annotations

import json
import posixpath
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from unity_builder.catalog.models import AssetReference
from unity_builder.core.errors import (
    CommandLookupError,
    Failure,
    FailureKind,
    TerminalRemoteError,
    aws_error_code,
    describe_aws_error,
)
from unity_builder.core.logging import get_logger
from unity_builder.execution.models import (
    CommandInvocation,
    CommandResult,
    CommandStatus,
    deadline_failure,
)
from unity_builder.execution.polling import Clock, Deadline, Poller, PollState, SystemClock

logger = get_logger(__name__)

_NOT_YET_VISIBLE_CODES = frozenset({"InvocationDoesNotExist"})
_HEREDOC_MARKER = "UNITY_BUILDER_PAYLOAD_EOF"


# ---------------------------------------------------------------------------
# Script construction
# ---------------------------------------------------------------------------


def serialize_match_set(match_set: Sequence[AssetReference]) -> str:
    """Compact JSON array of the matched references."""
    return json.dumps([ref.to_payload() for ref in match_set], separators=(",", ":"))


@dataclass(frozen=True)
class PayloadDelivery:
    """How the MatchSet reaches the build script's environment.

    Attributes:
        path: Fixed file path used for payloads too large to inline.
        inline_limit: Largest serialized payload (bytes) exported inline.
        owner: User that must be able to read the payload file.
        mode: File mode of the payload file.
    """

    path: str = "/tmp/unity-builder/matching-assets.json"
    inline_limit: int = 24 * 1024
    owner: str | None = "ubuntu"
    mode: str = "0640"

    def is_inline(self, payload: str) -> bool:
        return len(payload.encode("utf-8")) <= self.inline_limit

    def lines(self, match_set: Sequence[AssetReference]) -> list[str]:
        payload = serialize_match_set(match_set)
        lines: list[str] = []
        if self.is_inline(payload):
            lines.append(f"export MATCHING_ASSETS={shlex.quote(payload)}")
        else:
            path = shlex.quote(self.path)
            lines.append(f"mkdir -p {shlex.quote(posixpath.dirname(self.path) or '/')}")
            lines.append(f"cat > {path} <<'{_HEREDOC_MARKER}'")
            lines.append(payload)
            lines.append(_HEREDOC_MARKER)
            if self.owner:
                owner = shlex.quote(self.owner)
                lines.append(f"chown {owner}:{owner} {path}")
            lines.append(f"chmod {self.mode} {path}")
            lines.append(f"export MATCHING_ASSETS_FILE={path}")
        lines.append(f"export MATCHING_ASSET_COUNT={len(match_set)}")
        return lines


def build_invocation(script: str, user: str | None = None) -> str:
    """Shell line that runs the build script, as ``user`` when given."""
    if user:
        return f"sudo -E -u {shlex.quote(user)} {shlex.quote(script)}"
    return shlex.quote(script)


def detach(command: str, log_path: str) -> list[str]:
    """Wrap ``command`` so it keeps running after the remote shell exits."""
    log = shlex.quote(log_path)
    return [
        f"mkdir -p {shlex.quote(posixpath.dirname(log_path) or '/')}",
        f"nohup {command} >> {log} 2>&1 < /dev/null &",
        'echo "build started: pid=$!"',
    ]


def build_command_lines(
    match_set: Sequence[AssetReference],
    *,
    script: str,
    delivery: PayloadDelivery,
    user: str | None = None,
    fire_and_forget: bool = False,
    log_path: str = "/var/log/unity-builder/build.log",
) -> list[str]:
    """Full shell script for one build dispatch."""
    lines = ["set -eu"]
    lines.extend(delivery.lines(match_set))
    invocation = build_invocation(script, user)
    if fire_and_forget:
        lines.extend(detach(invocation, log_path))
    else:
        lines.append(invocation)
    return lines


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class RemoteCommandExecutor:
    """Submit and track shell commands on an instance through SSM.

    Args:
        ssm_client: boto3 SSM client.
        clock: Time source for polling.
        poll_interval: Seconds between status lookups.
        max_attempts: Lookups before giving up.
    """

    def __init__(
        self,
        ssm_client: Any,
        *,
        clock: Clock | None = None,
        poll_interval: float = 5.0,
        max_attempts: int = 360,
    ):
        self._ssm = ssm_client
        self._clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts

    def submit(
        self,
        instance_id: str,
        command_lines: Sequence[str],
        *,
        document_name: str = "AWS-RunShellScript",
        execution_timeout: int = 3600,
        comment: str | None = None,
    ) -> CommandInvocation:
        """Send ``command_lines`` as one shell-script invocation of ``document_name``."""
        kwargs: dict[str, Any] = {
            "InstanceIds": [instance_id],
            "DocumentName": document_name,
            "Parameters": {
                "commands": list(command_lines),
                "executionTimeout": [str(execution_timeout)],
            },
        }
        if comment:
            # SSM caps comments at 100 characters
            kwargs["Comment"] = comment[:100]
        try:
            response = self._ssm.send_command(**kwargs)
        except (BotoCoreError, ClientError) as exc:
            logger.error("command_submit_failed", instance_id=instance_id, error=describe_aws_error(exc))
            raise TerminalRemoteError(
                f"Command submission to {instance_id} was rejected",
                diagnostics=describe_aws_error(exc),
                cause=exc,
            ) from exc

        command_id = response["Command"]["CommandId"]
        logger.info(
            "command_submitted",
            instance_id=instance_id,
            command_id=command_id,
            lines=len(command_lines),
            execution_timeout=execution_timeout,
        )
        return CommandInvocation(command_id=command_id, instance_id=instance_id)

    def poll(self, invocation: CommandInvocation) -> CommandInvocation:
        """Look up the current status of ``invocation`` once."""
        try:
            response = self._ssm.get_command_invocation(
                CommandId=invocation.command_id,
                InstanceId=invocation.instance_id,
            )
        except ClientError as exc:
            if aws_error_code(exc) in _NOT_YET_VISIBLE_CODES:
                return CommandInvocation(
                    command_id=invocation.command_id,
                    instance_id=invocation.instance_id,
                    status=CommandStatus.NOT_YET_VISIBLE,
                )
            raise CommandLookupError(
                f"Status lookup for command {invocation.command_id} failed",
                diagnostics=describe_aws_error(exc),
                cause=exc,
            ) from exc
        except BotoCoreError as exc:
            raise CommandLookupError(
                f"Status lookup for command {invocation.command_id} failed",
                diagnostics=describe_aws_error(exc),
                cause=exc,
            ) from exc

        return CommandInvocation(
            command_id=invocation.command_id,
            instance_id=invocation.instance_id,
            status=CommandStatus.parse(response.get("Status")),
            status_details=response.get("StatusDetails"),
            stdout=response.get("StandardOutputContent") or "",
            stderr=response.get("StandardErrorContent") or "",
        )

    def wait(self, invocation: CommandInvocation, deadline: Deadline | None = None) -> CommandResult:
        """Poll ``invocation`` until it is terminal or the ceiling is reached.

        Raises:
            CommandLookupError: A lookup failed with anything other than
                not-yet-visible.
        """
        poller = Poller(
            interval=self.poll_interval,
            max_attempts=self.max_attempts,
            clock=self._clock,
            deadline=deadline,
            name="command_status",
        )
        outcome = poller.run(lambda: self.poll(invocation), lambda inv: inv.status.is_terminal)
        last = outcome.value or invocation

        if not outcome.satisfied:
            failure = deadline_failure(f"command {invocation.command_id}", outcome.attempts)
            if outcome.state is PollState.DEADLINE:
                failure = Failure(
                    FailureKind.DEADLINE_EXCEEDED,
                    f"Invocation deadline reached waiting for command {invocation.command_id}",
                )
            logger.warning(
                "command_wait_gave_up",
                command_id=invocation.command_id,
                last_status=last.status.value,
                attempts=outcome.attempts,
            )
            return CommandResult(last, failure)

        if last.status is CommandStatus.SUCCESS:
            logger.info("command_succeeded", command_id=last.command_id, attempts=outcome.attempts)
            return CommandResult(last)

        logger.error(
            "command_failed",
            command_id=last.command_id,
            status=last.status.value,
            status_details=last.status_details,
        )
        return CommandResult(
            last,
            Failure(
                FailureKind.TERMINAL_REMOTE,
                f"Command {last.command_id} finished with status {last.status.value}",
                diagnostics=last.stderr or last.status_details,
            ),
        )

    def run(
        self,
        instance_id: str,
        command_lines: Sequence[str],
        *,
        document_name: str = "AWS-RunShellScript",
        execution_timeout: int = 3600,
        deadline: Deadline | None = None,
        comment: str | None = None,
    ) -> CommandResult:
        """Submit and wait (synchronous mode)."""
        invocation = self.submit(
            instance_id,
            command_lines,
            document_name=document_name,
            execution_timeout=execution_timeout,
            comment=comment,
        )
        return self.wait(invocation, deadline)


__all__ = [
    "PayloadDelivery",
    "RemoteCommandExecutor",
    "build_command_lines",
    "build_invocation",
    "detach",
    "serialize_match_set",
]
