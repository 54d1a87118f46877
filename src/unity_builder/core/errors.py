"""
Error taxonomy for reconciliation and dispatch.

Every failure the builder can observe is classified into a ``FailureKind`` so
callers can tell "the remote job failed" apart from "we stopped waiting for
it". Components raise ``BuilderError`` subclasses when they cannot decide what
a failure means; the dispatch boundary converts every exception into a
structured ``Failure`` on the ``DispatchResult``.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        FailureKind                           │
        ├──────────────────────┬───────────────────────────────────────┤
        │ TRANSIENT_REMOTE     │ lookup-not-yet-visible, network blips │
        │                      │ retried inside the polling ceiling    │
        │ TERMINAL_REMOTE      │ job failed / cancelled / launch       │
        │                      │ rejected. surfaced, never retried     │
        │ DEADLINE_EXCEEDED    │ polling ceiling or deadline reached   │
        │ PRECONDITION_UNMET   │ no matches, guard busy (short-circuit)│
        │ VALIDATION           │ payload or target rejected up front   │
        │ CONFIG               │ missing settings or secrets           │
        │ INTERNAL             │ anything unclassified                 │
        └──────────────────────┴───────────────────────────────────────┘

        BuilderError
        ├── TransientRemoteError
        ├── TerminalRemoteError
        │   └── CommandLookupError
        ├── CatalogConnectionError
        └── ConfigError

Examples:
    >>> err = TerminalRemoteError("run_task rejected", diagnostics="RESOURCE:MEMORY")
    >>> err.kind
    <FailureKind.TERMINAL_REMOTE: 'terminal_remote'>
    >>> err.to_failure().to_dict()["kind"]
    'terminal_remote'

Tags:
    errors, failure-kind, retry-semantics, unity-builder
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

# Throttling and service-side codes that may clear on a later attempt
TRANSIENT_AWS_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestThrottled",
        "RequestThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "BandwidthLimitExceeded",
        "SlowDown",
        "EC2ThrottledException",
        "RequestTimeout",
        "RequestTimeoutException",
        "InternalError",
        "InternalFailure",
        "ServiceUnavailable",
        "ServiceUnavailableException",
    }
)


class FailureKind(str, Enum):
    """Classification of a failed dispatch attempt."""

    TRANSIENT_REMOTE = "transient_remote"
    TERMINAL_REMOTE = "terminal_remote"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    PRECONDITION_UNMET = "precondition_unmet"
    VALIDATION = "validation"
    CONFIG = "config"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Failure:
    """Structured failure carried by results instead of an exception.

    Attributes:
        kind: Classification used by callers to decide what happened.
        message: Human-readable summary.
        diagnostics: The remote backend's own text (stderr, failure reasons),
            when there is any.
    """

    kind: FailureKind
    message: str
    diagnostics: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.diagnostics:
            data["diagnostics"] = self.diagnostics
        return data


class BuilderError(Exception):
    """Base exception for the builder.

    Subclasses set ``default_kind`` so ``to_failure()`` yields the right
    ``FailureKind`` without the raiser having to repeat it.
    """

    default_kind: FailureKind = FailureKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        kind: FailureKind | None = None,
        diagnostics: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.diagnostics = diagnostics
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, message=self.message, diagnostics=self.diagnostics)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value})"


class TransientRemoteError(BuilderError):
    """Remote lookup failed in a way that may succeed on the next poll."""

    default_kind = FailureKind.TRANSIENT_REMOTE


class TerminalRemoteError(BuilderError):
    """The remote backend rejected or failed the work. Not retried."""

    default_kind = FailureKind.TERMINAL_REMOTE


class CommandLookupError(TerminalRemoteError):
    """A command status lookup failed with anything but not-yet-visible."""


class CatalogConnectionError(BuilderError):
    """The catalog database could not be reached."""

    default_kind = FailureKind.TRANSIENT_REMOTE


class ConfigError(BuilderError):
    """Required configuration or secret material is missing or invalid."""

    default_kind = FailureKind.CONFIG


def aws_error_code(error: Exception) -> str | None:
    """Return the AWS error code of a ``ClientError``, else ``None``."""
    if isinstance(error, ClientError):
        return str(error.response.get("Error", {}).get("Code") or "") or None
    return None


def describe_aws_error(error: Exception) -> str:
    """Render a boto3 error as ``Code: message`` for diagnostics."""
    if isinstance(error, ClientError):
        err = error.response.get("Error", {})
        code = err.get("Code") or "ClientError"
        return f"{code}: {err.get('Message') or error}"
    if isinstance(error, BotoCoreError):
        return f"{type(error).__name__}: {error}"
    return str(error)


def is_transient_aws_error(error: Exception) -> bool:
    """True for throttling, 5xx responses and endpoint connection failures."""
    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return True
    if isinstance(error, ClientError):
        if aws_error_code(error) in TRANSIENT_AWS_ERROR_CODES:
            return True
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return isinstance(status, int) and status >= 500
    return False


def failure_from_exception(error: Exception) -> Failure:
    """Convert any exception into a ``Failure``.

    ``BuilderError`` keeps its own kind. boto3 errors become
    ``TRANSIENT_REMOTE`` when ``is_transient_aws_error`` says so and
    ``TERMINAL_REMOTE`` otherwise, with the AWS error text as diagnostics.
    Everything else is ``INTERNAL``.
    """
    if isinstance(error, BuilderError):
        return error.to_failure()
    if isinstance(error, (ClientError, BotoCoreError)):
        kind = FailureKind.TRANSIENT_REMOTE if is_transient_aws_error(error) else FailureKind.TERMINAL_REMOTE
        return Failure(
            kind=kind,
            message="AWS request failed",
            diagnostics=describe_aws_error(error),
        )
    return Failure(kind=FailureKind.INTERNAL, message=f"{type(error).__name__}: {error}")


__all__ = [
    "FailureKind",
    "Failure",
    "BuilderError",
    "TransientRemoteError",
    "TerminalRemoteError",
    "CommandLookupError",
    "CatalogConnectionError",
    "ConfigError",
    "aws_error_code",
    "describe_aws_error",
    "is_transient_aws_error",
    "failure_from_exception",
    "TRANSIENT_AWS_ERROR_CODES",
]
