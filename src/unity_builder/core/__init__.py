"""Core primitives: errors, logging, settings and secrets."""

from unity_builder.core.errors import (
    BuilderError,
    Failure,
    FailureKind,
    failure_from_exception,
)
from unity_builder.core.logging import LogContext, configure_logging, get_logger
from unity_builder.core.settings import BuilderSettings, get_settings

__all__ = [
    "BuilderError",
    "Failure",
    "FailureKind",
    "failure_from_exception",
    "LogContext",
    "configure_logging",
    "get_logger",
    "BuilderSettings",
    "get_settings",
]
