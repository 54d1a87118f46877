"""
Build trigger handler — function-runtime entry point.

Invoked by object-upload notifications or on a schedule. The trigger only
decides *when* to reconcile: every invocation rescans the whole catalog
against the whole storage prefix, so the records are decoded and logged but
never used to narrow the work.

Architecture:
    ::

        handler(event, context)
          ├── configure_logging (once per process)
          ├── BuilderEnvironment (cached across warm invocations)
          ├── inspect_records(event)     → log each upload, count them
          └── LogContext(invocation_id)
                └── DispatchService.run(target, deadline)
                      → DispatchResult.to_dict() (+ recordsProcessed)

Nothing escapes this function: configuration errors and unexpected
exceptions come back as a failed result.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote_plus

from unity_builder.core.errors import failure_from_exception
from unity_builder.core.logging import LogContext, configure_logging, get_logger
from unity_builder.core.settings import get_settings
from unity_builder.environment import BuilderEnvironment
from unity_builder.execution.models import BackendKind, DispatchResult

logger = get_logger(__name__)

_environment: BuilderEnvironment | None = None
_logging_configured = False


@dataclass(frozen=True)
class UploadRecord:
    event_name: str | None
    bucket: str | None
    key: str
    size: int | None


def parse_records(event: Any) -> list[UploadRecord]:
    """Decode the object-upload records of ``event``.

    Object keys arrive URL-encoded with ``+`` for spaces. Records without a
    key are ignored; scheduled and empty events have no records at all.
    """
    if not isinstance(event, Mapping):
        return []
    records = []
    for record in event.get("Records") or []:
        if not isinstance(record, Mapping):
            continue
        s3 = record.get("s3") or {}
        obj = s3.get("object") or {}
        raw_key = obj.get("key")
        if not raw_key:
            continue
        records.append(
            UploadRecord(
                event_name=record.get("eventName"),
                bucket=(s3.get("bucket") or {}).get("name"),
                key=unquote_plus(raw_key),
                size=obj.get("size"),
            )
        )
    return records


def inspect_records(event: Any) -> int:
    records = parse_records(event)
    for record in records:
        logger.info(
            "upload_received",
            event_name=record.event_name,
            bucket=record.bucket,
            key=record.key,
            size=record.size,
        )
    if not records:
        logger.info("trigger_without_records")
    return len(records)


def get_environment() -> BuilderEnvironment:
    global _environment
    if _environment is None:
        _environment = BuilderEnvironment(get_settings())
    return _environment


def reset_environment() -> None:
    """Drop the cached environment (tests, settings reload)."""
    global _environment, _logging_configured
    if _environment is not None:
        _environment.close()
    _environment = None
    _logging_configured = False


def _ensure_logging() -> None:
    global _logging_configured
    if _logging_configured:
        return
    try:
        settings = get_settings()
        configure_logging(settings.log_level, settings.log_json)
    except Exception:
        configure_logging()
    _logging_configured = True


def _configured_backend() -> BackendKind:
    try:
        return BackendKind(get_settings().backend)
    except Exception:
        return BackendKind.EPHEMERAL_TASK


def handler(event: Any, context: Any = None) -> dict[str, Any]:
    _ensure_logging()
    invocation_id = getattr(context, "aws_request_id", None) or uuid.uuid4().hex

    with LogContext(invocation_id=invocation_id):
        records = inspect_records(event)
        try:
            env = get_environment()
            target = env.target()
            result = env.service().run(target, deadline=env.deadline(context))
        except Exception as exc:
            failure = failure_from_exception(exc)
            logger.exception("invocation_failed", kind=failure.kind.value)
            result = DispatchResult.failed(_configured_backend(), 0, failure)

        body = result.to_dict()
        body["recordsProcessed"] = records
        logger.info("dispatch_completed", **body)
        return body


__all__ = ["handler", "parse_records", "inspect_records", "get_environment", "reset_environment"]
