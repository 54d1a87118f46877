"""Builder settings.

All configuration comes from environment variables prefixed ``UNITY_BUILDER_``
(or a ``.env`` file), validated by pydantic at startup.

Examples:
    >>> settings = BuilderSettings(asset_bucket="tours", backend="task")
    >>> settings.subnet_ids
    []

Tags:
    settings, configuration, pydantic, environment
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class BuilderSettings(BaseSettings):
    """Settings for reconciliation, dispatch and the transfer auth handler.

    List-valued settings (subnets, security groups, pending statuses) are
    comma-separated strings so they can be set from a single env var.
    """

    model_config = SettingsConfigDict(
        env_prefix="UNITY_BUILDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── AWS ──────────────────────────────────────────────────────
    aws_region: str = "us-east-1"

    # ── Catalog ──────────────────────────────────────────────────
    catalog_secret_id: str | None = Field(
        default=None,
        description="Secret holding the catalog connection string (ARN, name or env var)",
    )
    catalog_secret_field: str = "MONGODB_URI"
    catalog_database: str | None = None
    catalog_collection: str = "tours"
    catalog_items_field: str = "scenes"
    catalog_tls: bool = True
    catalog_tls_ca_file: str | None = None
    catalog_server_selection_timeout_ms: int = 5000
    catalog_connect_timeout_ms: int = 10000

    # ── Object storage ───────────────────────────────────────────
    asset_bucket: str = ""
    asset_prefix: str = "image/"
    asset_extension: str = ".jpg"

    # ── Dispatch ─────────────────────────────────────────────────
    backend: Literal["instance", "task"] = "task"

    instance_id: str | None = None
    command_document: str = "AWS-RunShellScript"
    build_script: str = "/opt/unity-builder/build.sh"
    build_user: str = "ubuntu"
    payload_path: str = "/tmp/unity-builder/matching-assets.json"
    payload_inline_limit: int = 24 * 1024
    fire_and_forget: bool = True
    remote_log_path: str = "/var/log/unity-builder/build.log"
    command_execution_timeout: int = 3600
    command_poll_interval: float = 5.0
    command_poll_attempts: int = 360
    instance_poll_interval: float = 10.0
    instance_poll_attempts: int = 30
    instance_grace_seconds: float = 60.0

    task_cluster: str | None = None
    task_definition: str | None = None
    task_container: str = "unity-builder"
    task_subnets: str = ""
    task_security_groups: str = ""
    task_pending_statuses: str = "PENDING"

    # ── Deadlines ────────────────────────────────────────────────
    max_run_seconds: float = 900.0
    deadline_margin_seconds: float = 10.0

    # ── File-transfer auth ───────────────────────────────────────
    transfer_secret_id: str | None = None
    transfer_role_arn: str | None = None
    transfer_bucket: str | None = None

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("asset_prefix")
    @classmethod
    def _prefix_has_trailing_slash(cls, value: str) -> str:
        if value and not value.endswith("/"):
            return value + "/"
        return value

    @field_validator("asset_extension")
    @classmethod
    def _extension_has_dot(cls, value: str) -> str:
        if value and not value.startswith("."):
            return "." + value
        return value

    @property
    def subnet_ids(self) -> list[str]:
        return _split_csv(self.task_subnets)

    @property
    def security_group_ids(self) -> list[str]:
        return _split_csv(self.task_security_groups)

    @property
    def pending_statuses(self) -> tuple[str, ...]:
        return tuple(s.upper() for s in _split_csv(self.task_pending_statuses))

    @property
    def home_bucket(self) -> str:
        return self.transfer_bucket or self.asset_bucket


_settings: BuilderSettings | None = None


def get_settings(*, _force_reload: bool = False) -> BuilderSettings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None or _force_reload:
        _settings = BuilderSettings()
    return _settings


def clear_settings_cache() -> None:
    global _settings
    _settings = None


__all__ = ["BuilderSettings", "get_settings", "clear_settings_cache"]
