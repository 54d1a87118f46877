"""Builder environment — wires settings into clients, stores and the service.

One ``BuilderEnvironment`` lives for the lifetime of the process. The function
runtime reuses warm processes, so the handler builds it once and keeps it;
boto3 clients are created lazily and the catalog connection sits behind a
``CatalogConnectionPool`` that checks liveness before each reuse.

Example::

    env = BuilderEnvironment(get_settings())
    result = env.service().run(env.target(), deadline=env.deadline(context))
"""

from __future__ import annotations

from functools import cached_property
from typing import Any

import boto3
from botocore.config import Config

from unity_builder.catalog.pool import CatalogConnectionPool
from unity_builder.catalog.store import MongoCatalogStore
from unity_builder.core.errors import ConfigError
from unity_builder.core.logging import get_logger
from unity_builder.core.secrets import (
    AwsSecretsManagerBackend,
    EnvSecretBackend,
    SecretsResolver,
    SecretValue,
    resolve_field,
)
from unity_builder.core.settings import BuilderSettings
from unity_builder.dispatch import CommandPlan, DispatchService
from unity_builder.execution.commands import PayloadDelivery, RemoteCommandExecutor
from unity_builder.execution.guard import TaskFamilyGuard
from unity_builder.execution.instance import InstanceLifecycleController
from unity_builder.execution.models import (
    DispatchTarget,
    EphemeralTaskTarget,
    PersistentInstanceTarget,
)
from unity_builder.execution.polling import Clock, Deadline, SystemClock
from unity_builder.execution.tasks import EphemeralTaskDispatcher
from unity_builder.storage import S3ObjectStore

logger = get_logger(__name__)

_CLIENT_CONFIG = Config(retries={"max_attempts": 3, "mode": "standard"})


class BuilderEnvironment:
    """Lazily built collaborators for one process.

    Args:
        settings: Effective configuration.
        clock: Time source shared by every poller and deadline.
        session: boto3 session; the default session when omitted.
    """

    def __init__(
        self,
        settings: BuilderSettings,
        *,
        clock: Clock | None = None,
        session: Any = None,
    ):
        self.settings = settings
        self.clock = clock or SystemClock()
        self._session = session
        self._clients: dict[str, Any] = {}

    # ── AWS clients ──────────────────────────────────────────────

    def client(self, service: str) -> Any:
        if service not in self._clients:
            factory = self._session.client if self._session is not None else boto3.client
            self._clients[service] = factory(
                service, region_name=self.settings.aws_region, config=_CLIENT_CONFIG
            )
        return self._clients[service]

    # ── Secrets & catalog ────────────────────────────────────────

    @cached_property
    def secrets(self) -> SecretsResolver:
        return SecretsResolver(
            [AwsSecretsManagerBackend(self.client("secretsmanager")), EnvSecretBackend()]
        )

    def catalog_uri(self) -> SecretValue:
        secret_id = self.settings.catalog_secret_id
        if not secret_id:
            raise ConfigError("UNITY_BUILDER_CATALOG_SECRET_ID is not set")
        return resolve_field(self.secrets, secret_id, self.settings.catalog_secret_field)

    @cached_property
    def catalog_pool(self) -> CatalogConnectionPool:
        s = self.settings
        options: dict[str, Any] = {
            "serverSelectionTimeoutMS": s.catalog_server_selection_timeout_ms,
            "connectTimeoutMS": s.catalog_connect_timeout_ms,
        }
        if s.catalog_tls:
            options["tls"] = True
            if s.catalog_tls_ca_file:
                options["tlsCAFile"] = s.catalog_tls_ca_file
        return CatalogConnectionPool(self.catalog_uri, database_name=s.catalog_database, **options)

    @cached_property
    def catalog(self) -> MongoCatalogStore:
        return MongoCatalogStore(
            self.catalog_pool,
            collection=self.settings.catalog_collection,
            items_field=self.settings.catalog_items_field,
        )

    @cached_property
    def objects(self) -> S3ObjectStore:
        if not self.settings.asset_bucket:
            raise ConfigError("UNITY_BUILDER_ASSET_BUCKET is not set")
        return S3ObjectStore(self.client("s3"), self.settings.asset_bucket)

    # ── Dispatch ─────────────────────────────────────────────────

    def target(self, backend: str | None = None) -> DispatchTarget:
        """Dispatch target for ``backend`` (the configured one by default)."""
        s = self.settings
        backend = backend or s.backend
        if backend == "instance":
            if not s.instance_id:
                raise ConfigError("UNITY_BUILDER_INSTANCE_ID is required for the instance backend")
            return PersistentInstanceTarget(s.instance_id, document_name=s.command_document)
        if backend == "task":
            if not s.task_cluster or not s.task_definition:
                raise ConfigError(
                    "UNITY_BUILDER_TASK_CLUSTER and UNITY_BUILDER_TASK_DEFINITION are "
                    "required for the task backend"
                )
            return EphemeralTaskTarget(
                cluster=s.task_cluster,
                task_definition=s.task_definition,
                subnets=tuple(s.subnet_ids),
                security_groups=tuple(s.security_group_ids),
                container_name=s.task_container,
            )
        raise ConfigError(f"Unknown backend {backend!r}")

    def command_plan(self) -> CommandPlan:
        s = self.settings
        return CommandPlan(
            script=s.build_script,
            user=s.build_user or None,
            delivery=PayloadDelivery(
                path=s.payload_path,
                inline_limit=s.payload_inline_limit,
                owner=s.build_user or None,
            ),
            fire_and_forget=s.fire_and_forget,
            log_path=s.remote_log_path,
            execution_timeout=s.command_execution_timeout,
        )

    def service(self, backend: str | None = None) -> DispatchService:
        """Service wired for ``backend`` only; the other backend's clients are never built."""
        s = self.settings
        backend = backend or s.backend
        kwargs: dict[str, Any] = {}
        if backend == "task":
            ecs = self.client("ecs")
            kwargs["task_guard"] = TaskFamilyGuard(ecs, statuses=s.pending_statuses or ("PENDING",))
            kwargs["task_dispatcher"] = EphemeralTaskDispatcher(ecs)
        else:
            kwargs["instance_controller"] = InstanceLifecycleController(
                self.client("ec2"),
                clock=self.clock,
                poll_interval=s.instance_poll_interval,
                max_attempts=s.instance_poll_attempts,
                grace_seconds=s.instance_grace_seconds,
            )
            kwargs["executor"] = RemoteCommandExecutor(
                self.client("ssm"),
                clock=self.clock,
                poll_interval=s.command_poll_interval,
                max_attempts=s.command_poll_attempts,
            )
        return DispatchService(
            catalog=self.catalog,
            objects=self.objects,
            prefix=s.asset_prefix,
            extension=s.asset_extension,
            command_plan=self.command_plan(),
            **kwargs,
        )

    def deadline(self, context: Any = None) -> Deadline:
        """Invocation deadline: the runtime's remaining time less a margin.

        Without a runtime context (CLI, tests) ``max_run_seconds`` applies.
        """
        seconds = self.settings.max_run_seconds
        remaining_ms = getattr(context, "get_remaining_time_in_millis", None)
        if callable(remaining_ms):
            seconds = remaining_ms() / 1000.0
        seconds = max(0.0, seconds - self.settings.deadline_margin_seconds)
        logger.debug("deadline_set", seconds=seconds)
        return Deadline.after(seconds, self.clock)

    def close(self) -> None:
        if "catalog_pool" in self.__dict__:
            self.catalog_pool.close()


__all__ = ["BuilderEnvironment"]
