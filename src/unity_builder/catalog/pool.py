"""Catalog connection pool.

Function runtimes keep the process alive between triggers, so the MongoDB
client is worth reusing. ``CatalogConnectionPool`` owns that client
explicitly: every ``database()`` call pings the server first and, if the ping
fails, throws the client away and connects again (re-resolving the
connection string, in case the secret was rotated).

Architecture:
    ::

        BuilderEnvironment
          └── CatalogConnectionPool(uri_provider, client_factory=MongoClient)
                ├── database()  ─ ping cached client ─ ok → reuse
                │                                   └ fail → close, reconnect
                ├── ping()      ─ liveness only, never reconnects
                └── close()

Example::

    pool = CatalogConnectionPool(lambda: resolve_field(resolver, arn, "MONGODB_URI"))
    tours = pool.database()["tours"]
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from unity_builder.core.errors import CatalogConnectionError
from unity_builder.core.logging import get_logger
from unity_builder.core.secrets import SecretValue

logger = get_logger(__name__)


class CatalogConnectionPool:
    """Liveness-checked, lazily created catalog client.

    Args:
        uri_provider: Returns the connection string. Called on every
            (re)connect, never cached here.
        database_name: Database to use. None uses the URI's default database.
        client_factory: Builds the client; ``MongoClient`` unless a test
            injects something else.
        client_options: Extra keyword arguments for the client factory.
    """

    def __init__(
        self,
        uri_provider: Callable[[], SecretValue | str],
        *,
        database_name: str | None = None,
        client_factory: Callable[..., Any] = MongoClient,
        **client_options: Any,
    ):
        self._uri_provider = uri_provider
        self._database_name = database_name
        self._client_factory = client_factory
        self._client_options = client_options
        self._client: Any | None = None
        self._lock = threading.Lock()
        self.connect_count = 0

    def _is_alive(self, client: Any) -> bool:
        try:
            client.admin.command("ping")
            return True
        except PyMongoError as exc:
            logger.warning("catalog_ping_failed", error=str(exc))
            return False

    def _connect(self) -> Any:
        uri = self._uri_provider()
        if isinstance(uri, SecretValue):
            uri = uri.get_secret()
        logger.info("catalog_connecting")
        try:
            client = self._client_factory(uri, **self._client_options)
        except PyMongoError as exc:
            raise CatalogConnectionError(
                "Failed to connect to catalog", diagnostics=str(exc), cause=exc
            ) from exc
        try:
            client.admin.command("ping")
        except PyMongoError as exc:
            # the client owns monitor threads even when no server answered
            self._close_quietly(client)
            raise CatalogConnectionError(
                "Failed to connect to catalog", diagnostics=str(exc), cause=exc
            ) from exc
        self.connect_count += 1
        logger.info("catalog_connected", connect_count=self.connect_count)
        return client

    def client(self) -> Any:
        """Return a live client, reconnecting if the cached one is stale."""
        with self._lock:
            if self._client is not None:
                if self._is_alive(self._client):
                    logger.debug("catalog_connection_reused")
                    return self._client
                self._discard()
            self._client = self._connect()
            return self._client

    def database(self) -> Any:
        client = self.client()
        if self._database_name:
            return client[self._database_name]
        return client.get_default_database()

    def ping(self) -> bool:
        """Report whether the cached client is alive, without reconnecting."""
        with self._lock:
            return self._client is not None and self._is_alive(self._client)

    @staticmethod
    def _close_quietly(client: Any) -> None:
        try:
            client.close()
        except PyMongoError as exc:
            logger.debug("catalog_close_failed", error=str(exc))

    def _discard(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            self._close_quietly(client)

    def close(self) -> None:
        with self._lock:
            self._discard()


__all__ = ["CatalogConnectionPool"]
