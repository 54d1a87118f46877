"""Credential check for the managed file-transfer service.

The transfer server calls this with ``{username, password, protocol,
serverId, sourceIp}`` and expects either the session parameters for the
authenticated user or an empty object, which it reads as "access denied".
Valid credentials live in one JSON secret: ``{"username": ..., "password": ...}``.

Any error (missing secret, malformed secret, backend failure) denies access;
the handler never raises and never logs the submitted password.
"""

from __future__ import annotations

import hmac
from collections.abc import Mapping
from typing import Any

from unity_builder.core.errors import ConfigError
from unity_builder.core.logging import get_logger
from unity_builder.core.secrets import SecretsResolver
from unity_builder.core.settings import BuilderSettings, get_settings

logger = get_logger(__name__)

DENY: dict[str, Any] = {}


def _matches(supplied: str, expected: Any) -> bool:
    if not isinstance(expected, str) or not expected:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def authenticate(
    event: Mapping[str, Any],
    resolver: SecretsResolver,
    settings: BuilderSettings,
) -> dict[str, Any]:
    """Return session parameters for valid credentials, ``{}`` otherwise."""
    username = event.get("username")
    password = event.get("password")
    logger.info(
        "transfer_auth_requested",
        username=username,
        server_id=event.get("serverId"),
        protocol=event.get("protocol"),
        source_ip=event.get("sourceIp"),
    )
    if not username or not password:
        logger.info("transfer_auth_denied", reason="missing_credentials")
        return dict(DENY)

    if not settings.transfer_secret_id:
        raise ConfigError("UNITY_BUILDER_TRANSFER_SECRET_ID is not set")
    credentials = resolver.resolve_json(settings.transfer_secret_id)

    # both comparisons always run
    user_ok = _matches(str(username), credentials.get("username"))
    password_ok = _matches(str(password), credentials.get("password"))
    if not (user_ok and password_ok):
        logger.info("transfer_auth_denied", reason="invalid_credentials", username=username)
        return dict(DENY)

    if not settings.transfer_role_arn or not settings.home_bucket:
        raise ConfigError("Transfer role ARN and home bucket must be configured")
    logger.info("transfer_auth_granted", username=username)
    return {
        "Role": settings.transfer_role_arn,
        "HomeDirectoryType": "PATH",
        "HomeDirectory": f"/{settings.home_bucket}",
    }


_resolver: SecretsResolver | None = None


def _default_resolver() -> SecretsResolver:
    global _resolver
    if _resolver is None:
        from unity_builder.environment import BuilderEnvironment

        _resolver = BuilderEnvironment(get_settings()).secrets
    return _resolver


def handler(event: Any, context: Any = None) -> dict[str, Any]:
    if not isinstance(event, Mapping):
        return dict(DENY)
    try:
        return authenticate(event, _default_resolver(), get_settings())
    except Exception as exc:
        logger.error("transfer_auth_error", error_type=type(exc).__name__, error=str(exc))
        return dict(DENY)


__all__ = ["authenticate", "handler"]
