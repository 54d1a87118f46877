"""
Secret retrieval.

The builder needs two pieces of secret material: the catalog connection
string and the file-transfer credentials. Both live in AWS Secrets Manager in
deployed environments and in environment variables during local runs. This
module hides that behind ``SecretsResolver``, which tries its backends in
order and wraps results in ``SecretValue`` so they never end up in logs.

Architecture:
    ::

        SecretsResolver([AwsSecretsManagerBackend(client), EnvSecretBackend()])
          ├── .resolve(name)       → str   (first backend wins)
          └── .resolve_json(name)  → dict  (JSON SecretString)

        resolve_field(resolver, name, field)
          JSON secret with ``field``  → that value
          plain-string secret         → the whole string

Guardrails:
    - Secrets are never logged: use ``SecretValue`` when passing them around
    - A backend that does not know a name returns None; any other failure
      raises so callers can surface it
    - Nothing is cached: a rotated or revoked secret applies on the next
      resolve

Tags:
    secrets, credentials, secretsmanager, security
"""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from typing import Any

from botocore.exceptions import ClientError

from unity_builder.core.errors import ConfigError, aws_error_code, describe_aws_error

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class MissingSecretError(ConfigError):
    """Raised when a secret cannot be resolved from any backend."""

    def __init__(self, key: str, tried_backends: list[str] | None = None):
        self.key = key
        self.tried_backends = tried_backends or []

        msg = f"Secret not found: {key}"
        if self.tried_backends:
            msg += f" (tried: {', '.join(self.tried_backends)})"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# SecretValue wrapper
# ---------------------------------------------------------------------------


class SecretValue:
    """Wrapper for secret values that prevents accidental logging.

    Example:
        >>> secret = SecretValue("mongodb://user:pw@host/db")
        >>> str(secret)
        '[REDACTED]'
        >>> secret.get_secret()
        'mongodb://user:pw@host/db'
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        return self._value

    def __str__(self) -> str:
        return "[REDACTED]"

    def __repr__(self) -> str:
        return "SecretValue('[REDACTED]')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)


# ---------------------------------------------------------------------------
# Secret backends
# ---------------------------------------------------------------------------


class SecretBackend(ABC):
    """Abstract base for secret backends."""

    @abstractmethod
    def get(self, name: str) -> str | None:
        """Return the secret string, or None if this backend does not have it."""
        ...


class AwsSecretsManagerBackend(SecretBackend):
    """Resolve secrets from AWS Secrets Manager.

    ``name`` is a secret ARN or friendly name. Every call reads the current
    version.
    """

    def __init__(self, client: Any):
        self._client = client

    def get(self, name: str) -> str | None:
        try:
            response = self._client.get_secret_value(SecretId=name)
        except ClientError as exc:
            if aws_error_code(exc) == "ResourceNotFoundException":
                return None
            raise ConfigError(
                f"Could not read secret {name!r}",
                diagnostics=describe_aws_error(exc),
                cause=exc,
            ) from exc

        return response.get("SecretString")


class EnvSecretBackend(SecretBackend):
    """Resolve secrets from environment variables.

    Tries ``{NAME}`` and then ``UNITY_BUILDER_SECRET_{NAME}``.
    """

    def get(self, name: str) -> str | None:
        key_upper = name.upper()
        for pattern in (key_upper, f"UNITY_BUILDER_SECRET_{key_upper}"):
            value = os.environ.get(pattern)
            if value is not None:
                return value
        return None


class DictSecretBackend(SecretBackend):
    """In-memory secret backend for tests and local runs."""

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets) if secrets else {}

    def get(self, name: str) -> str | None:
        return self._secrets.get(name)

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value


# ---------------------------------------------------------------------------
# SecretsResolver
# ---------------------------------------------------------------------------


class SecretsResolver:
    """Multi-backend secrets resolver.

    Args:
        backends: Backends to try, in order.
    """

    def __init__(self, backends: list[SecretBackend] | None = None):
        self._backends: list[SecretBackend] = list(backends) if backends is not None else []

    def resolve(self, key: str) -> str:
        """Resolve a secret by key.

        Raises:
            MissingSecretError: If no backend has the secret.
        """
        tried: list[str] = []
        for backend in self._backends:
            tried.append(type(backend).__name__)
            value = backend.get(key)
            if value is not None:
                return value
        raise MissingSecretError(key, tried)

    def resolve_json(self, key: str) -> dict[str, Any]:
        """Resolve a secret whose value is a JSON object."""
        raw = self.resolve(key)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Secret {key!r} is not valid JSON", cause=exc) from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Secret {key!r} is not a JSON object")
        return data

    def add_backend(self, backend: SecretBackend, priority: int = -1) -> None:
        if priority < 0:
            self._backends.append(backend)
        else:
            self._backends.insert(priority, backend)


def resolve_field(resolver: SecretsResolver, key: str, field: str) -> SecretValue:
    """Resolve one field of a secret.

    JSON-object secrets must carry ``field``; any other secret string is
    returned whole, which lets a plain env var stand in for the JSON secret.
    """
    raw = resolver.resolve(key)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return SecretValue(raw)
    if not isinstance(data, dict):
        return SecretValue(raw)
    value = data.get(field)
    if not value:
        raise ConfigError(f"Secret {key!r} has no field {field!r}")
    return SecretValue(str(value))


__all__ = [
    "MissingSecretError",
    "SecretValue",
    "SecretBackend",
    "AwsSecretsManagerBackend",
    "EnvSecretBackend",
    "DictSecretBackend",
    "SecretsResolver",
    "resolve_field",
]
