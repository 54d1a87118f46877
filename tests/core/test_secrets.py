"""Tests for secrets resolver module."""

import json
from unittest.mock import MagicMock

import pytest

from unity_builder.core.errors import ConfigError
from unity_builder.core.secrets import (
    AwsSecretsManagerBackend,
    DictSecretBackend,
    EnvSecretBackend,
    MissingSecretError,
    SecretsResolver,
    SecretValue,
    resolve_field,
)
from conftest import make_client_error


class TestSecretValue:
    """Tests for SecretValue wrapper."""

    def test_str_and_repr_are_redacted(self):
        sv = SecretValue("mongodb://user:pw@host/db")
        assert str(sv) == "[REDACTED]"
        assert "pw@host" not in repr(sv)
        assert sv.get_secret() == "mongodb://user:pw@host/db"

    def test_equality_and_truthiness(self):
        assert SecretValue("a") == SecretValue("a")
        assert SecretValue("a") != SecretValue("b")
        assert not SecretValue("")


class TestAwsSecretsManagerBackend:
    def test_returns_secret_string(self):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": '{"MONGODB_URI": "mongodb://x"}'}
        backend = AwsSecretsManagerBackend(client)

        assert backend.get("arn:secret") == '{"MONGODB_URI": "mongodb://x"}'
        client.get_secret_value.assert_called_once_with(SecretId="arn:secret")

    def test_rotated_secret_is_read_on_next_call(self):
        client = MagicMock()
        client.get_secret_value.side_effect = [{"SecretString": "old"}, {"SecretString": "rotated"}]
        backend = AwsSecretsManagerBackend(client)
        assert backend.get("s") == "old"
        assert backend.get("s") == "rotated"
        assert client.get_secret_value.call_count == 2

    def test_binary_secret_is_none(self):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretBinary": b"\x00"}
        assert AwsSecretsManagerBackend(client).get("s") is None

    def test_not_found_returns_none(self):
        client = MagicMock()
        client.get_secret_value.side_effect = make_client_error("ResourceNotFoundException")
        assert AwsSecretsManagerBackend(client).get("missing") is None

    def test_other_errors_raise_config_error(self):
        client = MagicMock()
        client.get_secret_value.side_effect = make_client_error("AccessDeniedException", "denied")
        with pytest.raises(ConfigError) as exc_info:
            AwsSecretsManagerBackend(client).get("locked")
        assert exc_info.value.diagnostics == "AccessDeniedException: denied"


class TestEnvSecretBackend:
    def test_plain_name(self, monkeypatch):
        monkeypatch.setenv("CATALOG_URI", "mongodb://env")
        assert EnvSecretBackend().get("catalog_uri") == "mongodb://env"

    def test_prefixed_name(self, monkeypatch):
        monkeypatch.setenv("UNITY_BUILDER_SECRET_TRANSFER", "{}")
        assert EnvSecretBackend().get("transfer") == "{}"

    def test_missing(self):
        assert EnvSecretBackend().get("definitely_not_set_anywhere") is None


class TestSecretsResolver:
    def test_first_backend_wins(self):
        resolver = SecretsResolver([DictSecretBackend({"k": "first"}), DictSecretBackend({"k": "second"})])
        assert resolver.resolve("k") == "first"

    def test_falls_through_to_later_backend(self):
        resolver = SecretsResolver([DictSecretBackend(), DictSecretBackend({"k": "second"})])
        assert resolver.resolve("k") == "second"

    def test_missing_lists_tried_backends(self):
        resolver = SecretsResolver([DictSecretBackend()])
        with pytest.raises(MissingSecretError) as exc_info:
            resolver.resolve("nope")
        assert exc_info.value.tried_backends == ["DictSecretBackend"]
        assert isinstance(exc_info.value, ConfigError)

    def test_add_backend_with_priority(self):
        resolver = SecretsResolver([DictSecretBackend({"k": "low"})])
        resolver.add_backend(DictSecretBackend({"k": "high"}), priority=0)
        assert resolver.resolve("k") == "high"

    def test_resolve_json(self):
        resolver = SecretsResolver([DictSecretBackend({"creds": json.dumps({"username": "u"})})])
        assert resolver.resolve_json("creds") == {"username": "u"}

    def test_resolve_json_rejects_non_object(self):
        resolver = SecretsResolver([DictSecretBackend({"a": "not json", "b": "[1, 2]"})])
        with pytest.raises(ConfigError):
            resolver.resolve_json("a")
        with pytest.raises(ConfigError):
            resolver.resolve_json("b")


class TestResolveField:
    def test_json_field(self):
        resolver = SecretsResolver([DictSecretBackend({"s": '{"MONGODB_URI": "mongodb://h/db"}'})])
        value = resolve_field(resolver, "s", "MONGODB_URI")
        assert isinstance(value, SecretValue)
        assert value.get_secret() == "mongodb://h/db"

    def test_plain_string_returned_whole(self):
        resolver = SecretsResolver([DictSecretBackend({"s": "mongodb://plain/db"})])
        assert resolve_field(resolver, "s", "MONGODB_URI").get_secret() == "mongodb://plain/db"

    def test_json_without_field_is_config_error(self):
        resolver = SecretsResolver([DictSecretBackend({"s": '{"OTHER": "x"}'})])
        with pytest.raises(ConfigError, match="MONGODB_URI"):
            resolve_field(resolver, "s", "MONGODB_URI")
