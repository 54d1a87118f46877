"""Tests for the unity-builder CLI."""

import json
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from unity_builder import __version__, cli
from unity_builder.catalog.models import AssetReference
from unity_builder.core.errors import CatalogConnectionError, ConfigError
from unity_builder.execution.models import BackendKind, DispatchResult

runner = CliRunner()


@pytest.fixture
def env(monkeypatch):
    fake = MagicMock()
    monkeypatch.setattr(cli, "_environment", lambda: fake)
    return fake


class TestVersion:
    def test_version(self):
        result = runner.invoke(cli.app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestReconcile:
    def test_json_output(self, env):
        env.service.return_value.reconcile.return_value = (AssetReference("t1", "s1", "Lobby", "image/foo.jpg"),)
        result = runner.invoke(cli.app, ["reconcile", "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == [
            {"tourId": "t1", "sceneId": "s1", "name": "Lobby", "storageKey": "image/foo.jpg"}
        ]
        env.close.assert_called_once()

    def test_table_output(self, env):
        env.service.return_value.reconcile.return_value = (AssetReference("t1", "s1", None, "image/foo.jpg"),)
        result = runner.invoke(cli.app, ["reconcile"])
        assert result.exit_code == 0
        assert "Matching assets (1)" in result.output

    def test_error_exits_nonzero(self, env):
        env.service.return_value.reconcile.side_effect = CatalogConnectionError("no catalog")
        result = runner.invoke(cli.app, ["reconcile"])
        assert result.exit_code == 1


class TestDispatch:
    def test_dry_run_with_backend(self, env):
        env.service.return_value.run.return_value = DispatchResult.skipped(
            BackendKind.PERSISTENT_INSTANCE, 4, "Dry run: 4 asset(s) would be dispatched"
        )
        result = runner.invoke(cli.app, ["dispatch", "--backend", "instance", "--dry-run"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["matchingAssetCount"] == 4
        env.target.assert_called_once_with("instance")
        env.service.assert_called_once_with("instance")
        assert env.service.return_value.run.call_args.kwargs["dry_run"] is True

    def test_unknown_backend(self, env):
        result = runner.invoke(cli.app, ["dispatch", "--backend", "lambda"])
        assert result.exit_code == 2
        env.target.assert_not_called()

    def test_config_error(self, env):
        env.target.side_effect = ConfigError("UNITY_BUILDER_INSTANCE_ID is required")
        result = runner.invoke(cli.app, ["dispatch", "--backend", "instance"])
        assert result.exit_code == 1


class TestCheck:
    def test_reachable(self, env):
        env.catalog_pool.ping.return_value = True
        env.catalog.list_collections.return_value = ["tours"]
        result = runner.invoke(cli.app, ["check"])
        assert result.exit_code == 0
        assert "tours" in result.output

    def test_unreachable(self, env):
        env.catalog_pool.database.side_effect = CatalogConnectionError("Failed to connect to catalog")
        result = runner.invoke(cli.app, ["check"])
        assert result.exit_code == 1


class TestConfig:
    def test_json(self, monkeypatch):
        monkeypatch.setenv("UNITY_BUILDER_ASSET_BUCKET", "tour-assets")
        result = runner.invoke(cli.app, ["config", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["asset_bucket"] == "tour-assets"

    def test_env_format(self):
        result = runner.invoke(cli.app, ["config", "--format", "env"])
        assert "UNITY_BUILDER_BACKEND=task" in result.output

    def test_redaction(self):
        redacted = cli.redact_settings({"catalog_uri": "mongodb://u:p@h", "asset_bucket": "b", "api_token": None})
        assert redacted == {"catalog_uri": "**********", "asset_bucket": "b", "api_token": None}
