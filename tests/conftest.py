"""
Shared pytest fixtures for unity-builder tests.

This module provides:
- Settings/environment isolation (no developer ``UNITY_BUILDER_*`` vars leak in)
- ``ManualClock`` so polling tests never sleep
- Catalog and storage fixtures for reconciliation scenarios
- ``client_error`` for building botocore ``ClientError`` instances
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

# Ensure unity_builder package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from unity_builder.catalog.store import InMemoryCatalogStore
from unity_builder.core.settings import clear_settings_cache
from unity_builder.execution.polling import ManualClock
from unity_builder.storage import InMemoryObjectStore


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Clear cached settings and any UNITY_BUILDER_* env vars for every test."""
    import os

    for key in list(os.environ):
        if key.startswith("UNITY_BUILDER_"):
            monkeypatch.delenv(key, raising=False)
    # no stray .env file from the working directory
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Helpers
# =============================================================================


def make_client_error(code: str, message: str = "boom", operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@pytest.fixture
def client_error():
    return make_client_error


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


# =============================================================================
# Catalog / storage fixtures
# =============================================================================


@pytest.fixture
def tours() -> list[dict]:
    return [
        {
            "_id": "tour-1",
            "scenes": [
                {"_id": "s1", "name": "Lobby", "storageKey": "image/foo.jpg"},
                {"_id": "s2", "name": "Kitchen", "s3Key": "kitchen.jpg"},
                {"_id": "s5", "name": "Porch", "storageKey": "image/porch.JPG"},
                {"_id": "s3", "name": "Attic", "storageKey": "image/attic.jpg"},
            ],
        },
        {
            "_id": "tour-2",
            "scenes": [
                {"_id": "s4", "name": "No key"},
            ],
        },
    ]


@pytest.fixture
def catalog(tours) -> InMemoryCatalogStore:
    return InMemoryCatalogStore(tours)


@pytest.fixture
def objects() -> InMemoryObjectStore:
    # attic.jpg is catalogued but never uploaded
    return InMemoryObjectStore(
        ["image/foo.jpg", "image/kitchen.jpg", "image/porch", "image/orphan.jpg", "other/foo.jpg"]
    )


@pytest.fixture
def ecs() -> MagicMock:
    """ECS client with an empty cluster and a successful run_task."""
    client = MagicMock()
    paginator = MagicMock()
    paginator.paginate.return_value = [{"taskArns": []}]
    client.get_paginator.return_value = paginator
    client.describe_tasks.return_value = {"tasks": []}
    client.run_task.return_value = {
        "tasks": [{"taskArn": "arn:aws:ecs:us-east-1:123:task/builds/abc"}],
        "failures": [],
    }
    return client
