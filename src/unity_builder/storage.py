"""Object store adapters.

The reconciliation needs one thing from object storage: the set of keys
present under the asset prefix, with that prefix removed. ``S3ObjectStore``
pages through ``list_objects_v2``; ``InMemoryObjectStore`` backs tests.

Example::

    store = S3ObjectStore(boto3.client("s3"), bucket="tour-assets")
    keys = store.key_set("image/")      # frozenset({"foo.jpg", "bar.jpg"})
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any, Protocol, runtime_checkable

from botocore.exceptions import BotoCoreError, ClientError

from unity_builder.core.errors import TransientRemoteError, describe_aws_error
from unity_builder.core.logging import get_logger

logger = get_logger(__name__)


def strip_prefix(key: str, prefix: str) -> str:
    if prefix and key.startswith(prefix):
        return key[len(prefix):]
    return key


@runtime_checkable
class ObjectStore(Protocol):
    """Read interface over an object storage bucket."""

    def key_set(self, prefix: str) -> frozenset[str]:
        """Return the keys under ``prefix`` with the prefix stripped."""
        ...


def build_key_set(keys: Iterable[str], prefix: str) -> frozenset[str]:
    """Normalize raw keys into a StorageKeySet.

    The prefix is stripped; the prefix's own "folder" placeholder (an empty key
    once stripped) is dropped.
    """
    return frozenset(k for k in (strip_prefix(key, prefix) for key in keys) if k)


class S3ObjectStore:
    """Object store backed by an S3 bucket."""

    def __init__(self, client: Any, bucket: str):
        self.client = client
        self.bucket = bucket

    def list_keys(self, prefix: str) -> Iterator[str]:
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                yield obj["Key"]

    def key_set(self, prefix: str) -> frozenset[str]:
        try:
            keys = build_key_set(self.list_keys(prefix), prefix)
        except (BotoCoreError, ClientError) as exc:
            raise TransientRemoteError(
                f"Failed to list s3://{self.bucket}/{prefix}",
                diagnostics=describe_aws_error(exc),
                cause=exc,
            ) from exc
        logger.info("storage_keys_listed", bucket=self.bucket, prefix=prefix, keys=len(keys))
        return keys


class InMemoryObjectStore:
    """Object store over a fixed list of keys."""

    def __init__(self, keys: Iterable[str] | None = None):
        self.keys: list[str] = list(keys or [])

    def list_keys(self, prefix: str) -> Iterator[str]:
        return (k for k in self.keys if k.startswith(prefix))

    def key_set(self, prefix: str) -> frozenset[str]:
        return build_key_set(self.list_keys(prefix), prefix)


__all__ = [
    "ObjectStore",
    "S3ObjectStore",
    "InMemoryObjectStore",
    "build_key_set",
    "strip_prefix",
]
