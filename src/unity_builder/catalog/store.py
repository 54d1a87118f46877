"""Catalog store adapters.

``CatalogStore`` is the narrow read interface the reconciliation needs: every
asset reference recorded in the catalog. ``MongoCatalogStore`` reads tour
documents through a ``CatalogConnectionPool``; ``InMemoryCatalogStore`` backs
tests and dry runs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Protocol, runtime_checkable

from pymongo.errors import PyMongoError

from unity_builder.catalog.models import AssetReference, iter_asset_references
from unity_builder.catalog.pool import CatalogConnectionPool
from unity_builder.core.errors import CatalogConnectionError
from unity_builder.core.logging import get_logger

logger = get_logger(__name__)

# Only the fields the projection reads
_SCENE_PROJECTION_FIELDS = ("_id", "id", "name", "storageKey", "s3Key", "audioKey", "thumbnailKey")


@runtime_checkable
class CatalogStore(Protocol):
    """Read interface over the tour catalog."""

    def asset_references(self) -> list[AssetReference]:
        """Return one reference per scene of every tour."""
        ...


class MongoCatalogStore:
    """Catalog store backed by a MongoDB collection of tour documents."""

    def __init__(
        self,
        pool: CatalogConnectionPool,
        *,
        collection: str = "tours",
        items_field: str = "scenes",
    ):
        self._pool = pool
        self._collection = collection
        self._items_field = items_field

    def _projection(self) -> dict[str, int]:
        projection = {"_id": 1}
        for name in _SCENE_PROJECTION_FIELDS:
            projection[f"{self._items_field}.{name}"] = 1
        return projection

    def asset_references(self) -> list[AssetReference]:
        try:
            cursor = self._pool.database()[self._collection].find({}, self._projection())
            references = list(iter_asset_references(cursor, self._items_field))
        except PyMongoError as exc:
            raise CatalogConnectionError(
                f"Failed to read catalog collection {self._collection!r}",
                diagnostics=str(exc),
                cause=exc,
            ) from exc
        logger.info(
            "catalog_references_loaded",
            collection=self._collection,
            references=len(references),
        )
        return references

    def list_collections(self) -> list[str]:
        """Collection names in the catalog database (connectivity check)."""
        try:
            return sorted(self._pool.database().list_collection_names())
        except PyMongoError as exc:
            raise CatalogConnectionError(
                "Failed to list catalog collections", diagnostics=str(exc), cause=exc
            ) from exc


class InMemoryCatalogStore:
    """Catalog store over a list of tour documents."""

    def __init__(
        self,
        tours: Iterable[Mapping[str, Any]] | None = None,
        *,
        items_field: str = "scenes",
    ):
        self.tours: list[Mapping[str, Any]] = list(tours or [])
        self._items_field = items_field

    def asset_references(self) -> list[AssetReference]:
        return list(iter_asset_references(self.tours, self._items_field))

    def list_collections(self) -> list[str]:
        return ["tours"] if self.tours else []


__all__ = ["CatalogStore", "MongoCatalogStore", "InMemoryCatalogStore"]
