"""Catalog access: asset projections, store adapters and the connection pool."""

from unity_builder.catalog.models import AssetReference, iter_asset_references
from unity_builder.catalog.pool import CatalogConnectionPool
from unity_builder.catalog.store import CatalogStore, InMemoryCatalogStore, MongoCatalogStore

__all__ = [
    "AssetReference",
    "iter_asset_references",
    "CatalogConnectionPool",
    "CatalogStore",
    "InMemoryCatalogStore",
    "MongoCatalogStore",
]
