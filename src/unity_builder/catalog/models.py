"""Catalog read projections.

A catalog document is a tour; its nested ``scenes`` list holds the buildable
units. ``AssetReference`` is the flattened, read-only view of one scene.

Scenes carry their image key under one of two historical field names:
``storageKey`` (current) and ``s3Key`` (legacy). ``AssetReference.from_scene``
is the only place that knows about both.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

CURRENT_KEY_FIELD = "storageKey"
LEGACY_KEY_FIELD = "s3Key"


def _as_id(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class AssetReference:
    """One buildable scene of a tour.

    Attributes:
        tour_id: Identifier of the owning catalog document.
        scene_id: Identifier of the scene within the tour.
        name: Human-readable scene name.
        storage_key: Object key of the scene image, whichever field it came from.
        audio_key: Optional narration audio key.
        thumbnail_key: Optional thumbnail key.
    """

    tour_id: str | None
    scene_id: str | None
    name: str | None
    storage_key: str | None
    audio_key: str | None = None
    thumbnail_key: str | None = None

    @classmethod
    def from_scene(
        cls,
        tour: Mapping[str, Any],
        scene: Mapping[str, Any],
    ) -> AssetReference:
        storage_key = _optional_str(scene.get(CURRENT_KEY_FIELD)) or _optional_str(
            scene.get(LEGACY_KEY_FIELD)
        )
        return cls(
            tour_id=_as_id(tour.get("_id")),
            scene_id=_as_id(scene.get("_id") or scene.get("id")),
            name=_optional_str(scene.get("name")),
            storage_key=storage_key,
            audio_key=_optional_str(scene.get("audioKey")),
            thumbnail_key=_optional_str(scene.get("thumbnailKey")),
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the build job's input (camelCase, no empty fields)."""
        data = {
            "tourId": self.tour_id,
            "sceneId": self.scene_id,
            "name": self.name,
            "storageKey": self.storage_key,
            "audioKey": self.audio_key,
            "thumbnailKey": self.thumbnail_key,
        }
        return {k: v for k, v in data.items() if v is not None}


def iter_asset_references(
    tours: Iterable[Mapping[str, Any]],
    items_field: str = "scenes",
) -> Iterator[AssetReference]:
    """Flatten tour documents into one ``AssetReference`` per scene.

    Tours without a scene list, and scene entries that are not mappings, are
    skipped.
    """
    for tour in tours:
        scenes = tour.get(items_field) or []
        if not isinstance(scenes, list):
            continue
        for scene in scenes:
            if isinstance(scene, Mapping):
                yield AssetReference.from_scene(tour, scene)


__all__ = [
    "CURRENT_KEY_FIELD",
    "LEGACY_KEY_FIELD",
    "AssetReference",
    "iter_asset_references",
]
