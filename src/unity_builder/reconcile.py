"""
Reconciliation engine.

Decides which catalog scenes are buildable: those whose image now exists in
object storage.

Historical catalog data stores the image key three different ways, so each
reference is tested under three representations::

    storage_key          "image/foo.jpg"     raw
    prefix stripped      "foo.jpg"
    normalized           "foo"               prefix and extension stripped

A reference matches when any of the three is in the StorageKeySet. The key
set is a ``frozenset`` so the whole pass is one membership test per
reference. References without a storage key are skipped.

Example:
    >>> refs = [AssetReference("t1", "s1", "Lobby", "image/foo.jpg")]
    >>> matches = reconcile({"foo.jpg"}, refs, prefix="image/", extension=".jpg")
    >>> len(matches)
    1
"""

from __future__ import annotations

from collections.abc import Iterable

from unity_builder.catalog.models import AssetReference
from unity_builder.core.logging import get_logger
from unity_builder.storage import strip_prefix

logger = get_logger(__name__)

MatchSet = tuple[AssetReference, ...]


def strip_extension(key: str, extension: str) -> str:
    if extension and key.lower().endswith(extension.lower()):
        return key[: -len(extension)]
    return key


def key_representations(storage_key: str, *, prefix: str, extension: str) -> tuple[str, str, str]:
    """Return (raw, prefix-stripped, normalized) forms of a storage key."""
    stripped = strip_prefix(storage_key, prefix)
    return storage_key, stripped, strip_extension(stripped, extension)


def reconcile(
    keys: Iterable[str],
    references: Iterable[AssetReference],
    *,
    prefix: str,
    extension: str,
) -> MatchSet:
    """Return the references whose storage key is present in ``keys``.

    Pure: no I/O, and the same inputs always give the same MatchSet. Duplicate
    references for the same scene are kept.
    """
    key_set = keys if isinstance(keys, (set, frozenset)) else frozenset(keys)

    matches: list[AssetReference] = []
    skipped = 0
    for reference in references:
        if not reference.storage_key:
            skipped += 1
            continue
        forms = key_representations(reference.storage_key, prefix=prefix, extension=extension)
        if any(form in key_set for form in forms):
            matches.append(reference)

    logger.debug(
        "reconcile_completed",
        storage_keys=len(key_set),
        matched=len(matches),
        skipped_without_key=skipped,
    )
    return tuple(matches)


__all__ = ["MatchSet", "reconcile", "key_representations", "strip_extension"]
