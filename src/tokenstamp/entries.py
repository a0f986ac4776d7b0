from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".webp", ".png", ".jpg", ".jpeg", ".gif", ".svg")

_SCALE_SUFFIX = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*x\s*$", re.IGNORECASE)


class CardLike(Protocol):
    """UI element reference exposing ``data-*`` attributes (an asset card)."""

    def get_attribute(self, name: str) -> Optional[str]: ...


@dataclass
class PlacementEntry:
    """One placeable asset candidate.

    Mutated in place only when a download resolves (``cached_local_path``).
    """

    source: str = "local"
    tier: str = "free"
    filename: str = ""
    folder_path: str = ""
    full_path: str = ""
    cached_local_path: str = ""
    display_name: str = ""
    grid_width: float = 1
    grid_height: float = 1
    scale: float = 1
    color_variant: Optional[str] = None
    variant_group_key: str = ""
    thumbnail_url: str = ""
    identity_key: str = ""

    @property
    def is_cloud(self) -> bool:
        return self.source == "cloud"

    @property
    def is_premium(self) -> bool:
        return self.tier == "premium"

    @property
    def footprint(self) -> Tuple[float, float, float]:
        return (self.grid_width, self.grid_height, self.scale)

    def mark_cached(self, local_path: str) -> None:
        if local_path:
            self.cached_local_path = local_path


def join_path(folder: str, name: str) -> str:
    filename = str(name or "").strip()
    base = str(folder or "").strip()
    if not filename:
        return base
    if not base:
        return filename
    return f"{base.rstrip('/')}/{filename}"


def looks_like_image(path: str) -> bool:
    """True when ``path`` (ignoring any query string) ends in a known image extension."""
    if not path:
        return False
    bare = str(path).split("?", 1)[0].split("#", 1)[0]
    return bare.lower().endswith(IMAGE_EXTENSIONS)


def identity_key_for(full_path: str, folder_path: str, filename: str, display_name: str) -> str:
    for value in (full_path, folder_path, filename, display_name):
        if value:
            return str(value).lower()
    return ""


def _parse_positive_number(value: Any, default: float = 1) -> float:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        match = _SCALE_SUFFIX.match(value)
        text = match.group(1) if match else value.strip()
        try:
            number = float(text)
        except ValueError:
            return default
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return default
    if number != number or number <= 0:  # NaN or non-positive
        return default
    return int(number) if number.is_integer() else number


# Canonical field -> accepted raw keys, in lookup order
_FIELD_KEYS = {
    "source": ("source",),
    "tier": ("tier",),
    "filename": ("filename",),
    "folder_path": ("folder_path", "folderPath", "path"),
    "full_path": ("full_path", "fullPath", "file_path"),
    "cached_local_path": ("cached_local_path", "cachedLocalPath"),
    "display_name": ("display_name", "displayName"),
    "grid_width": ("grid_width", "gridWidth"),
    "grid_height": ("grid_height", "gridHeight"),
    "scale": ("scale",),
    "color_variant": ("color_variant", "colorVariant"),
    "variant_group_key": ("variant_group_key", "variantGroupKey", "variant_group"),
    "thumbnail_url": ("thumbnail_url", "thumbnailUrl"),
}

_CARD_ATTRIBUTES = {
    "source": "data-source",
    "tier": "data-tier",
    "filename": "data-filename",
    "folder_path": "data-path",
    "full_path": "data-file-path",
    "display_name": "data-display-name",
    "grid_width": "data-grid-w",
    "grid_height": "data-grid-h",
    "scale": "data-scale",
    "color_variant": "data-variant",
}


def _read_mapping(raw: Mapping[str, Any], field: str) -> Any:
    for key in _FIELD_KEYS[field]:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _read_card(card: CardLike, field: str) -> Any:
    if field == "cached_local_path":
        if str(card.get_attribute("data-cached") or "").lower() == "true":
            return card.get_attribute("data-url") or None
        return None
    attr = _CARD_ATTRIBUTES.get(field)
    return card.get_attribute(attr) if attr else None


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def normalize(raw: Any) -> PlacementEntry:
    """Convert a raw record, UI card or previous entry into a canonical entry.

    Pure and idempotent: ``normalize(normalize(x)) == normalize(x)``.
    """
    if isinstance(raw, PlacementEntry):
        read = lambda field: getattr(raw, field)  # noqa: E731
    elif isinstance(raw, Mapping):
        read = lambda field: _read_mapping(raw, field)  # noqa: E731
    elif raw is not None and callable(getattr(raw, "get_attribute", None)):
        read = lambda field: _read_card(raw, field)  # noqa: E731
    else:
        raise TypeError(f"Cannot normalize placement entry from {type(raw).__name__}")

    source = _text(read("source")).lower() or "local"
    tier = _text(read("tier")).lower() or "free"
    filename = _text(read("filename"))
    folder_path = _text(read("folder_path"))
    full_path = _text(read("full_path"))
    if not full_path:
        full_path = join_path(folder_path, filename) if folder_path else filename
    cached = _text(read("cached_local_path"))
    if not cached and source == "local" and full_path:
        cached = full_path

    display_name = _text(read("display_name"))
    variant = read("color_variant")
    entry = PlacementEntry(
        source=source,
        tier=tier,
        filename=filename,
        folder_path=folder_path,
        full_path=full_path,
        cached_local_path=cached,
        display_name=display_name,
        grid_width=_parse_positive_number(read("grid_width")),
        grid_height=_parse_positive_number(read("grid_height")),
        scale=_parse_positive_number(read("scale")),
        color_variant=None if variant in (None, "") else str(variant),
        variant_group_key=_text(read("variant_group_key")),
        thumbnail_url=_text(read("thumbnail_url")),
    )
    entry.identity_key = identity_key_for(full_path, folder_path, filename, display_name)
    return entry


def dedupe_pool(raw_entries: Iterable[Any]) -> List[PlacementEntry]:
    """Normalize ``raw_entries`` and collapse duplicate identities (first wins)."""
    pool: List[PlacementEntry] = []
    seen = set()
    for raw in raw_entries:
        if raw is None:
            continue
        try:
            entry = normalize(raw)
        except TypeError:
            logger.warning("Skipping unsupported placement entry: %r", raw)
            continue
        key = entry.identity_key
        if key in seen:
            logger.debug("Dropping duplicate placement entry '%s'", key)
            continue
        seen.add(key)
        pool.append(entry)
    return pool


def apply_entry_attributes(entry: PlacementEntry, card: Any) -> None:
    """Reflect a normalized entry back onto a UI card (session-layer side effect)."""
    setter = getattr(card, "set_attribute", None)
    if card is None or not callable(setter):
        return
    setter("data-source", entry.source)
    setter("data-tier", entry.tier)
    setter("data-filename", entry.filename)
    if entry.full_path:
        setter("data-file-path", entry.full_path)
    if entry.folder_path:
        setter("data-path", entry.folder_path)
    if entry.identity_key:
        setter("data-key", entry.identity_key)
    if entry.cached_local_path:
        setter("data-url", entry.cached_local_path)
        setter("data-cached", "true")
    setter("data-display-name", entry.display_name)
    setter("data-grid-w", str(entry.grid_width))
    setter("data-grid-h", str(entry.grid_height))
    setter("data-scale", str(entry.scale))
    if entry.color_variant is not None:
        setter("data-variant", entry.color_variant)
