#!/usr/bin/env python3
"""
WallCraft - Provider Record Normalization

Pure functions that map a provider-native photo into a WallpaperRecord.
Each provider has a fixed fallback chain for its image size tiers.
"""

from typing import Any, Optional

from models import Source, WallpaperRecord, make_wallpaper_id
from pipeline_robustness import MalformedUpstreamRecord


def _first(*values: Optional[str]) -> Optional[str]:
    """Return the first non-empty value."""
    for value in values:
        if value:
            return value
    return None


def _require_urls(provider: str, external_id: str, thumb, regular, full) -> None:
    missing = [name for name, url in (("thumb", thumb), ("regular", regular), ("full", full)) if not url]
    if missing:
        raise MalformedUpstreamRecord(
            provider, f"no usable image url for tier(s): {', '.join(missing)}", external_id
        )


def normalize_unsplash(
    photo: dict[str, Any],
    category: Optional[str],
    is_featured: bool = False,
) -> WallpaperRecord:
    """
    Normalize an Unsplash photo.

    Fallbacks: thumb -> small. Title: description -> alt_description -> "Untitled".

    Raises:
        MalformedUpstreamRecord: if the photo has no id or lacks an image tier.
    """
    raw_id = photo.get("id")
    if not raw_id:
        raise MalformedUpstreamRecord(Source.UNSPLASH.value, "missing id")
    external_id = str(raw_id)

    user = photo.get("user") or {}
    urls = photo.get("urls") or {}

    url_thumb = _first(urls.get("thumb"), urls.get("small"))
    url_regular = urls.get("regular")
    url_full = urls.get("full")
    _require_urls(Source.UNSPLASH.value, external_id, url_thumb, url_regular, url_full)

    return WallpaperRecord(
        id=make_wallpaper_id(Source.UNSPLASH.value, external_id),
        source=Source.UNSPLASH.value,
        external_id=external_id,
        title=_first(photo.get("description"), photo.get("alt_description")) or "Untitled",
        photographer=user.get("name") or "Unknown",
        photographer_url=(user.get("links") or {}).get("html") or None,
        url_thumb=url_thumb,
        url_regular=url_regular,
        url_full=url_full,
        url_raw=urls.get("raw"),
        width=photo.get("width"),
        height=photo.get("height"),
        color=photo.get("color"),
        blur_hash=photo.get("blur_hash"),
        category=category,
        tags=[t.get("title") for t in photo.get("tags") or [] if t.get("title")],
        is_featured=is_featured,
        is_ai_generated=False,
    )


def normalize_pexels(
    photo: dict[str, Any],
    category: Optional[str],
    is_featured: bool = False,
) -> WallpaperRecord:
    """
    Normalize a Pexels photo.

    Fallbacks: thumb tiny -> small, regular large -> medium,
    full large2x -> original. Pexels has no tags or blur hash.

    Raises:
        MalformedUpstreamRecord: if the photo has no id or lacks an image tier.
    """
    raw_id = photo.get("id")
    if raw_id is None or raw_id == "":
        raise MalformedUpstreamRecord(Source.PEXELS.value, "missing id")
    external_id = str(raw_id)

    src = photo.get("src") or {}

    url_thumb = _first(src.get("tiny"), src.get("small"))
    url_regular = _first(src.get("large"), src.get("medium"))
    url_full = _first(src.get("large2x"), src.get("original"))
    _require_urls(Source.PEXELS.value, external_id, url_thumb, url_regular, url_full)

    return WallpaperRecord(
        id=make_wallpaper_id(Source.PEXELS.value, external_id),
        source=Source.PEXELS.value,
        external_id=external_id,
        title=photo.get("alt") or "Untitled",
        photographer=photo.get("photographer") or "Unknown",
        photographer_url=photo.get("photographer_url") or None,
        url_thumb=url_thumb,
        url_regular=url_regular,
        url_full=url_full,
        url_raw=src.get("original"),
        width=photo.get("width"),
        height=photo.get("height"),
        color=photo.get("avg_color"),
        blur_hash=None,
        category=category,
        tags=[],
        is_featured=is_featured,
        is_ai_generated=False,
    )
