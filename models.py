#!/usr/bin/env python3
"""
WallCraft - Catalog Data Models

Canonical wallpaper and category records shared by the providers,
the catalog store and the read-side API.
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Source(str, Enum):
    """Where a wallpaper came from."""
    UNSPLASH = "unsplash"
    PEXELS = "pexels"
    GENERATED = "generated"


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for every stored date."""
    return datetime.now(timezone.utc).isoformat()


def make_wallpaper_id(source: str, external_id: str) -> str:
    """Catalog primary key: the external id namespaced by its source."""
    return f"{source}_{external_id}"


@dataclass
class WallpaperRecord:
    """A wallpaper as stored in the catalog."""
    id: str
    source: str
    external_id: str
    url_thumb: str
    url_regular: str
    url_full: str
    title: str = "Untitled"
    photographer: str = "Unknown"
    photographer_url: Optional[str] = None
    url_raw: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    color: Optional[str] = None
    blur_hash: Optional[str] = None
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    downloads: int = 0
    is_featured: bool = False
    is_ai_generated: bool = False
    fetched_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Any) -> "WallpaperRecord":
        """Build a record from a sqlite3.Row of the wallpapers table."""
        data = dict(row)
        tags = data.get("tags")
        if isinstance(tags, str):
            try:
                data["tags"] = json.loads(tags)
            except ValueError:
                data["tags"] = []
        elif tags is None:
            data["tags"] = []
        data["is_featured"] = bool(data.get("is_featured"))
        data["is_ai_generated"] = bool(data.get("is_ai_generated"))
        return cls(**data)

    def __repr__(self) -> str:
        return f"WallpaperRecord(id={self.id}, category={self.category})"


@dataclass
class CategoryRecord:
    """A browsable category and the query used to fill it."""
    slug: str
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    search_query: Optional[str] = None
    cover_image_url: Optional[str] = None
    # Denormalized; recomputed after every ingestion cycle
    wallpaper_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Any) -> "CategoryRecord":
        return cls(**dict(row))


DEFAULT_CATEGORIES: list[CategoryRecord] = [
    CategoryRecord("nature", "Nature", "🌿", "#22c55e", "nature landscape mountains forest"),
    CategoryRecord("wildlife", "Wildlife", "🦁", "#f59e0b", "wildlife animals lion tiger"),
    CategoryRecord("abstract", "Abstract", "🎨", "#8b5cf6", "abstract art patterns colorful"),
    CategoryRecord("anime", "Anime & Cartoons", "🧸", "#ec4899", "anime cartoon illustration art"),
    CategoryRecord("city", "City & Urban", "🏙️", "#6366f1", "city urban architecture skyline"),
    CategoryRecord("space", "Space & Galaxy", "🌌", "#1e3a8a", "space galaxy stars nebula cosmos"),
    CategoryRecord("minimal", "Minimal", "🌸", "#f43f5e", "minimal aesthetic simple clean"),
    CategoryRecord("gaming", "Gaming", "🎮", "#10b981", "gaming esports neon cyberpunk"),
]
