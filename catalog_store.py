#!/usr/bin/env python3
"""
WallCraft - Catalog Store

SQLite-backed wallpaper catalog. Provides the ingestion primitives
(existence check, upsert, count reconciliation) and the read-side
queries used by the HTTP API.

Uniqueness is enforced on (source, external_id); upserts are keyed on
that pair and never touch the download counter or creation time.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, Optional, Union

from models import DEFAULT_CATEGORIES, CategoryRecord, WallpaperRecord, utc_now
from pipeline_robustness import StoreUnavailable

logger = logging.getLogger("wallcraft")


SCHEMA = """
CREATE TABLE IF NOT EXISTS wallpapers (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL CHECK (source IN ('unsplash', 'pexels', 'generated')),
    external_id TEXT NOT NULL,
    title TEXT,
    photographer TEXT,
    photographer_url TEXT,
    url_thumb TEXT NOT NULL,
    url_regular TEXT NOT NULL,
    url_full TEXT NOT NULL,
    url_raw TEXT,
    width INTEGER,
    height INTEGER,
    color TEXT,
    blur_hash TEXT,
    category TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    downloads INTEGER NOT NULL DEFAULT 0,
    is_featured INTEGER NOT NULL DEFAULT 0,
    is_ai_generated INTEGER NOT NULL DEFAULT 0,
    fetched_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(source, external_id)
);

CREATE INDEX IF NOT EXISTS idx_wallpapers_category ON wallpapers(category);
CREATE INDEX IF NOT EXISTS idx_wallpapers_downloads ON wallpapers(downloads DESC);
CREATE INDEX IF NOT EXISTS idx_wallpapers_created ON wallpapers(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_wallpapers_featured ON wallpapers(is_featured);

CREATE TABLE IF NOT EXISTS categories (
    slug TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    icon TEXT,
    color TEXT,
    search_query TEXT,
    cover_image_url TEXT,
    wallpaper_count INTEGER NOT NULL DEFAULT 0
);
"""

# downloads and created_at are never part of the update set.
# is_featured is sticky: a later category fetch never un-features a photo.
UPSERT_SQL = """
INSERT INTO wallpapers (
    id, source, external_id, title, photographer, photographer_url,
    url_thumb, url_regular, url_full, url_raw, width, height, color,
    blur_hash, category, tags, downloads, is_featured, is_ai_generated,
    fetched_at, created_at, updated_at
) VALUES (
    :id, :source, :external_id, :title, :photographer, :photographer_url,
    :url_thumb, :url_regular, :url_full, :url_raw, :width, :height, :color,
    :blur_hash, :category, :tags, 0, :is_featured, :is_ai_generated,
    :now, :now, :now
)
ON CONFLICT(source, external_id) DO UPDATE SET
    title = excluded.title,
    photographer = excluded.photographer,
    photographer_url = excluded.photographer_url,
    url_thumb = excluded.url_thumb,
    url_regular = excluded.url_regular,
    url_full = excluded.url_full,
    url_raw = excluded.url_raw,
    width = excluded.width,
    height = excluded.height,
    color = excluded.color,
    blur_hash = excluded.blur_hash,
    category = excluded.category,
    tags = excluded.tags,
    is_featured = MAX(wallpapers.is_featured, excluded.is_featured),
    is_ai_generated = excluded.is_ai_generated,
    fetched_at = excluded.fetched_at,
    updated_at = excluded.updated_at
"""

SORT_ORDERS = {
    "popular": "downloads DESC, created_at DESC",
    "newest": "created_at DESC",
}


class CatalogStore:
    """
    Gateway to the wallpaper catalog.

    Every database failure other than a per-record constraint violation
    is raised as StoreUnavailable.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path)
            self.conn.row_factory = sqlite3.Row
            self.conn.executescript(SCHEMA)
            self.conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(e) from e

    def close(self) -> None:
        self.conn.close()

    def _execute(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, tuple(params) if not isinstance(params, dict) else params)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise StoreUnavailable(e) from e

    def _commit(self) -> None:
        try:
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(e) from e

    def ping(self) -> None:
        """Raise StoreUnavailable if the database cannot answer."""
        self._execute("SELECT 1").fetchone()

    # =========================================================================
    # INGESTION PRIMITIVES
    # =========================================================================

    def exists(self, external_id: str, source: str) -> bool:
        """Check whether a photo is already catalogued under (source, external_id)."""
        row = self._execute(
            "SELECT 1 FROM wallpapers WHERE external_id = ? AND source = ? LIMIT 1",
            (external_id, source),
        ).fetchone()
        return row is not None

    def upsert_many(self, records: list[WallpaperRecord]) -> int:
        """
        Insert or refresh wallpapers, keyed on (source, external_id).

        Each record is written and committed on its own, so one bad record
        cannot corrupt another. A constraint violation drops just that record.

        Returns:
            Number of records written.
        """
        written = 0

        for record in records:
            params = {
                "id": record.id,
                "source": record.source,
                "external_id": record.external_id,
                "title": record.title,
                "photographer": record.photographer,
                "photographer_url": record.photographer_url,
                "url_thumb": record.url_thumb,
                "url_regular": record.url_regular,
                "url_full": record.url_full,
                "url_raw": record.url_raw,
                "width": record.width,
                "height": record.height,
                "color": record.color,
                "blur_hash": record.blur_hash,
                "category": record.category,
                "tags": json.dumps(list(record.tags or [])),
                "is_featured": int(bool(record.is_featured)),
                "is_ai_generated": int(bool(record.is_ai_generated)),
                "now": utc_now(),
            }
            try:
                self._execute(UPSERT_SQL, params)
                self._commit()
                written += 1
            except sqlite3.IntegrityError as e:
                self.conn.rollback()
                logger.warning(f"Skipping {record.id}: {e}")

        if written:
            logger.info(f"Inserted/updated {written} wallpapers")
        return written

    def reconcile_category_counts(self) -> dict[str, int]:
        """
        Recompute every category's wallpaper_count from the wallpapers table.

        A single UPDATE statement, so the counts come from one consistent
        snapshot even while ingestion is writing.

        Returns:
            Mapping of slug to its new count.
        """
        self._execute(
            """
            UPDATE categories SET wallpaper_count = (
                SELECT COUNT(*) FROM wallpapers WHERE wallpapers.category = categories.slug
            )
            """
        )
        self._commit()
        rows = self._execute("SELECT slug, wallpaper_count FROM categories").fetchall()
        return {row["slug"]: row["wallpaper_count"] for row in rows}

    def get_categories(self) -> list[CategoryRecord]:
        """All categories ordered by name."""
        rows = self._execute("SELECT * FROM categories ORDER BY name ASC").fetchall()
        return [CategoryRecord.from_row(row) for row in rows]

    def add_category(self, category: CategoryRecord) -> None:
        """Insert a category, leaving an existing slug untouched."""
        self._execute(
            """
            INSERT OR IGNORE INTO categories
                (slug, name, icon, color, search_query, cover_image_url, wallpaper_count)
            VALUES (?, ?, ?, ?, ?, ?, 0)
            """,
            (category.slug, category.name, category.icon, category.color,
             category.search_query, category.cover_image_url),
        )
        self._commit()

    def seed_default_categories(self) -> int:
        """Insert the default categories if none exist. Returns how many were added."""
        count = self._execute("SELECT COUNT(*) FROM categories").fetchone()[0]
        if count:
            return 0

        logger.warning("No categories found, seeding defaults...")
        for category in DEFAULT_CATEGORIES:
            self.add_category(category)
        logger.info(f"Seeded {len(DEFAULT_CATEGORIES)} default categories")
        return len(DEFAULT_CATEGORIES)

    # =========================================================================
    # READ-SIDE QUERIES
    # =========================================================================

    def list_wallpapers(
        self,
        page: int = 1,
        limit: int = 20,
        category: Optional[str] = None,
        sort: str = "popular",
    ) -> list[WallpaperRecord]:
        """
        One page of wallpapers.

        sort="random" is an independent unseeded sample on every call;
        the page number is ignored because random pages are not continuations.
        """
        where = "WHERE category = ?" if category else ""
        params: list = [category] if category else []

        if sort == "random":
            sql = f"SELECT * FROM wallpapers {where} ORDER BY RANDOM() LIMIT ?"
            params.append(limit)
        else:
            order = SORT_ORDERS.get(sort, SORT_ORDERS["popular"])
            sql = f"SELECT * FROM wallpapers {where} ORDER BY {order} LIMIT ? OFFSET ?"
            params.extend([limit, (max(page, 1) - 1) * limit])

        rows = self._execute(sql, params).fetchall()
        return [WallpaperRecord.from_row(row) for row in rows]

    def count_wallpapers(self, category: Optional[str] = None) -> int:
        if category:
            row = self._execute("SELECT COUNT(*) FROM wallpapers WHERE category = ?", (category,)).fetchone()
        else:
            row = self._execute("SELECT COUNT(*) FROM wallpapers").fetchone()
        return row[0]

    def get_wallpaper_by_id(self, wallpaper_id: str) -> Optional[WallpaperRecord]:
        row = self._execute("SELECT * FROM wallpapers WHERE id = ?", (wallpaper_id,)).fetchone()
        return WallpaperRecord.from_row(row) if row else None

    def find_by_external_id(self, external_id: str, source: str) -> Optional[WallpaperRecord]:
        row = self._execute(
            "SELECT * FROM wallpapers WHERE external_id = ? AND source = ?",
            (external_id, source),
        ).fetchone()
        return WallpaperRecord.from_row(row) if row else None

    def get_category_by_slug(self, slug: str) -> Optional[CategoryRecord]:
        row = self._execute("SELECT * FROM categories WHERE slug = ?", (slug,)).fetchone()
        return CategoryRecord.from_row(row) if row else None

    def increment_downloads(self, wallpaper_id: str) -> bool:
        """Add one download. Returns False if the wallpaper does not exist."""
        cursor = self._execute(
            "UPDATE wallpapers SET downloads = downloads + 1, updated_at = ? WHERE id = ?",
            (utc_now(), wallpaper_id),
        )
        self._commit()
        return cursor.rowcount > 0

    def get_similar(self, wallpaper_id: str, category: Optional[str], limit: int = 10) -> list[WallpaperRecord]:
        """Random sample of other wallpapers in the same category."""
        rows = self._execute(
            "SELECT * FROM wallpapers WHERE category IS ? AND id != ? ORDER BY RANDOM() LIMIT ?",
            (category, wallpaper_id, limit),
        ).fetchall()
        return [WallpaperRecord.from_row(row) for row in rows]

    def list_featured(self, limit: int = 10) -> list[WallpaperRecord]:
        rows = self._execute(
            "SELECT * FROM wallpapers WHERE is_featured = 1 ORDER BY downloads DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [WallpaperRecord.from_row(row) for row in rows]
