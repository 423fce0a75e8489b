"""Shared fixtures: temporary catalog store, record factories and fake providers."""

from pathlib import Path
from typing import Optional

import pytest

from catalog_store import CatalogStore
from config_loader import IngestionConfig, ProviderConfig, RetryConfig
from cursor_tracker import CursorState
from ingestion import IngestionOrchestrator
from models import CategoryRecord, WallpaperRecord, make_wallpaper_id
from pipeline_robustness import ProviderUnavailable


def make_record(
    external_id: str,
    source: str = "unsplash",
    category: Optional[str] = "nature",
    title: str = "A photo",
    **overrides,
) -> WallpaperRecord:
    """Build a normalized record with plausible URLs."""
    base = f"https://img.example.com/{source}/{external_id}"
    fields = dict(
        id=make_wallpaper_id(source, external_id),
        source=source,
        external_id=external_id,
        url_thumb=f"{base}/thumb.jpg",
        url_regular=f"{base}/regular.jpg",
        url_full=f"{base}/full.jpg",
        title=title,
        category=category,
    )
    fields.update(overrides)
    return WallpaperRecord(**fields)


class FakeAdapter:
    """
    In-memory stand-in for a provider adapter.

    `responses` maps a search query to the records returned for it.
    Queries listed in `failing` raise ProviderUnavailable; `fail_all`
    makes every call fail.
    """

    def __init__(
        self,
        name: str,
        responses: Optional[dict[str, list[WallpaperRecord]]] = None,
        failing: Optional[set[str]] = None,
        fail_all: bool = False,
        cursor_window: int = 5,
        popular: Optional[list[WallpaperRecord]] = None,
    ):
        self.name = name
        self.config = ProviderConfig(name=name, api_key="test", cursor_window=cursor_window)
        self.responses = responses or {}
        self.failing = failing or set()
        self.fail_all = fail_all
        self.popular = popular or []
        self.calls: list[dict] = []
        self.downloads: list[str] = []
        self.closed = False

    async def fetch_by_query(self, query, category, page=1, per_page=30, orientation="portrait"):
        self.calls.append({"query": query, "category": category, "page": page})
        if self.fail_all or query in self.failing:
            raise ProviderUnavailable(self.name, "simulated outage")
        if not query:
            return []
        return [
            WallpaperRecord(**{**r.to_dict(), "category": category})
            for r in self.responses.get(query, [])
        ]

    async def fetch_popular(self, category=None, page=1, per_page=30, is_featured=False):
        self.calls.append({"popular": True, "category": category, "page": page})
        if self.fail_all:
            raise ProviderUnavailable(self.name, "simulated outage")
        return [
            WallpaperRecord(**{**r.to_dict(), "category": category or "featured", "is_featured": is_featured})
            for r in self.popular
        ]

    async def track_download(self, external_id):
        self.downloads.append(external_id)
        return True

    async def close(self):
        self.closed = True


@pytest.fixture
def store(tmp_path: Path):
    catalog = CatalogStore(tmp_path / "catalog.db")
    yield catalog
    catalog.close()


@pytest.fixture
def nature(store: CatalogStore) -> CategoryRecord:
    category = CategoryRecord("nature", "Nature", "🌿", "#22c55e", "nature landscape")
    store.add_category(category)
    return category


@pytest.fixture
def fast_config() -> IngestionConfig:
    """Ingestion settings with no pacing delays."""
    return IngestionConfig(category_delay_sec=0, provider_delay_sec=0)


@pytest.fixture
def no_retry() -> RetryConfig:
    return RetryConfig(max_attempts=1, base_delay_sec=0, max_delay_sec=0)


@pytest.fixture
def make_orchestrator(store, fast_config, no_retry):
    """Factory building an orchestrator over the temporary store."""

    def _make(primary: Optional[FakeAdapter] = None, fallback: Optional[FakeAdapter] = None, **config_overrides):
        adapters = {a.name: a for a in (primary, fallback) if a is not None}
        cursor = CursorState(windows={name: a.config.cursor_window for name, a in adapters.items()})
        config = IngestionConfig(**{**fast_config.__dict__, **config_overrides})
        return IngestionOrchestrator(store, adapters, cursor, config=config, retry=no_retry)

    return _make
