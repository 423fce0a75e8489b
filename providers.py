#!/usr/bin/env python3
"""
WallCraft - Provider Adapters

Fetches photos from Unsplash and Pexels and returns normalized
WallpaperRecords. Adapters never touch the catalog and never retry:
every failure surfaces as ProviderUnavailable so the orchestrator can
decide whether to retry or fall back.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp

from config_loader import ConfigLoader, ProviderConfig
from models import Source, WallpaperRecord
from normalizers import normalize_pexels, normalize_unsplash
from pipeline_robustness import MalformedUpstreamRecord, ProviderUnavailable

logger = logging.getLogger("wallcraft")


def rate_limit_info(headers: Any, default_limit: int) -> dict[str, int]:
    """Read the remaining request budget from provider response headers."""
    try:
        remaining = int(headers.get("X-Ratelimit-Remaining", 0))
        limit = int(headers.get("X-Ratelimit-Limit", default_limit))
    except (TypeError, ValueError):
        remaining, limit = 0, default_limit
    return {"remaining": remaining, "limit": limit}


# =============================================================================
# BASE ADAPTER
# =============================================================================

class ProviderAdapter(ABC):
    """
    Common HTTP plumbing for a photo provider.

    Subclasses describe the endpoints and how to normalize a photo;
    this class owns the session, the timeout and the error mapping.
    """

    name: str = ""
    default_rate_limit: int = 50

    def __init__(
        self,
        config: ProviderConfig,
        timeout_sec: float = 15,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session = session
        self._owns_session = session is None
        self.last_rate_limit: Optional[dict[str, int]] = None

    @property
    @abstractmethod
    def headers(self) -> dict[str, str]:
        """Authentication headers for every request."""

    @abstractmethod
    def normalize(self, photo: dict[str, Any], category: Optional[str], is_featured: bool = False) -> WallpaperRecord:
        """Map one provider-native photo into a WallpaperRecord."""

    def clamp_per_page(self, per_page: int) -> int:
        """Limit a page size to what the provider accepts."""
        return max(1, min(per_page, self.config.max_per_page))

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this adapter created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        GET a provider endpoint and decode its JSON body.

        Raises:
            ProviderUnavailable: on missing credentials, transport errors,
                timeouts, non-2xx responses or undecodable bodies.
        """
        if not self.config.api_key:
            raise ProviderUnavailable(self.name, "missing API key", retryable=False)

        url = f"{self.config.base_url.rstrip('/')}{path}"
        session = await self._get_session()

        try:
            async with session.get(url, headers=self.headers, params=params, timeout=self.timeout) as response:
                self.last_rate_limit = rate_limit_info(response.headers, self.default_rate_limit)
                logger.debug(
                    f"{self.name} rate limit: {self.last_rate_limit['remaining']}/"
                    f"{self.last_rate_limit['limit']} remaining"
                )

                if response.status != 200:
                    body = await response.text()
                    raise ProviderUnavailable(
                        self.name,
                        f"HTTP {response.status}: {body[:200]}",
                        retryable=response.status != 401,
                    )

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise ProviderUnavailable(self.name, f"invalid JSON: {e}") from e

        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(self.name, f"timed out after {self.timeout.total}s") from e
        except aiohttp.ClientError as e:
            raise ProviderUnavailable(self.name, e) from e

    def _normalize_batch(
        self,
        photos: list[dict[str, Any]],
        category: Optional[str],
        is_featured: bool = False,
    ) -> list[WallpaperRecord]:
        """Normalize photos, dropping malformed ones with a warning."""
        records = []
        for photo in photos:
            try:
                records.append(self.normalize(photo, category, is_featured))
            except MalformedUpstreamRecord as e:
                logger.warning(f"Dropping record: {e}")
        return records

    @abstractmethod
    async def fetch_by_query(
        self,
        query: Optional[str],
        category: Optional[str],
        page: int = 1,
        per_page: int = 30,
        orientation: str = "portrait",
    ) -> list[WallpaperRecord]:
        """Search photos for a category query."""

    @abstractmethod
    async def fetch_popular(
        self,
        category: Optional[str] = None,
        page: int = 1,
        per_page: int = 30,
        is_featured: bool = False,
    ) -> list[WallpaperRecord]:
        """Fetch the provider's popular or curated photos."""

    async def fetch_by_id(self, photo_id: str) -> WallpaperRecord:
        """
        Fetch a single photo by its provider id.

        Raises:
            ProviderUnavailable: if the request fails.
            MalformedUpstreamRecord: if the photo cannot be normalized.
        """
        data = await self._get_json(f"/photos/{photo_id}")
        return self.normalize(data or {}, None)

    async def track_download(self, external_id: str) -> bool:
        """Report a download to the provider. Best-effort; never raises."""
        return False


# =============================================================================
# UNSPLASH
# =============================================================================

class UnsplashAdapter(ProviderAdapter):
    """Unsplash API (50 requests/hour on demo keys, 30 photos per page)."""

    name = Source.UNSPLASH.value
    default_rate_limit = 50

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Client-ID {self.config.api_key}",
            "Accept-Version": "v1",
        }

    def normalize(self, photo, category, is_featured=False):
        return normalize_unsplash(photo, category, is_featured)

    async def fetch_by_query(self, query, category, page=1, per_page=30, orientation="portrait"):
        if not query or not query.strip():
            logger.debug(f"Unsplash: empty query for {category}, nothing to fetch")
            return []

        params = {
            "query": query,
            "page": page,
            "per_page": self.clamp_per_page(per_page),
            "orientation": orientation,
            "order_by": "relevant",
        }
        data = await self._get_json("/search/photos", params)
        photos = (data or {}).get("results") or []
        return self._normalize_batch(photos, category)

    async def fetch_popular(self, category=None, page=1, per_page=30, is_featured=False):
        params = {
            "page": page,
            "per_page": self.clamp_per_page(per_page),
            "order_by": "popular",
        }
        data = await self._get_json("/photos", params)
        photos = data if isinstance(data, list) else []
        return self._normalize_batch(photos, category or "featured", is_featured)

    async def track_download(self, external_id: str) -> bool:
        """Hit the download endpoint, as the Unsplash API guidelines require."""
        try:
            await self._get_json(f"/photos/{external_id}/download")
            logger.info(f"Tracked Unsplash download for {external_id}")
            return True
        except ProviderUnavailable as e:
            logger.warning(f"Failed to track download for {external_id}: {e}")
            return False


# =============================================================================
# PEXELS
# =============================================================================

class PexelsAdapter(ProviderAdapter):
    """Pexels API (200 requests/hour, 80 photos per page)."""

    name = Source.PEXELS.value
    default_rate_limit = 200

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": self.config.api_key}

    def normalize(self, photo, category, is_featured=False):
        return normalize_pexels(photo, category, is_featured)

    async def fetch_by_query(self, query, category, page=1, per_page=30, orientation="portrait"):
        if not query or not query.strip():
            logger.debug(f"Pexels: empty query for {category}, nothing to fetch")
            return []

        params = {
            "query": query,
            "page": page,
            "per_page": self.clamp_per_page(per_page),
            "orientation": orientation,
        }
        data = await self._get_json("/search", params)
        photos = (data or {}).get("photos") or []
        return self._normalize_batch(photos, category)

    async def fetch_popular(self, category=None, page=1, per_page=30, is_featured=False):
        params = {
            "page": page,
            "per_page": self.clamp_per_page(per_page),
        }
        data = await self._get_json("/curated", params)
        photos = (data or {}).get("photos") or []
        return self._normalize_batch(photos, category or "featured", is_featured)


ADAPTER_CLASSES: dict[str, type[ProviderAdapter]] = {
    Source.UNSPLASH.value: UnsplashAdapter,
    Source.PEXELS.value: PexelsAdapter,
}


def create_adapters(config: ConfigLoader) -> dict[str, ProviderAdapter]:
    """Build an adapter for every enabled provider."""
    timeout_sec = config.get_timeout_config().api_call_sec
    adapters = {}

    for name, adapter_cls in ADAPTER_CLASSES.items():
        provider_config = config.get_provider_config(name)
        if not provider_config.enabled:
            logger.info(f"Provider {name} disabled in config")
            continue
        adapters[name] = adapter_cls(provider_config, timeout_sec=timeout_sec)

    return adapters
