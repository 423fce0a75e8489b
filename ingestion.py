#!/usr/bin/env python3
"""
WallCraft - Ingestion Orchestrator

Runs one fetch cycle: for every category, in name order, ask the primary
provider for the current cursor page, fall back to the secondary provider
on failure, store what is new and refresh what is not. Categories are
processed one at a time with a pause between them to stay within the
providers' hourly request budgets.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from catalog_store import CatalogStore
from config_loader import IngestionConfig, RetryConfig
from cursor_tracker import CursorState
from models import CategoryRecord, WallpaperRecord
from pipeline_robustness import ProviderUnavailable, StoreUnavailable, retry_with_backoff
from providers import ProviderAdapter
from reporting import CategoryResult, CycleReport

logger = logging.getLogger("wallcraft")


class IngestionOrchestrator:
    """
    Drives ingestion cycles against a catalog store.

    The cursor state is passed in rather than held globally, so several
    orchestrators (in tests, for example) never share page pointers.
    """

    def __init__(
        self,
        store: CatalogStore,
        adapters: dict[str, ProviderAdapter],
        cursor: CursorState,
        config: Optional[IngestionConfig] = None,
        retry: Optional[RetryConfig] = None,
    ):
        self.store = store
        self.adapters = adapters
        self.cursor = cursor
        self.config = config or IngestionConfig()
        self.retry = retry or RetryConfig()
        self.last_report: Optional[CycleReport] = None

        self._search_primary = retry_with_backoff(
            max_retries=max(self.retry.max_attempts - 1, 0),
            base_delay=self.retry.base_delay_sec,
            max_delay=self.retry.max_delay_sec,
        )(self._search)

    @property
    def primary(self) -> Optional[ProviderAdapter]:
        return self.adapters.get(self.config.primary_provider)

    @property
    def fallback(self) -> Optional[ProviderAdapter]:
        return self.adapters.get(self.config.fallback_provider)

    # =========================================================================
    # FETCHING
    # =========================================================================

    async def _search(self, adapter: ProviderAdapter, category: CategoryRecord, page: int) -> list[WallpaperRecord]:
        return await adapter.fetch_by_query(
            category.search_query,
            category.slug,
            page=page,
            per_page=self.config.per_page,
            orientation=self.config.orientation,
        )

    async def _fetch_with_fallback(
        self,
        category: CategoryRecord,
        pages: dict[str, int],
    ) -> tuple[Optional[list[WallpaperRecord]], Optional[str]]:
        """
        Fetch one category from the primary provider, then the fallback.

        Returns:
            (records, provider name), or (None, None) if both failed.
        """
        primary = self.primary
        if primary is not None:
            try:
                records = await self._search_primary(primary, category, pages.get(primary.name, 1))
                logger.info(f"  Got {len(records)} from {primary.name} (page {pages.get(primary.name, 1)})")
                return records, primary.name
            except ProviderUnavailable as e:
                logger.warning(f"  {primary.name} failed ({e.cause}), trying fallback...")
            await asyncio.sleep(self.config.provider_delay_sec)
        else:
            logger.warning(f"  Primary provider {self.config.primary_provider!r} not configured")

        fallback = self.fallback
        if fallback is None or fallback is primary:
            logger.error(f"  No fallback provider available for {category.name}")
            return None, None

        try:
            # The fallback always starts from page 1; cursors are not shared
            records = await self._search(fallback, category, 1)
            logger.info(f"  Got {len(records)} from {fallback.name} (fallback)")
            return records, fallback.name
        except ProviderUnavailable as e:
            logger.error(f"  Both providers failed for {category.name}: {e}")
            return None, None

    # =========================================================================
    # STORING
    # =========================================================================

    def _store_records(self, records: list[WallpaperRecord], refresh_existing: bool) -> tuple[int, int]:
        """
        Write a fetched batch.

        Returns:
            (new records, refreshed existing records)
        """
        # A provider page can repeat a photo; keep the first occurrence
        unique: dict[tuple[str, str], WallpaperRecord] = {}
        for record in records:
            unique.setdefault((record.source, record.external_id), record)

        new_records = []
        existing_records = []
        for record in unique.values():
            if self.store.exists(record.external_id, record.source):
                existing_records.append(record)
            else:
                new_records.append(record)

        to_write = new_records + existing_records if refresh_existing else new_records
        if to_write:
            self.store.upsert_many(to_write)

        return len(new_records), len(to_write) - len(new_records)

    async def _process_category(self, category: CategoryRecord, pages: dict[str, int]) -> CategoryResult:
        logger.info(f"Processing: {category.name}")
        result = CategoryResult(slug=category.slug)

        records, source = await self._fetch_with_fallback(category, pages)
        if records is None:
            result.failed = True
            result.error = "all providers unavailable"
            return result

        result.source = source
        result.fetched = len(records)
        result.new, result.refreshed = self._store_records(records, self.config.refresh_existing)

        if result.new:
            logger.info(f"  Saved {result.new} new wallpapers")
        else:
            logger.info("  No new wallpapers to save")
        return result

    # =========================================================================
    # CYCLES
    # =========================================================================

    async def run_cycle(self) -> int:
        """
        Run one ingestion cycle across all categories.

        Returns:
            Number of newly added wallpapers.

        Raises:
            StoreUnavailable: the store failed; the cycle is aborted.
        """
        report = CycleReport(start_time=datetime.now())
        self.last_report = report

        logger.info("=" * 60)
        logger.info(f"Fetch cycle started: {report.start_time.isoformat()}")
        logger.info("=" * 60)

        report.pages = self.cursor.advance_all()
        logger.info(f"Pages: {', '.join(f'{k}={v}' for k, v in report.pages.items())}")

        try:
            categories = self.store.get_categories()
            for category in categories:
                try:
                    result = await self._process_category(category, report.pages)
                except StoreUnavailable:
                    raise
                except Exception as e:
                    logger.exception(f"Error fetching {category.name}: {e}")
                    result = CategoryResult(slug=category.slug, failed=True, error=str(e))
                report.categories.append(result)

                await asyncio.sleep(self.config.category_delay_sec)

            report.category_counts = self.store.reconcile_category_counts()

        except StoreUnavailable as e:
            report.aborted = True
            report.abort_reason = str(e)
            logger.error(f"Fetch cycle aborted: {e}")
            raise

        finally:
            report.end_time = datetime.now()
            report.log_summary()

        return report.total_new

    async def fetch_featured(self) -> int:
        """
        Fetch the primary provider's popular photos as featured wallpapers.

        Only photos not yet in the catalog are written, so existing
        wallpapers keep their category.

        Returns:
            Number of new featured wallpapers, 0 if the provider failed.
        """
        logger.info("Fetching featured wallpapers...")

        adapter = self.primary
        if adapter is None:
            logger.warning("No primary provider configured, skipping featured fetch")
            return 0

        try:
            records = await adapter.fetch_popular(
                "featured", page=1, per_page=self.config.featured_per_page, is_featured=True
            )
        except ProviderUnavailable as e:
            logger.error(f"Failed to fetch featured: {e}")
            return 0

        new, _ = self._store_records(records, refresh_existing=False)
        if new:
            logger.info(f"Saved {new} featured wallpapers")
        return new

    async def seed(self) -> int:
        """Initial population: featured photos, then a full cycle."""
        logger.info("Seeding catalog with initial wallpapers...")

        total = 0
        if self.config.fetch_featured:
            total += await self.fetch_featured()
        total += await self.run_cycle()

        logger.info(f"Catalog seeding complete ({total} new wallpapers)")
        return total
