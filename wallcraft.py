#!/usr/bin/env python3
"""
WallCraft - Wallpaper Catalog Service

Entry point: wires the configuration, catalog store, provider adapters,
ingestion orchestrator and scheduler together, and exposes them as
subcommands.

Usage:
    python wallcraft.py serve              # API + background ingestion
    python wallcraft.py run-once           # one ingestion cycle
    python wallcraft.py seed               # featured fetch + one cycle
    python wallcraft.py featured           # featured fetch only
    python wallcraft.py health             # pre-flight checks
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from aiohttp import web

from api_server import create_app
from catalog_store import CatalogStore
from config_loader import ConfigLoader
from cursor_tracker import CursorState
from ingestion import IngestionOrchestrator
from pipeline_robustness import HealthChecker, StoreUnavailable
from providers import ProviderAdapter, create_adapters
from scheduler import IngestionScheduler

logger = logging.getLogger("wallcraft")


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(level: int = logging.INFO, log_dir: Optional[Path] = None) -> logging.Logger:
    """Configure the wallcraft logger: console at `level`, optional DEBUG file log."""
    wallcraft_logger = logging.getLogger("wallcraft")
    wallcraft_logger.setLevel(logging.DEBUG)
    wallcraft_logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    wallcraft_logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        file_handler = logging.FileHandler(log_dir / f"wallcraft_{timestamp}.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        wallcraft_logger.addHandler(file_handler)

    return wallcraft_logger


# =============================================================================
# COMPONENT WIRING
# =============================================================================

@dataclass
class Components:
    config: ConfigLoader
    store: CatalogStore
    adapters: dict[str, ProviderAdapter]
    orchestrator: IngestionOrchestrator
    scheduler: IngestionScheduler


def build_components(config: ConfigLoader) -> Components:
    """
    Open the store and assemble the ingestion stack.

    Raises:
        StoreUnavailable: if the database cannot be opened.
    """
    store = CatalogStore(config.get_store_config().database_path)
    store.seed_default_categories()

    adapters = create_adapters(config)
    windows = {
        name: adapter.config.cursor_window
        for name, adapter in adapters.items()
    }
    cursor = CursorState(windows=windows)

    orchestrator = IngestionOrchestrator(
        store,
        adapters,
        cursor,
        config=config.get_ingestion_config(),
        retry=config.get_retry_config(),
    )

    scheduler_config = config.get_scheduler_config()
    scheduler = IngestionScheduler(
        orchestrator,
        interval_minutes=scheduler_config.interval_minutes,
        seed_on_startup=scheduler_config.seed_on_startup,
    )

    return Components(config, store, adapters, orchestrator, scheduler)


async def _close_adapters(adapters: dict[str, ProviderAdapter]) -> None:
    for adapter in adapters.values():
        await adapter.close()


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_serve(components: Components) -> int:
    server = components.config.get_server_config()
    app = create_app(components.store, components.adapters, components.scheduler)

    logger.info("=" * 60)
    logger.info(f"WallCraft API listening on http://{server.host}:{server.port}")
    logger.info("=" * 60)

    web.run_app(app, host=server.host, port=server.port, print=None)
    return 0


# Exit code for a job aborted by a store failure after startup
EXIT_STORE_FAILED = 3


async def _run_job(components: Components, job) -> Optional[int]:
    """Run one ingestion job; None means the store failed and the job was aborted."""
    try:
        return await job()
    except StoreUnavailable as e:
        logger.error(f"Job aborted, catalog store unavailable: {e}")
        return None
    finally:
        await _close_adapters(components.adapters)


def _report(added: Optional[int], label: str) -> int:
    if added is None:
        print(f"\n❌ {label} aborted: catalog store unavailable.")
        return EXIT_STORE_FAILED
    print(f"\n✅ {label} complete: {added} new wallpapers.")
    return 0


def cmd_run_once(components: Components) -> int:
    return _report(asyncio.run(_run_job(components, components.orchestrator.run_cycle)), "Fetch cycle")


def cmd_seed(components: Components) -> int:
    return _report(asyncio.run(_run_job(components, components.orchestrator.seed)), "Seeding")


def cmd_featured(components: Components) -> int:
    return _report(asyncio.run(_run_job(components, components.orchestrator.fetch_featured)), "Featured fetch")


def cmd_health(components: Components) -> int:
    checker = HealthChecker(components.config, components.store)
    passed, errors = checker.run_all_checks()
    for error in errors:
        print(f"  {error}")
    print("\n✅ Healthy" if passed else "\n❌ Unhealthy")
    return 0 if passed else 1


COMMANDS = {
    "serve": cmd_serve,
    "run-once": cmd_run_once,
    "seed": cmd_seed,
    "featured": cmd_featured,
    "health": cmd_health,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="WallCraft - multi-provider wallpaper catalog and ingestion service"
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=Path("./config.yaml"),
        help="Path to config.yaml (default: ./config.yaml)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Also write DEBUG logs to a timestamped file in this directory"
    )
    parser.add_argument(
        "command",
        choices=sorted(COMMANDS),
        help="What to run"
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(logging.DEBUG if args.debug else logging.INFO, args.log_dir)
    if args.debug:
        logger.debug("Debug logging enabled")

    config = ConfigLoader(args.config)

    try:
        components = build_components(config)
    except StoreUnavailable as e:
        logger.error(f"Cannot open catalog store: {e}")
        return 2

    try:
        return COMMANDS[args.command](components)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    finally:
        components.store.close()


if __name__ == "__main__":
    sys.exit(main())
