#!/usr/bin/env python3
"""
WallCraft - Read-side HTTP API

Thin aiohttp.web layer over the catalog store queries. The scheduler
is attached to the application lifecycle so `serve` runs ingestion in
the same event loop.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web

from catalog_store import CatalogStore
from models import Source
from pipeline_robustness import StoreUnavailable
from providers import ProviderAdapter
from scheduler import IngestionScheduler

logger = logging.getLogger("wallcraft")

STORE_KEY = web.AppKey("store", CatalogStore)
ADAPTERS_KEY = web.AppKey("adapters", dict)
SCHEDULER_KEY = web.AppKey("scheduler", IngestionScheduler)
STARTED_KEY = web.AppKey("started_at", float)

MAX_LIST_LIMIT = 50
MAX_SIMILAR_LIMIT = 20
SORTS = ("popular", "newest", "random")

routes = web.RouteTableDef()


def _int_param(request: web.Request, name: str, default: int) -> int:
    try:
        value = int(request.query.get(name, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


def _page_response(request: web.Request, category: Optional[str], extra: Optional[dict] = None) -> web.Response:
    store = request.app[STORE_KEY]
    page = _int_param(request, "page", 1)
    limit = min(_int_param(request, "limit", 20), MAX_LIST_LIMIT)
    sort = request.query.get("sort", "popular")
    if sort not in SORTS:
        sort = "popular"

    wallpapers = store.list_wallpapers(page=page, limit=limit, category=category, sort=sort)
    total = store.count_wallpapers(category)
    total_pages = -(-total // limit)

    body = {
        "success": True,
        "data": [w.to_dict() for w in wallpapers],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasMore": page < total_pages,
        },
    }
    if extra:
        body.update(extra)
    return web.json_response(body)


@web.middleware
async def error_middleware(request: web.Request, handler):
    start = time.monotonic()
    status = 500
    try:
        try:
            response = await handler(request)
        except web.HTTPNotFound:
            response = _error(404, "Endpoint not found")
        except web.HTTPException as e:
            status = e.status
            raise
        except StoreUnavailable as e:
            logger.error(f"Store error on {request.method} {request.path}: {e}")
            response = _error(500, "Internal server error")
        except Exception as e:
            logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
            response = _error(500, "Internal server error")
        status = response.status
        return response
    finally:
        logger.info(f"{request.method} {request.path_qs} {status} ({(time.monotonic() - start) * 1000:.0f}ms)")


@routes.get("/api/health")
async def health(request: web.Request) -> web.Response:
    body = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.monotonic() - request.app[STARTED_KEY],
    }
    scheduler = request.app.get(SCHEDULER_KEY)
    if scheduler is not None:
        body["ingestion"] = scheduler.get_stats()
    return web.json_response(body)


@routes.get("/api/wallpapers")
async def list_wallpapers(request: web.Request) -> web.Response:
    return _page_response(request, request.query.get("category") or None)


@routes.get("/api/wallpapers/category/{slug}")
async def list_category_wallpapers(request: web.Request) -> web.Response:
    slug = request.match_info["slug"]
    return _page_response(request, slug, extra={"category": slug})


@routes.get("/api/wallpapers/{id}")
async def get_wallpaper(request: web.Request) -> web.Response:
    wallpaper = request.app[STORE_KEY].get_wallpaper_by_id(request.match_info["id"])
    if wallpaper is None:
        return _error(404, "Wallpaper not found")
    return web.json_response({"success": True, "data": wallpaper.to_dict()})


@routes.post("/api/wallpapers/{id}/download")
async def track_download(request: web.Request) -> web.Response:
    store = request.app[STORE_KEY]
    wallpaper = store.get_wallpaper_by_id(request.match_info["id"])
    if wallpaper is None:
        return _error(404, "Wallpaper not found")

    store.increment_downloads(wallpaper.id)

    # Unsplash's terms require reporting downloads back to them
    adapter: Optional[ProviderAdapter] = request.app[ADAPTERS_KEY].get(wallpaper.source)
    if wallpaper.source == Source.UNSPLASH.value and adapter is not None:
        await adapter.track_download(wallpaper.external_id)

    return web.json_response({
        "success": True,
        "message": "Download tracked",
        "downloadUrl": wallpaper.url_full,
    })


@routes.get("/api/wallpapers/{id}/similar")
async def similar_wallpapers(request: web.Request) -> web.Response:
    store = request.app[STORE_KEY]
    wallpaper = store.get_wallpaper_by_id(request.match_info["id"])
    if wallpaper is None:
        return _error(404, "Wallpaper not found")

    limit = min(_int_param(request, "limit", 10), MAX_SIMILAR_LIMIT)
    similar = store.get_similar(wallpaper.id, wallpaper.category, limit)
    return web.json_response({"success": True, "data": [w.to_dict() for w in similar]})


@routes.get("/api/categories")
async def list_categories(request: web.Request) -> web.Response:
    categories = request.app[STORE_KEY].get_categories()
    return web.json_response({"success": True, "data": [c.to_dict() for c in categories]})


@routes.get("/api/categories/{slug}")
async def get_category(request: web.Request) -> web.Response:
    category = request.app[STORE_KEY].get_category_by_slug(request.match_info["slug"])
    if category is None:
        return _error(404, "Category not found")
    return web.json_response({"success": True, "data": category.to_dict()})


@routes.post("/api/admin/refresh")
async def refresh(request: web.Request) -> web.Response:
    scheduler = request.app.get(SCHEDULER_KEY)
    if scheduler is None:
        return _error(503, "Scheduler not running")
    if not scheduler.request_cycle():
        return _error(409, "A fetch cycle is already running")
    return web.json_response({"success": True, "message": "Fetch cycle started"}, status=202)


async def _scheduler_ctx(app: web.Application):
    scheduler = app[SCHEDULER_KEY]
    scheduler.start()
    yield
    await scheduler.stop()


async def _close_adapters(app: web.Application) -> None:
    for adapter in app[ADAPTERS_KEY].values():
        await adapter.close()


def create_app(
    store: CatalogStore,
    adapters: dict[str, ProviderAdapter],
    scheduler: Optional[IngestionScheduler] = None,
) -> web.Application:
    """Build the API application; the scheduler (if given) runs with it."""
    app = web.Application(middlewares=[error_middleware])
    app[STORE_KEY] = store
    app[ADAPTERS_KEY] = adapters
    app[STARTED_KEY] = time.monotonic()
    app.add_routes(routes)

    if scheduler is not None:
        app[SCHEDULER_KEY] = scheduler
        app.cleanup_ctx.append(_scheduler_ctx)
    app.on_cleanup.append(_close_adapters)

    return app
