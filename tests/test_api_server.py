"""Tests for the read-side HTTP API."""

import asyncio

import pytest
from aiohttp.test_utils import TestClient, TestServer

from api_server import create_app
from conftest import FakeAdapter, make_record
from models import CategoryRecord
from pipeline_robustness import StoreUnavailable
from scheduler import IngestionScheduler


@pytest.fixture
async def make_client(store):
    clients = []

    async def _make(adapters=None, scheduler=None):
        client = TestClient(TestServer(create_app(store, adapters or {}, scheduler)))
        await client.start_server()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.close()


@pytest.fixture
def catalog(store):
    store.add_category(CategoryRecord("nature", "Nature", "🌿", "#22c55e", "nature"))
    store.add_category(CategoryRecord("space", "Space", "🌌", "#1e3a8a", "space"))
    store.upsert_many([
        make_record("1", category="nature"),
        make_record("2", category="nature"),
        make_record("3", category="space"),
        make_record("9", source="pexels", category="space"),
    ])
    store.reconcile_category_counts()
    return store


async def test_health(make_client):
    client = await make_client()

    resp = await client.get("/api/health")
    body = await resp.json()

    assert resp.status == 200
    assert body["status"] == "ok"
    assert body["uptime"] >= 0


class TestWallpapers:
    async def test_list_paginates(self, make_client, catalog):
        client = await make_client()

        body = await (await client.get("/api/wallpapers?limit=3")).json()

        assert body["success"] is True
        assert len(body["data"]) == 3
        assert body["pagination"] == {"page": 1, "limit": 3, "total": 4, "totalPages": 2, "hasMore": True}

    async def test_limit_is_capped(self, make_client, catalog):
        client = await make_client()

        body = await (await client.get("/api/wallpapers?limit=500&page=abc")).json()

        assert body["pagination"]["limit"] == 50
        assert body["pagination"]["page"] == 1

    async def test_category_listing(self, make_client, catalog):
        client = await make_client()

        body = await (await client.get("/api/wallpapers/category/nature?sort=newest")).json()

        assert body["category"] == "nature"
        assert body["pagination"]["total"] == 2
        assert {w["category"] for w in body["data"]} == {"nature"}

    async def test_get_by_id(self, make_client, catalog):
        client = await make_client()

        ok = await client.get("/api/wallpapers/unsplash_1")
        missing = await client.get("/api/wallpapers/unsplash_404")

        assert (await ok.json())["data"]["external_id"] == "1"
        assert missing.status == 404
        assert await missing.json() == {"success": False, "error": "Wallpaper not found"}

    async def test_download_tracks_unsplash(self, make_client, catalog):
        unsplash = FakeAdapter("unsplash")
        client = await make_client({"unsplash": unsplash})

        resp = await client.post("/api/wallpapers/unsplash_1/download")
        body = await resp.json()

        assert body["message"] == "Download tracked"
        assert body["downloadUrl"] == "https://img.example.com/unsplash/1/full.jpg"
        assert catalog.get_wallpaper_by_id("unsplash_1").downloads == 1
        assert unsplash.downloads == ["1"]

    async def test_download_pexels_not_reported(self, make_client, catalog):
        pexels = FakeAdapter("pexels")
        client = await make_client({"pexels": pexels})

        resp = await client.post("/api/wallpapers/pexels_9/download")

        assert resp.status == 200
        assert catalog.get_wallpaper_by_id("pexels_9").downloads == 1
        assert pexels.downloads == []

    async def test_similar(self, make_client, catalog):
        client = await make_client()

        body = await (await client.get("/api/wallpapers/unsplash_3/similar?limit=100")).json()

        assert [w["id"] for w in body["data"]] == ["pexels_9"]


class TestCategories:
    async def test_list(self, make_client, catalog):
        client = await make_client()

        body = await (await client.get("/api/categories")).json()

        assert [(c["slug"], c["wallpaper_count"]) for c in body["data"]] == [("nature", 2), ("space", 2)]

    async def test_by_slug(self, make_client, catalog):
        client = await make_client()

        assert (await (await client.get("/api/categories/space")).json())["data"]["name"] == "Space"
        assert (await client.get("/api/categories/unknown")).status == 404


async def test_unknown_endpoint(make_client):
    client = await make_client()

    resp = await client.get("/api/nope")

    assert resp.status == 404
    assert await resp.json() == {"success": False, "error": "Endpoint not found"}


async def test_store_failure_is_500(make_client, store, monkeypatch):
    def broken():
        raise StoreUnavailable("database disk image is malformed")

    monkeypatch.setattr(store, "get_categories", broken)
    client = await make_client()

    resp = await client.get("/api/categories")

    assert resp.status == 500
    assert (await resp.json())["success"] is False


async def test_unexpected_error_is_json_500(make_client, store, monkeypatch, caplog):
    def broken():
        raise RuntimeError("bad row")

    monkeypatch.setattr(store, "get_categories", broken)
    client = await make_client()

    with caplog.at_level("INFO", logger="wallcraft"):
        resp = await client.get("/api/categories")

    assert resp.status == 500
    assert resp.content_type == "application/json"
    assert await resp.json() == {"success": False, "error": "Internal server error"}
    assert "GET /api/categories 500" in caplog.text


async def test_method_not_allowed_passes_through(make_client):
    client = await make_client()

    resp = await client.delete("/api/categories")

    assert resp.status == 405


class TestAdminRefresh:
    async def test_without_scheduler(self, make_client):
        client = await make_client()

        assert (await client.post("/api/admin/refresh")).status == 503

    async def test_starts_cycle_then_rejects_overlap(self, make_client, nature, make_orchestrator):
        release = asyncio.Event()

        class Blocking(FakeAdapter):
            async def fetch_by_query(self, *args, **kwargs):
                await release.wait()
                return []

        orchestrator = make_orchestrator(Blocking("unsplash"), FakeAdapter("pexels"))
        scheduler = IngestionScheduler(orchestrator, interval_minutes=600, seed_on_startup=False)
        client = await make_client(orchestrator.adapters, scheduler)

        first = await client.post("/api/admin/refresh")
        second = await client.post("/api/admin/refresh")
        release.set()

        assert first.status == 202
        assert second.status == 409
