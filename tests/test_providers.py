"""Tests for the provider adapters against a local upstream server."""

import asyncio
from types import SimpleNamespace

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from config_loader import ConfigLoader, ProviderConfig
from pipeline_robustness import ProviderUnavailable
from providers import PexelsAdapter, UnsplashAdapter, create_adapters, rate_limit_info
from tests_support import pexels_payload, unsplash_payload


@pytest.fixture
async def upstream():
    """Fake Unsplash/Pexels API recording every request it receives."""
    requests = []

    def record(request):
        requests.append({
            "path": request.path,
            "query": dict(request.query),
            "headers": dict(request.headers),
        })

    async def unsplash_search(request):
        record(request)
        if request.query.get("query") == "broken":
            return web.Response(text="not json{", content_type="application/json")
        if request.query.get("query") == "forbidden":
            return web.Response(status=403, text="Rate Limit Exceeded")
        if request.query.get("query") == "slow":
            await asyncio.sleep(2)
        return web.json_response(
            {"results": [unsplash_payload("u1"), unsplash_payload("u2"), {"id": "bad", "urls": {}}]},
            headers={"X-Ratelimit-Remaining": "41", "X-Ratelimit-Limit": "50"},
        )

    async def unsplash_popular(request):
        record(request)
        return web.json_response([unsplash_payload("p1")])

    async def unsplash_photo(request):
        record(request)
        return web.json_response(unsplash_payload(request.match_info["id"]))

    async def unsplash_download(request):
        record(request)
        if request.match_info["id"] == "gone":
            return web.Response(status=404)
        return web.json_response({"url": "https://u/download"})

    async def pexels_search(request):
        record(request)
        return web.json_response({"photos": [pexels_payload(7), pexels_payload(8)]})

    async def pexels_curated(request):
        record(request)
        return web.json_response({"photos": [pexels_payload(9)]})

    app = web.Application()
    app.router.add_get("/search/photos", unsplash_search)
    app.router.add_get("/photos", unsplash_popular)
    app.router.add_get("/photos/{id}/download", unsplash_download)
    app.router.add_get("/photos/{id}", unsplash_photo)
    app.router.add_get("/search", pexels_search)
    app.router.add_get("/curated", pexels_curated)

    server = TestServer(app)
    await server.start_server()
    yield SimpleNamespace(url=f"http://{server.host}:{server.port}", requests=requests)
    await server.close()


@pytest.fixture
async def unsplash(upstream):
    adapter = UnsplashAdapter(
        ProviderConfig("unsplash", api_key="access-key", base_url=upstream.url, max_per_page=30),
        timeout_sec=1,
    )
    yield adapter
    await adapter.close()


@pytest.fixture
async def pexels(upstream):
    adapter = PexelsAdapter(
        ProviderConfig("pexels", api_key="pexels-key", base_url=upstream.url, max_per_page=80),
        timeout_sec=1,
    )
    yield adapter
    await adapter.close()


class TestUnsplashAdapter:
    async def test_search_normalizes_and_drops_malformed(self, unsplash, upstream):
        records = await unsplash.fetch_by_query("nature landscape", "nature", page=3, per_page=20)

        assert [r.external_id for r in records] == ["u1", "u2"]
        assert all(r.category == "nature" for r in records)

        sent = upstream.requests[-1]
        assert sent["path"] == "/search/photos"
        assert sent["query"]["page"] == "3"
        assert sent["query"]["orientation"] == "portrait"
        assert sent["headers"]["Authorization"] == "Client-ID access-key"
        assert sent["headers"]["Accept-Version"] == "v1"

    async def test_per_page_clamped_to_provider_limit(self, unsplash, upstream):
        await unsplash.fetch_by_query("nature", "nature", per_page=100)

        assert upstream.requests[-1]["query"]["per_page"] == "30"

    async def test_rate_limit_headers_recorded(self, unsplash):
        await unsplash.fetch_by_query("nature", "nature")

        assert unsplash.last_rate_limit == {"remaining": 41, "limit": 50}

    async def test_empty_query_returns_nothing_without_request(self, unsplash, upstream):
        assert await unsplash.fetch_by_query("", "nature") == []
        assert await unsplash.fetch_by_query(None, "nature") == []
        assert upstream.requests == []

    async def test_http_error_raises_provider_unavailable(self, unsplash):
        with pytest.raises(ProviderUnavailable) as exc_info:
            await unsplash.fetch_by_query("forbidden", "nature")

        assert exc_info.value.provider == "unsplash"
        assert "403" in str(exc_info.value.cause)
        assert exc_info.value.retryable is True

    async def test_invalid_json_raises_provider_unavailable(self, unsplash):
        with pytest.raises(ProviderUnavailable):
            await unsplash.fetch_by_query("broken", "nature")

    async def test_timeout_raises_provider_unavailable(self, unsplash):
        with pytest.raises(ProviderUnavailable):
            await unsplash.fetch_by_query("slow", "nature")

    async def test_missing_key_raises_without_request(self, upstream):
        adapter = UnsplashAdapter(ProviderConfig("unsplash", api_key="", base_url=upstream.url))

        with pytest.raises(ProviderUnavailable) as exc_info:
            await adapter.fetch_by_query("nature", "nature")
        assert exc_info.value.retryable is False
        assert upstream.requests == []
        await adapter.close()

    async def test_popular_marks_featured(self, unsplash, upstream):
        records = await unsplash.fetch_popular("featured", is_featured=True)

        assert [r.external_id for r in records] == ["p1"]
        assert records[0].is_featured is True
        assert records[0].category == "featured"
        assert upstream.requests[-1]["query"]["order_by"] == "popular"

    async def test_fetch_by_id(self, unsplash):
        record = await unsplash.fetch_by_id("xyz")

        assert record.id == "unsplash_xyz"
        assert record.category is None

    async def test_track_download(self, unsplash, upstream):
        assert await unsplash.track_download("u1") is True
        assert upstream.requests[-1]["path"] == "/photos/u1/download"

        assert await unsplash.track_download("gone") is False


class TestPexelsAdapter:
    async def test_search(self, pexels, upstream):
        records = await pexels.fetch_by_query("space galaxy", "space", per_page=200)

        assert [r.id for r in records] == ["pexels_7", "pexels_8"]
        sent = upstream.requests[-1]
        assert sent["path"] == "/search"
        assert sent["query"]["per_page"] == "80"
        assert sent["headers"]["Authorization"] == "pexels-key"

    async def test_curated(self, pexels, upstream):
        records = await pexels.fetch_popular()

        assert [r.external_id for r in records] == ["9"]
        assert records[0].category == "featured"
        assert upstream.requests[-1]["path"] == "/curated"

    async def test_track_download_is_noop(self, pexels, upstream):
        assert await pexels.track_download("7") is False
        assert upstream.requests == []


def test_rate_limit_info_defaults():
    assert rate_limit_info({}, 200) == {"remaining": 0, "limit": 200}
    assert rate_limit_info({"X-Ratelimit-Remaining": "oops"}, 50) == {"remaining": 0, "limit": 50}


def test_create_adapters_skips_disabled(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "providers:\n"
        "  unsplash:\n"
        "    api_key: k1\n"
        "  pexels:\n"
        "    api_key: k2\n"
        "    enabled: false\n"
    )

    adapters = create_adapters(ConfigLoader(config_file))

    assert list(adapters) == ["unsplash"]
    assert adapters["unsplash"].config.max_per_page == 30
