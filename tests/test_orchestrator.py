from urllib.parse import quote

import httpx
import pytest

from streamflow_proxy.configs import settings
from streamflow_proxy.providers.animeflv import normalize_servers
from streamflow_proxy.providers.base import ProviderError
from streamflow_proxy.providers.health import check_trusted_cdn, get_trusted_health
from streamflow_proxy.providers.orchestrator import StreamingOrchestrator, watch_cache_key
from streamflow_proxy.schemas import DirectSourcesResponse, EmbedServersResponse, StreamingProvider
from tests.mocks import MockUpstream
from tests.test_packed import pack

EPISODE_ID = "frieren-beyond-journeys-end-18542?ep=107257"
MIRROR_SLUG = "sousou-no-frieren-18"
SOURCES_URL = f"{settings.trusted_api_url}/api/v2/hianime/episode/sources"
MIRROR_URL = f"{settings.mirror_api_url}/api/anime/episode/{{}}"
MANIFEST_URL = "https://vd2.example.com/_v7/abc/master.m3u8"

TRUSTED_PAYLOAD = {
    "status": 200,
    "data": {
        "headers": {"Referer": "https://megacloud.blog/"},
        "tracks": [
            {"url": "https://cc.example.com/eng-2.vtt", "lang": "English"},
            {"url": "https://cc.example.com/thumbnails.vtt", "lang": "thumbnails"},
        ],
        "intro": {"start": 31, "end": 110},
        "outro": {"start": 0, "end": 0},
        "sources": [{"url": MANIFEST_URL, "type": "hls"}],
    },
}

STREAMTAPE_EMBED = "https://streamtape.com/e/deadbeef"
FILEMOON_EMBED = "https://filemoon.sx/e/f00dcafe"
FILEMOON_PAGE = (
    "<html><body><script>"
    + pack(f'jwplayer("vplayer").setup({{file:"{MANIFEST_URL}"}});')
    + "</script></body></html>"
).encode()


def mirror_payload(*servers):
    return {"success": True, "data": {"title": "Sousou no Frieren", "number": 18, "servers": list(servers)}}


def trusted_route(by_server):
    def handler(request: httpx.Request) -> httpx.Response:
        answer = by_server.get(request.url.params["server"], (200, {"status": 200, "data": {"sources": []}}))
        status, payload = answer
        return httpx.Response(status, json=payload)

    return handler


def health_routes(status):
    return {url: (status, b"", {}) for url in settings.trusted_health_urls}


@pytest.mark.asyncio
async def test_trusted_sources_are_normalized_and_cached():
    upstream = MockUpstream({SOURCES_URL: trusted_route({"hd-1": (200, TRUSTED_PAYLOAD)})})
    async with upstream.client() as client:
        orchestrator = StreamingOrchestrator(client)
        response = await orchestrator.watch(EPISODE_ID, StreamingProvider.TRUSTED)
        again = await orchestrator.watch(EPISODE_ID, StreamingProvider.TRUSTED)

    assert isinstance(response, DirectSourcesResponse)
    assert response.provider is StreamingProvider.TRUSTED
    assert response.sources[0].url == MANIFEST_URL
    assert response.sources[0].is_m3u8 is True
    assert response.sources[0].headers == {"Referer": "https://megacloud.blog/"}
    assert [subtitle.lang for subtitle in response.subtitles] == ["English", "thumbnails"]
    assert response.intro.start == 31 and response.intro.end == 110
    assert response.outro.start == 0

    assert again == response
    assert upstream.call_count == 1
    request = upstream.calls[0]
    assert request.url.params["animeEpisodeId"] == EPISODE_ID
    assert request.url.params["category"] == "sub"


@pytest.mark.asyncio
async def test_trusted_tries_next_server():
    upstream = MockUpstream(
        {SOURCES_URL: trusted_route({"hd-1": (500, {"message": "boom"}), "hd-2": (200, TRUSTED_PAYLOAD)})}
    )
    async with upstream.client() as client:
        response = await StreamingOrchestrator(client).watch(EPISODE_ID, StreamingProvider.TRUSTED, dub=True)

    assert response.sources[0].url == MANIFEST_URL
    assert [call.url.params["server"] for call in upstream.calls] == ["hd-1", "hd-2"]
    assert upstream.calls[0].url.params["category"] == "dub"


@pytest.mark.asyncio
async def test_explicit_trusted_failure_does_not_fall_back():
    upstream = MockUpstream({SOURCES_URL: trusted_route({})})
    async with upstream.client() as client:
        with pytest.raises(ProviderError) as exc_info:
            await StreamingOrchestrator(client).watch(EPISODE_ID, StreamingProvider.TRUSTED)

    assert exc_info.value.status_code == 404
    assert upstream.call_count == len(settings.trusted_servers)
    assert all(str(call.url).startswith(SOURCES_URL) for call in upstream.calls)


@pytest.mark.asyncio
async def test_trusted_transport_failure_is_503():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream = MockUpstream({SOURCES_URL: refuse})
    async with upstream.client() as client:
        with pytest.raises(ProviderError) as exc_info:
            await StreamingOrchestrator(client).watch(EPISODE_ID, StreamingProvider.TRUSTED)

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_mirror_returns_embed_and_download_servers():
    payload = mirror_payload(
        {"name": "Stape", "embed": STREAMTAPE_EMBED, "download": "https://streamtape.com/v/deadbeef"},
        {"name": "YourUpload", "embed": "https://www.yourupload.com/embed/abc"},
        {"name": "MEGA", "download": "https://mega.nz/file/xyz"},
    )
    upstream = MockUpstream({MIRROR_URL.format(MIRROR_SLUG): lambda request: httpx.Response(200, json=payload)})
    async with upstream.client() as client:
        response = await StreamingOrchestrator(client).watch(MIRROR_SLUG, StreamingProvider.MIRROR)

    assert isinstance(response, EmbedServersResponse)
    assert response.provider is StreamingProvider.MIRROR
    assert [(server.name, server.type) for server in response.servers] == [
        ("Stape", "embed"),
        ("Stape (Download)", "download"),
        ("YourUpload", "embed"),
        ("MEGA (Download)", "download"),
    ]


@pytest.mark.asyncio
async def test_adfree_stops_at_first_successful_extraction():
    payload = mirror_payload(
        {"name": "YourUpload", "embed": "https://www.yourupload.com/embed/abc"},
        {"name": "Stape", "embed": STREAMTAPE_EMBED, "download": "https://streamtape.com/v/deadbeef"},
        {"name": "SW", "embed": FILEMOON_EMBED},
        {"name": "SW2", "embed": "https://streamwish.to/e/second"},
    )
    upstream = MockUpstream(
        {
            MIRROR_URL.format(MIRROR_SLUG): lambda request: httpx.Response(200, json=payload),
            STREAMTAPE_EMBED: (404, b"File not found", {}),
            FILEMOON_EMBED: (200, FILEMOON_PAGE, {"content-type": "text/html"}),
        }
    )
    async with upstream.client() as client:
        response = await StreamingOrchestrator(client).watch(MIRROR_SLUG, StreamingProvider.MIRROR_ADFREE)

    assert response.provider is StreamingProvider.MIRROR_ADFREE
    assert response.extracted_from == "SW"
    assert response.sources[0].url == MANIFEST_URL
    assert response.sources[0].headers == {"Referer": FILEMOON_EMBED}

    fetched = [str(call.url) for call in upstream.calls]
    assert "https://www.yourupload.com/embed/abc" not in fetched
    assert "https://streamtape.com/v/deadbeef" not in fetched
    assert "https://streamwish.to/e/second" not in fetched


@pytest.mark.asyncio
async def test_adfree_failure_is_hard_404():
    payload = mirror_payload({"name": "Stape", "embed": STREAMTAPE_EMBED})
    upstream = MockUpstream({MIRROR_URL.format(MIRROR_SLUG): lambda request: httpx.Response(200, json=payload)})
    async with upstream.client() as client:
        with pytest.raises(ProviderError) as exc_info:
            await StreamingOrchestrator(client).watch(MIRROR_SLUG, StreamingProvider.MIRROR_ADFREE)

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_adfree_without_supported_servers():
    payload = mirror_payload({"name": "YourUpload", "embed": "https://www.yourupload.com/embed/abc"})
    upstream = MockUpstream({MIRROR_URL.format(MIRROR_SLUG): lambda request: httpx.Response(200, json=payload)})
    async with upstream.client() as client:
        with pytest.raises(ProviderError) as exc_info:
            await StreamingOrchestrator(client).watch(MIRROR_SLUG, StreamingProvider.MIRROR_ADFREE)

    assert exc_info.value.message == "No supported embed servers for this episode"
    assert upstream.call_count == 1


@pytest.mark.asyncio
async def test_default_order_skips_blocked_trusted_provider():
    payload = mirror_payload({"name": "SW", "embed": FILEMOON_EMBED})
    upstream = MockUpstream(
        {
            **health_routes(403),
            MIRROR_URL.format(MIRROR_SLUG): lambda request: httpx.Response(200, json=payload),
            FILEMOON_EMBED: (200, FILEMOON_PAGE, {"content-type": "text/html"}),
            SOURCES_URL: trusted_route({"hd-1": (200, TRUSTED_PAYLOAD)}),
        }
    )
    async with upstream.client() as client:
        response = await StreamingOrchestrator(client).watch(MIRROR_SLUG)

    assert response.provider is StreamingProvider.MIRROR_ADFREE
    assert not any(str(call.url).startswith(SOURCES_URL) for call in upstream.calls)


@pytest.mark.asyncio
async def test_default_order_prefers_trusted_then_falls_back():
    payload = mirror_payload({"name": "SW", "embed": FILEMOON_EMBED})
    routes = {
        **health_routes(200),
        MIRROR_URL.format(quote(EPISODE_ID, safe="")): lambda request: httpx.Response(200, json=payload),
        FILEMOON_EMBED: (200, FILEMOON_PAGE, {"content-type": "text/html"}),
    }

    upstream = MockUpstream({**routes, SOURCES_URL: trusted_route({"hd-1": (200, TRUSTED_PAYLOAD)})})
    async with upstream.client() as client:
        response = await StreamingOrchestrator(client).watch(EPISODE_ID)
    assert response.provider is StreamingProvider.TRUSTED

    upstream = MockUpstream({**routes, SOURCES_URL: trusted_route({})})
    async with upstream.client() as client:
        response = await StreamingOrchestrator(client).watch(EPISODE_ID, dub=True)
    assert response.provider is StreamingProvider.MIRROR_ADFREE


@pytest.mark.asyncio
async def test_invalid_episode_id():
    async with MockUpstream().client() as client:
        with pytest.raises(ProviderError) as exc_info:
            await StreamingOrchestrator(client).watch("x" * 201, StreamingProvider.MIRROR)
    assert exc_info.value.status_code == 400


def test_watch_cache_key():
    assert watch_cache_key(StreamingProvider.TRUSTED, "ep-1", False) == "trusted:watch:ep-1:sub"
    assert watch_cache_key(StreamingProvider.MIRROR_ADFREE, "ep-1", True) == "mirror-adfree:watch:ep-1:dub"


def test_normalize_servers_skips_empty_entries():
    servers = normalize_servers([{"name": "Empty"}, {"name": "Okru", "embed": "https://ok.ru/videoembed/1"}])
    assert [server.name for server in servers] == ["Okru"]


@pytest.mark.asyncio
async def test_health_check_first_non_blocked_answer_wins():
    urls = settings.trusted_health_urls
    upstream = MockUpstream({urls[0]: (403, b"", {}), urls[1]: (404, b"", {}), urls[2]: (200, b"", {})})
    async with upstream.client() as client:
        status = await check_trusted_cdn(client)

    assert status.available is True
    assert [probe.status for probe in status.tested_urls] == [403, 404]
    assert all(call.method == "HEAD" for call in upstream.calls)


@pytest.mark.asyncio
async def test_health_check_blocked_and_cached():
    def refuse(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    urls = settings.trusted_health_urls
    upstream = MockUpstream({urls[0]: (403, b"", {}), urls[1]: refuse, urls[2]: (403, b"", {})})
    async with upstream.client() as client:
        status = await get_trusted_health(client)
        cached = await get_trusted_health(client)

    assert status.available is False
    assert status.reason == "All CDN tests returned 403 (blocked) or failed"
    assert [probe.status for probe in status.tested_urls] == [403, 0, 403]
    assert status.tested_urls[1].error
    assert cached == status
    assert upstream.call_count == 3
