"""
Provider orchestration.

Dispatches a watch request to one of three modes:

* ``trusted``: an API that already returns direct HLS manifests;
* ``mirror``: the ad-bearing mirror catalog, returned as embed pages untouched;
* ``mirror-adfree``: the mirror catalog's embed pages run through the
  extractor registry, returning the first successful extraction.

An explicit selection never falls back to another mode. Without one, the
trusted provider is tried when its CDN is reachable, then ``mirror-adfree``.
"""

import logging
from typing import List, Optional, Union

import httpx

from streamflow_proxy.configs import settings
from streamflow_proxy.extractors.factory import ExtractorFactory
from streamflow_proxy.providers.animeflv import AnimeFLVProvider
from streamflow_proxy.providers.base import ProviderError
from streamflow_proxy.providers.health import is_trusted_available
from streamflow_proxy.providers.hianime import HiAnimeProvider
from streamflow_proxy.schemas import DirectSourcesResponse, EmbedServer, EmbedServersResponse, StreamingProvider
from streamflow_proxy.utils.cache_utils import get_or_set_json

logger = logging.getLogger(__name__)

MAX_EPISODE_ID_LENGTH = 200

WatchResponse = Union[DirectSourcesResponse, EmbedServersResponse]


def validate_episode_id(episode_id: str) -> str:
    if not episode_id or len(episode_id) > MAX_EPISODE_ID_LENGTH:
        raise ProviderError(400, "Invalid episode ID")
    return episode_id


def watch_cache_key(provider: StreamingProvider, episode_id: str, dub: bool) -> str:
    return f"{provider.value}:watch:{episode_id}:{'dub' if dub else 'sub'}"


class StreamingOrchestrator:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client
        self.trusted = HiAnimeProvider(client)
        self.mirror = AnimeFLVProvider(client)

    async def watch(
        self, episode_id: str, provider: Optional[StreamingProvider] = None, dub: bool = False
    ) -> WatchResponse:
        """
        Resolve playable sources for an episode.

        Args:
            episode_id (str): Episode identifier understood by the selected provider.
            provider (StreamingProvider, optional): Mode to use. ``None`` applies the default ordering.
            dub (bool): Request the dubbed track.

        Returns:
            DirectSourcesResponse | EmbedServersResponse: Direct sources or, in ``mirror`` mode, embed servers.

        Raises:
            ProviderError: 404 when no path produced sources, 503 on upstream transport failures,
                400 for an invalid episode identifier.
        """
        validate_episode_id(episode_id)
        if provider is not None:
            return await self.watch_with(provider, episode_id, dub)

        candidates = [StreamingProvider.MIRROR_ADFREE]
        if await is_trusted_available(self.client):
            candidates.insert(0, StreamingProvider.TRUSTED)
        else:
            logger.info("Trusted CDN is blocked from this host, skipping trusted provider")

        last_error = None
        for candidate in candidates:
            try:
                return await self.watch_with(candidate, episode_id, dub)
            except ProviderError as e:
                logger.warning(f"Provider {candidate.value} failed for {episode_id}: {e.message}")
                last_error = e
        raise last_error

    async def watch_with(self, provider: StreamingProvider, episode_id: str, dub: bool) -> WatchResponse:
        if provider is StreamingProvider.MIRROR:
            return EmbedServersResponse(servers=await self.get_mirror_servers(episode_id))

        if provider is StreamingProvider.TRUSTED:

            async def compute():
                return (await self.trusted.get_sources(episode_id, dub)).model_dump(mode="json", by_alias=True)

        else:

            async def compute():
                return (await self.extract_adfree(episode_id)).model_dump(mode="json", by_alias=True)

        payload = await get_or_set_json(
            watch_cache_key(provider, episode_id, dub), settings.sources_cache_ttl, compute
        )
        return DirectSourcesResponse.model_validate(payload)

    async def get_mirror_servers(self, episode_id: str) -> List[EmbedServer]:
        validate_episode_id(episode_id)

        async def compute():
            servers = await self.mirror.get_servers(episode_id)
            return [server.model_dump(mode="json") for server in servers]

        payload = await get_or_set_json(f"mirror:servers:{episode_id}", settings.servers_cache_ttl, compute)
        return [EmbedServer.model_validate(server) for server in payload]

    async def extract_adfree(self, episode_id: str) -> DirectSourcesResponse:
        """
        Run the mirror's embed servers through the extractor registry.

        Servers are tried in catalog order and the first successful extraction
        wins. If none succeeds the request fails instead of falling back to the
        ad-bearing embeds.
        """
        servers = await self.get_mirror_servers(episode_id)
        candidates = [
            server for server in servers if server.type == "embed" and ExtractorFactory.can_extract(server.url)
        ]
        if not candidates:
            raise ProviderError(404, "No supported embed servers for this episode")

        errors = []
        for server in candidates:
            logger.info(f"[AdFree] Trying {server.name}: {server.url}")
            result = await ExtractorFactory.extract_video(server.url, self.client)
            if result.success:
                logger.info(f"[AdFree] Extracted from {server.name} via {result.server}")
                return DirectSourcesResponse(
                    provider=StreamingProvider.MIRROR_ADFREE, sources=result.videos, extracted_from=server.name
                )
            errors.append(f"{server.name}: {result.error}")

        logger.warning(f"[AdFree] Every extractor failed for {episode_id}: {'; '.join(errors)}")
        raise ProviderError(404, "Could not extract a direct stream from any server")
