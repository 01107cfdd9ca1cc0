import logging
from typing import List
from urllib.parse import quote

from streamflow_proxy.configs import settings
from streamflow_proxy.providers.base import BaseStreamingProvider, ProviderError
from streamflow_proxy.schemas import EmbedServer, StreamingProvider

logger = logging.getLogger(__name__)


def normalize_servers(raw_servers: List[dict]) -> List[EmbedServer]:
    """
    Flatten the catalog's server entries.

    Each entry becomes an ``embed`` server when it has an embed address and,
    when it also has a download address, an extra ``"<name> (Download)"``
    server of type ``download``.
    """
    servers = []
    for server in raw_servers:
        name = server.get("name") or server.get("title") or "unknown"
        if server.get("embed"):
            servers.append(EmbedServer(name=name, url=server["embed"], type="embed"))
        if server.get("download"):
            servers.append(EmbedServer(name=f"{name} (Download)", url=server["download"], type="download"))
    return servers


class AnimeFLVProvider(BaseStreamingProvider):
    """Ad-bearing mirror catalog: lists third-party embed pages per episode."""

    provider = StreamingProvider.MIRROR

    def episode_url(self, episode_slug: str) -> str:
        return f"{settings.mirror_api_url.rstrip('/')}/api/anime/episode/{quote(episode_slug, safe='')}"

    async def get_servers(self, episode_slug: str) -> List[EmbedServer]:
        logger.info(f"[AnimeFLV] Fetching servers for episode: {episode_slug}")
        payload = await self._get_json(self.episode_url(episode_slug))

        # The catalog wraps the episode as {"success": ..., "data": {...}}
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        servers = normalize_servers((data or {}).get("servers") or [])
        if not servers:
            raise ProviderError(404, "No servers found for this episode")

        logger.info(f"[AnimeFLV] {len(servers)} servers for {episode_slug}")
        return servers
