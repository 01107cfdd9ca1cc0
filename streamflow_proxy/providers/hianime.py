import logging
from typing import List, Optional

from streamflow_proxy.configs import settings
from streamflow_proxy.providers.base import BaseStreamingProvider, ProviderError
from streamflow_proxy.schemas import DirectSourcesResponse, ExtractedVideo, StreamingProvider, Subtitle, TimeRange

logger = logging.getLogger(__name__)


def _time_range(data: Optional[dict]) -> Optional[TimeRange]:
    if not data or data.get("start") is None:
        return None
    return TimeRange(start=data["start"], end=data.get("end", data["start"]))


class HiAnimeProvider(BaseStreamingProvider):
    """
    Trusted provider backed by an aniwatch-compatible API.

    Sources are already direct HLS manifests; no extraction is needed.
    Servers are asked in order until one returns at least one source.
    """

    provider = StreamingProvider.TRUSTED

    @property
    def sources_url(self) -> str:
        return f"{settings.trusted_api_url.rstrip('/')}/api/v2/hianime/episode/sources"

    async def get_sources(self, episode_id: str, dub: bool = False) -> DirectSourcesResponse:
        """
        Fetch direct sources for an episode.

        Args:
            episode_id (str): Provider episode identifier.
            dub (bool): Ask for the dubbed category instead of subtitles.

        Returns:
            DirectSourcesResponse: Direct sources, subtitles and intro/outro markers.

        Raises:
            ProviderError: When no server yields any source.
        """
        category = "dub" if dub else "sub"
        last_error: Optional[ProviderError] = None

        for server in settings.trusted_servers:
            logger.info(f"[HiAnime] Fetching sources for episode: {episode_id} (server: {server}, category: {category})")
            try:
                payload = await self._get_json(
                    self.sources_url,
                    params={"animeEpisodeId": episode_id, "server": server, "category": category},
                )
            except ProviderError as e:
                logger.warning(f"[HiAnime] Server {server} failed, trying next: {e}")
                last_error = e
                continue

            data = (payload or {}).get("data") or {}
            if data.get("sources"):
                logger.info(f"[HiAnime] Got sources from server: {server}")
                return self.normalize(data)

        if last_error is not None and last_error.status_code == 503:
            raise last_error
        raise ProviderError(404, "No streaming sources found for this episode")

    def normalize(self, data: dict) -> DirectSourcesResponse:
        referer = (data.get("headers") or {}).get("Referer") or settings.default_referer
        sources: List[ExtractedVideo] = [
            ExtractedVideo(
                url=source["url"],
                quality="auto",
                is_m3u8=source.get("type") == "hls" or ".m3u8" in source["url"],
                headers={"Referer": referer},
            )
            for source in data["sources"]
            if source.get("url")
        ]
        if not sources:
            raise ProviderError(404, "No streaming sources found for this episode")

        subtitles = [
            Subtitle(url=track["url"], lang=track.get("lang", ""), label=track.get("label"))
            for track in data.get("tracks") or []
            if track.get("url")
        ]
        return DirectSourcesResponse(
            provider=self.provider,
            sources=sources,
            subtitles=subtitles,
            intro=_time_range(data.get("intro")),
            outro=_time_range(data.get("outro")),
        )
