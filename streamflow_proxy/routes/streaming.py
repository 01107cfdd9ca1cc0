import logging
from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, HTTPException, Path, Query

from streamflow_proxy.providers.base import ProviderError
from streamflow_proxy.providers.health import get_trusted_health
from streamflow_proxy.providers.orchestrator import MAX_EPISODE_ID_LENGTH, StreamingOrchestrator
from streamflow_proxy.schemas import EmbedServersResponse, HealthStatus, WatchParams
from streamflow_proxy.utils.http_utils import get_http_client

streaming_router = APIRouter()
logger = logging.getLogger(__name__)

EpisodeId = Annotated[str, Path(min_length=1, max_length=MAX_EPISODE_ID_LENGTH)]


def get_orchestrator(client: Annotated[httpx.AsyncClient, Depends(get_http_client)]) -> StreamingOrchestrator:
    return StreamingOrchestrator(client)


@streaming_router.get("/watch/{episode_id:path}")
async def watch_episode(
    episode_id: EpisodeId,
    watch_params: Annotated[WatchParams, Query()],
    orchestrator: Annotated[StreamingOrchestrator, Depends(get_orchestrator)],
):
    """
    Resolve playable sources for an episode.

    Args:
        episode_id (str): Provider episode identifier.
        watch_params (WatchParams): Provider selection and sub/dub flag.
        orchestrator (StreamingOrchestrator): Provider dispatcher.

    Returns:
        dict: Direct sources, or embed servers in ``mirror`` mode.
    """
    try:
        response = await orchestrator.watch(episode_id, watch_params.provider, watch_params.dub)
    except ProviderError as e:
        logger.error(f"Watch failed for {episode_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)


@streaming_router.get("/servers/{episode_id:path}")
async def episode_servers(
    episode_id: EpisodeId,
    orchestrator: Annotated[StreamingOrchestrator, Depends(get_orchestrator)],
):
    """List the mirror's embed and download servers for an episode."""
    try:
        servers = await orchestrator.get_mirror_servers(episode_id)
    except ProviderError as e:
        logger.error(f"Server listing failed for {episode_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return EmbedServersResponse(servers=servers).model_dump(mode="json", by_alias=True)


@streaming_router.get("/health")
async def trusted_health(client: Annotated[httpx.AsyncClient, Depends(get_http_client)]):
    status: HealthStatus = await get_trusted_health(client)
    return status.model_dump(mode="json", by_alias=True, exclude_none=True)
