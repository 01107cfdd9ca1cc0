import logging
from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, Query

from streamflow_proxy.extractors.factory import ExtractorFactory
from streamflow_proxy.schemas import ExtractionResult, ExtractorURLParams
from streamflow_proxy.utils.http_utils import get_http_client

extractor_router = APIRouter()
logger = logging.getLogger(__name__)


@extractor_router.get("/video", response_model=ExtractionResult, response_model_by_alias=True)
async def extract_url(
    extractor_params: Annotated[ExtractorURLParams, Query()],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
):
    """
    Resolve an embed page to direct video URLs.

    Failures are reported in the body (``success: false``) rather than as an
    HTTP error; one broken mirror is an expected condition.
    """
    result = await ExtractorFactory.extract_video(extractor_params.destination, client)
    if not result.success:
        logger.info(f"Extraction failed for {extractor_params.destination}: {result.error}")
    return result


@extractor_router.get("/servers")
async def supported_servers():
    return {"servers": ExtractorFactory.get_supported_servers()}


@extractor_router.get("/check")
async def check_url(extractor_params: Annotated[ExtractorURLParams, Query()]):
    extractor_class = ExtractorFactory.find_extractor(extractor_params.destination)
    return {
        "url": extractor_params.destination,
        "supported": extractor_class is not None,
        "server": extractor_class.name if extractor_class else None,
    }
