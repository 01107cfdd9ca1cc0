from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from streamflow_proxy.configs import settings
from streamflow_proxy.handlers import analyze_resource, cors_response, handle_exceptions, handle_stream_proxy
from streamflow_proxy.schemas import ProxyParams
from streamflow_proxy.utils.http_utils import get_http_client

proxy_router = APIRouter()


@proxy_router.options("/stream")
async def proxy_stream_options():
    """Answer CORS preflight requests for the stream endpoint."""
    return cors_response(status_code=204)


@proxy_router.get("/stream", name="proxy_stream")
async def proxy_stream_endpoint(
    request: Request,
    proxy_params: Annotated[ProxyParams, Query()],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> Response:
    """
    Proxify a playlist, segment, key or subtitle, correcting its content type.

    Args:
        request (Request): The incoming HTTP request.
        proxy_params (ProxyParams): The upstream URL and the referer to send with it.
        client (httpx.AsyncClient): The shared outbound client.

    Returns:
        Response: The HTTP response with the processed content.
    """
    return await handle_stream_proxy(request, proxy_params, client)


@proxy_router.get("/debug")
async def proxy_debug(
    proxy_params: Annotated[ProxyParams, Query()],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
):
    """Report status, headers, leading bytes and the sniffed format of an upstream resource."""
    try:
        return await analyze_resource(proxy_params.url, proxy_params.referer or settings.default_referer, client)
    except Exception as e:
        return handle_exceptions(e)
