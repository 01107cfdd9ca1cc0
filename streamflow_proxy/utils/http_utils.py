import logging
import typing
from urllib import parse
from urllib.parse import urlencode

import httpx
from starlette.requests import Request
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from streamflow_proxy.configs import settings

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    def __init__(self, status_code, message):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


def create_httpx_client(follow_redirects: bool = True, **kwargs) -> httpx.AsyncClient:
    """
    Create an HTTPX AsyncClient honouring the transport configuration.

    Args:
        follow_redirects (bool): Whether to follow 3xx redirects automatically.
        **kwargs: Additional AsyncClient keyword arguments.

    Returns:
        httpx.AsyncClient: Configured client.
    """
    mounts = settings.transport_config.get_mounts()
    kwargs.setdefault("timeout", settings.transport_config.timeout)
    return httpx.AsyncClient(mounts=mounts, follow_redirects=follow_redirects, **kwargs)


def browser_headers(referer: typing.Optional[str] = None, **extra) -> dict:
    """
    Build the spoofed desktop-browser request headers sent to upstream mirrors.

    Args:
        referer (str, optional): Referer to send; its origin is sent as ``Origin`` too.
        **extra: Additional headers (underscores in names become dashes).

    Returns:
        dict: Request headers.
    """
    headers = {
        "user-agent": settings.user_agent,
        "accept": "*/*",
        "accept-language": "en-US,en;q=0.9",
    }
    if referer:
        headers["referer"] = referer
        origin = get_origin(referer)
        if origin:
            headers["origin"] = origin
    headers.update({key.replace("_", "-"): value for key, value in extra.items()})
    return headers


def get_origin(url: str) -> typing.Optional[str]:
    parsed = parse.urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


@retry(
    stop=stop_after_attempt(settings.proxy_fetch_attempts),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.RemoteProtocolError)),
    reraise=True,
)
async def fetch_with_retry(client: httpx.AsyncClient, method: str, url: str, headers: dict, **kwargs):
    """
    Fetch a URL, retrying only on connection-level transport failures.

    Args:
        client (httpx.AsyncClient): HTTP client to use for the request.
        method (str): HTTP method (e.g., GET, HEAD).
        url (str): Target URL.
        headers (dict): Request headers.
        **kwargs: Additional request arguments.

    Returns:
        httpx.Response: HTTP response.

    Raises:
        DownloadError: If the upstream answers with a non-2xx status or times out.
    """
    try:
        response = await client.request(method, url, headers=headers, **kwargs)
        response.raise_for_status()
        return response
    except httpx.TimeoutException:
        logger.warning(f"Timeout while downloading {url}")
        raise DownloadError(504, f"Timeout while downloading {url}")
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error {e.response.status_code} while downloading {url}")
        raise DownloadError(e.response.status_code, f"Upstream error: {e.response.status_code}")


def encode_proxy_url(proxy_endpoint_url: str, destination_url: str, referer: typing.Optional[str] = None) -> str:
    """
    Encode an upstream address as a URL of this proxy's own stream endpoint.

    Args:
        proxy_endpoint_url (str): Absolute or root-relative URL of the stream endpoint.
        destination_url (str): Absolute upstream URL.
        referer (str, optional): Referer to forward upstream when the proxy URL is fetched.

    Returns:
        str: The proxy URL.
    """
    query_params = {"url": destination_url}
    if referer:
        query_params["referer"] = referer
    return f"{proxy_endpoint_url.rstrip('/')}?{urlencode(query_params)}"


def decode_proxy_url(proxy_url: str) -> dict:
    """Inverse of :func:`encode_proxy_url`: return the ``url``/``referer`` query parameters."""
    query = parse.parse_qs(parse.urlparse(proxy_url).query)
    return {key: values[0] for key, values in query.items()}


def get_original_scheme(request: Request) -> str:
    """
    Determine the original scheme (http or https) of the incoming request.

    Args:
        request (Request): Incoming HTTP request.

    Returns:
        str: 'http' or 'https'
    """
    forwarded_proto = request.headers.get("X-Forwarded-Proto")
    if forwarded_proto:
        return forwarded_proto

    if request.url.scheme == "https" or request.headers.get("X-Forwarded-Ssl") == "on":
        return "https"

    if request.headers.get("X-Forwarded-Protocol") == "https" or request.headers.get("X-Url-Scheme") == "https":
        return "https"

    return "http"


def get_http_client(request: Request) -> httpx.AsyncClient:
    """FastAPI dependency returning the application's shared outbound client."""
    return request.app.state.http_client
