import logging
import time
from typing import List

import httpx

from streamflow_proxy.configs import settings
from streamflow_proxy.schemas import HealthStatus, ProbedUrl
from streamflow_proxy.utils.cache_utils import get_or_set_json
from streamflow_proxy.utils.http_utils import browser_headers

logger = logging.getLogger(__name__)

HEALTH_CACHE_KEY = "streaming:trusted:health"


async def probe_url(client: httpx.AsyncClient, url: str) -> ProbedUrl:
    """HEAD a CDN root; a status of 0 means the request itself failed."""
    start = time.monotonic()
    try:
        response = await client.head(
            url, headers=browser_headers(settings.default_referer), timeout=settings.health_check_timeout
        )
    except httpx.HTTPError as e:
        return ProbedUrl(
            url=url, status=0, response_time=(time.monotonic() - start) * 1000, error=str(e) or type(e).__name__
        )
    return ProbedUrl(url=url, status=response.status_code, response_time=(time.monotonic() - start) * 1000)


async def check_trusted_cdn(client: httpx.AsyncClient, urls: List[str] = None) -> HealthStatus:
    """
    Check whether the trusted provider's CDN is reachable from this host.

    Any answer other than 403 counts as reachable (404, 301 and friends
    prove the host is not blocking us); the first such answer ends the check.
    """
    tested = []
    for url in urls or settings.trusted_health_urls:
        result = await probe_url(client, url)
        tested.append(result)
        if result.status not in (0, 403):
            return HealthStatus(available=True, last_checked=time.time() * 1000, tested_urls=tested)

    logger.warning("Trusted CDN unreachable: every probe was blocked or failed")
    return HealthStatus(
        available=False,
        last_checked=time.time() * 1000,
        tested_urls=tested,
        reason="All CDN tests returned 403 (blocked) or failed",
    )


async def get_trusted_health(client: httpx.AsyncClient) -> HealthStatus:
    """Cached variant of :func:`check_trusted_cdn`."""

    async def compute():
        status = await check_trusted_cdn(client)
        return status.model_dump(mode="json", by_alias=True)

    payload = await get_or_set_json(HEALTH_CACHE_KEY, settings.health_cache_ttl, compute)
    return HealthStatus.model_validate(payload)


async def is_trusted_available(client: httpx.AsyncClient) -> bool:
    return (await get_trusted_health(client)).available
