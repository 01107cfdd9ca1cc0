import logging
from abc import ABC
from typing import Any, ClassVar

import httpx

from streamflow_proxy.configs import settings
from streamflow_proxy.schemas import StreamingProvider

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """A provider could not produce playable sources; ``status_code`` is the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class BaseStreamingProvider(ABC):
    """Base class for episode catalogs that hand out stream or embed addresses."""

    provider: ClassVar[StreamingProvider]

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _get_json(self, url: str, **kwargs) -> Any:
        """
        GET a JSON document from the provider API.

        Raises:
            ProviderError: 503 on transport failures, 404 on non-2xx answers or undecodable bodies.
        """
        headers = {"accept": "application/json", "user-agent": settings.user_agent}
        try:
            response = await self.client.get(url, headers=headers, timeout=settings.transport_config.timeout, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"[{self.provider.value}] Request to {url} failed: {e}")
            raise ProviderError(503, f"Upstream {self.provider.value} API unreachable")

        if response.is_error:
            logger.warning(f"[{self.provider.value}] {url} answered HTTP {response.status_code}")
            raise ProviderError(404, f"Upstream {self.provider.value} API error ({response.status_code})")

        try:
            return response.json()
        except ValueError:
            raise ProviderError(404, f"Upstream {self.provider.value} API returned invalid JSON")
