from abc import ABC, abstractmethod
from typing import ClassVar, Dict, List, Optional, Pattern

import httpx
import logging

from streamflow_proxy.configs import settings
from streamflow_proxy.schemas import ExtractedVideo, ExtractionResult

logger = logging.getLogger(__name__)


class ExtractorError(Exception):
    """Base exception for all extractors."""
    pass


class NoMatchingExtractor(ExtractorError):
    """No registered pattern recognised the embed URL."""
    pass


class FetchFailure(ExtractorError):
    """Network error, timeout or non-2xx answer while fetching an upstream resource."""
    pass


class PatternNotFound(ExtractorError):
    """The expected HTML/JS structure is absent; the mirror changed its markup."""
    pass


class DecodeFailure(ExtractorError):
    """A packed script could not be decoded."""
    pass


class ExpiredLink(ExtractorError):
    """The resolved media URL serves HTML instead of media."""
    pass


class InvalidProtocol(ExtractorError):
    """A proxy target URL uses a scheme other than http/https."""
    pass


class BaseExtractor(ABC):
    """Base class for all embed URL extractors.

    An extractor is stateless apart from the injected HTTP client: ``name``
    and ``patterns`` are class attributes so the registry can match URLs
    without instantiating anything. Subclasses implement ``_extract`` and
    raise ``ExtractorError`` subclasses; ``extract`` turns every failure into
    an unsuccessful ``ExtractionResult`` so one broken mirror never escapes
    as an exception.
    """

    name: ClassVar[str] = "unknown"
    patterns: ClassVar[List[Pattern]] = []

    def __init__(self, client: httpx.AsyncClient, request_headers: Optional[dict] = None):
        self.client = client
        self.base_headers = {
            "user-agent": settings.user_agent,
        }
        # merge incoming headers (e.g. Accept-Language) with default base headers
        self.base_headers.update(request_headers or {})

    @classmethod
    def matches(cls, url: str) -> bool:
        return any(pattern.search(url) for pattern in cls.patterns)

    async def _make_request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict] = None,
        timeout: Optional[float] = None,
        raise_on_status: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """
        Make a single HTTP request. Retrying is the caller's job: the unit of
        fallback is the next extractor or provider, not another attempt here.

        Parameters
        ----------
        timeout : float | None
            Seconds to wait for the request. Defaults to the transport timeout.
        raise_on_status : bool
            If True, a non-2xx status raises FetchFailure.

        Raises
        ------
        FetchFailure
            On any transport error, or on a non-2xx status when raise_on_status is set.
        """
        request_headers = self.base_headers.copy()
        if headers:
            request_headers.update(headers)

        try:
            response = await self.client.request(
                method,
                url,
                headers=request_headers,
                timeout=timeout or settings.transport_config.timeout,
                **kwargs,
            )
        except httpx.TimeoutException:
            raise FetchFailure(f"Timeout while requesting {url}")
        except httpx.HTTPError as e:
            raise FetchFailure(f"Request failed for URL {url}: {e}")

        if raise_on_status and response.is_error:
            logger.debug(
                "HTTP error for %s (status=%s) -- body preview: %s",
                url,
                response.status_code,
                response.text[:500] if method != "HEAD" else "",
            )
            raise FetchFailure(f"HTTP {response.status_code}")
        return response

    async def extract(self, url: str) -> ExtractionResult:
        """Extract direct video URLs from an embed page, never raising."""
        logger.info(f"[{self.name}] Extracting from: {url}")
        try:
            videos = await self._extract(url)
            if not videos:
                raise PatternNotFound("No video URL found")
            return ExtractionResult(success=True, videos=videos, server=self.name)
        except ExtractorError as e:
            logger.warning(f"[{self.name}] Extraction failed ({type(e).__name__}): {e}")
            return ExtractionResult.failure(self.name, str(e))
        except Exception as e:
            logger.exception(f"[{self.name}] Unhandled exception while extracting {url}: {e}")
            return ExtractionResult.failure(self.name, str(e) or "Unknown error")

    @abstractmethod
    async def _extract(self, url: str) -> List[ExtractedVideo]:
        """Extract the direct videos for ``url`` or raise an ExtractorError."""
        pass
