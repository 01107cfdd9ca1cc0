import logging
from typing import List, Optional, Type

import httpx

from streamflow_proxy.extractors.base import BaseExtractor, NoMatchingExtractor
from streamflow_proxy.extractors.filemoon import FileMoonExtractor
from streamflow_proxy.extractors.streamtape import StreamtapeExtractor
from streamflow_proxy.extractors.streamwish import StreamWishExtractor
from streamflow_proxy.schemas import ExtractionResult

logger = logging.getLogger(__name__)


class ExtractorFactory:
    """Factory for creating URL extractors."""

    # Checked in order; the first extractor with a matching pattern wins.
    _extractors: List[Type[BaseExtractor]] = [
        StreamtapeExtractor,
        FileMoonExtractor,
        StreamWishExtractor,
    ]

    @classmethod
    def find_extractor(cls, url: str) -> Optional[Type[BaseExtractor]]:
        """Return the first extractor class whose patterns match ``url``, or None."""
        for extractor_class in cls._extractors:
            if extractor_class.matches(url):
                return extractor_class
        return None

    @classmethod
    def get_extractor(cls, url: str, client: httpx.AsyncClient, request_headers: Optional[dict] = None) -> BaseExtractor:
        """Get appropriate extractor instance for the given embed URL."""
        extractor_class = cls.find_extractor(url)
        if not extractor_class:
            raise NoMatchingExtractor("No extractor available for this URL")
        return extractor_class(client, request_headers)

    @classmethod
    def can_extract(cls, url: str) -> bool:
        return cls.find_extractor(url) is not None

    @classmethod
    async def extract_video(cls, url: str, client: httpx.AsyncClient) -> ExtractionResult:
        """
        Resolve an embed URL with the first matching extractor.

        Never raises; an unrecognised URL yields an unsuccessful result without
        any network activity.
        """
        try:
            extractor = cls.get_extractor(url, client)
        except NoMatchingExtractor as e:
            logger.info(f"No extractor matches {url}")
            return ExtractionResult.failure("unknown", str(e))
        return await extractor.extract(url)

    @classmethod
    def get_supported_servers(cls) -> List[str]:
        return [extractor_class.name for extractor_class in cls._extractors]

    @classmethod
    def is_server_supported(cls, server_name: str) -> bool:
        """Loose, case-insensitive match of a provider's server label against the registered names."""
        server_name = server_name.lower()
        for name in cls.get_supported_servers():
            name = name.lower()
            if server_name == name or name in server_name or server_name in name:
                return True
        return False
