import logging
import re
from typing import List, Optional

from streamflow_proxy.extractors.base import BaseExtractor, DecodeFailure, PatternNotFound
from streamflow_proxy.schemas import ExtractedVideo
from streamflow_proxy.utils.packed import find_packed_script, unpack

logger = logging.getLogger(__name__)

M3U8_FILE_RE = re.compile(r"""file\s*:\s*["']([^"']+\.m3u8[^"']*)""", re.IGNORECASE)
SOURCES_FILE_RE = re.compile(r"""sources\s*:\s*\[\s*\{\s*file\s*:\s*["']([^"']+)""", re.IGNORECASE)


def find_stream_url(source: str) -> Optional[str]:
    """Return the first playlist address assigned in a player setup block, or None."""
    for pattern in (M3U8_FILE_RE, SOURCES_FILE_RE):
        match = pattern.search(source)
        if match:
            return match.group(1)
    return None


class FileMoonExtractor(BaseExtractor):
    """
    Extractor for mirrors that hide their player setup in a p.a.c.k.e.r script.

    The page is never executed: the packer invocation is decoded with a
    string-substitution decoder and the playlist address is read out of the
    recovered source.
    """

    name = "Filemoon"
    patterns = [
        re.compile(r"filemoon\.(sx|to|wf)/e/", re.IGNORECASE),
        re.compile(r"filemoon\.(sx|to|wf)/d/", re.IGNORECASE),
        re.compile(r"kerapoxy\.cc/e/", re.IGNORECASE),
    ]

    async def _extract(self, url: str) -> List[ExtractedVideo]:
        headers = {"referer": url}
        response = await self._make_request(url, headers=headers)
        html = response.text

        packed = find_packed_script(html)
        if packed is None:
            match = M3U8_FILE_RE.search(html)
            if not match:
                raise PatternNotFound("Could not find packed JS or m3u8")
            logger.info(f"[{self.name}] Found unpacked m3u8 URL in page")
            return [self._video(match.group(1), url)]

        unpacked = unpack(packed)
        if unpacked is None:
            raise DecodeFailure("Failed to unpack JavaScript")

        stream_url = find_stream_url(unpacked)
        if not stream_url:
            logger.debug(f"[{self.name}] Unpacked source preview: {unpacked[:500]}")
            raise PatternNotFound("Could not find m3u8 URL in unpacked JS")

        logger.info(f"[{self.name}] Extracted m3u8 URL: {stream_url}")
        return [self._video(stream_url, url)]

    @staticmethod
    def _video(stream_url: str, embed_url: str) -> ExtractedVideo:
        return ExtractedVideo(url=stream_url, quality="auto", is_m3u8=True, headers={"Referer": embed_url})
