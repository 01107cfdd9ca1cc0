"""
Byte-level media format detection.

Upstream mirrors routinely lie about what they serve: video segments are
labelled ``text/vtt`` or carry ``.png``/``.js`` extensions, error pages come
back as ``video/mp4``. Everything in this module therefore decides from the
leading bytes of a buffer first and only falls back to URL hints when the
bytes are inconclusive.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from streamflow_proxy.const import DISGUISE_EXTENSIONS, FMP4_BOX_TYPES, HLS_CONTENT_TYPE

logger = logging.getLogger(__name__)

MPEG_TS_SYNC_BYTE = 0x47

_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_GIF_MAGIC = b"GIF8"
_JPEG_MAGIC = b"\xff\xd8\xff"

_TEXT_PROBE_SIZE = 500

_LONG_OPAQUE_SEGMENT_RE = re.compile(r"/[A-Za-z0-9_-]{20,}")
_DISGUISE_EXTENSION_RE = re.compile(r"\.(%s)$" % "|".join(DISGUISE_EXTENSIONS), re.IGNORECASE)


class DetectedFormat(str, Enum):
    MPEG_TS = "mpeg_ts"
    FMP4 = "fmp4"
    PNG = "png"
    GIF = "gif"
    JPEG = "jpeg"
    WEBP = "webp"
    M3U8 = "m3u8"
    VTT = "vtt"
    UNKNOWN = "unknown"

    @property
    def content_type(self) -> Optional[str]:
        return FORMAT_CONTENT_TYPES.get(self)

    @property
    def is_video(self) -> bool:
        return self in (DetectedFormat.MPEG_TS, DetectedFormat.FMP4)


FORMAT_CONTENT_TYPES = {
    DetectedFormat.MPEG_TS: "video/mp2t",
    DetectedFormat.FMP4: "video/mp4",
    DetectedFormat.PNG: "image/png",
    DetectedFormat.GIF: "image/gif",
    DetectedFormat.JPEG: "image/jpeg",
    DetectedFormat.WEBP: "image/webp",
    DetectedFormat.M3U8: HLS_CONTENT_TYPE,
    DetectedFormat.VTT: "text/vtt",
}


def fmp4_box_type(buffer: bytes) -> Optional[str]:
    """Return the ISO BMFF box type at offset 4 if it is one that opens an fMP4 segment."""
    if len(buffer) < 8:
        return None
    box_type = buffer[4:8].decode("ascii", errors="replace")
    return box_type if box_type in FMP4_BOX_TYPES else None


def text_head(buffer: bytes, size: int = _TEXT_PROBE_SIZE) -> str:
    return buffer[:size].decode("utf-8", errors="replace")


def is_m3u8_text(text: str) -> bool:
    """A playlist must open with ``#EXTM3U`` (leading whitespace and a BOM are tolerated)."""
    return text.lstrip("\ufeff \t\r\n").startswith("#EXTM3U")


def detect(buffer: bytes) -> DetectedFormat:
    """
    Classify a byte buffer by its leading bytes.

    Rules are checked in order and the first match wins. Declared content
    types and URL extensions are deliberately not consulted.

    Args:
        buffer (bytes): The (start of the) body to classify.

    Returns:
        DetectedFormat: The detected format, ``UNKNOWN`` when nothing matched.
    """
    if not buffer:
        return DetectedFormat.UNKNOWN

    # The sync byte recurs every 188 bytes in a real stream; only the first one is checked.
    if buffer[0] == MPEG_TS_SYNC_BYTE:
        return DetectedFormat.MPEG_TS

    if fmp4_box_type(buffer):
        return DetectedFormat.FMP4

    if buffer.startswith(_PNG_MAGIC):
        return DetectedFormat.PNG
    if buffer.startswith(_GIF_MAGIC):
        return DetectedFormat.GIF
    if buffer.startswith(_JPEG_MAGIC):
        return DetectedFormat.JPEG
    if len(buffer) >= 12 and buffer[0:4] == b"RIFF" and buffer[8:12] == b"WEBP":
        return DetectedFormat.WEBP

    text = text_head(buffer)
    if is_m3u8_text(text):
        return DetectedFormat.M3U8
    if "WEBVTT" in text:
        return DetectedFormat.VTT

    return DetectedFormat.UNKNOWN


def looks_like_video(buffer: bytes) -> bool:
    """True when the bytes open with the MPEG-TS sync byte or a recognised fMP4 box."""
    return bool(buffer) and (buffer[0] == MPEG_TS_SYNC_BYTE or fmp4_box_type(buffer) is not None)


def looks_like_html(buffer: bytes) -> bool:
    head = text_head(buffer, 200)
    return "<!DOCTYPE" in head or "<html" in head or "<HTML" in head


def is_possible_disguised_segment(url: str) -> bool:
    """
    Check whether a URL looks like a video segment hiding behind a non-video extension.

    Mirrors that do this combine a long opaque path component with an
    extension such as ``.vtt``, ``.js``, ``.css`` or ``.png``.
    """
    return bool(_LONG_OPAQUE_SEGMENT_RE.search(url) and _DISGUISE_EXTENSION_RE.search(url))


def is_key_url(url: str) -> bool:
    return url.endswith(".key") or "/mon.key" in url or "/key" in url


def is_standard_segment_url(url: str) -> bool:
    return "segment-" in url or "/seg-" in url or url.endswith((".ts", ".m4s"))


def url_extension(url: str) -> str:
    path = urlparse(url).path
    _, dot, extension = path.rpartition(".")
    return extension.lower() if dot and "/" not in extension else ""


@dataclass
class UrlHints:
    """What the URL alone suggests about a resource."""

    is_key: bool = False
    is_disguised_segment: bool = False
    is_standard_segment: bool = False

    @classmethod
    def from_url(cls, url: str) -> "UrlHints":
        return cls(
            is_key=is_key_url(url),
            is_disguised_segment=is_possible_disguised_segment(url),
            is_standard_segment=is_standard_segment_url(url),
        )


def _classify_segment_bytes(buffer: bytes) -> str:
    if buffer and buffer[0] == MPEG_TS_SYNC_BYTE:
        return FORMAT_CONTENT_TYPES[DetectedFormat.MPEG_TS]
    if fmp4_box_type(buffer):
        return FORMAT_CONTENT_TYPES[DetectedFormat.FMP4]
    return FORMAT_CONTENT_TYPES[DetectedFormat.MPEG_TS]


def resolve_content_type(sniffed: DetectedFormat, declared: str, hints: UrlHints, buffer: bytes = b"") -> str:
    """
    Pick the content type for a binary (non-playlist, non-subtitle) response.

    Priority:
        1. the sniffed format when one was detected;
        2. ``application/octet-stream`` for key-file URLs;
        3. disguised-segment URLs, re-inspected for TS/fMP4 and defaulting to MPEG-TS;
        4. standard segment URLs, inspected the same way;
        5. the declared content type (``application/octet-stream`` when absent).

    Args:
        sniffed (DetectedFormat): Result of :func:`detect` on the body.
        declared (str): The upstream ``Content-Type`` header.
        hints (UrlHints): URL-derived hints for the resource.
        buffer (bytes): The body, used to re-inspect segment candidates.

    Returns:
        str: The content type to serve.
    """
    if sniffed is not DetectedFormat.UNKNOWN and sniffed.content_type:
        return sniffed.content_type

    if hints.is_key:
        return "application/octet-stream"

    if hints.is_disguised_segment:
        resolved = _classify_segment_bytes(buffer)
        if not looks_like_video(buffer):
            logger.info(f"URL suggests a disguised segment but bytes are unrecognised; assuming {resolved}")
        return resolved

    if hints.is_standard_segment:
        return _classify_segment_bytes(buffer)

    return declared or "application/octet-stream"


def describe_bytes(buffer: bytes, count: int = 16) -> tuple[str, str]:
    """Return the first ``count`` bytes as a hex string and as printable ASCII."""
    head = buffer[:count]
    hex_repr = " ".join(f"{b:02x}" for b in head)
    ascii_repr = "".join(chr(b) if 32 <= b < 127 else "." for b in head)
    return hex_repr, ascii_repr
