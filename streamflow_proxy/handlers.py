import json
import logging
from dataclasses import asdict
from urllib.parse import urlparse

import httpx
from fastapi import Request, Response

from streamflow_proxy.configs import settings
from streamflow_proxy.const import CORS_HEADERS, HLS_CONTENT_TYPE, SUBTITLE_EXTENSIONS
from streamflow_proxy.extractors.base import InvalidProtocol
from streamflow_proxy.schemas import ProxyParams
from streamflow_proxy.utils.format_sniffer import (
    DetectedFormat,
    UrlHints,
    describe_bytes,
    detect,
    fmp4_box_type,
    is_m3u8_text,
    looks_like_html,
    looks_like_video,
    resolve_content_type,
    text_head,
    url_extension,
)
from streamflow_proxy.utils.http_utils import DownloadError, browser_headers, fetch_with_retry
from streamflow_proxy.utils.m3u8_processor import M3U8Processor

logger = logging.getLogger(__name__)


def cors_response(content=b"", status_code: int = 200, media_type: str = None, headers: dict = None) -> Response:
    """Build a response that always carries the permissive cross-origin headers."""
    response_headers = dict(CORS_HEADERS)
    response_headers.update(headers or {})
    return Response(content=content, status_code=status_code, media_type=media_type, headers=response_headers)


def handle_exceptions(exception: Exception) -> Response:
    """
    Handle exceptions and return appropriate HTTP responses.

    Args:
        exception (Exception): The exception that was raised.

    Returns:
        Response: A plain-text HTTP response corresponding to the exception type.
    """
    if isinstance(exception, InvalidProtocol):
        logger.error(f"Proxy: {exception}")
        return cors_response(str(exception), status_code=403, media_type="text/plain")
    elif isinstance(exception, DownloadError):
        logger.error(f"Error downloading content: {exception}")
        return cors_response(exception.message, status_code=exception.status_code, media_type="text/plain")
    elif isinstance(exception, httpx.HTTPError):
        logger.error(f"Upstream transport error while handling request: {exception}")
        return cors_response(f"Upstream transport error: {exception}", status_code=502, media_type="text/plain")
    else:
        logger.exception(f"Internal server error while handling request: {exception}")
        return cors_response(f"Proxy error: {exception}", status_code=500, media_type="text/plain")


def validate_target_url(url: str) -> str:
    scheme = urlparse(url).scheme.lower()
    if scheme not in ("http", "https"):
        raise InvalidProtocol(f"Invalid protocol: {scheme or 'none'}:")
    return url


def is_manifest(sniffed: DetectedFormat, declared: str, url: str) -> bool:
    return sniffed is DetectedFormat.M3U8 or "mpegurl" in declared.lower() or url_path(url).endswith(".m3u8")


def url_path(url: str) -> str:
    return urlparse(url).path.lower()


def log_diagnostics(url: str, status_code: int, declared: str, body: bytes, sniffed: DetectedFormat, hints: UrlHints):
    """Log what the URL, the upstream headers and the bytes each claim; disagreement hints at mislabeling."""
    hex_repr, ascii_repr = describe_bytes(body)
    if "mpegurl" in declared or url_path(url).endswith(".m3u8") or "#EXTM" in ascii_repr:
        category = "PLAYLIST"
    elif hints.is_disguised_segment or hints.is_standard_segment:
        category = "SEGMENT"
    else:
        category = "OTHER"

    short_url = url if len(url) <= 80 else url[:80] + "..."
    logger.info(
        f"[PROXY {category}] {short_url}\n"
        f"  Status: {status_code} | Server-CT: {declared} | Ext: {url_extension(url) or '-'} | Size: {len(body)}b\n"
        f"  Detected: {sniffed.value} | Bytes[0-15]: {hex_repr}\n"
        f'  ASCII: "{ascii_repr}"'
    )

    if looks_like_html(body):
        logger.warning(f"[PROXY] Upstream returned HTML instead of media for {short_url}: {text_head(body, 200)!r}")


async def handle_stream_proxy(request: Request, params: ProxyParams, client: httpx.AsyncClient) -> Response:
    """
    Fetch an upstream resource and re-serve it with a corrected content type.

    Playlists are rewritten so that every address inside them re-enters this
    proxy. Errors are answered as plain text and never propagate.

    Args:
        request (Request): The incoming HTTP request, used to build self-referencing proxy URLs.
        params (ProxyParams): Target URL and optional referer.
        client (httpx.AsyncClient): The shared outbound client.

    Returns:
        Response: The proxied resource.
    """
    try:
        return await proxy_resource(request, params.url, params.referer or settings.default_referer, client)
    except Exception as e:
        return handle_exceptions(e)


async def proxy_resource(request: Request, url: str, referer: str, client: httpx.AsyncClient) -> Response:
    validate_target_url(url)
    response = await fetch_with_retry(client, "GET", url, headers=browser_headers(referer), follow_redirects=True)

    body = response.content
    declared = response.headers.get("content-type") or "application/octet-stream"
    sniffed = detect(body)
    hints = UrlHints.from_url(url)
    log_diagnostics(url, response.status_code, declared, body, sniffed, hints)

    if is_manifest(sniffed, declared, url):
        processor = M3U8Processor(request, referer)
        # Relative URIs resolve against the final URL after redirects.
        content = processor.process_m3u8(response.text, base_url=str(response.url))
        return cors_response(
            content,
            media_type=HLS_CONTENT_TYPE,
            headers={"cache-control": f"public, max-age={settings.manifest_cache_max_age}"},
        )

    subtitle_headers = {"cache-control": f"public, max-age={settings.segment_cache_max_age}"}
    path = url_path(url)
    claims_vtt = path.endswith(".vtt") or "subtitle" in url.lower() or "text/vtt" in declared.lower()

    if sniffed is DetectedFormat.VTT:
        return cors_response(body, media_type="text/vtt; charset=utf-8", headers=subtitle_headers)
    if claims_vtt and sniffed is DetectedFormat.MPEG_TS:
        logger.info(f"[PROXY] Disguised segment: {url} claims to be a subtitle but holds MPEG-TS")
    elif claims_vtt and sniffed is DetectedFormat.UNKNOWN and not hints.is_disguised_segment:
        return cors_response(body, media_type="text/vtt; charset=utf-8", headers=subtitle_headers)

    if path.endswith(SUBTITLE_EXTENSIONS):
        return cors_response(body, media_type="text/plain; charset=utf-8", headers=subtitle_headers)

    content_type = resolve_content_type(sniffed, declared, hints, body)
    logger.info(f"  Final Content-Type: {content_type}")
    if "video" in content_type and not looks_like_video(body):
        logger.warning(
            f"[PROXY] Serving {url} as {content_type} but bytes look like neither MPEG-TS nor fMP4 "
            f"(first byte: {body[:1].hex() or 'none'}, box type: {body[4:8]!r})"
        )

    return cors_response(
        body,
        media_type=content_type,
        headers={
            "content-length": str(len(body)),
            "cache-control": f"public, max-age={settings.segment_cache_max_age}",
        },
    )


async def analyze_resource(url: str, referer: str, client: httpx.AsyncClient) -> dict:
    """
    Fetch an upstream resource and report what it looks like.

    The analysis is advisory only: status, headers, leading bytes, the
    sniffed format and a handful of text heuristics.
    """
    validate_target_url(url)
    response = await client.get(url, headers=browser_headers(referer), follow_redirects=True)
    body = response.content
    hex_repr, ascii_repr = describe_bytes(body, 32)
    head = text_head(body)

    try:
        json.loads(body)
        is_json = True
    except ValueError:
        is_json = False

    return {
        "url": url,
        "final_url": str(response.url),
        "status": response.status_code,
        "content_type": response.headers.get("content-type"),
        "size": len(body),
        "headers": dict(response.headers),
        "first_bytes": {"hex": hex_repr, "ascii": ascii_repr, "decimal": list(body[:32])},
        "detected_format": detect(body).value,
        "fmp4_box_type": fmp4_box_type(body),
        "url_hints": {
            "extension": url_extension(url),
            **asdict(UrlHints.from_url(url)),
        },
        "looks_like": {
            "html": looks_like_html(body),
            "json": is_json,
            "m3u8": is_m3u8_text(head),
            "video": looks_like_video(body),
        },
        "preview": head if not looks_like_video(body) else None,
    }
