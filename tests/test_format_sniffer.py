import pytest

from streamflow_proxy.utils.format_sniffer import (
    DetectedFormat,
    UrlHints,
    describe_bytes,
    detect,
    is_key_url,
    is_possible_disguised_segment,
    is_standard_segment_url,
    looks_like_html,
    looks_like_video,
    resolve_content_type,
    url_extension,
)

OPAQUE = "aB3dE5fG7hJ9kL1mN3pQ5rS7"


@pytest.mark.parametrize(
    "buffer",
    [b"\x47\x40\x11\x10" + b"\x00" * 184, b"G", b"GIF89a", b"\x47<html>"],
)
def test_sync_byte_always_wins(buffer):
    assert detect(buffer) is DetectedFormat.MPEG_TS


@pytest.mark.parametrize("box", ["ftyp", "moov", "moof", "mdat", "styp", "sidx", "free", "skip"])
def test_fmp4_box_types(box):
    buffer = b"\x00\x00\x00\x18" + box.encode() + b"isom\x00\x00\x02\x00"
    assert detect(buffer) is DetectedFormat.FMP4


def test_unknown_box_type_is_not_fmp4():
    assert detect(b"\x00\x00\x00\x18abcdisom") is DetectedFormat.UNKNOWN


@pytest.mark.parametrize(
    "buffer, expected",
    [
        (b"\x89PNG\r\n\x1a\n\x00\x00", DetectedFormat.PNG),
        (b"\xff\xd8\xff\xe0\x00\x10JFIF", DetectedFormat.JPEG),
        (b"RIFF\x24\x00\x00\x00WEBPVP8 ", DetectedFormat.WEBP),
        (b"#EXTM3U\n#EXT-X-VERSION:3\n", DetectedFormat.M3U8),
        (b"\xef\xbb\xbf#EXTM3U\n", DetectedFormat.M3U8),
        (b"\n  #EXTM3U\n", DetectedFormat.M3U8),
        (b"WEBVTT\n\n00:00.000 --> 00:01.000\nhi\n", DetectedFormat.VTT),
        (b"\xef\xbb\xbfWEBVTT\n", DetectedFormat.VTT),
        (b"", DetectedFormat.UNKNOWN),
        (b"hello world", DetectedFormat.UNKNOWN),
    ],
)
def test_detect(buffer, expected):
    assert detect(buffer) is expected


def test_gif_is_shadowed_by_sync_byte():
    # "G" is 0x47, so a GIF header is classified by the earlier MPEG-TS rule.
    assert detect(b"GIF89a\x01\x00") is DetectedFormat.MPEG_TS


def test_content_types():
    assert DetectedFormat.MPEG_TS.content_type == "video/mp2t"
    assert DetectedFormat.FMP4.content_type == "video/mp4"
    assert DetectedFormat.M3U8.content_type == "application/vnd.apple.mpegurl"
    assert DetectedFormat.UNKNOWN.content_type is None
    assert DetectedFormat.FMP4.is_video and not DetectedFormat.PNG.is_video


def test_looks_like_helpers():
    assert looks_like_video(b"\x47\x00")
    assert looks_like_video(b"\x00\x00\x00\x10moof\x00\x00")
    assert not looks_like_video(b"")
    assert not looks_like_video(b"\x89PNG\r\n\x1a\n")
    assert looks_like_html(b"<!DOCTYPE html><html>")
    assert looks_like_html(b"<HTML><body>")
    assert not looks_like_html(b"#EXTM3U")


def test_url_heuristics():
    assert is_possible_disguised_segment(f"https://cdn.example.com/{OPAQUE}.js")
    assert is_possible_disguised_segment(f"https://cdn.example.com/v/{OPAQUE}.VTT")
    assert not is_possible_disguised_segment("https://cdn.example.com/short.js")
    assert not is_possible_disguised_segment(f"https://cdn.example.com/{OPAQUE}.ts")

    assert is_key_url("https://cdn.example.com/enc.key")
    assert is_key_url("https://cdn.example.com/mon.key?x=1")
    assert is_key_url("https://cdn.example.com/key/1")
    assert not is_key_url("https://cdn.example.com/seg1.ts")

    assert is_standard_segment_url("https://cdn.example.com/segment-1-v1.ts")
    assert is_standard_segment_url("https://cdn.example.com/hls/seg-3.bin")
    assert is_standard_segment_url("https://cdn.example.com/chunk.m4s")
    assert not is_standard_segment_url("https://cdn.example.com/index.m3u8")

    assert url_extension("https://cdn.example.com/a/b.M3U8?token=1") == "m3u8"
    assert url_extension("https://cdn.example.com/a.b/c") == ""


class TestResolveContentType:
    def test_sniffed_format_first(self):
        hints = UrlHints.from_url("https://cdn.example.com/enc.key")
        assert resolve_content_type(DetectedFormat.PNG, "text/plain", hints) == "image/png"

    def test_key_urls_are_octet_stream(self):
        hints = UrlHints.from_url("https://cdn.example.com/enc.key")
        assert resolve_content_type(DetectedFormat.UNKNOWN, "text/plain", hints, b"\x01\x02") == (
            "application/octet-stream"
        )

    def test_disguised_segment_defaults_to_mpeg_ts(self):
        hints = UrlHints.from_url(f"https://cdn.example.com/{OPAQUE}.css")
        assert resolve_content_type(DetectedFormat.UNKNOWN, "text/css", hints, b"\x00\x01\x02") == "video/mp2t"

    def test_disguised_segment_reinspects_fmp4(self):
        hints = UrlHints.from_url(f"https://cdn.example.com/{OPAQUE}.png")
        assert resolve_content_type(DetectedFormat.UNKNOWN, "image/png", hints, b"\x00\x00\x00\x10moof") == (
            "video/mp4"
        )

    def test_standard_segment(self):
        hints = UrlHints.from_url("https://cdn.example.com/segment-5.ts")
        assert resolve_content_type(DetectedFormat.UNKNOWN, "", hints, b"\x00\x00") == "video/mp2t"

    def test_declared_type_last(self):
        hints = UrlHints.from_url("https://cdn.example.com/file.bin")
        assert resolve_content_type(DetectedFormat.UNKNOWN, "application/zip", hints) == "application/zip"
        assert resolve_content_type(DetectedFormat.UNKNOWN, "", hints) == "application/octet-stream"


def test_describe_bytes():
    hex_repr, ascii_repr = describe_bytes(b"#EXTM3U\n\x00\xff")
    assert hex_repr == "23 45 58 54 4d 33 55 0a 00 ff"
    assert ascii_repr == "#EXTM3U..."
