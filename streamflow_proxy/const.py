CORS_HEADERS = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "GET, OPTIONS",
    "access-control-allow-headers": "*",
}

HLS_CONTENT_TYPE = "application/vnd.apple.mpegurl"

# ISO BMFF box types that may open a fragmented MP4 segment
FMP4_BOX_TYPES = ("ftyp", "moov", "moof", "mdat", "styp", "sidx", "free", "skip")

SUBTITLE_EXTENSIONS = (".srt", ".ass", ".ssa")

# Extensions some mirrors put on video segments to hide them from filters
DISGUISE_EXTENSIONS = (
    "gif",
    "png",
    "svg",
    "webp",
    "xml",
    "json",
    "html",
    "jpg",
    "jpeg",
    "txt",
    "ico",
    "vtt",
    "js",
    "css",
    "woff",
    "woff2",
    "ttf",
    "eot",
)

# Extensions that may appear alone on the line after a wrapped playlist URI
SPLIT_LINE_EXTENSIONS = ("gif", "png", "svg", "webp", "xml", "json", "html", "jpg", "jpeg", "ts", "m4s")
