import re
from urllib import parse

from streamflow_proxy.const import SPLIT_LINE_EXTENSIONS
from streamflow_proxy.utils.http_utils import encode_proxy_url, get_original_scheme

URI_ATTRIBUTE_RE = re.compile(r'URI="([^"]+)"')

# A URI wrapped so that its ".ext" lands alone at the start of the next line
SPLIT_LINE_RE = re.compile(r"\n(\.(?:%s))(?=[\s?#]|$)" % "|".join(SPLIT_LINE_EXTENSIONS), re.IGNORECASE)


def repair_split_lines(content: str) -> str:
    """
    Rejoin URIs that a mirror wrapped across two lines.

    Some playlists end line N with an opaque path fragment and start line
    N+1 with a bare ``.extension``; the two halves are glued back together.
    """
    return SPLIT_LINE_RE.sub(r"\1", content)


class M3U8Processor:
    def __init__(self, request, referer: str):
        """
        Initializes the M3U8Processor with the request and the referer to forward.

        Args:
            request (Request): The incoming HTTP request, used to build self-referencing proxy URLs.
            referer (str): The referer every rewritten address must be fetched with.
        """
        self.request = request
        self.referer = referer
        self.proxy_endpoint_url = str(request.url_for("proxy_stream").replace(scheme=get_original_scheme(request)))

    def process_m3u8(self, content: str, base_url: str) -> str:
        """
        Processes the m3u8 content, proxying every address a client could dereference.

        Args:
            content (str): The m3u8 content to process.
            base_url (str): The URL the playlist was fetched from, used to resolve relative URIs.

        Returns:
            str: The processed m3u8 content.
        """
        content = repair_split_lines(content.lstrip("\ufeff"))
        return "\n".join(self.process_line(line, base_url) for line in content.split("\n"))

    def process_line(self, line: str, base_url: str) -> str:
        """
        Process a single line from the m3u8 content.

        Args:
            line (str): The line to process.
            base_url (str): The base URL to resolve relative URLs.

        Returns:
            str: The processed line.
        """
        stripped = line.strip()
        if not stripped:
            return line
        if stripped.startswith(("#EXT-X-KEY:", "#EXT-X-MAP:")):
            return self.process_key_line(line, base_url)
        if stripped.startswith("#"):
            return line
        return self.proxy_url(stripped, base_url)

    def process_key_line(self, line: str, base_url: str) -> str:
        """
        Rewrites the URI attribute of an EXT-X-KEY or EXT-X-MAP tag, leaving the rest untouched.

        Args:
            line (str): The tag line to process.
            base_url (str): The base URL to resolve relative URLs.

        Returns:
            str: The processed tag line.
        """
        return URI_ATTRIBUTE_RE.sub(lambda match: f'URI="{self.proxy_url(match.group(1), base_url)}"', line, count=1)

    def proxy_url(self, url: str, base_url: str) -> str:
        """
        Proxies a URL, resolving it against the playlist URL first.

        Args:
            url (str): The URL to proxy.
            base_url (str): The base URL to resolve relative URLs.

        Returns:
            str: The proxied URL.
        """
        full_url = parse.urljoin(base_url, url)
        return encode_proxy_url(self.proxy_endpoint_url, full_url, self.referer)
