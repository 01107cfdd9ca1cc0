import re

from streamflow_proxy.extractors.filemoon import FileMoonExtractor


class StreamWishExtractor(FileMoonExtractor):
    """Streamwish and its rebrands serve the same packed player as Filemoon."""

    name = "Streamwish"
    patterns = [
        re.compile(r"streamwish\.(to|com)/e/", re.IGNORECASE),
        re.compile(r"swdyu\.com/e/", re.IGNORECASE),
        re.compile(r"wishembed\.pro/e/", re.IGNORECASE),
        re.compile(r"flaswish\.com/e/", re.IGNORECASE),
        re.compile(r"sfastwish\.com/e/", re.IGNORECASE),
        re.compile(r"obeywish\.com/e/", re.IGNORECASE),
    ]
