# Decoder for Dean Edward's p.a.c.k.e.r, adapted from the unpacker shipped with
# https://github.com/einars/js-beautify (python/jsbeautifier/unpackers/packer.py)
#
# usage:
#
# if detect(some_string):
#     unpacked = unpack(some_string)
#
"""Decoder for Dean Edward's p.a.c.k.e.r"""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup, SoupStrainer

logger = logging.getLogger(__name__)

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"

# eval(function(p,a,c,k,e,d){...}('<payload>',<a>,<c>,'<dict>'.split('|')...
PACKED_RE = re.compile(
    r"eval\(function\(p,a,c,k,e,[dr]\)\{.*?\}\("
    r"'((?:[^'\\]|\\.)*)', *(\d+|\[\]), *(\d+), *'((?:[^'\\]|\\.)*)'\.split\('\|'\)",
    re.DOTALL,
)


class UnpackingError(Exception):
    """Badly packed source or general error. Argument is a
    meaningful description."""

    pass


def detect(source: str) -> bool:
    return PACKED_RE.search(source) is not None


def to_base(number: int, radix: int) -> str:
    """Write ``number`` in base ``radix`` the way the packer's own encoder does."""
    if not 2 <= radix <= len(ALPHABET):
        raise UnpackingError(f"Unsupported p.a.c.k.e.r. base {radix}.")
    if number < radix:
        return ALPHABET[number]
    return to_base(number // radix, radix) + ALPHABET[number % radix]


def _filterargs(source: str) -> tuple[str, int, int, list[str]]:
    """Juice from a source file the four args needed by decoder."""
    args = PACKED_RE.search(source)
    if not args:
        raise UnpackingError("Could not make sense of p.a.c.k.e.r data (unexpected code structure)")

    payload, radix, count, symtab = args.groups()
    try:
        radix = 62 if radix == "[]" else int(radix)
        count = int(count)
    except ValueError:
        raise UnpackingError("Corrupted p.a.c.k.e.r. data.")
    return payload, radix, count, symtab.split("|")


def build_symtab(radix: int, count: int, words: list[str]) -> dict[str, str]:
    """Map every base-``radix`` token that has a dictionary slot to its word (or itself when blank)."""
    table = {}
    # Tokens past the dictionary map to themselves, which the lookup already does.
    for index in range(min(count, len(words))):
        key = to_base(index, radix)
        word = words[index]
        table[key] = word or key
    return table


def unpack(source: str) -> Optional[str]:
    """
    Unpacks P.A.C.K.E.R. packed js code.

    Every maximal alphanumeric word in the payload is looked up in the
    substitution table; words that are not tokens pass through unchanged.
    The result is never executed, only searched.

    Returns:
        str | None: The recovered source, or None if the packer invocation is
        absent or malformed.
    """
    try:
        payload, radix, count, words = _filterargs(source)
        symtab = build_symtab(radix, count, words)
    except UnpackingError as e:
        logger.debug(f"Unpacking failed: {e}")
        return None

    def lookup(match):
        """Look up symbols in the synthetic symtab."""
        word = match.group(0)
        return symtab.get(word, word)

    payload = payload.replace("\\\\", "\\").replace("\\'", "'")
    return re.sub(r"\b\w+\b", lookup, payload)


def find_packed_script(html: str) -> Optional[str]:
    """Return the first packer invocation found in the page's script blocks (or in the raw page)."""
    soup = BeautifulSoup(html, "lxml", parse_only=SoupStrainer("script"))
    for script in soup.find_all("script"):
        text = script.get_text()
        match = PACKED_RE.search(text)
        if match:
            return text[match.start():]

    match = PACKED_RE.search(html)
    return html[match.start():] if match else None
