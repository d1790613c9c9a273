"""
Link extraction from downloaded bodies.

Two extractors run depending on the sniffed content type: a structural
one that walks HTML tags with BeautifulSoup, and a textual one that scans raw
bytes for CSS ``url(...)`` calls and ``//`` network-path references.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple
from urllib.parse import SplitResult

from bs4 import BeautifulSoup

from .urls import InvalidURLError, parse_url, resolve_relative

logger = logging.getLogger(__name__)

LINK_ATTRIBUTES = frozenset(('src', 'href'))
SRCSET_ATTRIBUTES = frozenset(('srcset', 'data-srcset'))

BINARY_MARKERS = (
    'application/octet-stream',
    'model',
    'font',
    'image',
    'video',
    'audio',
    'application/ogg',
)

CSS_URL_RE = re.compile(rb'url[ \t]*\([ \t]*', re.IGNORECASE)
NETWORK_PATH_RE = re.compile(rb'(?:\b(https?|file):)?//[ \t]*', re.IGNORECASE)

_QUOTES = b'"\'`'
_OPENERS = {ord('{'): 0, ord('('): 1, ord('<'): 2}
_CLOSERS = {ord('}'): 0, ord(')'): 1, ord('>'): 2}


class ContentKind(Enum):
    HTML = "html"
    BINARY = "binary"
    TEXT = "text"


def classify_content(mime: str) -> ContentKind:
    """Pick the extractors for a sniffed MIME type."""
    if 'text/html' in mime:
        return ContentKind.HTML
    if any(marker in mime for marker in BINARY_MARKERS):
        return ContentKind.BINARY
    return ContentKind.TEXT


@dataclass
class ExtractionResult:
    """Links found in one body plus the last non-fatal error, if any."""
    links: List[SplitResult] = field(default_factory=list)
    error: Optional[str] = None


def find_link_end(body: bytes, start: int) -> Tuple[int, int]:
    """
    Find the bounds of a link that begins at ``start``.

    Returns (begin, end) offsets of the link text, without quotes.
    """
    n = len(body)
    i = start
    while i < n and body[i] == 0x20:
        i += 1
    if i >= n:
        return i, i

    quote = body[i]
    if quote in _QUOTES:
        begin = i + 1
        j = begin
        while j < n:
            if body[j] == quote and body[j - 1] != 0x5c:  # backslash
                return begin, j
            j += 1
        return begin, n

    depth = [0, 0, 0]
    begin = i
    j = begin
    while j < n:
        c = body[j]
        if c in _OPENERS:
            depth[_OPENERS[c]] += 1
        elif c in _CLOSERS:
            kind = _CLOSERS[c]
            if depth[kind] <= 0:
                return begin, j
            depth[kind] -= 1
        elif c <= 0x20 and max(depth) <= 0:
            return begin, j
        elif c in _QUOTES:
            return begin, j
        j += 1
    return begin, n


def extract_text_links(body: bytes, seed: SplitResult) -> ExtractionResult:
    """Scan raw bytes for ``url(...)`` and ``//host/path`` references."""
    result = ExtractionResult()

    for match in CSS_URL_RE.finditer(body):
        begin, end = find_link_end(body, match.end())
        token = _decode(body[begin:end])
        if token:
            _collect(result, token, seed)

    for match in NETWORK_PATH_RE.finditer(body):
        begin, end = find_link_end(body, match.end())
        token = _decode(body[begin:end])
        if not token:
            continue
        scheme = match.group(1)
        prefix = scheme.decode('ascii').lower() + '://' if scheme else '//'
        _collect(result, prefix + token, seed)

    return result


def extract_html_links(body: bytes, seed: SplitResult) -> ExtractionResult:
    """Collect links from src, href, srcset and data-srcset attributes."""
    result = ExtractionResult()
    try:
        soup = BeautifulSoup(body, 'lxml')
    except Exception as e:  # lxml raises a range of parser errors
        result.error = f"HTML parse error: {e}"
        logger.warning(result.error)
        return result

    for tag in soup.find_all(True):
        for name, value in tag.attrs.items():
            if isinstance(value, list):
                value = ' '.join(value)
            if name in LINK_ATTRIBUTES:
                candidates = [value.strip()]
            elif name in SRCSET_ATTRIBUTES:
                candidates = list(_srcset_urls(value))
            else:
                continue
            for candidate in candidates:
                _collect(result, candidate, seed, context=f"<{tag.name} {name}=...>")

    return result


class LinkExtractor:
    """Runs the extractors that apply to a body's content type."""

    def __init__(self, seed: SplitResult):
        self.seed = seed
        self.logger = logging.getLogger(__name__)

    def extract(self, body: bytes, mime: str) -> ExtractionResult:
        kind = classify_content(mime)
        if kind is ContentKind.BINARY:
            return ExtractionResult()

        combined = ExtractionResult()
        passes = [extract_text_links]
        if kind is ContentKind.HTML:
            passes.insert(0, extract_html_links)

        for extract in passes:
            found = extract(body, self.seed)
            combined.links.extend(found.links)
            if found.error:
                combined.error = found.error

        self.logger.debug(f"Found {len(combined.links)} links in {kind.value} body")
        return combined


def _srcset_urls(value: str) -> Iterator[str]:
    for candidate in value.split(','):
        tokens = candidate.split()
        if tokens:
            yield tokens[0]


def _collect(result: ExtractionResult, text: str, seed: SplitResult, context: str = ''):
    if not text:
        return
    try:
        parts = parse_url(text)
    except InvalidURLError as e:
        result.error = str(e)
        logger.info(f"Could not read link {context}: {e}" if context else f"Could not read link: {e}")
        return
    result.links.append(resolve_relative(seed, parts))


def _decode(raw: bytes) -> str:
    return raw.decode('utf-8', errors='replace').strip()
