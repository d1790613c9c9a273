"""
URL classification: seed parsing, scheme and domain checks, resolution of
relative references against the seed.
"""

import re
from typing import Optional
from urllib.parse import SplitResult, urlsplit, urlunsplit

PROCESSABLE_SCHEMES = frozenset(('http', 'https', 'file'))

MIN_SEED_LENGTH = 5

_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')
_BAD_ESCAPE = re.compile(r'%(?![0-9A-Fa-f]{2})')


class InvalidURLError(ValueError):
    """Raised when text cannot be read as a URL."""


def parse_url(text: str) -> SplitResult:
    """
    Parse a single URL reference.

    Raises InvalidURLError for control characters, malformed percent
    escapes, bad IPv6 literals and non-numeric ports.
    """
    if _CONTROL_CHARS.search(text):
        raise InvalidURLError(f"invalid control character in URL: {text[:80]!r}")
    if _BAD_ESCAPE.search(text):
        raise InvalidURLError(f"invalid URL escape in: {text[:80]!r}")
    try:
        parts = urlsplit(text)
        parts.port
    except ValueError as e:
        raise InvalidURLError(f"cannot parse URL {text[:80]!r}: {e}") from e
    return parts


def parse_seed(text: str) -> SplitResult:
    """
    Parse user input into the seed URL of a crawl.

    Accepts ``http://``, ``https://`` and protocol-relative ``//`` forms;
    anything else is read as a bare host/path and gets ``http://``.
    """
    text = (text or '').strip()
    if len(text) < MIN_SEED_LENGTH:
        raise InvalidURLError("site address is too short")

    lowered = text.lower()
    if lowered.startswith(('http://', 'https://')):
        parts = parse_url(text)
    elif lowered.startswith('//'):
        parts = parse_url('http:' + text)
    else:
        parts = parse_url('http://' + text)

    if not parts.hostname:
        raise InvalidURLError(f"could not find a host in: {text!r}")
    if not parts.hostname.strip('.'):
        raise InvalidURLError(f"host name is not usable: {parts.hostname!r}")

    return canonical_parts(parts)


def is_processable_scheme(parts: SplitResult) -> bool:
    """Only http, https and file resources are ever fetched."""
    return parts.scheme.lower() in PROCESSABLE_SCHEMES


def is_foreign(seed_host: Optional[str], parts: SplitResult) -> bool:
    """True when the URL's hostname differs from the seed's hostname."""
    return (parts.hostname or '') != (seed_host or '')


def resolve_relative(seed: SplitResult, parts: SplitResult) -> SplitResult:
    """
    Make a reference absolute using the seed's scheme and host.

    Network-path references (``//host/x``) only borrow the scheme. Other
    relative references borrow scheme and host and are rooted at ``/``.
    """
    if parts.scheme:
        return canonical_parts(parts)

    if parts.netloc:
        return canonical_parts(parts._replace(scheme=seed.scheme))

    path = parts.path
    if not path.startswith('/'):
        path = '/' + path
    return canonical_parts(parts._replace(scheme=seed.scheme, netloc=seed.netloc, path=path))


def canonical_parts(parts: SplitResult) -> SplitResult:
    """Lower-case scheme and host, drop the fragment, give hosts a '/' path."""
    netloc = parts.netloc.lower()
    path = parts.path
    if netloc and not path:
        path = '/'
    return SplitResult(parts.scheme.lower(), netloc, path, parts.query, '')


def url_string(parts: SplitResult) -> str:
    """The registry key of a URL."""
    return urlunsplit(parts)


def root_file(seed: SplitResult, path: str) -> SplitResult:
    """URL of a well-known file at the site root, e.g. /robots.txt."""
    return SplitResult(seed.scheme, seed.netloc, path, '', '')
