"""
Content-type sniffing from the leading bytes of a body.

Follows the WHATWG MIME sniffing signature table. The declared
Content-Type header and the URL are never consulted.
"""

import mimetypes

SNIFF_LENGTH = 512

DEFAULT_TYPE = 'application/octet-stream'
TEXT_UTF8 = 'text/plain; charset=utf-8'

_WHITESPACE = b'\t\n\x0c\r '

_HTML_TAGS = (
    b'<!DOCTYPE HTML', b'<HTML', b'<HEAD', b'<SCRIPT', b'<IFRAME', b'<H1',
    b'<DIV', b'<FONT', b'<TABLE', b'<A', b'<STYLE', b'<TITLE', b'<B',
    b'<BODY', b'<BR', b'<P', b'<!--',
)

# (prefix, mime) pairs matched against the raw bytes
_EXACT = (
    (b'%PDF-', 'application/pdf'),
    (b'%!PS-Adobe-', 'application/postscript'),
    (b'\xfe\xff', 'text/plain; charset=utf-16be'),
    (b'\xff\xfe', 'text/plain; charset=utf-16le'),
    (b'\xef\xbb\xbf', TEXT_UTF8),
    (b'\x00\x00\x01\x00', 'image/x-icon'),
    (b'\x00\x00\x02\x00', 'image/x-icon'),
    (b'BM', 'image/bmp'),
    (b'GIF87a', 'image/gif'),
    (b'GIF89a', 'image/gif'),
    (b'\x89PNG\r\n\x1a\n', 'image/png'),
    (b'\xff\xd8\xff', 'image/jpeg'),
    (b'ID3', 'audio/mpeg'),
    (b'OggS\x00', 'application/ogg'),
    (b'MThd\x00\x00\x00\x06', 'audio/midi'),
    (b'\x1a\x45\xdf\xa3', 'video/webm'),
    (b'Rar!\x1a\x07\x00', 'application/x-rar-compressed'),
    (b'Rar!\x1a\x07\x01\x00', 'application/x-rar-compressed'),
    (b'\x00asm', 'application/wasm'),
    (b'\x1f\x8b\x08', 'application/x-gzip'),
    (b'PK\x03\x04', 'application/zip'),
    (b'wOFF', 'font/woff'),
    (b'wOF2', 'font/woff2'),
    (b'OTTO', 'font/otf'),
    (b'\x00\x01\x00\x00', 'font/ttf'),
)

# RIFF-style containers: 4 byte tag, 4 byte length, 4 byte form type
_RIFF = (
    (b'RIFF', b'WEBP', 'image/webp'),
    (b'RIFF', b'WAVE', 'audio/wave'),
    (b'RIFF', b'AVI ', 'video/avi'),
    (b'FORM', b'AIFF', 'audio/aiff'),
)

# Extensions preferred over whatever mimetypes would pick first.
_PREFERRED_EXTENSIONS = {
    'text/html': '.html',
    'text/plain': '.txt',
    'text/xml': '.xml',
    'text/css': '.css',
    'application/javascript': '.js',
    'text/javascript': '.js',
    'application/json': '.json',
    'image/jpeg': '.jpg',
    'image/x-icon': '.ico',
    'image/svg+xml': '.svg',
    'audio/mpeg': '.mp3',
    'audio/wave': '.wav',
    'font/woff': '.woff',
    'font/woff2': '.woff2',
    'application/x-gzip': '.gz',
}


def detect_content_type(body: bytes) -> str:
    """Return the sniffed MIME type of ``body``, never an empty string."""
    data = body[:SNIFF_LENGTH]

    stripped = data.lstrip(_WHITESPACE)
    if _is_html(stripped):
        return 'text/html; charset=utf-8'
    if stripped.startswith(b'<?xml'):
        return 'text/xml; charset=utf-8'

    for prefix, mime in _EXACT:
        if data.startswith(prefix):
            return mime

    for tag, form, mime in _RIFF:
        if len(data) >= 12 and data[:4] == tag and data[8:12] == form:
            return mime

    if _is_mp4(data):
        return 'video/mp4'

    if any(_is_binary_byte(b) for b in data):
        return DEFAULT_TYPE
    return TEXT_UTF8


def base_type(mime: str) -> str:
    """Strip parameters: 'text/html; charset=utf-8' -> 'text/html'."""
    return mime.split(';', 1)[0].strip().lower()


def extension_for(mime: str) -> str:
    """File extension for a sniffed type, '.html' when nothing is known."""
    ct = base_type(mime)
    if ct in _PREFERRED_EXTENSIONS:
        return _PREFERRED_EXTENSIONS[ct]
    return mimetypes.guess_extension(ct) or '.html'


def _is_html(data: bytes) -> bool:
    for tag in _HTML_TAGS:
        if len(data) <= len(tag):
            continue
        if data[:len(tag)].upper() != tag:
            continue
        # the tag must end in a space or '>'
        if data[len(tag)] in b' >':
            return True
    return False


def _is_mp4(data: bytes) -> bool:
    if len(data) < 12:
        return False
    box_size = int.from_bytes(data[:4], 'big')
    if box_size % 4 != 0 or box_size > len(data) or box_size < 12:
        return False
    if data[4:8] != b'ftyp':
        return False
    for start in range(8, box_size, 4):
        if start == 12:
            # minor version
            continue
        if data[start:start + 3] == b'mp4':
            return True
    return False


def _is_binary_byte(b: int) -> bool:
    return b <= 0x08 or b == 0x0b or 0x0e <= b <= 0x1a or 0x1c <= b <= 0x1f
