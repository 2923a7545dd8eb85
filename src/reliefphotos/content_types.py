"""Content-type sniffing for uploaded and cached images.

The signature table follows the WHATWG MIME sniffing rules for the image
formats browsers render, plus a handful of common non-image types so that
those are recognised (and rejected) instead of falling through to the
client-declared header.
"""

import mimetypes
import os

SNIFF_LEN = 512

OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain; charset=utf-8"
GENERIC_CONTENT_TYPES = frozenset({OCTET_STREAM, "binary/octet-stream", TEXT_PLAIN})

# (signature, offset, content type)
_SIGNATURES: tuple[tuple[bytes, int, str], ...] = (
    (b"\xff\xd8\xff", 0, "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", 0, "image/png"),
    (b"GIF87a", 0, "image/gif"),
    (b"GIF89a", 0, "image/gif"),
    (b"BM", 0, "image/bmp"),
    (b"\x00\x00\x01\x00", 0, "image/x-icon"),
    (b"\x00\x00\x02\x00", 0, "image/x-icon"),
    (b"II*\x00", 0, "image/tiff"),
    (b"MM\x00*", 0, "image/tiff"),
    (b"%PDF-", 0, "application/pdf"),
    (b"PK\x03\x04", 0, "application/zip"),
    (b"\x1f\x8b\x08", 0, "application/x-gzip"),
    (b"%!PS-Adobe-", 0, "application/postscript"),
)

# ISO base media file format brands (bytes 8..12 after "ftyp")
_FTYP_BRANDS = {
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"mif1": "image/heif",
    b"msf1": "image/heif",
    b"avif": "image/avif",
}

_MARKUP_PREFIXES = (
    (b"<!doctype html", "text/html; charset=utf-8"),
    (b"<html", "text/html; charset=utf-8"),
    (b"<?xml", "text/xml; charset=utf-8"),
    (b"<svg", "text/xml; charset=utf-8"),
)

_EXTENSION_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".heic": "image/heic",
}

_BINARY_BYTES = frozenset([*range(0x00, 0x09), 0x0B, *range(0x0E, 0x1B), *range(0x1C, 0x20)])


def sniff_content_type(prefix: bytes) -> str:
    """Best-effort MIME type of a payload from its first SNIFF_LEN bytes."""
    data = prefix[:SNIFF_LEN]

    for signature, offset, content_type in _SIGNATURES:
        if data.startswith(signature, offset):
            return content_type

    if data.startswith(b"RIFF") and data[8:14] == b"WEBPVP":
        return "image/webp"
    if data[4:8] == b"ftyp" and data[8:12] in _FTYP_BRANDS:
        return _FTYP_BRANDS[data[8:12]]

    stripped = data.lstrip(b"\t\n\x0c\r ").lower()
    for marker, content_type in _MARKUP_PREFIXES:
        if stripped.startswith(marker):
            return content_type

    if any(b in _BINARY_BYTES for b in data):
        return OCTET_STREAM
    return TEXT_PLAIN


def content_type_for_extension(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    if ext in _EXTENSION_TYPES:
        return _EXTENSION_TYPES[ext]
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or OCTET_STREAM


def resolve_content_type(sniffed: str, declared: str | None, filename: str) -> str:
    """Sniffed type unless generic, then the declared part header, then the file extension."""
    if sniffed not in GENERIC_CONTENT_TYPES:
        return sniffed
    if declared:
        return declared
    return content_type_for_extension(filename)


def is_image(content_type: str) -> bool:
    return content_type.strip().lower().startswith("image/")
