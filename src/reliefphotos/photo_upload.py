import logging
import os
import re
import secrets
import threading
import time
import uuid
from dataclasses import dataclass
from typing import BinaryIO

from reliefphotos.content_types import SNIFF_LEN, is_image, resolve_content_type, sniff_content_type
from reliefphotos.events import events
from reliefphotos.repositories.photo_repository import PhotoRepository
from reliefphotos.s3_service import AsyncS3Client, ObjectTooLargeError, PrefixedReader

logger = logging.getLogger(__name__)

OBJECT_KEY_PREFIX = "photos/"
DEFAULT_EXTENSION = ".bin"
_SAFE_EXTENSION = re.compile(r"\.[a-z0-9]{1,15}")


class UploadRejectedError(Exception):
    """The upload is invalid; nothing was stored."""


@dataclass(frozen=True)
class UploadResult:
    id: uuid.UUID
    object_key: str
    content_type: str
    size: int
    public_url: str


_uuid7_lock = threading.Lock()
_uuid7_last_ms = 0
_uuid7_seq = 0


def uuid7() -> uuid.UUID:
    """Time-ordered UUID (RFC 9562 version 7), monotonic within the process.

    Ids created in the same millisecond are ordered by a 12-bit counter held
    in ``rand_a``; on counter overflow the timestamp is advanced by one.
    """
    global _uuid7_last_ms, _uuid7_seq
    with _uuid7_lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _uuid7_last_ms:
            _uuid7_last_ms = now_ms
            _uuid7_seq = secrets.randbits(11)  # leave headroom for same-millisecond ids
        else:
            _uuid7_seq += 1
            if _uuid7_seq > 0xFFF:
                _uuid7_last_ms += 1
                _uuid7_seq = 0
        ms, seq = _uuid7_last_ms, _uuid7_seq

    value = (ms & 0xFFFF_FFFF_FFFF) << 80
    value |= 0x7 << 76
    value |= seq << 64
    value |= 0b10 << 62
    value |= secrets.randbits(62)
    return uuid.UUID(int=value)


def sanitize_filename(name: str | None) -> str:
    name = (name or "").strip()
    for unsafe in ("\\", "/", ".."):
        name = name.replace(unsafe, "-")
    return name


def build_object_key(photo_id: uuid.UUID, filename: str) -> str:
    """``photos/<id><ext>``; the original filename never appears in the key."""
    ext = os.path.splitext(filename)[1].lower()
    if not _SAFE_EXTENSION.fullmatch(ext):
        ext = DEFAULT_EXTENSION
    return f"{OBJECT_KEY_PREFIX}{photo_id}{ext}"


async def upload_photo(
    stream: BinaryIO,
    *,
    filename: str | None,
    declared_content_type: str | None,
    declared_size: int,
    store: AsyncS3Client,
    repo: PhotoRepository,
) -> UploadResult:
    """Validate, store and register one uploaded image.

    The size ceiling is checked against ``declared_size`` here and enforced
    again on the actual stream by the object store client. On any failure no
    metadata row exists; an already-written object is left orphaned.

    Raises:
        UploadRejectedError: Not an image
        ObjectTooLargeError: Declared or streamed size over the store's limit
        TimeoutError: The store did not accept the object in time
    """
    if declared_size > store.max_bytes:
        raise ObjectTooLargeError(store.max_bytes)

    clean_name = sanitize_filename(filename) or f"upload-{time.time_ns()}"

    prefix = stream.read(SNIFF_LEN)
    sniffed = sniff_content_type(prefix)
    content_type = resolve_content_type(sniffed, declared_content_type, clean_name)
    if not is_image(content_type):
        logger.info("Rejected upload %r: resolved content type %s (sniffed %s)", clean_name, content_type, sniffed)
        raise UploadRejectedError("only image uploads are allowed")

    photo_id = uuid7()
    key = build_object_key(photo_id, clean_name)

    stored = await store.put(key, PrefixedReader(prefix, stream), content_type)

    repo.insert(
        photo_id=photo_id,
        object_key=stored.key,
        original_filename=clean_name,
        content_type=content_type,
        size=declared_size,
        public_url=stored.url,
    )

    events.emit("photo_uploaded", photo_id=photo_id, object_key=stored.key, content_type=content_type, size=declared_size)
    return UploadResult(id=photo_id, object_key=stored.key, content_type=content_type, size=declared_size, public_url=stored.url)
