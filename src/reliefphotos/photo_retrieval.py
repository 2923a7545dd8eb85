"""
Photo retrieval with tiered fallback.

Originals and thumbnails are served from the first tier that can produce them:

    local disk cache -> object store -> presigned direct link

Each tier is a single attempt that returns a delivery or ``None``; tiers are
tried in order and the first non-``None`` result wins. Nothing is retried. A
failed cache write never fails a request, it only downgrades the response's
Cache-Control directive from immutable to private.

The retriever holds no mutable state; one is built per request.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TypeVar

from reliefphotos.content_types import GENERIC_CONTENT_TYPES, SNIFF_LEN, sniff_content_type
from reliefphotos.imaging import MAX_DECODE_BYTES, DecodeError, transcode
from reliefphotos.local_cache import CacheWriteError, LocalDiskCache
from reliefphotos.repositories.photo_repository import PhotoLocation
from reliefphotos.s3_service import AsyncS3Client

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
PRIVATE_CACHE_CONTROL = "private, max-age=60"

MAX_THUMBNAIL_WIDTH = 4096
THUMBNAIL_PRESETS: dict[str, int | None] = {
    "small": 100,
    "medium": 300,
    "large": 1200,
    "original": None,
}
DEFAULT_PRESET = "medium"

_SIZE_SPEC = re.compile(r"w(\d+)")

T = TypeVar("T")


class PhotoNotFoundError(Exception):
    """No photo with the requested id."""


class SourceUnavailableError(Exception):
    """Every tier failed; there is nothing to serve or redirect to."""


class InvalidSizeSpecError(ValueError):
    """Malformed or out-of-range thumbnail size specification."""


class PhotoLookup(Protocol):
    def lookup(self, photo_id: str) -> PhotoLocation | None: ...


@dataclass(frozen=True)
class SizeSpec:
    width: int

    @property
    def token(self) -> str:
        return f"w{self.width}"


def parse_size_spec(raw: str) -> SizeSpec:
    """Parse ``w<digits>`` with 1 <= width <= MAX_THUMBNAIL_WIDTH."""
    match = _SIZE_SPEC.fullmatch(raw or "")
    if match is None:
        raise InvalidSizeSpecError("invalid thumbnail spec")
    width = int(match.group(1))
    if not 1 <= width <= MAX_THUMBNAIL_WIDTH:
        raise InvalidSizeSpecError("width out of range")
    return SizeSpec(width)


def preset_size_spec(preset: str | None) -> SizeSpec | None:
    """Size for a named preset; None means the original. Unknown names get the default."""
    name = (preset or "").strip().lower()
    if name not in THUMBNAIL_PRESETS:
        name = DEFAULT_PRESET
    width = THUMBNAIL_PRESETS[name]
    return SizeSpec(width) if width is not None else None


@dataclass(frozen=True)
class FileDelivery:
    path: Path
    content_type: str
    cache_control: str
    tier: str


@dataclass(frozen=True)
class BytesDelivery:
    data: bytes
    content_type: str
    cache_control: str
    tier: str


@dataclass(frozen=True)
class RedirectDelivery:
    url: str
    cache_control: str
    tier: str


Delivery = FileDelivery | BytesDelivery | RedirectDelivery


async def first_available(*attempts: Callable[[], Awaitable[T | None]]) -> T | None:
    """Run attempts in order and return the first non-None result."""
    for attempt in attempts:
        result = await attempt()
        if result is not None:
            return result
    return None


class PhotoRetriever:
    def __init__(
        self,
        photos: PhotoLookup,
        cache: LocalDiskCache,
        store: AsyncS3Client | None,
        presign_ttl: int = 300,
    ):
        self.photos = photos
        self.cache = cache
        self.store = store
        self.presign_ttl = presign_ttl

    def _resolve(self, photo_id: str) -> PhotoLocation:
        location = self.photos.lookup(photo_id)
        if location is None:
            raise PhotoNotFoundError(photo_id)
        return location

    async def get(self, photo_id: str, size: SizeSpec | None) -> Delivery:
        """Serve the original when ``size`` is None, otherwise a thumbnail."""
        if size is None:
            return await self.original(photo_id)
        return await self.thumbnail(photo_id, size)

    # Originals

    async def original(self, photo_id: str) -> Delivery:
        location = self._resolve(photo_id)
        path = self.cache.photo_path(location.object_key)

        delivery = await first_available(
            lambda: self._original_from_disk(location, path),
            lambda: self._original_from_store(location, path),
            lambda: self._presigned_redirect(location.object_key),
        )
        if delivery is None:
            logger.error("No tier could serve original %s (%s)", photo_id, location.object_key)
            raise SourceUnavailableError("source unavailable")
        return delivery

    async def _original_from_disk(self, location: PhotoLocation, path: Path) -> Delivery | None:
        if not self.cache.exists(path):
            return None
        return FileDelivery(path, location.content_type, IMMUTABLE_CACHE_CONTROL, tier="disk")

    async def _original_from_store(self, location: PhotoLocation, path: Path) -> Delivery | None:
        if self.store is None:
            return None
        try:
            async with self.store.open_object(location.object_key) as obj:
                content_type = location.content_type or obj.content_type
                await self.cache.save_stream(path, obj.iter_chunks())
        except CacheWriteError as e:
            logger.warning("Could not cache original %s: %s", location.object_key, e)
            return await self._fetch_uncached(location)
        except Exception as e:
            logger.warning("Object store fetch failed for %s: %s", location.object_key, e)
            return None
        return FileDelivery(path, content_type, IMMUTABLE_CACHE_CONTROL, tier="store")

    async def _fetch_uncached(self, location: PhotoLocation) -> Delivery | None:
        """Fetch the object again and hand it to the client without caching."""
        try:
            data = await self.store.read_object(location.object_key)
        except Exception as e:
            logger.warning("Object store re-fetch failed for %s: %s", location.object_key, e)
            return None
        content_type = location.content_type or "application/octet-stream"
        return BytesDelivery(data, content_type, PRIVATE_CACHE_CONTROL, tier="store-uncached")

    async def _presigned_redirect(self, object_key: str) -> Delivery | None:
        if self.store is None:
            return None
        try:
            url = self.store.presign_get(object_key, self.presign_ttl)
        except Exception as e:
            logger.warning("Presigning failed for %s: %s", object_key, e)
            return None
        return RedirectDelivery(url, PRIVATE_CACHE_CONTROL, tier="presigned")

    # Thumbnails

    async def thumbnail(self, photo_id: str, size: SizeSpec) -> Delivery:
        location = self._resolve(photo_id)
        path = self.cache.thumb_path(location.object_key, size.token)

        delivery = await first_available(
            lambda: self._thumbnail_from_disk(location, path),
            lambda: self._render_thumbnail(location, size, path),
        )
        if delivery is None:
            logger.error("No tier could serve thumbnail %s of %s (%s)", size.token, photo_id, location.object_key)
            raise SourceUnavailableError("source unavailable")
        return delivery

    async def _thumbnail_from_disk(self, location: PhotoLocation, path: Path) -> Delivery | None:
        if not self.cache.exists(path):
            return None
        # A cached thumbnail is either a re-encoded JPEG/PNG or the untouched original
        try:
            content_type = sniff_content_type(await asyncio.to_thread(self.cache.read, path, SNIFF_LEN))
        except OSError as e:
            logger.warning("Cached thumbnail %s unreadable: %s", path, e)
            return None
        if content_type in GENERIC_CONTENT_TYPES:
            content_type = location.content_type
        return FileDelivery(path, content_type, IMMUTABLE_CACHE_CONTROL, tier="disk")

    async def _render_thumbnail(self, location: PhotoLocation, size: SizeSpec, path: Path) -> Delivery | None:
        source = await first_available(
            lambda: self._source_from_disk(location),
            lambda: self._source_from_store(location),
        )
        if source is None:
            # Last resort: send the client the full-size original
            return await self._presigned_redirect(location.object_key)

        try:
            result = await asyncio.to_thread(transcode, source, location.content_type, size.width)
        except DecodeError as e:
            logger.warning("Cannot decode %s for %s: %s", location.object_key, size.token, e)
            return await self._presigned_redirect(location.object_key)

        persisted = await self._persist(path, result.data)
        tier = "transcoded" if result.resized else "passthrough"
        cache_control = IMMUTABLE_CACHE_CONTROL if persisted else PRIVATE_CACHE_CONTROL
        return BytesDelivery(result.data, result.content_type, cache_control, tier=tier)

    async def _source_from_disk(self, location: PhotoLocation) -> bytes | None:
        path = self.cache.photo_path(location.object_key)
        if not self.cache.exists(path):
            return None
        try:
            return await asyncio.to_thread(self.cache.read, path, MAX_DECODE_BYTES)
        except OSError as e:
            logger.warning("Cached original %s unreadable: %s", path, e)
            return None

    async def _source_from_store(self, location: PhotoLocation) -> bytes | None:
        if self.store is None:
            return None
        try:
            # Objects over the decode ceiling fail here and fall through to the redirect
            return await self.store.read_object(location.object_key, limit=MAX_DECODE_BYTES)
        except Exception as e:
            logger.warning("Object store fetch failed for %s: %s", location.object_key, e)
            return None

    async def _persist(self, path: Path, data: bytes) -> bool:
        try:
            await asyncio.to_thread(self.cache.save, path, data)
        except CacheWriteError as e:
            logger.warning("Could not cache thumbnail %s: %s", path, e)
            return False
        return True
