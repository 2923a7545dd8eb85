"""Content-addressed local disk cache for original photos and thumbnails.

Layout::

    <root>/photos/<shard>/<name>
    <root>/thumbs/<spec>/<shard>/<name>

``shard`` is the first two hex characters of SHA-256(object_key) and ``name``
is the object key's basename. Object keys are immutable, so an entry never goes
stale; entries can be deleted at any time and are rebuilt on the next miss.
"""

import asyncio
import hashlib
import logging
import os
import tempfile
from collections.abc import AsyncIterable, Iterator
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

SHARD_WIDTH = 2


class CacheWriteError(Exception):
    """A cache entry could not be written. The cache is left unchanged."""


def _key_parts(object_key: str) -> tuple[str, str]:
    hexsum = hashlib.sha256(object_key.encode()).hexdigest()
    name = object_key.rsplit("/", 1)[-1]
    if name in ("", ".", ".."):
        name = hexsum
    return hexsum[:SHARD_WIDTH], name


@dataclass(frozen=True)
class LocalDiskCache:
    root: Path

    def photo_path(self, object_key: str) -> Path:
        shard, name = _key_parts(object_key)
        return self.root / "photos" / shard / name

    def thumb_path(self, object_key: str, spec: str) -> Path:
        shard, name = _key_parts(object_key)
        return self.root / "thumbs" / spec / shard / name

    @staticmethod
    def exists(path: Path) -> bool:
        return path.is_file()

    @staticmethod
    def read(path: Path, limit: int) -> bytes:
        """Read at most ``limit + 1`` bytes so callers can detect oversize entries."""
        with path.open("rb") as f:
            return f.read(limit + 1)

    @staticmethod
    @contextmanager
    def _atomic_writer(path: Path) -> Iterator[BinaryIO]:
        """Yield a temp file beside ``path``; rename it into place on clean exit.

        Each writer gets its own temp name, so concurrent saves of the same path
        race harmlessly and readers never see a partial file.
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.tmp-")
        except OSError as e:
            raise CacheWriteError(f"cannot create temp file for {path}: {e}") from e

        f = os.fdopen(fd, "wb")
        try:
            yield f
            try:
                f.close()
                os.replace(tmp_name, path)
            except OSError as e:
                raise CacheWriteError(f"cannot commit {path}: {e}") from e
        except BaseException:
            with suppress(OSError):
                f.close()
            with suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise

    @staticmethod
    def _write(f: BinaryIO, path: Path, data: bytes) -> None:
        try:
            f.write(data)
        except OSError as e:
            raise CacheWriteError(f"cannot write {path}: {e}") from e

    def save(self, path: Path, data: bytes) -> None:
        with self._atomic_writer(path) as f:
            self._write(f, path, data)
        logger.debug("Cached %d bytes at %s", len(data), path)

    async def save_stream(self, path: Path, chunks: AsyncIterable[bytes]) -> int:
        """Write an async byte stream atomically; returns the number of bytes written.

        Chunks are written from a worker thread. Errors raised by ``chunks``
        propagate unchanged; filesystem errors become CacheWriteError.
        """
        written = 0
        with self._atomic_writer(path) as f:
            async for chunk in chunks:
                await asyncio.to_thread(self._write, f, path, chunk)
                written += len(chunk)
        logger.debug("Cached %d streamed bytes at %s", written, path)
        return written
