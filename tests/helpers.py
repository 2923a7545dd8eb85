import asyncio
import io
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import BinaryIO

from PIL import Image

from reliefphotos.s3_service import SizeLimitedReader, StoredObject, StoredObjectRef


@dataclass
class FakeBody:
    """Streams ``data`` four bytes at a time, optionally slowly or with a reset."""

    data: bytes
    fail_after: int | None = None
    delay: float = 0.0

    async def iter_chunks(self, chunk_size: int = 4) -> AsyncIterator[bytes]:
        for offset in range(0, len(self.data), 4):
            if self.fail_after is not None and offset >= self.fail_after:
                raise ConnectionError("connection reset")
            if self.delay:
                await asyncio.sleep(self.delay)
            yield self.data[offset : offset + 4]


@dataclass
class FakeObjectStore:
    """In-memory stand-in for AsyncS3Client with failure switches and call counters."""

    max_bytes: int = 10 * 1024 * 1024
    fetch_timeout: float = 30.0
    objects: dict[str, tuple[bytes, str]] = field(default_factory=dict)
    fail_put: bool = False
    fail_get: bool = False
    fail_presign: bool = False
    fail_stream_after: int | None = None
    chunk_delay: float = 0.0
    calls: dict[str, int] = field(default_factory=lambda: {"put": 0, "get": 0, "presign": 0})

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def put(self, key: str, stream: BinaryIO, content_type: str) -> StoredObjectRef:
        self.calls["put"] += 1
        if self.fail_put:
            raise ConnectionError("store unreachable")
        reader = SizeLimitedReader(stream, self.max_bytes)
        data = reader.read()
        self.objects[key] = (data, content_type)
        return StoredObjectRef(url=f"https://store.test/bucket/{key}", key=key)

    @asynccontextmanager
    async def open_object(self, key: str) -> AsyncIterator[StoredObject]:
        self.calls["get"] += 1
        if self.fail_get:
            raise ConnectionError("store unreachable")
        if key not in self.objects:
            raise KeyError(key)
        data, content_type = self.objects[key]
        deadline = asyncio.get_running_loop().time() + self.fetch_timeout
        yield StoredObject(FakeBody(data, self.fail_stream_after, self.chunk_delay), content_type, len(data), deadline=deadline)

    async def read_object(self, key: str, limit: int | None = None) -> bytes:
        limit = self.max_bytes if limit is None else limit
        async with self.open_object(key) as obj:
            return await obj.read_all(limit)

    def presign_get(self, key: str, expires_in: int = 300) -> str:
        self.calls["presign"] += 1
        if self.fail_presign:
            raise RuntimeError("cannot sign")
        return f"https://store.test/bucket/{key}?X-Amz-Expires={expires_in}&X-Amz-Signature=abc"


def encode_image(width: int, height: int, fmt: str = "JPEG", color=(200, 40, 40)) -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = (*color, 255) if mode == "RGBA" else color
    buf = io.BytesIO()
    Image.new(mode, (width, height), fill).save(buf, format=fmt)
    return buf.getvalue()
