"""
Asynchronous S3 Client Service

This module provides an async-first S3 client built on aioboto3 that backs the
photo pipeline's durable tier. The client is created once in the application
lifespan and shared through dependency injection.

Every network operation is single-attempt (botocore retries are disabled) and
bounded by an explicit timeout that does not depend on the inbound request, so
a slow store degrades one request instead of tying up the process.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Any, BinaryIO

import aioboto3
import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

CHUNK_SIZE = 64 * 1024


class ObjectTooLargeError(Exception):
    """Raised when an object stream grows past the configured byte ceiling."""

    def __init__(self, limit: int):
        super().__init__(f"object exceeds {limit} bytes")
        self.limit = limit


class S3Settings(BaseSettings):
    """Configuration for the S3 client. An empty bucket disables the object store."""

    endpoint: str = ""
    access_key: str = ""
    secret_key: str = ""
    bucket: str = ""
    region: str = "us-east-1"
    use_ssl: bool = True
    use_path_style: bool = True
    base_url: str = ""  # optional CDN or website URL used for public_url
    signature_version: str = "s3v4"
    object_acl: str | None = None  # e.g. "public-read"
    connect_timeout: int = 10
    read_timeout: int = 60

    model_config = SettingsConfigDict(
        env_prefix="S3_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def enabled(self) -> bool:
        return bool(self.bucket)


@lru_cache(maxsize=1)
def get_s3_settings() -> S3Settings:
    """Get cached S3 settings."""
    return S3Settings()


@dataclass(frozen=True)
class StoredObjectRef:
    url: str
    key: str


class SizeLimitedReader:
    """File-like wrapper that fails once more than ``limit`` bytes have been read.

    At most ``limit + 1`` bytes are ever pulled from the source, so an oversized
    stream is detected mid-transfer rather than silently truncated.
    """

    def __init__(self, source: BinaryIO, limit: int):
        self._source = source
        self._limit = limit
        self._consumed = 0
        self.exceeded = False

    def read(self, size: int = -1) -> bytes:
        remaining = self._limit + 1 - self._consumed
        if remaining <= 0:
            return b""
        if size is None or size < 0 or size > remaining:
            size = remaining
        data = self._source.read(size)
        self._consumed += len(data)
        if self._consumed > self._limit:
            self.exceeded = True
            raise ObjectTooLargeError(self._limit)
        return data


class PrefixedReader:
    """Replays already-consumed bytes before continuing with the underlying stream."""

    def __init__(self, prefix: bytes, rest: BinaryIO):
        self._prefix = prefix
        self._rest = rest

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data, self._prefix = self._prefix + self._rest.read(), b""
            return data
        if self._prefix:
            data, self._prefix = self._prefix[:size], self._prefix[size:]
            if len(data) < size:
                data += self._rest.read(size - len(data))
            return data
        return self._rest.read(size)


@dataclass
class StoredObject:
    """An open object body. Only valid inside ``AsyncS3Client.open_object``.

    ``deadline`` is an event loop timestamp; every read of the body past it
    raises TimeoutError, however slowly the bytes arrive.
    """

    body: Any
    content_type: str
    length: int
    deadline: float | None = None

    async def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        chunks = aiter(self.body.iter_chunks(chunk_size))
        while True:
            try:
                async with asyncio.timeout_at(self.deadline):
                    chunk = await anext(chunks)
            except StopAsyncIteration:
                return
            yield chunk

    async def read_all(self, limit: int) -> bytes:
        """Read the whole body, raising ObjectTooLargeError past ``limit`` bytes."""
        if 0 <= limit < self.length:
            raise ObjectTooLargeError(limit)
        buf = bytearray()
        async for chunk in self.iter_chunks():
            buf += chunk
            if len(buf) > limit:
                raise ObjectTooLargeError(limit)
        return bytes(buf)


class AsyncS3Client:
    """Asynchronous S3 Client

    This client maintains a shared aioboto3.Session that is created once and
    reused for all operations. Individual S3 clients are created per operation
    using context managers to ensure proper resource cleanup.
    """

    def __init__(
        self,
        settings: S3Settings | None = None,
        *,
        max_bytes: int,
        upload_timeout: float = 60.0,
        fetch_timeout: float = 30.0,
    ):
        self.settings = settings or get_s3_settings()
        self.max_bytes = max_bytes
        self.upload_timeout = upload_timeout
        self.fetch_timeout = fetch_timeout
        self._session: aioboto3.Session | None = None
        self._endpoint_url = self._get_endpoint_url()
        self._config = Config(
            signature_version=self.settings.signature_version,
            max_pool_connections=50,
            retries={"max_attempts": 1, "mode": "standard"},  # single attempt, callers fall back instead
            connect_timeout=self.settings.connect_timeout,
            read_timeout=self.settings.read_timeout,
            s3={"addressing_style": "path" if self.settings.use_path_style else "auto"},
        )
        self._presign_client = None
        self._transfer_config = TransferConfig(
            multipart_threshold=8 * 1024 * 1024,
            multipart_chunksize=8 * 1024 * 1024,
            max_concurrency=4,
        )
        logger.info(
            "AsyncS3Client initialized: endpoint=%s, bucket=%s, region=%s, max_bytes=%d",
            self._endpoint_url,
            self.settings.bucket,
            self.settings.region,
            self.max_bytes,
        )

    def _get_endpoint_url(self) -> str | None:
        """Get the endpoint URL with protocol if needed; None means the AWS default."""
        endpoint = self.settings.endpoint
        if not endpoint:
            return None
        if not endpoint.startswith(("http://", "https://")):
            protocol = "https" if self.settings.use_ssl else "http"
            return f"{protocol}://{endpoint}"
        return endpoint.rstrip("/")

    @property
    def session(self) -> aioboto3.Session:
        """Get or create the shared aioboto3 session."""
        if self._session is None:
            self._session = aioboto3.Session(
                aws_access_key_id=self.settings.access_key or None,
                aws_secret_access_key=self.settings.secret_key or None,
                region_name=self.settings.region,
            )
        return self._session

    def _get_s3_client(self) -> "S3Client":
        """Get configured S3 client context manager.

        Usage: async with self._get_s3_client() as s3:
        """
        return self.session.client("s3", endpoint_url=self._endpoint_url, config=self._config)

    def _get_presign_client(self):
        if self._presign_client is None:
            self._presign_client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                aws_access_key_id=self.settings.access_key or None,
                aws_secret_access_key=self.settings.secret_key or None,
                region_name=self.settings.region,
                config=self._config,
            )
        return self._presign_client

    def public_url(self, key: str) -> str:
        """Durable address of an object: CDN/base URL when configured, else the store URL."""
        if self.settings.base_url:
            return f"{self.settings.base_url.rstrip('/')}/{key.lstrip('/')}"
        if self._endpoint_url:
            return f"{self._endpoint_url}/{self.settings.bucket}/{key}"
        return f"https://{self.settings.bucket}.s3.{self.settings.region}.amazonaws.com/{key}"

    async def put(self, key: str, stream: BinaryIO, content_type: str) -> StoredObjectRef:
        """Stream a file-like object to the store under ``key``.

        Raises:
            ObjectTooLargeError: If the stream is longer than ``max_bytes``
            TimeoutError: If the upload does not finish within ``upload_timeout``
        """
        if not key:
            raise ValueError("key required")

        reader = SizeLimitedReader(stream, self.max_bytes)
        extra_args: dict[str, str] = {"ContentType": content_type}
        if self.settings.object_acl:
            extra_args["ACL"] = self.settings.object_acl

        try:
            async with asyncio.timeout(self.upload_timeout):
                async with self._get_s3_client() as s3:
                    await s3.upload_fileobj(
                        reader,
                        self.settings.bucket,
                        key,
                        ExtraArgs=extra_args,
                        Config=self._transfer_config,
                    )
        except Exception as e:
            if reader.exceeded:
                logger.warning("Upload of %s aborted: exceeds %d bytes", key, self.max_bytes)
                raise ObjectTooLargeError(self.max_bytes) from e
            logger.error("Failed to upload object %s: %s", key, e)
            raise

        logger.info("Successfully uploaded object: %s", key)
        return StoredObjectRef(url=self.public_url(key), key=key)

    @asynccontextmanager
    async def open_object(self, key: str) -> AsyncIterator[StoredObject]:
        """Open an object for streaming; the connection stays open until exit.

        The whole fetch, body reads included, must finish within
        ``fetch_timeout``.

        Usage:
            async with s3.open_object(key) as obj:
                async for chunk in obj.iter_chunks():
                    ...
        """
        if not key:
            raise ValueError("key required")
        # One deadline covers the request and every read of the body
        deadline = asyncio.get_running_loop().time() + self.fetch_timeout
        async with self._get_s3_client() as s3:
            s3: "S3Client"
            try:
                async with asyncio.timeout_at(deadline):
                    response = await s3.get_object(Bucket=self.settings.bucket, Key=key)
            except Exception as e:
                logger.error("Failed to get object %s: %s", key, e)
                raise
            body = response.get("Body")
            if body is None:
                raise ValueError(f"No body in response for key {key}")
            try:
                yield StoredObject(
                    body=body,
                    content_type=response.get("ContentType") or "",
                    length=response.get("ContentLength") or -1,
                    deadline=deadline,
                )
            finally:
                body.close()

    async def read_object(self, key: str, limit: int | None = None) -> bytes:
        """Download an object into memory, bounded by ``limit`` (default ``max_bytes``)."""
        limit = self.max_bytes if limit is None else limit
        async with self.open_object(key) as obj:
            data = await obj.read_all(limit)
        logger.debug("Downloaded object %s (%d bytes)", key, len(data))
        return data

    def presign_get(self, key: str, expires_in: int = 300) -> str:
        """Generate a time-limited direct link for an object.

        Raises:
            Exception: If URL generation fails
        """
        if not key:
            raise ValueError("key required")
        try:
            s3_client = self._get_presign_client()
            url = s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.settings.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except Exception as e:
            logger.error("Failed to generate presigned URL for %s: %s", key, e)
            raise
        logger.debug("Generated presigned URL for: %s", key)
        return str(url)

    async def close(self) -> None:
        """Drop the session and the presign client."""
        if self._session is not None:
            logger.info("Closing AsyncS3Client session")
            self._session = None
        self._presign_client = None
