"""
Dependency Injection for the photo pipeline

The AsyncS3Client is initialized once during application startup and shared
across all requests. ``None`` means no bucket is configured: uploads are
refused and retrieval skips the object store tiers.
"""

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from reliefphotos.config import PhotoSettings, get_photo_settings
from reliefphotos.local_cache import LocalDiskCache
from reliefphotos.models.db import get_db
from reliefphotos.photo_retrieval import PhotoRetriever
from reliefphotos.repositories.photo_repository import PhotoRepository
from reliefphotos.s3_service import AsyncS3Client

logger = logging.getLogger(__name__)

# Global instance of the S3 client (set during app startup)
_s3_client_instance: AsyncS3Client | None = None


def get_s3_client() -> AsyncS3Client | None:
    """Dependency injection function for the optional AsyncS3Client.

    Example:
        @router.post("/upload")
        async def upload(file: UploadFile, s3: AsyncS3Client | None = Depends(get_s3_client)):
            ...
    """
    return _s3_client_instance


def set_s3_client_instance(client: AsyncS3Client | None) -> None:
    """Set the global S3 client instance; called from the application lifespan."""
    global _s3_client_instance
    _s3_client_instance = client
    logger.info("S3 client instance set globally (enabled=%s)", client is not None)


def get_local_cache(settings: PhotoSettings = Depends(get_photo_settings)) -> LocalDiskCache:
    return LocalDiskCache(settings.cache_dir)


def get_photo_repository(db: Session = Depends(get_db)) -> PhotoRepository:
    return PhotoRepository(db)


def get_photo_retriever(
    repo: PhotoRepository = Depends(get_photo_repository),
    cache: LocalDiskCache = Depends(get_local_cache),
    s3_client: AsyncS3Client | None = Depends(get_s3_client),
    settings: PhotoSettings = Depends(get_photo_settings),
) -> PhotoRetriever:
    return PhotoRetriever(repo, cache, s3_client, presign_ttl=settings.presign_ttl_seconds)
