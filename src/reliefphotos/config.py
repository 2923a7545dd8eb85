from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class PhotoSettings(BaseSettings):
    """Configuration for the photo upload and delivery pipeline"""

    max_upload_mb: int = 10
    upload_timeout_seconds: float = 60.0
    fetch_timeout_seconds: float = 30.0
    presign_ttl_seconds: int = 300  # 5 minutes
    cache_dir: Path = Path(".cache")

    model_config = SettingsConfigDict(
        env_prefix="PHOTOS_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


@lru_cache(maxsize=1)
def get_photo_settings() -> PhotoSettings:
    """Get cached photo pipeline settings."""
    return PhotoSettings()
