# Repositories package

from .base_repository import BaseRepository
from .photo_repository import PhotoLocation, PhotoRepository

__all__ = [
    "BaseRepository",
    "PhotoLocation",
    "PhotoRepository",
]
