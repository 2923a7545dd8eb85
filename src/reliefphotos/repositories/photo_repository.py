import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select

from reliefphotos.models.photo import Photo
from reliefphotos.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhotoLocation:
    object_key: str
    content_type: str
    public_url: str


class PhotoRepository(BaseRepository):
    def insert(
        self,
        photo_id: uuid.UUID,
        object_key: str,
        original_filename: str,
        content_type: str,
        size: int,
        public_url: str,
    ) -> Photo:
        photo = Photo(
            id=photo_id,
            object_key=object_key,
            original_filename=original_filename,
            content_type=content_type,
            size=size,
            public_url=public_url,
        )
        self.db.add(photo)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Inserted photo %s (%s)", photo_id, object_key)
        return photo

    def lookup(self, photo_id: str | uuid.UUID) -> PhotoLocation | None:
        """Resolve a public photo id to its storage location; malformed ids are simply unknown."""
        if not isinstance(photo_id, uuid.UUID):
            try:
                photo_id = uuid.UUID(photo_id)
            except ValueError:
                return None
        stmt = select(Photo.object_key, Photo.content_type, Photo.public_url).where(Photo.id == photo_id)
        row = self.db.execute(stmt).one_or_none()
        if row is None:
            return None
        return PhotoLocation(object_key=row.object_key, content_type=row.content_type, public_url=row.public_url)
