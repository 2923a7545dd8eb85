from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, String, Uuid
from sqlalchemy.orm import mapped_column

from reliefphotos.models.db import Base


class Photo(Base):
    __tablename__ = "photos"

    id = mapped_column(Uuid(as_uuid=True), primary_key=True)
    # Storage key (e.g. photos/<id>.jpg); never changes once assigned
    object_key = mapped_column(String, nullable=False, unique=True)
    # Advisory only, never used for addressing
    original_filename = mapped_column(String, nullable=False, default="")
    content_type = mapped_column(String, nullable=False)
    size = mapped_column(BigInteger, nullable=False)
    public_url = mapped_column(String, nullable=False, default="")
    created_at = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
