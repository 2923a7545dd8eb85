from uuid import UUID

from pydantic import BaseModel, Field


class PhotoUploadResponse(BaseModel):
    id: UUID
    path: str
    content_type: str
    size: int = Field(..., ge=0)


class ErrorResponse(BaseModel):
    error: str
