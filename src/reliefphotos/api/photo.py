import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.responses import FileResponse, RedirectResponse, Response

from reliefphotos.dependencies import get_photo_repository, get_photo_retriever, get_s3_client
from reliefphotos.events import events
from reliefphotos.metrics import record_delivery
from reliefphotos.photo_retrieval import (
    BytesDelivery,
    Delivery,
    FileDelivery,
    InvalidSizeSpecError,
    PhotoNotFoundError,
    PhotoRetriever,
    RedirectDelivery,
    SizeSpec,
    SourceUnavailableError,
    parse_size_spec,
    preset_size_spec,
)
from reliefphotos.photo_upload import UploadRejectedError, upload_photo
from reliefphotos.repositories.photo_repository import PhotoRepository
from reliefphotos.s3_service import AsyncS3Client, ObjectTooLargeError
from reliefphotos.schemas.photo import ErrorResponse, PhotoUploadResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/photos", tags=["photos"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def require_multipart(request: Request) -> None:
    """Reject non-multipart bodies before form parsing kicks in."""
    content_type = request.headers.get("content-type", "")
    if not content_type.lower().startswith("multipart/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="expected a multipart body")


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=PhotoUploadResponse,
    responses={**_ERROR_RESPONSES, 413: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
    dependencies=[Depends(require_multipart)],
)
async def upload(
    file: Annotated[UploadFile, File()],
    repo: PhotoRepository = Depends(get_photo_repository),
    s3_client: AsyncS3Client | None = Depends(get_s3_client),
) -> PhotoUploadResponse:
    """Store one image and register it; returns the id used to fetch it back."""
    if s3_client is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="upload unavailable")

    try:
        result = await upload_photo(
            file.file,
            filename=file.filename,
            declared_content_type=file.content_type,
            declared_size=file.size or 0,
            store=s3_client,
            repo=repo,
        )
    except UploadRejectedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ObjectTooLargeError as e:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="file too large") from e
    except TimeoutError as e:
        logger.error("Upload of %s timed out", file.filename)
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="upload timed out") from e
    except Exception as e:
        logger.error("Upload of %s failed: %s", file.filename, e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="upload failed") from e
    finally:
        await file.close()

    return PhotoUploadResponse(id=result.id, path=f"/photos/{result.id}", content_type=result.content_type, size=result.size)


@router.get("/{photo_id}", responses={302: {"description": "Redirect to a presigned link"}, **_ERROR_RESPONSES})
async def get_photo(
    photo_id: str,
    thumbnail: str | None = None,
    retriever: PhotoRetriever = Depends(get_photo_retriever),
) -> Response:
    """Photo at a preset size: small, medium, large or original.

    A missing or unknown ``thumbnail`` gets medium; ``original`` serves the stored bytes.
    """
    size = preset_size_spec(thumbnail)
    return await _deliver("photo", photo_id, size, retriever)


@router.get("/{photo_id}/thumb/{spec}", responses={302: {"description": "Redirect to a presigned link"}, **_ERROR_RESPONSES})
async def get_thumbnail(
    photo_id: str,
    spec: str,
    retriever: PhotoRetriever = Depends(get_photo_retriever),
) -> Response:
    """Thumbnail at an explicit width, ``w<pixels>`` with pixels in 1..4096."""
    try:
        size = parse_size_spec(spec)
    except InvalidSizeSpecError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return await _deliver("thumb", photo_id, size, retriever)


async def _deliver(endpoint: str, photo_id: str, size: SizeSpec | None, retriever: PhotoRetriever) -> Response:
    try:
        delivery = await retriever.get(photo_id, size)
    except PhotoNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found") from e
    except SourceUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e

    record_delivery(endpoint, delivery.tier)
    events.emit("photo_served", photo_id=photo_id, endpoint=endpoint, size=size.token if size else "original", tier=delivery.tier)
    return _to_response(delivery)


def _to_response(delivery: Delivery) -> Response:
    headers = {"Cache-Control": delivery.cache_control}
    if isinstance(delivery, FileDelivery):
        return FileResponse(delivery.path, media_type=delivery.content_type, headers=headers)
    if isinstance(delivery, BytesDelivery):
        return Response(content=delivery.data, media_type=delivery.content_type, headers=headers)
    return RedirectResponse(delivery.url, status_code=status.HTTP_302_FOUND, headers=headers)
