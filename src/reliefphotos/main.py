import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reliefphotos.api.photo import router as photo_router
from reliefphotos.config import get_photo_settings
from reliefphotos.dependencies import get_s3_client, set_s3_client_instance
from reliefphotos.metrics import setup_metrics
from reliefphotos.s3_service import AsyncS3Client, get_s3_settings

# Configure logging early: uvicorn imports this module when starting the app
from .logging_config import configure_logging

configure_logging()

logger = logging.getLogger(__name__)


def build_s3_client() -> AsyncS3Client | None:
    """Object store client from the environment, or None when no bucket is configured."""
    s3_settings = get_s3_settings()
    if not s3_settings.enabled:
        logger.warning("S3_BUCKET is not set: uploads are disabled and photos are served from the local cache only")
        return None
    photo_settings = get_photo_settings()
    return AsyncS3Client(
        s3_settings,
        max_bytes=photo_settings.max_upload_bytes,
        upload_timeout=photo_settings.upload_timeout_seconds,
        fetch_timeout=photo_settings.fetch_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle: startup and shutdown.

    This context manager initializes the S3 client on startup and cleans up
    resources on shutdown.
    """
    # Startup
    logger.info("Starting up application...")
    try:
        set_s3_client_instance(build_s3_client())
    except Exception as e:
        logger.error(f"Failed to initialize S3 client: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down application...")
    s3_client = get_s3_client()
    if s3_client is not None:
        try:
            await s3_client.close()
            logger.info("S3 client closed successfully")
        except Exception as e:
            logger.error(f"Error during S3 client shutdown: {e}")
    set_s3_client_instance(None)


app = FastAPI(title="reliefphotos", redoc_url=None, redirect_slashes=False, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "invalid request") if errors else "invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


app.include_router(photo_router)

setup_metrics(app)


@app.get("/healthz", include_in_schema=False)
def healthz():
    return {"status": "ok", "object_store": get_s3_client() is not None}
