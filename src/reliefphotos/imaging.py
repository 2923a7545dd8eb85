import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_DECODE_BYTES = 32 * 1024 * 1024  # 32 MiB
JPEG_QUALITY = 75

# Nudges the affine sample point off exact integer boundaries so float error
# never floors x*sw/dw down by one. Well below 1/4096, the finest step possible.
_SAMPLE_EPSILON = 1e-6


class DecodeError(Exception):
    """The source could not be decoded as a supported raster image."""


class SourceTooLargeError(DecodeError):
    """The source exceeds MAX_DECODE_BYTES and was rejected before decoding."""


@dataclass(frozen=True)
class TranscodeResult:
    data: bytes
    content_type: str
    width: int
    height: int
    resized: bool


def proportional_height(native_width: int, native_height: int, target_width: int) -> int:
    """Height preserving aspect ratio at ``target_width``, never below 1.

    Halves round away from zero.
    """
    return max(1, int(native_height * target_width / native_width + 0.5))


def resize_nearest(img: Image.Image, width: int, height: int) -> Image.Image:
    """Nearest-neighbour resample mapping dst (x, y) to src (floor(x*sw/dw), floor(y*sh/dh)).

    Pillow samples at pixel centres, i.e. at a*(x + 0.5) + c, so the offset c
    cancels the half-pixel shift.
    """
    sx = img.width / width
    sy = img.height / height
    matrix = (sx, 0.0, -0.5 * sx + _SAMPLE_EPSILON, 0.0, sy, -0.5 * sy + _SAMPLE_EPSILON)
    return img.transform((width, height), Image.Transform.AFFINE, matrix, resample=Image.Resampling.NEAREST)


def _decode(source: bytes) -> Image.Image:
    if len(source) > MAX_DECODE_BYTES:
        raise SourceTooLargeError(f"source is {len(source)} bytes, limit is {MAX_DECODE_BYTES}")
    try:
        img = Image.open(io.BytesIO(source))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise DecodeError(str(e) or type(e).__name__) from e
    return img


def transcode(source: bytes, source_format: str, target_width: int) -> TranscodeResult:
    """Produce a thumbnail of ``source`` at most ``target_width`` pixels wide.

    Sources already at or below the target width are returned unchanged (no
    upscaling). Otherwise the image is resampled and re-encoded: PNG sources
    stay PNG, everything else becomes JPEG.

    CPU-bound; run it in a thread pool from async code.

    Args:
        source: Encoded source image
        source_format: Declared MIME type of the source, used for the unchanged case
        target_width: Requested width in pixels (>= 1)

    Raises:
        SourceTooLargeError: If the source exceeds MAX_DECODE_BYTES
        DecodeError: If the source is not a decodable image
    """
    if target_width < 1:
        raise ValueError("target_width must be positive")

    with _decode(source) as img:
        decoded_format = img.format
        # Stored pixel dimensions; EXIF orientation is not applied
        native_width, native_height = img.size

        if native_width <= target_width:
            content_type = source_format or Image.MIME.get(decoded_format or "", "application/octet-stream")
            return TranscodeResult(source, content_type, native_width, native_height, resized=False)

        height = proportional_height(native_width, native_height, target_width)
        out = io.BytesIO()
        if decoded_format == "PNG":
            resized = resize_nearest(img.convert("RGBA"), target_width, height)
            resized.save(out, format="PNG")
            content_type = "image/png"
        else:
            resized = resize_nearest(img.convert("RGB"), target_width, height)
            resized.save(out, format="JPEG", quality=JPEG_QUALITY)
            content_type = "image/jpeg"

    logger.debug("Transcoded %dx%d %s -> %dx%d %s", native_width, native_height, decoded_format, target_width, height, content_type)
    return TranscodeResult(out.getvalue(), content_type, target_width, height, resized=True)
