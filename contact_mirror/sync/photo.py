"""
Photo processing for mirrored contacts.

The local store keeps one photo per contact as a blob row. Remote photos
come in any format and size, so they are re-encoded as a JPEG bounded in
pixel dimensions and byte size before they are stored.
"""

import io
import logging
from collections.abc import Callable

from PIL import Image

# Photo processing configuration
MAX_PHOTO_SIZE = 1024 * 1024  # 1MB - local store row limit
MAX_PHOTO_DIMENSION = 720  # pixels - display photo size
JPEG_QUALITY = 85
MIN_JPEG_QUALITY = 20
QUALITY_STEP = 5

logger = logging.getLogger(__name__)


class PhotoError(Exception):
    """Raised when a photo operation fails."""

    pass


def _open_image(photo_data: bytes) -> Image.Image:
    """Decode photo bytes, forcing Pillow to read the whole image."""
    try:
        image = Image.open(io.BytesIO(photo_data))
        image.load()
    except Image.UnidentifiedImageError as e:
        raise PhotoError("Invalid or unsupported image format") from e
    except Image.DecompressionBombError as e:
        raise PhotoError(f"Photo too large to decode: {e}") from e
    except (OSError, ValueError) as e:
        raise PhotoError(f"Failed to decode photo: {e}") from e
    return image


def _flatten(image: Image.Image) -> Image.Image:
    """Convert to a JPEG-compatible mode; transparency becomes white."""
    if image.mode in ("RGB", "L"):
        return image
    if image.mode == "RGBA":
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.getchannel("A"))
        return background
    return image.convert("RGB")


def _fit_within(image: Image.Image, max_dimension: int) -> Image.Image:
    """Scale the longer side down to max_dimension, keeping aspect ratio."""
    width, height = image.size
    longest = max(width, height)
    if longest <= max_dimension:
        return image
    scale = max_dimension / longest
    size = (max(1, int(width * scale)), max(1, int(height * scale)))
    logger.debug(f"Resizing photo from {width}x{height} to {size[0]}x{size[1]}")
    return image.resize(size, Image.Resampling.LANCZOS)


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


def process_photo(
    photo_data: bytes,
    max_size: int = MAX_PHOTO_SIZE,
    max_dimension: int = MAX_PHOTO_DIMENSION,
) -> bytes:
    """
    Re-encode a photo as a JPEG within the given bounds.

    Quality is lowered step by step until the encoded photo fits max_size.

    Args:
        photo_data: Raw photo bytes in any format Pillow can read
        max_size: Maximum encoded size in bytes (default: 1MB)
        max_dimension: Maximum width/height in pixels (default: 720)

    Returns:
        JPEG bytes

    Raises:
        PhotoError: If the photo cannot be decoded or made small enough
    """
    if not photo_data:
        raise PhotoError("Photo data cannot be empty")

    image = _fit_within(_flatten(_open_image(photo_data)), max_dimension)

    quality = JPEG_QUALITY
    encoded = _encode_jpeg(image, quality)
    while len(encoded) > max_size and quality > MIN_JPEG_QUALITY:
        quality -= QUALITY_STEP
        encoded = _encode_jpeg(image, quality)

    if len(encoded) > max_size:
        raise PhotoError(
            f"Unable to reduce photo size below {max_size} bytes "
            f"(current: {len(encoded)} bytes)"
        )

    logger.debug(
        f"Processed photo: {len(photo_data)} -> {len(encoded)} bytes "
        f"at quality {quality}"
    )
    return encoded


def make_photo_processor(
    max_dimension: int = MAX_PHOTO_DIMENSION, max_size: int = MAX_PHOTO_SIZE
) -> Callable[[bytes], bytes]:
    """
    Build a photo processor bound to the given limits.

    Returns:
        Callable taking raw photo bytes and returning processed JPEG bytes
    """

    def processor(photo_data: bytes) -> bytes:
        return process_photo(photo_data, max_size=max_size, max_dimension=max_dimension)

    return processor
