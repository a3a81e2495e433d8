"""Image codec — validation, client-side compression and storage-safe naming.

Uploads are recompressed to a bounded JPEG before they leave the process so the
bucket only ever holds small, uniformly encoded objects.
"""

from __future__ import annotations

import mimetypes
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from prompt_vault.core.errors import DecodeError, EncodeError, InvalidTypeError, TooLargeError

logger = structlog.get_logger()

DEFAULT_MAX_BYTES = 8 * 1024 * 1024
DEFAULT_MAX_DIMENSION = 512
DEFAULT_QUALITY = 0.6
ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})
OUTPUT_CONTENT_TYPE = "image/jpeg"

MAX_NAME_LENGTH = 100
_UNSAFE_RUN = re.compile(r"[^a-z0-9._-]+")


@dataclass(frozen=True)
class ImageUpload:
    """A raw image as received from the user, before compression."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: str | Path) -> ImageUpload:
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            filename=path.name,
            content_type=content_type or "application/octet-stream",
            data=path.read_bytes(),
        )


def validate(
    upload: ImageUpload,
    max_bytes: int = DEFAULT_MAX_BYTES,
    allowed_mime_types: frozenset[str] = ALLOWED_MIME_TYPES,
) -> None:
    """Reject uploads with a disallowed MIME type or an oversized payload."""
    if upload.content_type not in allowed_mime_types:
        raise InvalidTypeError(upload.content_type, allowed_mime_types)
    if upload.size > max_bytes:
        raise TooLargeError(upload.size, max_bytes)


def _jpeg_quality(quality: float) -> int:
    # Pillow recommends staying at or below 95
    return max(1, min(95, round(quality * 100)))


def _scaled_size(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    longer = max(width, height)
    if longer <= max_dimension:
        return width, height
    scale = max_dimension / longer
    return max(1, round(width * scale)), max(1, round(height * scale))


def _flatten(image: Image.Image) -> Image.Image:
    """Drop alpha onto a white background; JPEG has no transparency."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def compress(
    data: bytes,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
    quality: float = DEFAULT_QUALITY,
) -> bytes:
    """Decode ``data``, bound its longer side to ``max_dimension`` and re-encode as JPEG.

    Aspect ratio is preserved and images are never upscaled. ``quality`` is in
    the 0..1 range.

    Raises:
        DecodeError: the bytes are not a readable image.
        EncodeError: JPEG encoding failed or produced no output.
    """
    try:
        source = Image.open(BytesIO(data))
        source.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Could not read image: {e}") from e

    image = _flatten(ImageOps.exif_transpose(source))
    size = _scaled_size(image.width, image.height, max_dimension)
    if size != image.size:
        image = image.resize(size, Image.Resampling.LANCZOS)

    out = BytesIO()
    try:
        image.save(out, format="JPEG", quality=_jpeg_quality(quality), optimize=True)
    except (OSError, ValueError) as e:
        raise EncodeError(f"Could not encode JPEG: {e}") from e

    encoded = out.getvalue()
    if not encoded:
        raise EncodeError("JPEG encoder produced no output")

    logger.debug(
        "imaging.compressed",
        source_bytes=len(data),
        output_bytes=len(encoded),
        width=size[0],
        height=size[1],
    )
    return encoded


def sanitize_name(name: str) -> str:
    """Turn a user file name into a storage-safe key fragment.

    >>> sanitize_name("My Photo!!.PNG")
    'my-photo'
    """
    stem, _ = os.path.splitext(name)
    cleaned = _UNSAFE_RUN.sub("-", stem.lower()).strip("-")
    return cleaned[:MAX_NAME_LENGTH]


def build_storage_path(owner: str, filename: str, now: datetime | None = None) -> str:
    """Build ``{owner}/{timestamp_ms}-{name}.jpg`` for a compressed upload."""
    now = now or datetime.now(timezone.utc)
    stamp = int(now.timestamp() * 1000)
    name = sanitize_name(filename) or "image"
    return f"{owner}/{stamp}-{name}.jpg"
