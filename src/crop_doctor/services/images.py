"""Image ingestion: normalize uploads into a bounded-size data URL."""

import asyncio
import base64
import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps

from crop_doctor.domain.errors import ValidationError

logger = logging.getLogger(__name__)

TARGET_WIDTH = 400
JPEG_QUALITY = 80


@dataclass
class ImageIngestor:
    """Resizes uploads to a fixed width and re-encodes them as JPEG."""

    target_width: int = TARGET_WIDTH
    quality: int = JPEG_QUALITY

    async def ingest(self, image_bytes: bytes, content_type: str | None) -> str:
        """Return a data URL for the upload, falling back to the original bytes."""
        if not image_bytes:
            raise ValidationError("An image is required")
        if content_type and not content_type.startswith("image/"):
            raise ValidationError(f"Unsupported upload type: {content_type}")
        return await asyncio.to_thread(self.normalize, image_bytes)

    def normalize(self, image_bytes: bytes) -> str:
        """Resize synchronously. Never raises on undecodable input."""
        try:
            resized = _resize_to_width(image_bytes, self.target_width, self.quality)
        except (OSError, ValueError, Image.DecompressionBombError):
            logger.warning("Image resizing failed, keeping original encoding")
            return to_data_url(image_bytes)
        return to_data_url(resized, mime_type="image/jpeg")


def _resize_to_width(image_bytes: bytes, width: int, quality: int) -> bytes:
    with Image.open(io.BytesIO(image_bytes)) as source:
        image = ImageOps.exif_transpose(source).convert("RGB")
    scale = width / image.width
    height = max(1, round(image.height * scale))
    resized = image.resize((width, height), Image.LANCZOS)
    buffer = io.BytesIO()
    resized.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def to_data_url(image_bytes: bytes, mime_type: str | None = None) -> str:
    """Convert bytes to a base64 data URL for image input."""
    resolved = mime_type or detect_mime_type(image_bytes)
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{resolved};base64,{encoded}"


def detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    if image_bytes[:6] in {b"GIF87a", b"GIF89a"}:
        return "image/gif"
    return "image/jpeg"
