"""
images.py — Seed icon loading and generated icon saving (Pillow).
"""

from __future__ import annotations

import base64
import binascii
import io
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .errors import InputValidationError
from .models import ImagePayload
from .validators import ALLOWED_IMAGE_TYPES, MAX_IMAGE_SIZE_BYTES

PIL_FORMAT_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

MIME_EXTENSION = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def sniff_mime_type(raw: bytes) -> Optional[str]:
    """Mime type Pillow detects for raw bytes, or None if unreadable / not allowed."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        return None
    mime = PIL_FORMAT_MIME.get(fmt or "")
    return mime if mime in ALLOWED_IMAGE_TYPES else None


def payload_from_bytes(raw: bytes) -> ImagePayload:
    """Base64 payload for raw image bytes; the mime type is what Pillow detects."""
    if len(raw) > MAX_IMAGE_SIZE_BYTES:
        raise InputValidationError(
            f"Image too large ({len(raw) // 1024} KB). Maximum {MAX_IMAGE_SIZE_BYTES // (1024 * 1024)}MB allowed."
        )
    mime_type = sniff_mime_type(raw)
    if mime_type is None:
        raise InputValidationError("Unsupported or unreadable image (allowed: png, jpeg, webp, gif)")
    return ImagePayload(data=base64.b64encode(raw).decode("ascii"), mime_type=mime_type)


def load_image_payload(path: Path) -> ImagePayload:
    path = Path(path)
    if not path.exists():
        raise InputValidationError(f"Image not found: {path}")
    return payload_from_bytes(path.read_bytes())


def payload_bytes(payload: ImagePayload) -> bytes:
    try:
        return base64.b64decode(payload.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InputValidationError("Image data is not valid base64", cause=e) from e


def save_image_payload(payload: ImagePayload, path: Path) -> Path:
    """Write the decoded image; the suffix follows the payload's mime type."""
    path = Path(path).with_suffix(MIME_EXTENSION.get(payload.mime_type, ".png"))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload_bytes(payload))
    return path
