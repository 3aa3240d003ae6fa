"""Image payload helpers used when a capture result comes back.

Results may carry already-encoded image bytes (passed through after a decode
check) or an in-memory bitmap (a Pillow image or a numpy array) that still
needs to be compressed to JPEG before it is handed to the runtime.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from collections.abc import Mapping
from typing import Optional

import numpy as np
from PIL import Image

from .outcomes import BridgeError

LOG = logging.getLogger(__name__)

JPEG_QUALITY = 80

# Key under which the capture activity stores its thumbnail bitmap.
RESULT_DATA_KEY = "data"


class ImageDecodeError(BridgeError):
    """Raised when a payload is present but is not a usable image."""


def extract_image(payload: object) -> Optional[object]:
    """Return the image carried by *payload*, or ``None`` if there is none.

    *payload* is either the image itself or a result mapping holding it under
    :data:`RESULT_DATA_KEY`.
    """

    if payload is None:
        return None
    if isinstance(payload, Mapping):
        payload = payload.get(RESULT_DATA_KEY)
        if payload is None:
            return None
    if isinstance(payload, (bytes, bytearray, memoryview)) and len(payload) == 0:
        return None
    if isinstance(payload, np.ndarray) and payload.size == 0:
        return None
    return payload


def verify_image_bytes(data: bytes) -> bytes:
    """Fully decode *data* with Pillow and return it unchanged."""

    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
    except (OSError, SyntaxError, ValueError) as exc:
        raise ImageDecodeError(f"Malformed image payload: {exc}") from exc
    return data


def encode_jpeg(image: object, quality: int = JPEG_QUALITY) -> bytes:
    """Compress a Pillow image or numpy array to JPEG bytes."""

    if isinstance(image, np.ndarray):
        image = _array_to_image(image)
    if not isinstance(image, Image.Image):
        raise ImageDecodeError(f"Unsupported image payload type {type(image).__name__}")

    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    try:
        image.save(buffer, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise ImageDecodeError(f"JPEG encoding failed: {exc}") from exc
    return buffer.getvalue()


def to_image_bytes(image: object, quality: int = JPEG_QUALITY) -> bytes:
    """Return encoded bytes for *image*, verifying or encoding as needed."""

    if isinstance(image, (bytes, bytearray, memoryview)):
        return verify_image_bytes(bytes(image))
    encoded = encode_jpeg(image, quality)
    LOG.debug("Encoded bitmap to %d JPEG bytes (quality=%d)", len(encoded), quality)
    return encoded


def _array_to_image(array: np.ndarray) -> Image.Image:
    if array.ndim not in (2, 3) or (array.ndim == 3 and array.shape[2] not in (1, 3, 4)):
        raise ImageDecodeError(f"Unsupported bitmap shape {array.shape}")
    if array.ndim == 3 and array.shape[2] == 1:
        array = array[:, :, 0]
    if array.dtype != np.uint8:
        if np.issubdtype(array.dtype, np.floating):
            array = np.clip(array * 255.0, 0, 255)
        else:
            array = np.clip(array, 0, 255)
        array = array.astype(np.uint8)
    return Image.fromarray(np.ascontiguousarray(array))


def bytes_to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def image_to_base64(image: object, quality: int = JPEG_QUALITY) -> str:
    """JPEG-encode *image* and return it as unwrapped base64 text."""

    return bytes_to_base64(encode_jpeg(image, quality))


def base64_to_bytes(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError(f"Invalid base64 payload: {exc}") from exc


__all__ = [
    "ImageDecodeError",
    "JPEG_QUALITY",
    "RESULT_DATA_KEY",
    "base64_to_bytes",
    "bytes_to_base64",
    "encode_jpeg",
    "extract_image",
    "image_to_base64",
    "to_image_bytes",
    "verify_image_bytes",
]
