"""
Image utilities for decoding uploaded images and video frames.
"""
import base64
import cv2
import numpy as np
from typing import Tuple, Union

from .config import MAX_IMAGE_SIZE, MAX_UPLOAD_BYTES
from .exceptions import ImageProcessingError


def load_image(source: Union[str, bytes]) -> np.ndarray:
    """
    Decode an image from raw bytes or a base64 string.

    Args:
        source: Raw encoded image bytes (JPEG/PNG/...) or base64 text

    Returns:
        numpy array of the image in BGR format, downscaled to MAX_IMAGE_SIZE

    Raises:
        ImageProcessingError: If the image cannot be decoded
    """
    if isinstance(source, str):
        try:
            source = base64.b64decode(source, validate=True)
        except ValueError:
            raise ImageProcessingError("Invalid base64 image data")

    if not isinstance(source, (bytes, bytearray)):
        raise ImageProcessingError(f"Unsupported image source type: {type(source).__name__}")

    if len(source) == 0:
        raise ImageProcessingError("Empty image buffer")

    if len(source) > MAX_UPLOAD_BYTES:
        raise ImageProcessingError(
            "Image exceeds maximum upload size",
            details={"size_bytes": len(source), "max_bytes": MAX_UPLOAD_BYTES}
        )

    return resize_image(_bytes_to_image(bytes(source)))


def _bytes_to_image(img_bytes: bytes) -> np.ndarray:
    """Convert bytes to OpenCV image."""
    nparr = np.frombuffer(img_bytes, np.uint8)
    img = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if img is None:
        raise ImageProcessingError("Could not decode image from bytes")
    return img


def resize_image(
    image: np.ndarray,
    max_size: Tuple[int, int] = MAX_IMAGE_SIZE
) -> np.ndarray:
    """
    Resize image if it exceeds maximum dimensions.

    Args:
        image: Input image
        max_size: Maximum (width, height)

    Returns:
        Resized image (or original if within limits)
    """
    h, w = image.shape[:2]
    max_w, max_h = max_size

    if w <= max_w and h <= max_h:
        return image

    # Calculate scaling factor
    scale = min(max_w / w, max_h / h)
    new_w, new_h = int(w * scale), int(h * scale)

    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)
