import logging
from typing import Tuple

import cv2
import numpy as np

from src.core.constants import NORMALIZED_WIDTH
from src.core.exceptions import ImageDecodeError, InvalidRegion
from src.core.models import Region

logger = logging.getLogger(__name__)

def decode_image(data: bytes) -> np.ndarray:
    """Decodes encoded image bytes (JPEG/PNG/WebP) into a BGR or BGRA array."""
    if not data:
        raise ImageDecodeError("Empty image data")
    nparr = np.frombuffer(data, np.uint8)
    img = cv2.imdecode(nparr, cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ImageDecodeError("Cannot decode image data")
    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    return img

def normalize_width(image: np.ndarray, target_width: int = NORMALIZED_WIDTH) -> Tuple[np.ndarray, float]:
    """
    Resizes the image to the width the region coordinates are calibrated for.
    Returns the resized image and the applied scale factor.
    """
    h, w = image.shape[:2]
    if w == target_width:
        return image, 1.0

    scale = target_width / float(w)
    new_h = max(1, int(round(h * scale)))
    interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    resized = cv2.resize(image, (target_width, new_h), interpolation=interpolation)
    return resized, scale

def extract_region(image: np.ndarray, region: Region) -> np.ndarray:
    """
    Crops exactly the pixels inside region, same channel count as the source.
    The region is clamped to the image bounds; a crop without area raises InvalidRegion.
    """
    h, w = image.shape[:2]
    clamped = region.clamp(w, h)
    if clamped.width <= 0 or clamped.height <= 0:
        raise InvalidRegion(
            f"Region {region.model_dump()} has no area inside a {w}x{h} image"
        )
    if clamped != region:
        logger.debug(f"Region {region.model_dump()} clamped to {clamped.model_dump()}")

    x, y = clamped.left, clamped.top
    return image[y:y + clamped.height, x:x + clamped.width].copy()

def encode_jpeg(image: np.ndarray, quality: int = 80) -> bytes:
    if image.ndim == 3 and image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ImageDecodeError("JPEG encoding failed")
    return buf.tobytes()
