import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

import cv2
import numpy as np

from src.core.constants import CARD_NAME, EFFECT_TEXT

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights (R, G, B)
LUMA_WEIGHTS = (0.299, 0.587, 0.114)

@dataclass(frozen=True)
class PreprocessProfile:
    """
    Fixed, ordered filter chain applied to one extracted region.
    Each step is (filter name, keyword arguments); see FILTERS for the names.
    """
    name: str
    steps: Tuple[Tuple[str, Mapping[str, float]], ...]

TITLE_PROFILE = PreprocessProfile(
    name="title",
    steps=(
        ("contrast", {"factor": 1.8}),
        ("unsharp", {"amount": 2.0, "radius": 1.0}),
        ("threshold", {"offset": 20, "low": 100, "high": 180}),
        ("close", {"kernel": 1}),
    ),
)

BODY_PROFILE = PreprocessProfile(
    name="body",
    steps=(
        ("contrast", {"factor": 2.2}),
        ("blur", {"radius": 0.5}),
        ("threshold", {"offset": 10, "low": 90, "high": 160}),
        ("close", {"kernel": 1}),
        ("unsharp", {"amount": 1.5, "radius": 0.5}),
    ),
)

DEFAULT_PROFILES: Dict[str, PreprocessProfile] = {
    CARD_NAME: TITLE_PROFILE,
    EFFECT_TEXT: BODY_PROFILE,
}

# --- Filters ---
# All filters take and return float32 luminance clipped to the 0..255 byte range,
# so every step sees the same values an 8-bit raster would hold.

def _to_byte_range(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.float32)

def to_luminance(image: np.ndarray) -> np.ndarray:
    """0.299R + 0.587G + 0.114B of a BGR(A) image, or the image itself if already single channel."""
    if image.ndim == 2:
        return image.astype(np.float32)
    b = image[..., 0].astype(np.float32)
    g = image[..., 1].astype(np.float32)
    r = image[..., 2].astype(np.float32)
    wr, wg, wb = LUMA_WEIGHTS
    return _to_byte_range(wr * r + wg * g + wb * b)

def adjust_contrast(gray: np.ndarray, factor: float) -> np.ndarray:
    return _to_byte_range((gray - 128.0) * factor + 128.0)

def gaussian_blur(gray: np.ndarray, radius: float) -> np.ndarray:
    blurred = cv2.GaussianBlur(gray, (0, 0), sigmaX=radius, sigmaY=radius, borderType=cv2.BORDER_REPLICATE)
    return _to_byte_range(blurred)

def unsharp_mask(gray: np.ndarray, amount: float, radius: float) -> np.ndarray:
    blurred = cv2.GaussianBlur(gray, (0, 0), sigmaX=radius, sigmaY=radius, borderType=cv2.BORDER_REPLICATE)
    return _to_byte_range(gray + amount * (gray - blurred))

def mean_brightness(gray: np.ndarray) -> float:
    if gray.size == 0:
        return 0.0
    return float(np.mean(gray, dtype=np.float64))

def adaptive_threshold_level(gray: np.ndarray, offset: float, low: float, high: float) -> float:
    """clamp(average brightness + offset, low, high)"""
    return float(min(max(mean_brightness(gray) + offset, low), high))

def brightness_threshold(gray: np.ndarray, offset: float, low: float, high: float) -> np.ndarray:
    """
    Binarizes against a level derived from the region's own average brightness.
    The average is sampled here, on the values produced by the preceding filters.
    Pixels strictly brighter than the level become white.
    """
    level = adaptive_threshold_level(gray, offset, low, high)
    return np.where(gray > level, 255.0, 0.0).astype(np.float32)

def morphological_close(gray: np.ndarray, kernel: int) -> np.ndarray:
    """Closing with a square structuring element of side 2*kernel+1."""
    size = 2 * int(kernel) + 1
    element = np.ones((size, size), np.uint8)
    closed = cv2.morphologyEx(gray, cv2.MORPH_CLOSE, element, borderType=cv2.BORDER_REPLICATE)
    return _to_byte_range(closed)

def upscale_nearest(image: np.ndarray, factor: int = 2) -> np.ndarray:
    h, w = image.shape[:2]
    return cv2.resize(image, (w * factor, h * factor), interpolation=cv2.INTER_NEAREST)

FILTERS = {
    "contrast": adjust_contrast,
    "blur": gaussian_blur,
    "unsharp": unsharp_mask,
    "threshold": brightness_threshold,
    "close": morphological_close,
}

def apply_profile(image: np.ndarray, profile: PreprocessProfile, upscale: bool = False) -> np.ndarray:
    """
    Runs the profile over an extracted region.
    The result has the dimensions of the input (doubled when upscale is set),
    the processed luminance in every colour channel and the original alpha.
    """
    if image.size == 0:
        raise ValueError("Cannot preprocess an empty region")

    if upscale:
        image = upscale_nearest(image, 2)

    gray = to_luminance(image)
    for name, params in profile.steps:
        gray = FILTERS[name](gray, **params)

    processed = gray.astype(np.uint8)
    if image.ndim == 2:
        return processed

    out = image.copy()
    channels = min(out.shape[2], 3)
    for c in range(channels):
        out[..., c] = processed
    return out

class RegionPreprocessor:
    """Selects the filter profile for a region type and applies it."""

    def __init__(self, profiles: Optional[Dict[str, PreprocessProfile]] = None, upscale: bool = False):
        self.profiles = dict(profiles or DEFAULT_PROFILES)
        self.upscale = upscale

    def profile_for(self, region_type: str) -> PreprocessProfile:
        try:
            return self.profiles[region_type]
        except KeyError:
            raise ValueError(f"No preprocessing profile for region type '{region_type}'") from None

    def process(self, image: np.ndarray, region_type: str) -> np.ndarray:
        profile = self.profile_for(region_type)
        logger.debug(f"Preprocessing {region_type} region {image.shape[1]}x{image.shape[0]} with '{profile.name}' profile")
        return apply_profile(image, profile, upscale=self.upscale)
