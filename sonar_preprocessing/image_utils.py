#!/usr/bin/env python3
"""Raster helpers shared by the filters and the preprocessing pipeline."""

from typing import Optional, Tuple

import cv2
import numpy as np

Rect = Tuple[int, int, int, int]  # x, y, width, height


# ==============================================================================
# ARGUMENT CHECKS
# ==============================================================================

def check_float_image(src: np.ndarray, name: str = 'src') -> np.ndarray:
    """Require a non-empty single channel float32 raster."""
    if not isinstance(src, np.ndarray) or src.ndim != 2 or src.size == 0:
        raise ValueError(f"{name} must be a non-empty 2D array")
    if src.dtype != np.float32:
        raise ValueError(f"{name} must be float32, got {src.dtype}")
    return src


def check_mask(mask: Optional[np.ndarray], shape: Tuple[int, int], name: str = 'mask') -> Optional[np.ndarray]:
    """Return a boolean validity mask, or None when no mask is given."""
    if mask is None:
        return None
    mask = np.asarray(mask)
    if mask.shape != tuple(shape):
        raise ValueError(f"{name} shape {mask.shape} does not match image shape {tuple(shape)}")
    return mask != 0


def to_mask_u8(mask: np.ndarray) -> np.ndarray:
    """0/255 uint8 mask from any truthy array."""
    return np.where(np.asarray(mask) != 0, 255, 0).astype(np.uint8)


# ==============================================================================
# INTEGRAL IMAGES
# ==============================================================================

def integral_image(src: np.ndarray) -> np.ndarray:
    """Summed-area table with a leading zero row and column (float64)."""
    return cv2.integral(np.ascontiguousarray(src), sdepth=cv2.CV_64F)


def integral_image_sum(integral: np.ndarray, x1: int, y1: int, x2: int, y2: int) -> float:
    """Sum of the source pixels in the inclusive box (x1, y1)-(x2, y2)."""
    return float(
        integral[y2 + 1, x2 + 1] - integral[y1, x2 + 1]
        - integral[y2 + 1, x1] + integral[y1, x1]
    )


def integral_rect_sum(integral: np.ndarray, rect: Rect) -> float:
    x, y, w, h = rect
    return integral_image_sum(integral, x, y, x + w - 1, y + h - 1)


def box_sum_map(integral: np.ndarray, ksize: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Window sums and window areas for every pixel at once.

    The (2*ksize+1)-square window is clipped at the image borders, so border
    pixels average over fewer samples rather than padded ones.

    Returns:
        Tuple of (sums, areas), both (h, w) float64
    """
    h = integral.shape[0] - 1
    w = integral.shape[1] - 1
    xs = np.arange(w)
    ys = np.arange(h)

    x1 = np.maximum(xs - ksize, 0)[None, :]
    x2 = (np.minimum(xs + ksize, w - 1) + 1)[None, :]
    y1 = np.maximum(ys - ksize, 0)[:, None]
    y2 = (np.minimum(ys + ksize, h - 1) + 1)[:, None]

    sums = integral[y2, x2] - integral[y1, x2] - integral[y2, x1] + integral[y1, x1]
    areas = ((y2 - y1) * (x2 - x1)).astype(np.float64)
    return sums, areas


# ==============================================================================
# COLOR
# ==============================================================================

def rgb2lab(rgb: np.ndarray) -> np.ndarray:
    """RGB (uint8 or float in [0,1]) to float32 L*a*b*."""
    if rgb.dtype == np.uint8:
        rgb = rgb.astype(np.float32) / 255.0
    return cv2.cvtColor(rgb.astype(np.float32), cv2.COLOR_RGB2Lab)


def split_channels(image: np.ndarray) -> Tuple[np.ndarray, ...]:
    return tuple(np.ascontiguousarray(c) for c in cv2.split(image))


# ==============================================================================
# MASKS AND NORMALIZATION
# ==============================================================================

def erode(mask: np.ndarray, ksize: Tuple[int, int], iterations: int = 1) -> np.ndarray:
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, ksize)
    return cv2.erode(mask, kernel, iterations=iterations)


def apply_mask(src: np.ndarray, mask: np.ndarray) -> np.ndarray:
    return np.where(mask != 0, src, 0).astype(src.dtype)


def normalize_masked(src: np.ndarray, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Min-max normalize to [0,1] using only mask-valid pixels.

    Pixels outside the mask are 0. A constant (or empty) valid region maps to 0.
    """
    src = src.astype(np.float32)
    valid = np.ones(src.shape, dtype=bool) if mask is None else (mask != 0)
    dst = np.zeros(src.shape, dtype=np.float32)
    if not np.any(valid):
        return dst

    lo = float(src[valid].min())
    hi = float(src[valid].max())
    if hi > lo:
        dst[valid] = (src[valid] - lo) / (hi - lo)
    return dst


def to_uint8(frame01: np.ndarray) -> np.ndarray:
    """Convert a [0,1] float raster to uint8, handling NaN values."""
    safe = np.nan_to_num(frame01, nan=0.0, posinf=1.0, neginf=0.0)
    return np.clip(np.rint(safe * 255.0), 0, 255).astype(np.uint8)


def from_uint8(frame_u8: np.ndarray) -> np.ndarray:
    return frame_u8.astype(np.float32) / 255.0


def accumulative_sum(values: np.ndarray) -> np.ndarray:
    return np.cumsum(np.asarray(values, dtype=np.float64))
