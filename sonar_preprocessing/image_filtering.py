#!/usr/bin/env python3
"""Spatial filters for cartesian sonar rasters.

Every filter takes a float32 raster (values conventionally in [0,1]) and an
optional mask where 0 marks invalid pixels. Local statistics are taken over
mask-valid pixels only and masked-out output pixels are 0 unless a filter
states otherwise. Window sums come from integral images, so a window query
costs O(1) regardless of its size.
"""

import logging
from enum import IntEnum
from typing import Optional

import cv2
import numpy as np

from .image_utils import (
    box_sum_map,
    check_float_image,
    check_mask,
    integral_image,
    integral_rect_sum,
    rgb2lab,
    split_channels,
)
from .numba_kernels import masked_filter2d_numba

logger = logging.getLogger(__name__)

SALIENCY_SCALES = 3


def _safe_divide(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    """num / den with 0 wherever den is 0."""
    out = np.zeros(np.broadcast(num, den).shape, dtype=np.float64)
    np.divide(num, den, out=out, where=den > 0)
    return out


def _window_means(src: np.ndarray, ksize: int, valid: Optional[np.ndarray]) -> np.ndarray:
    """Clipped-window means, counting only valid pixels when a mask is given."""
    if valid is None:
        sums, areas = box_sum_map(integral_image(src), ksize)
        return _safe_divide(sums, areas)

    weights = valid.astype(np.float32)
    sums, _ = box_sum_map(integral_image(src * weights), ksize)
    counts, _ = box_sum_map(integral_image(weights), ksize)
    return _safe_divide(sums, counts)


def _saliency_scales(width: int, height: int):
    minimum_dimension = min(width, height)
    return [minimum_dimension // (1 << (k + 1)) for k in range(SALIENCY_SCALES)]


# ==============================================================================
# SALIENCY
# ==============================================================================

def saliency_gray(src: np.ndarray, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Multi-scale local contrast of a gray raster.

    For scales N_k = min(w, h) / 2^(k+1), k = 0..2, each pixel accumulates
    (pixel - mean of its (2*N_k+1)-square window)^2. Windows are clipped at
    the borders. A uniform raster has zero saliency everywhere.
    """
    check_float_image(src)
    valid = check_mask(mask, src.shape)

    height, width = src.shape
    saliency = np.zeros(src.shape, dtype=np.float64)
    for n in _saliency_scales(width, height):
        diff = src - _window_means(src, n, valid)
        saliency += diff * diff

    saliency = saliency.astype(np.float32)
    if valid is not None:
        saliency[~valid] = 0
    return saliency


def saliency_color(src: np.ndarray, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Multi-scale saliency summed over the L*a*b* channels of a BGR image.

    A scale is skipped for a pixel when either extreme corner of its window
    falls on a masked-out pixel.
    """
    if src.ndim != 3 or src.shape[2] != 3 or src.size == 0:
        raise ValueError("saliency_color expects a non-empty 3 channel BGR image")

    height, width = src.shape[:2]
    valid = check_mask(mask, (height, width))

    if src.dtype != np.uint8:
        src = src.astype(np.float32)
    rgb = cv2.cvtColor(src, cv2.COLOR_BGR2RGB)
    channels = split_channels(rgb2lab(rgb))
    integrals = [integral_image(c) for c in channels]

    xs = np.arange(width)
    ys = np.arange(height)
    saliency = np.zeros((height, width), dtype=np.float64)

    for n in _saliency_scales(width, height):
        contribution = np.zeros((height, width), dtype=np.float64)
        for channel, integral in zip(channels, integrals):
            sums, areas = box_sum_map(integral, n)
            diff = channel - sums / areas
            contribution += diff * diff

        if valid is not None:
            x1 = np.maximum(xs - n, 0)
            x2 = np.minimum(xs + n, width - 1)
            y1 = np.maximum(ys - n, 0)
            y2 = np.minimum(ys + n, height - 1)
            corners_valid = valid[y1[:, None], x1[None, :]] & valid[y2[:, None], x2[None, :]]
            contribution[~corners_valid] = 0

        saliency += contribution

    saliency = saliency.astype(np.float32)
    if valid is not None:
        saliency[~valid] = 0
    return saliency


def saliency_filter(src: np.ndarray, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """Color saliency for 3 channel images, gray saliency otherwise."""
    if src.ndim == 3 and src.shape[2] == 3:
        return saliency_color(src, mask)
    return saliency_gray(src, mask)


def saliency_mapping(src: np.ndarray, block_count: int, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Block-pairwise saliency.

    The raster is tiled with blocks of (w/block_count, h/block_count) pixels
    at a half-block stride. For every unordered pair of blocks the absolute
    difference of their means is added to each pixel of the later block and
    that block's counter incremented; the score is sum / count (0 where no
    block contributed). Cost is quadratic in the number of blocks, which is
    small next to the pixel count.
    """
    check_float_image(src)
    valid = check_mask(mask, src.shape)

    height, width = src.shape
    block_width = width // block_count if block_count > 0 else 0
    block_height = height // block_count if block_count > 0 else 0
    if block_width < 2 or block_height < 2:
        raise ValueError(
            f"block_count={block_count} leaves blocks smaller than 2x2 for a {width}x{height} image"
        )

    integral = integral_image(src)
    rects = []
    for y in range(0, height - block_height + 1, block_height // 2):
        for x in range(0, width - block_width + 1, block_width // 2):
            rects.append((x, y, block_width, block_height))

    area = float(block_width * block_height)
    means = np.array([integral_rect_sum(integral, rc) / area for rc in rects])

    result = np.zeros(src.shape, dtype=np.float64)
    count = np.zeros(src.shape, dtype=np.float64)
    for l in range(1, len(rects)):
        x, y, w, h = rects[l]
        result[y:y + h, x:x + w] += np.abs(means[l] - means[:l]).sum()
        count[y:y + h, x:x + w] += l

    saliency = _safe_divide(result, count).astype(np.float32)
    if valid is not None:
        saliency[~valid] = 0
    return saliency


# ==============================================================================
# MEAN FILTERS
# ==============================================================================

def integral_mean_filter(integral: np.ndarray, ksize: int, mask: Optional[np.ndarray] = None,
                         count_integral: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Box mean from a precomputed integral image.

    `integral` has one more row and column than the output. When
    `count_integral` (the integral of the validity mask) is given, the sum is
    divided by the number of valid pixels in the window instead of its area.
    """
    if integral.ndim != 2 or integral.shape[0] < 2 or integral.shape[1] < 2:
        raise ValueError("integral must be a 2D summed-area table with a leading zero row/column")
    if ksize < 0:
        raise ValueError(f"ksize must be non-negative, got {ksize}")

    shape = (integral.shape[0] - 1, integral.shape[1] - 1)
    valid = check_mask(mask, shape)

    sums, areas = box_sum_map(integral, ksize)
    if count_integral is not None:
        if count_integral.shape != integral.shape:
            raise ValueError("count_integral must match the integral image shape")
        areas, _ = box_sum_map(count_integral, ksize)

    dst = _safe_divide(sums, areas).astype(np.float32)
    if valid is not None:
        dst[~valid] = 0
    return dst


def mean_filter(src: np.ndarray, ksize: int, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """Mean over the clipped (2*ksize+1)-square window of every pixel."""
    check_float_image(src)
    valid = check_mask(mask, src.shape)
    if valid is None:
        return integral_mean_filter(integral_image(src), ksize)

    weights = valid.astype(np.float32)
    return integral_mean_filter(
        integral_image(src * weights), ksize, mask,
        count_integral=integral_image(weights),
    )


def meand_filter(src: np.ndarray, ksize_outer: int, ksize_inner: int,
                 mask: Optional[np.ndarray] = None) -> np.ndarray:
    """Double-mean band-pass: mean(inner window) - mean(outer window)."""
    check_float_image(src)
    if ksize_outer < 0 or ksize_inner < 0:
        raise ValueError("window radii must be non-negative")
    valid = check_mask(mask, src.shape)

    outer = _window_means(src, ksize_outer, valid)
    inner = _window_means(src, ksize_inner, valid)
    dst = (inner - outer).astype(np.float32)
    if valid is not None:
        dst[~valid] = 0
    return dst


def mean_difference_filter(src0: np.ndarray, src1: np.ndarray, ksize: int,
                           mask: Optional[np.ndarray] = None) -> np.ndarray:
    """clip(src1 - local mean of src0, 0, 1)."""
    check_float_image(src0, 'src0')
    check_float_image(src1, 'src1')
    if src0.shape != src1.shape:
        raise ValueError(f"src0 shape {src0.shape} does not match src1 shape {src1.shape}")
    if ksize < 0:
        raise ValueError(f"ksize must be non-negative, got {ksize}")
    valid = check_mask(mask, src0.shape)

    diff = src1 - _window_means(src0, ksize, valid)
    dst = np.clip(np.nan_to_num(diff, nan=0.0, posinf=1.0, neginf=0.0), 0, 1).astype(np.float32)
    if valid is not None:
        dst[~valid] = 0
    return dst


# ==============================================================================
# BORDER FILTERS
# ==============================================================================

class BorderFilterType(IntEnum):
    SCHARR = 0
    PREWITT = 1
    SOBEL = 2


_BORDER_KERNELS = {
    BorderFilterType.SCHARR: [[-3, 0, 3], [-10, 0, 10], [-3, 0, 3]],
    BorderFilterType.PREWITT: [[-1, 0, 1], [-1, 0, 1], [-1, 0, 1]],
    BorderFilterType.SOBEL: [[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]],
}


def border_filter_kernel(direction: int, filter_type: BorderFilterType = BorderFilterType.SCHARR) -> np.ndarray:
    """3x3 x-gradient kernel (direction 0) or its transpose (direction 1)."""
    if direction not in (0, 1):
        raise ValueError(f"direction must be 0 (x) or 1 (y), got {direction}")
    kernel = np.array(_BORDER_KERNELS[BorderFilterType(filter_type)], dtype=np.float32)
    return kernel.T.copy() if direction == 1 else kernel


def border_filter(src: np.ndarray) -> np.ndarray:
    """
    Scharr gradient magnitude, 0.5*|Gx| + 0.5*|Gy|.

    uint8 input gives a saturated uint8 map, float32 input a float32 map.
    """
    if src.ndim != 2 or src.size == 0:
        raise ValueError("border_filter expects a non-empty 2D image")

    if src.dtype == np.uint8:
        gx = cv2.convertScaleAbs(cv2.Sobel(src, cv2.CV_16S, 1, 0, ksize=cv2.FILTER_SCHARR, scale=0.5))
        gy = cv2.convertScaleAbs(cv2.Sobel(src, cv2.CV_16S, 0, 1, ksize=cv2.FILTER_SCHARR, scale=0.5))
        return cv2.addWeighted(gx, 0.5, gy, 0.5, 0)

    check_float_image(src)
    gx = cv2.Sobel(src, cv2.CV_32F, 1, 0, ksize=cv2.FILTER_SCHARR, scale=0.5)
    gy = cv2.Sobel(src, cv2.CV_32F, 0, 1, ksize=cv2.FILTER_SCHARR, scale=0.5)
    return (0.5 * np.abs(gx) + 0.5 * np.abs(gy)).astype(np.float32)


def filter2d(src: np.ndarray, kernel: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """
    Convolve a uint8 image only where the kernel footprint is fully valid.

    Any pixel with a masked-out neighbour under the kernel, and the image
    border, stays 0. Output saturates to uint8.
    """
    if kernel is None or kernel.size == 0:
        raise ValueError("kernel must not be empty")
    if kernel.ndim != 2 or kernel.shape[0] != kernel.shape[1]:
        raise ValueError(f"kernel must be square, got shape {kernel.shape}")
    if src.ndim != 2 or src.dtype != np.uint8:
        raise ValueError("filter2d expects a single channel uint8 image")
    if mask is None or mask.dtype != np.uint8:
        raise ValueError("filter2d expects a uint8 mask")
    if mask.shape != src.shape:
        raise ValueError(f"mask shape {mask.shape} does not match image shape {src.shape}")

    return masked_filter2d_numba(
        np.ascontiguousarray(src),
        np.ascontiguousarray(kernel, dtype=np.float32),
        np.ascontiguousarray(mask),
    )


def masked_border_filter(src: np.ndarray, mask: np.ndarray,
                         filter_type: BorderFilterType = BorderFilterType.SCHARR) -> np.ndarray:
    """Gradient magnitude restricted to pixels whose 3x3 footprint is fully valid."""
    gx = filter2d(src, border_filter_kernel(0, filter_type), mask)
    gy = filter2d(src, border_filter_kernel(1, filter_type), mask)
    return cv2.addWeighted(gx, 0.5, gy, 0.5, 0)


# ==============================================================================
# INSONIFICATION
# ==============================================================================

def insonification_correction(src: np.ndarray, mask: np.ndarray, start_row: int = 30) -> np.ndarray:
    """
    Equalize mean brightness across rows.

    Rows from start_row on get the mean over their mask-valid pixels (0 for
    rows without any). Each row with a non-zero mean is scaled by
    max_row_mean / row_mean; the result is clamped to at most 1.
    """
    check_float_image(src)
    if mask is None:
        raise ValueError("insonification_correction requires a mask")
    valid = check_mask(mask, src.shape)

    weights = valid.astype(np.float64)
    counts = weights.sum(axis=1)
    sums = np.nan_to_num((src * weights).sum(axis=1), nan=0.0)
    row_mean = _safe_divide(sums, counts)
    row_mean[:start_row] = 0

    dst = src.copy()
    max_mean = row_mean.max() if row_mean.size else 0.0
    rows = np.nonzero(row_mean)[0]
    if rows.size == 0:
        logger.debug("No valid rows for insonification correction")
    else:
        factors = (max_mean / row_mean[rows]).astype(np.float32)
        dst[rows] *= factors[:, None]

    np.minimum(dst, 1, out=dst)
    return dst
