#!/usr/bin/env python3
"""Cartesian sonar image preprocessing: ROI trimming and the filter chain."""

import logging
from contextlib import nullcontext
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from .config import PREPROCESSING_CONFIG
from .image_filtering import (
    border_filter,
    insonification_correction,
    mean_difference_filter,
    mean_filter,
)
from .image_utils import (
    accumulative_sum,
    apply_mask,
    check_float_image,
    check_mask,
    erode,
    from_uint8,
    normalize_masked,
    to_mask_u8,
    to_uint8,
)
from .profiler import Profiler
from .sonar_holder import SonarHolder

logger = logging.getLogger(__name__)


def _validated_config(config: Optional[Dict]) -> Dict:
    merged = dict(PREPROCESSING_CONFIG)
    if config:
        unknown = set(config) - set(PREPROCESSING_CONFIG)
        if unknown:
            raise ValueError(f"Unknown preprocessing options: {sorted(unknown)}")
        merged.update(config)

    for key in ('mean_filter_ksize', 'mean_difference_filter_ksize',
                'roi_start_row', 'insonification_start_row'):
        if int(merged[key]) < 0:
            raise ValueError(f"{key} must be non-negative, got {merged[key]}")

    median = int(merged['median_blur_ksize'])
    if median < 3 or median % 2 == 0:
        raise ValueError(f"median_blur_ksize must be odd and >= 3, got {median}")
    if int(merged['mask_erode_ksize']) < 1:
        raise ValueError("mask_erode_ksize must be positive")
    if not 0.0 <= float(merged['roi_alpha']) <= 1.0:
        raise ValueError(f"roi_alpha must lie in [0, 1], got {merged['roi_alpha']}")
    if float(merged['scale_factor']) <= 0:
        raise ValueError(f"scale_factor must be positive, got {merged['scale_factor']}")
    return merged


class SonarImagePreprocessing:
    """
    Turns a reconstructed cartesian sonar image into a normalized map for detection.

    Pipeline per frame:
        1. ROI trimming of the low-signal rows at the bottom of the fan
        2. Optional rescale
        3. Insonification correction
        4. Box mean denoising
        5. Scharr border map of the denoised image (8-bit)
        6. Mask erosion to drop the fan edge
        7. Mean-difference of the corrected image against the normalized border map
        8. Median blur and final normalization within the mask

    The configuration is copied at construction and never changes afterwards.
    """

    def __init__(self, config: Optional[Dict] = None, profiler: Optional[Profiler] = None):
        self._config = _validated_config(config)
        self.profiler = profiler

    @property
    def config(self) -> Dict:
        return dict(self._config)

    @property
    def mean_filter_ksize(self) -> int:
        return int(self._config['mean_filter_ksize'])

    @property
    def mean_difference_filter_ksize(self) -> int:
        return int(self._config['mean_difference_filter_ksize'])

    @property
    def median_blur_filter_ksize(self) -> int:
        return int(self._config['median_blur_ksize'])

    @property
    def roi_alpha(self) -> float:
        return float(self._config['roi_alpha'])

    @property
    def roi_start_row(self) -> int:
        return int(self._config['roi_start_row'])

    @property
    def scale_factor(self) -> float:
        return float(self._config['scale_factor'])

    def _measure(self, name: str):
        if self.profiler is None:
            return nullcontext()
        return self.profiler.measure(name)

    def extract_roi(
        self,
        source_image: np.ndarray,
        source_mask: np.ndarray,
        alpha: float = None,
        start_row: int = None,
        end_row: int = -1,
    ) -> Tuple[np.ndarray, int]:
        """
        Trim the bottom rows whose accumulated brightness stays below threshold.

        Rows are visited from the bottom edge upwards; visit i covers image
        row (rows - i - 1). Visits before start_row count as 0. The running sum
        of the row means is thresholded at alpha*(max-min)+min and the first
        visit exceeding it marks the ROI line.

        Returns:
            Tuple of (roi_mask, roi_line) where rows >= roi_line are zeroed in
            a copy of source_mask. roi_line equals the row count when nothing
            is trimmed.
        """
        check_float_image(source_image, 'source_image')
        valid = check_mask(source_mask, source_image.shape, 'source_mask')
        if valid is None:
            raise ValueError("extract_roi requires a mask")

        if alpha is None:
            alpha = self.roi_alpha
        if start_row is None:
            start_row = self.roi_start_row
        if start_row < 0:
            raise ValueError(f"start_row must be non-negative, got {start_row}")

        rows = source_image.shape[0]
        if end_row < 0 or end_row >= rows:
            end_row = rows - 1

        # Row means over valid pixels, bottom row first
        weights = valid[::-1].astype(np.float64)
        sums = np.nan_to_num((source_image[::-1] * weights).sum(axis=1), nan=0.0)
        counts = weights.sum(axis=1)
        row_mean = np.zeros(end_row + 1, dtype=np.float64)
        visits = np.arange(start_row, end_row + 1)
        nonempty = visits[counts[visits] > 0]
        row_mean[nonempty] = sums[nonempty] / counts[nonempty]

        accum_sum = accumulative_sum(row_mean)
        lo = accum_sum.min()
        hi = accum_sum.max()
        thresh = alpha * (hi - lo) + lo

        roi_mask = to_mask_u8(source_mask)
        above = np.nonzero(accum_sum > thresh)[0]
        if above.size == 0:
            logger.debug("ROI: no row above threshold %.4f, mask left untouched", thresh)
            return roi_mask, rows

        new_y = int(above[0]) + 1
        roi_line = rows - new_y
        roi_mask[roi_line:, :] = 0
        logger.debug("ROI line at row %d of %d", roi_line, rows)
        return roi_mask, roi_line

    def apply(
        self,
        source_image: np.ndarray,
        source_mask: np.ndarray,
        scale_factor: float = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        ROI trimming followed by the full filter chain.

        Returns:
            Tuple of (preprocessed_image float32 in [0,1], result_mask uint8 0/255)
        """
        with self._measure('extract_roi'):
            roi_mask, _ = self.extract_roi(
                source_image, source_mask, self.roi_alpha, self.roi_start_row,
                source_image.shape[0] - 1,
            )
        return self.perform_preprocessing(source_image, roi_mask, scale_factor)

    def apply_holder(self, sonar_holder: SonarHolder, scale_factor: float = None) -> Tuple[np.ndarray, np.ndarray]:
        """Preprocess the cartesian image reconstructed by a SonarHolder."""
        return self.apply(sonar_holder.cart_image(), sonar_holder.cart_image_mask(), scale_factor)

    def perform_preprocessing(
        self,
        source_cart_image: np.ndarray,
        source_cart_mask: np.ndarray,
        scale_factor: float = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Run the filter chain on an image whose mask is already ROI-trimmed."""
        check_float_image(source_cart_image, 'source_cart_image')
        check_mask(source_cart_mask, source_cart_image.shape, 'source_cart_mask')
        if scale_factor is None:
            scale_factor = self.scale_factor
        if scale_factor <= 0:
            raise ValueError(f"scale_factor must be positive, got {scale_factor}")

        height, width = source_cart_image.shape
        cart_image = source_cart_image
        cart_mask = to_mask_u8(source_cart_mask)

        if scale_factor != 1.0:
            new_size = (max(1, int(width * scale_factor)), max(1, int(height * scale_factor)))
            cart_image = cv2.resize(cart_image, new_size, interpolation=cv2.INTER_LINEAR)
            cart_mask = cv2.resize(cart_mask, new_size, interpolation=cv2.INTER_NEAREST)

        with self._measure('insonification'):
            enhanced = insonification_correction(
                cart_image, cart_mask, int(self._config['insonification_start_row'])
            )

        with self._measure('mean_filter'):
            denoised = mean_filter(enhanced, self.mean_filter_ksize, cart_mask)

        with self._measure('border_filter'):
            border = border_filter(to_uint8(denoised))

        # Shrink the valid region so the fan edge does not show up as a border
        with self._measure('mask_erosion'):
            ksize = int(self._config['mask_erode_ksize'])
            cart_mask = erode(cart_mask, (ksize, ksize), int(self._config['mask_erode_iterations']))
            _, cart_mask = cv2.threshold(
                cart_mask, int(self._config['mask_threshold']), 255, cv2.THRESH_BINARY
            )

        border = apply_mask(border, cart_mask)
        border = normalize_masked(from_uint8(border), cart_mask)

        with self._measure('mean_difference'):
            mean_diff = mean_difference_filter(
                enhanced, border, self.mean_difference_filter_ksize, cart_mask
            )

        with self._measure('median_blur'):
            blurred = cv2.medianBlur(to_uint8(mean_diff), self.median_blur_filter_ksize)
            preprocessed = normalize_masked(from_uint8(blurred), cart_mask)

        result_mask = cart_mask
        if scale_factor != 1.0:
            preprocessed = cv2.resize(preprocessed, (width, height), interpolation=cv2.INTER_LINEAR)
            result_mask = cv2.resize(result_mask, (width, height), interpolation=cv2.INTER_NEAREST)
            preprocessed = apply_mask(np.clip(preprocessed, 0, 1), result_mask)

        return preprocessed.astype(np.float32), result_mask
