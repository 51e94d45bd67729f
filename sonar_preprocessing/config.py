#!/usr/bin/env python3
"""Configuration dictionaries for sonar geometry and preprocessing."""

from typing import Dict

GEOMETRY_CONFIG: Dict = {
    # === POLAR TO CARTESIAN ===
    'interpolation': 'weighted',    # 'nearest' or 'weighted'
    'neighbor_size': 3,             # Beams/bins searched around the owning cell
    'bin_length': 1.0,              # Cartesian pixels per range bin
}

PREPROCESSING_CONFIG: Dict = {
    # === REGION OF INTEREST ===
    'roi_alpha': 0.005,             # Fraction of the cumulative row-mean range
    'roi_start_row': 30,            # Rows skipped at the bottom before scanning

    # === INSONIFICATION ===
    'insonification_start_row': 30,

    # === DENOISING ===
    'mean_filter_ksize': 7,
    'mean_difference_filter_ksize': 25,
    'median_blur_ksize': 5,         # Must be odd

    # === MASK EROSION ===
    'mask_erode_ksize': 15,
    'mask_erode_iterations': 2,
    'mask_threshold': 128,

    # === RESOLUTION ===
    'scale_factor': 1.0,
}
