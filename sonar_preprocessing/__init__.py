#!/usr/bin/env python3
"""
Sonar Preprocessing Package - polar sonar frames to detection-ready images.

This package covers the path from raw sonar bins to a clean cartesian raster:
- Polar frame model and flat bin/beam indexing
- Polar -> cartesian geometry with nearest or weighted reconstruction
- Integral-image filters (saliency, mean, mean-difference, border, insonification)
- The fixed preprocessing chain with ROI trimming

Usage Examples:
--------------

1. Reconstruct a cartesian image from one ping:
    from sonar_preprocessing import PolarFrame, SonarHolder
    frame = PolarFrame.from_start_beam(bins, -np.pi / 6, np.pi / 3, bin_count, beam_count)
    holder = SonarHolder(frame, interpolation='nearest')
    image, mask = holder.cart_image(), holder.cart_image_mask()

2. Preprocess it:
    from sonar_preprocessing import SonarImagePreprocessing
    preprocessing = SonarImagePreprocessing({'mean_filter_ksize': 5})
    preprocessed, result_mask = preprocessing.apply_holder(holder)

3. Reuse the cartesian lookup for the next ping:
    holder.reset(next_frame)
"""

# Configuration
from .config import GEOMETRY_CONFIG, PREPROCESSING_CONFIG

# Polar model
from .polar import (
    PolarFrame,
    build_beam_bearings,
    index_at,
    index_to_beam,
    index_to_bin,
    index_to_polar,
)

# Geometry
from .sonar_holder import CartesianGrid, InterpolationType, SonarHolder

# Filtering
from .image_filtering import (
    BorderFilterType,
    border_filter,
    border_filter_kernel,
    filter2d,
    insonification_correction,
    integral_mean_filter,
    masked_border_filter,
    mean_difference_filter,
    mean_filter,
    meand_filter,
    saliency_color,
    saliency_filter,
    saliency_gray,
    saliency_mapping,
)

# Pipeline
from .preprocessing import SonarImagePreprocessing

# Utilities
from .logging_config import setup_logging
from .profiler import Profiler

__version__ = "1.0.0"

__all__ = [
    # Configuration
    "GEOMETRY_CONFIG",
    "PREPROCESSING_CONFIG",

    # Polar model
    "PolarFrame",
    "build_beam_bearings",
    "index_at",
    "index_to_beam",
    "index_to_bin",
    "index_to_polar",

    # Geometry
    "CartesianGrid",
    "InterpolationType",
    "SonarHolder",

    # Filtering
    "BorderFilterType",
    "border_filter",
    "border_filter_kernel",
    "filter2d",
    "insonification_correction",
    "integral_mean_filter",
    "masked_border_filter",
    "mean_difference_filter",
    "mean_filter",
    "meand_filter",
    "saliency_color",
    "saliency_filter",
    "saliency_gray",
    "saliency_mapping",

    # Pipeline
    "SonarImagePreprocessing",

    # Utilities
    "setup_logging",
    "Profiler",
]
