import numpy as np
import pytest

from sonar_preprocessing import (
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
from sonar_preprocessing.image_utils import integral_image, normalize_masked


@pytest.fixture
def rng():
    return np.random.default_rng(42)


def full_mask(shape):
    return np.full(shape, 255, dtype=np.uint8)


# ==============================================================================
# MEAN FILTERS
# ==============================================================================

@pytest.mark.parametrize("ksize", [0, 1, 7, 40])
def test_mean_filter_constant_input(ksize):
    src = np.full((30, 25), 0.3, dtype=np.float32)
    assert np.allclose(mean_filter(src, ksize), 0.3, atol=1e-6)
    assert np.allclose(mean_filter(src, ksize, full_mask(src.shape)), 0.3, atol=1e-6)


def test_mean_filter_ignores_masked_pixels():
    src = np.full((20, 20), 0.4, dtype=np.float32)
    mask = full_mask(src.shape)
    mask[:, :8] = 0
    src[:, :8] = 1.0  # garbage outside the mask must not leak into the means

    dst = mean_filter(src, 3, mask)
    assert np.all(dst[:, :8] == 0)
    assert np.allclose(dst[:, 8:], 0.4, atol=1e-6)


def test_mean_filter_fully_masked_gives_zero():
    src = np.ones((10, 10), dtype=np.float32)
    dst = mean_filter(src, 2, np.zeros((10, 10), dtype=np.uint8))
    assert np.all(dst == 0)
    assert not np.any(np.isnan(dst))


def test_mean_filter_box_average(rng):
    src = rng.random((15, 12)).astype(np.float32)
    dst = mean_filter(src, 2)
    assert dst[7, 6] == pytest.approx(src[5:10, 4:9].mean(), abs=1e-5)
    # Corner window is clipped, not padded
    assert dst[0, 0] == pytest.approx(src[0:3, 0:3].mean(), abs=1e-5)


def test_integral_mean_filter_matches_mean_filter(rng):
    src = rng.random((18, 22)).astype(np.float32)
    assert np.allclose(integral_mean_filter(integral_image(src), 4), mean_filter(src, 4), atol=1e-6)


def test_mean_filter_rejects_wrong_dtype():
    with pytest.raises(ValueError):
        mean_filter(np.zeros((5, 5), dtype=np.float64), 1)
    with pytest.raises(ValueError):
        mean_filter(np.zeros((5, 5), dtype=np.float32), 1, np.zeros((4, 5), dtype=np.uint8))


def test_meand_filter_uniform_is_zero():
    src = np.full((16, 16), 0.6, dtype=np.float32)
    assert np.allclose(meand_filter(src, 6, 1), 0, atol=1e-6)


def test_meand_filter_highlights_spot():
    src = np.zeros((21, 21), dtype=np.float32)
    src[10, 10] = 1.0
    dst = meand_filter(src, 8, 1)
    assert dst[10, 10] > 0
    assert dst[10, 10] == pytest.approx(dst.max())
    assert dst[0, 20] < dst[10, 10]


def test_mean_difference_filter_is_clamped(rng):
    src0 = rng.uniform(-5, 5, (25, 25)).astype(np.float32)
    src1 = rng.uniform(-5, 5, (25, 25)).astype(np.float32)
    dst = mean_difference_filter(src0, src1, 3)
    assert dst.min() >= 0.0
    assert dst.max() <= 1.0


def test_mean_difference_filter_subtracts_local_mean():
    base = np.full((10, 10), 0.25, dtype=np.float32)
    raw = np.full((10, 10), 0.75, dtype=np.float32)
    mask = full_mask(base.shape)
    mask[0, :] = 0
    dst = mean_difference_filter(base, raw, 2, mask)
    assert np.allclose(dst[1:], 0.5, atol=1e-6)
    assert np.all(dst[0] == 0)


def test_mean_difference_filter_checks_inputs():
    a = np.zeros((5, 5), dtype=np.float32)
    with pytest.raises(ValueError):
        mean_difference_filter(a, np.zeros((5, 6), dtype=np.float32), 1)
    with pytest.raises(ValueError):
        mean_difference_filter(a, np.zeros((5, 5), dtype=np.float64), 1)


# ==============================================================================
# SALIENCY
# ==============================================================================

def test_saliency_gray_uniform_is_zero():
    src = np.full((40, 30), 0.7, dtype=np.float32)
    assert np.allclose(saliency_gray(src), 0, atol=1e-6)


def test_saliency_gray_peaks_on_outlier():
    src = np.full((32, 32), 0.1, dtype=np.float32)
    src[16, 16] = 1.0
    sal = saliency_gray(src)
    assert np.unravel_index(np.argmax(sal), sal.shape) == (16, 16)


def test_saliency_gray_masked_pixels_are_zero(rng):
    src = rng.random((20, 20)).astype(np.float32)
    mask = full_mask(src.shape)
    mask[5:10, 5:10] = 0
    sal = saliency_gray(src, mask)
    assert np.all(sal[5:10, 5:10] == 0)


def test_saliency_color_uniform_is_zero():
    src = np.zeros((24, 24, 3), dtype=np.float32)
    src[..., :] = (0.2, 0.5, 0.7)
    assert np.allclose(saliency_color(src), 0, atol=1e-3)


def test_saliency_color_skips_scales_with_masked_corners():
    src = np.zeros((24, 24, 3), dtype=np.uint8)
    src[12, 12] = (255, 255, 255)
    mask = full_mask((24, 24))

    unmasked = saliency_color(src, mask)
    mask[0, 0] = 0
    masked = saliency_color(src, mask)

    assert masked[0, 0] == 0
    # A pixel whose largest window reaches the masked corner loses that scale
    assert masked[3, 3] < unmasked[3, 3]
    # Pixels whose windows never touch (0, 0) are unaffected
    assert masked[20, 20] == pytest.approx(unmasked[20, 20])


def test_saliency_filter_dispatches_on_channels(rng):
    gray = rng.random((16, 16)).astype(np.float32)
    color = (rng.random((16, 16, 3)) * 255).astype(np.uint8)
    assert np.array_equal(saliency_filter(gray), saliency_gray(gray))
    assert np.array_equal(saliency_filter(color), saliency_color(color))


def test_saliency_mapping_uniform_is_zero():
    src = np.full((40, 40), 0.5, dtype=np.float32)
    assert np.allclose(saliency_mapping(src, 4), 0)


def test_saliency_mapping_responds_to_contrast():
    src = np.zeros((40, 40), dtype=np.float32)
    src[:, 20:] = 1.0
    sal = saliency_mapping(src, 4)
    assert sal.shape == src.shape
    assert sal.max() > 0
    assert not np.any(np.isnan(sal))
    # Only the first block is never a "later" block of a pair
    assert np.all(sal[:5, :5] == 0)


def test_saliency_mapping_rejects_tiny_blocks():
    with pytest.raises(ValueError):
        saliency_mapping(np.zeros((10, 10), dtype=np.float32), 8)


# ==============================================================================
# BORDER FILTERS
# ==============================================================================

def test_border_filter_constant_is_zero():
    assert np.all(border_filter(np.full((10, 10), 90, dtype=np.uint8)) == 0)
    assert np.allclose(border_filter(np.full((10, 10), 0.3, dtype=np.float32)), 0)


def test_border_filter_detects_step():
    src = np.zeros((12, 12), dtype=np.uint8)
    src[:, 6:] = 100
    dst = border_filter(src)
    assert dst.dtype == np.uint8
    assert dst[6, 5] > 0 and dst[6, 6] > 0
    assert dst[6, 1] == 0 and dst[6, 10] == 0


def test_border_filter_kernel_families():
    scharr = border_filter_kernel(0, BorderFilterType.SCHARR)
    assert scharr[1, 2] == 10
    assert np.array_equal(border_filter_kernel(1, BorderFilterType.SCHARR), scharr.T)
    assert border_filter_kernel(0, BorderFilterType.PREWITT).sum() == 0
    assert border_filter_kernel(0, BorderFilterType.SOBEL)[1, 0] == -2
    with pytest.raises(ValueError):
        border_filter_kernel(2)


def test_filter2d_ramp_and_mask_coverage():
    src = np.tile((np.arange(10) * 10).astype(np.uint8), (10, 1))
    mask = full_mask(src.shape)
    mask[5, 5] = 0
    kernel = border_filter_kernel(0, BorderFilterType.PREWITT)

    dst = filter2d(src, kernel, mask)

    # Image border is never computed
    assert np.all(dst[0] == 0) and np.all(dst[:, 0] == 0)
    assert np.all(dst[-1] == 0) and np.all(dst[:, -1] == 0)
    # Any footprint touching the invalid pixel is skipped entirely
    assert np.all(dst[4:7, 4:7] == 0)
    assert dst[2, 2] == 60
    assert dst[8, 8] == 60


def test_filter2d_preconditions():
    src = np.zeros((5, 5), dtype=np.uint8)
    mask = full_mask(src.shape)
    with pytest.raises(ValueError):
        filter2d(src, np.ones((3, 2), dtype=np.float32), mask)
    with pytest.raises(ValueError):
        filter2d(src, np.zeros((0, 0), dtype=np.float32), mask)
    with pytest.raises(ValueError):
        filter2d(src.astype(np.float32), np.ones((3, 3), dtype=np.float32), mask)
    with pytest.raises(ValueError):
        filter2d(src, np.ones((3, 3), dtype=np.float32), mask.astype(bool))


def test_masked_border_filter_respects_mask():
    src = np.zeros((12, 12), dtype=np.uint8)
    src[:, 6:] = 40
    mask = full_mask(src.shape)
    mask[:, :3] = 0
    dst = masked_border_filter(src, mask, BorderFilterType.SOBEL)
    assert np.all(dst[:, :4] == 0)
    assert dst[6, 6] > 0


# ==============================================================================
# INSONIFICATION
# ==============================================================================

def test_insonification_equalizes_rows():
    rows, cols = 50, 10
    src = np.repeat((0.1 + 0.01 * np.arange(rows, dtype=np.float32))[:, None], cols, axis=1)
    mask = full_mask(src.shape)
    mask[40] = 0

    dst = insonification_correction(src, mask)

    assert dst.max() <= 1.0
    # Rows before the start row and rows without valid pixels are untouched
    assert np.array_equal(dst[:30], src[:30])
    assert np.array_equal(dst[40], src[40])
    for r in range(30, rows):
        if r != 40:
            assert dst[r].mean() == pytest.approx(src[49].mean(), abs=1e-5)


def test_insonification_clamps_to_one():
    src = np.zeros((40, 4), dtype=np.float32)
    src[30:, :2] = 0.05
    src[30:, 2:] = 0.9
    src[35:, :] = [0.9, 0.9, 0.95, 0.95]
    dst = insonification_correction(src, full_mask(src.shape))
    assert dst.max() <= 1.0
    assert dst.min() >= 0.0


def test_insonification_nan_row_is_coerced():
    src = np.full((40, 5), 0.3, dtype=np.float32)
    src[35, 2] = np.nan
    dst = insonification_correction(src, full_mask(src.shape))
    assert not np.any(np.isnan(np.delete(dst, 35, axis=0)))
    assert np.allclose(np.delete(dst, 35, axis=0), 0.3, atol=1e-6)


def test_insonification_requires_mask():
    with pytest.raises(ValueError):
        insonification_correction(np.zeros((5, 5), dtype=np.float32), None)


# ==============================================================================
# NORMALIZATION
# ==============================================================================

def test_normalize_masked_range():
    src = np.array([[0.2, 0.4], [0.6, 5.0]], dtype=np.float32)
    mask = np.array([[255, 255], [255, 0]], dtype=np.uint8)
    dst = normalize_masked(src, mask)
    assert dst[0, 0] == 0.0
    assert dst[1, 0] == pytest.approx(1.0)
    assert dst[1, 1] == 0.0
    assert np.all(normalize_masked(np.ones((3, 3), dtype=np.float32)) == 0)
