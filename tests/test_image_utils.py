import numpy as np
import pytest

from sonar_preprocessing.image_utils import (
    accumulative_sum,
    apply_mask,
    box_sum_map,
    check_float_image,
    check_mask,
    erode,
    integral_image,
    integral_image_sum,
    integral_rect_sum,
    to_mask_u8,
    to_uint8,
)


def test_integral_sums_match_numpy():
    src = np.arange(30, dtype=np.float32).reshape(5, 6)
    integral = integral_image(src)

    assert integral.shape == (6, 7)
    assert integral_image_sum(integral, 1, 2, 3, 4) == pytest.approx(src[2:5, 1:4].sum())
    assert integral_rect_sum(integral, (2, 1, 3, 2)) == pytest.approx(src[1:3, 2:5].sum())

    sums, areas = box_sum_map(integral, 1)
    assert sums[2, 2] == pytest.approx(src[1:4, 1:4].sum())
    assert sums[0, 0] == pytest.approx(src[0:2, 0:2].sum())
    assert areas[0, 0] == 4
    assert areas[2, 2] == 9


def test_checks_reject_bad_input():
    with pytest.raises(ValueError):
        check_float_image(np.zeros((0, 3), dtype=np.float32))
    with pytest.raises(ValueError):
        check_float_image(np.zeros((3, 3, 3), dtype=np.float32))
    with pytest.raises(ValueError):
        check_mask(np.zeros((2, 2)), (3, 3))
    assert check_mask(None, (3, 3)) is None
    assert check_mask(np.array([[0, 7]]), (1, 2)).tolist() == [[False, True]]


def test_mask_helpers():
    mask = to_mask_u8(np.array([[0, 1], [True, 0]]))
    assert mask.dtype == np.uint8
    assert mask.tolist() == [[0, 255], [255, 0]]

    src = np.ones((2, 2), dtype=np.float32)
    assert apply_mask(src, mask).tolist() == [[0.0, 1.0], [1.0, 0.0]]

    full = np.full((9, 9), 255, dtype=np.uint8)
    eroded = erode(full, (3, 3))
    assert np.all(eroded == 255)
    full[4, 4] = 0
    assert np.count_nonzero(erode(full, (3, 3)) == 0) == 9


def test_to_uint8_handles_nan_and_range():
    out = to_uint8(np.array([[np.nan, -1.0, 0.5, 2.0]], dtype=np.float32))
    assert out.tolist() == [[0, 0, 128, 255]]


def test_accumulative_sum():
    assert accumulative_sum([1, 2, 3]).tolist() == [1.0, 3.0, 6.0]
