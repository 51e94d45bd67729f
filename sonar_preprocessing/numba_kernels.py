"""Numba-accelerated per-pixel kernels.

The cartesian lookup rasterizes every polar sector and the weighted
reconstruction and masked convolution visit every pixel, so these loops are
JIT-compiled instead of running in the interpreter.
"""

import math

import numpy as np
from numba import jit


TWO_PI = 2.0 * math.pi


@jit(nopython=True, cache=True)
def _wrap_into(theta, t0, t1):
    """Shift theta by a full turn if that brings it into [t0, t1]."""
    if theta < t0 and theta + TWO_PI <= t1:
        return theta + TWO_PI
    if theta > t1 and theta - TWO_PI >= t0:
        return theta - TWO_PI
    return theta


@jit(nopython=True, cache=True)
def _sector_bbox(r0, r1, t0, t1, origin_x, origin_y):
    """Axis-aligned bounds of an annular sector in pixel coordinates."""
    xmin = 1e30
    xmax = -1e30
    ymin = 1e30
    ymax = -1e30

    # Corners plus the arc extremes falling inside the angular span
    angles = [t0, t1]
    k = math.floor(t0 / (0.5 * math.pi))
    a = k * 0.5 * math.pi
    while a <= t1:
        if a >= t0:
            angles.append(a)
        a += 0.5 * math.pi

    for theta in angles:
        s = math.sin(theta)
        c = math.cos(theta)
        for r in (r0, r1):
            x = origin_x + r * s
            y = origin_y - r * c
            xmin = min(xmin, x)
            xmax = max(xmax, x)
            ymin = min(ymin, y)
            ymax = max(ymax, y)
    return xmin, xmax, ymin, ymax


@jit(nopython=True, cache=True)
def rasterize_sectors_numba(bearing_edges, bin_count, beam_count, bin_length,
                            origin_x, origin_y, width, height):
    """Build the cartesian -> polar lookup.

    Every sector claims the pixels whose (radius, bearing) lies inside its
    closed limits. A pixel already claimed is only taken over by a sector whose
    centre is strictly closer in normalised polar distance, so equal distances
    keep the lower polar index.

    Returns:
        cart_to_polar: (height, width) int32, -1 where no sector maps
        radius: (height, width) float32 pixel radius from the apex
        angles: (height, width) float32 pixel bearing (wrapped to the owning sector)
        angle_offset: (height, width) float32 bearing minus owning sector centre
        radial_offset: (height, width) float32 radius minus owning sector centre
    """
    cart_to_polar = np.full((height, width), -1, dtype=np.int32)
    best = np.full((height, width), np.inf, dtype=np.float32)
    radius = np.zeros((height, width), dtype=np.float32)
    angles = np.zeros((height, width), dtype=np.float32)
    angle_offset = np.zeros((height, width), dtype=np.float32)
    radial_offset = np.zeros((height, width), dtype=np.float32)

    for y in range(height):
        for x in range(width):
            dx = x - origin_x
            dy = origin_y - y
            radius[y, x] = math.sqrt(dx * dx + dy * dy)
            angles[y, x] = math.atan2(dx, dy)

    for beam in range(beam_count):
        t0 = min(bearing_edges[beam], bearing_edges[beam + 1])
        t1 = max(bearing_edges[beam], bearing_edges[beam + 1])
        tc = 0.5 * (t0 + t1)
        half_t = 0.5 * (t1 - t0)

        for bin_idx in range(bin_count):
            r0 = bin_idx * bin_length
            r1 = (bin_idx + 1) * bin_length
            rc = 0.5 * (r0 + r1)
            half_r = 0.5 * (r1 - r0)

            bx0, bx1, by0, by1 = _sector_bbox(r0, r1, t0, t1, origin_x, origin_y)
            x_start = max(0, int(math.floor(bx0)))
            x_end = min(width - 1, int(math.ceil(bx1)))
            y_start = max(0, int(math.floor(by0)))
            y_end = min(height - 1, int(math.ceil(by1)))

            polar_index = beam * bin_count + bin_idx

            for y in range(y_start, y_end + 1):
                for x in range(x_start, x_end + 1):
                    r = radius[y, x]
                    if r < r0 or r > r1:
                        continue
                    theta = _wrap_into(angles[y, x], t0, t1)
                    if theta < t0 or theta > t1:
                        continue

                    da = (theta - tc) / half_t
                    dr = (r - rc) / half_r
                    dist = da * da + dr * dr
                    if dist < best[y, x]:
                        best[y, x] = dist
                        cart_to_polar[y, x] = polar_index
                        angles[y, x] = theta
                        angle_offset[y, x] = theta - tc
                        radial_offset[y, x] = r - rc

    return cart_to_polar, radius, angles, angle_offset, radial_offset


@jit(nopython=True, cache=True)
def min_angle_distance_numba(angles, start, stop, alpha):
    """Position in angles[start:stop+1] closest to alpha, earliest on ties."""
    best_pos = start
    best_dist = abs(angles[start] - alpha)
    for k in range(start + 1, stop + 1):
        d = abs(angles[k] - alpha)
        if d < best_dist:
            best_dist = d
            best_pos = k
    return best_pos


@jit(nopython=True, cache=True)
def weighted_polar_to_cartesian_numba(bins, cart_to_polar, radius, angles, beam_centers,
                                      bin_count, beam_count, bin_length, neighbor_size):
    """Blend the 2x2 polar cells bracketing each pixel.

    The angularly closest beam is searched within neighbor_size beams of the
    owning cell and paired with the neighbouring beam on the far side of the
    pixel bearing; the two bins bracketing the pixel radius are paired the
    same way. Weights fall off linearly with distance to each cell centre.
    """
    height, width = cart_to_polar.shape
    image = np.zeros((height, width), dtype=np.float32)

    direction = 1
    if beam_count > 1 and beam_centers[beam_count - 1] < beam_centers[0]:
        direction = -1

    for y in range(height):
        for x in range(width):
            polar_index = cart_to_polar[y, x]
            if polar_index < 0:
                continue

            beam0 = polar_index // bin_count
            bin0 = polar_index % bin_count
            theta = angles[y, x]
            rf = radius[y, x] / bin_length - 0.5

            beam_lo = max(0, beam0 - neighbor_size)
            beam_hi = min(beam_count - 1, beam0 + neighbor_size)
            beam_a = min_angle_distance_numba(beam_centers, beam_lo, beam_hi, theta)
            diff = theta - beam_centers[beam_a]
            beam_b = beam_a + direction if diff > 0 else beam_a - direction
            wa = 1.0
            if diff != 0.0 and beam_lo <= beam_b <= beam_hi:
                span = abs(beam_centers[beam_b] - beam_centers[beam_a])
                wa = min(1.0, max(0.0, 1.0 - abs(diff) / span))
            else:
                beam_b = beam_a

            bin_lo = max(0, bin0 - neighbor_size)
            bin_hi = min(bin_count - 1, bin0 + neighbor_size)
            bin_a = min(bin_hi, max(bin_lo, int(math.floor(rf + 0.5))))
            rdiff = rf - bin_a
            bin_b = bin_a + 1 if rdiff > 0 else bin_a - 1
            wr = 1.0
            if rdiff != 0.0 and bin_lo <= bin_b <= bin_hi:
                wr = min(1.0, max(0.0, 1.0 - abs(rdiff)))
            else:
                bin_b = bin_a

            v_aa = bins[beam_a * bin_count + bin_a]
            v_ba = bins[beam_b * bin_count + bin_a]
            v_ab = bins[beam_a * bin_count + bin_b]
            v_bb = bins[beam_b * bin_count + bin_b]

            image[y, x] = (wa * wr * v_aa + (1.0 - wa) * wr * v_ba
                           + wa * (1.0 - wr) * v_ab + (1.0 - wa) * (1.0 - wr) * v_bb)

    return image


@jit(nopython=True, cache=True)
def masked_filter2d_numba(src, kernel, mask):
    """3x3-style convolution computed only where the whole kernel footprint is valid.

    Border pixels and pixels with any invalid neighbour under the kernel stay 0.
    Output saturates to uint8.
    """
    rows, cols = src.shape
    krows, kcols = kernel.shape
    dy = krows // 2
    dx = kcols // 2
    dst = np.zeros((rows, cols), dtype=np.uint8)

    for y in range(dy, rows - dy):
        for x in range(dx, cols - dx):
            covered = True
            acc = 0.0
            for ky in range(krows):
                for kx in range(kcols):
                    yy = y - dy + ky
                    xx = x - dx + kx
                    if mask[yy, xx] == 0:
                        covered = False
                        break
                    acc += src[yy, xx] * kernel[ky, kx]
                if not covered:
                    break

            if covered:
                v = int(math.floor(acc + 0.5))
                dst[y, x] = min(255, max(0, v))

    return dst
