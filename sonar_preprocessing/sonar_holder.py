#!/usr/bin/env python3
"""Polar to cartesian geometry engine for a single sonar frame."""

from __future__ import annotations
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from .config import GEOMETRY_CONFIG
from .numba_kernels import rasterize_sectors_numba, weighted_polar_to_cartesian_numba
from .polar import PolarFrame, index_at, index_to_beam, index_to_bin, index_to_polar
from .profiler import Profiler

logger = logging.getLogger(__name__)

# Arc samples per sector edge when building sector polygons
SECTOR_ARC_SAMPLES = 8


class InterpolationType(IntEnum):
    NEAREST = 0
    WEIGHTED = 1

    @classmethod
    def parse(cls, value: Union[str, int, "InterpolationType"]) -> "InterpolationType":
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown interpolation type: {value}") from None
        return cls(value)


def _readonly(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


def _to_cartesian(theta: np.ndarray, radius: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Bearing 0 points up the image, positive bearings to the right."""
    return radius * np.sin(theta), -radius * np.cos(theta)


@dataclass(frozen=True, eq=False)
class CartesianGrid:
    """
    Frozen cartesian layout derived from one polar geometry.

    Arrays are read-only; a grid can be shared by every frame with the same
    bin_count, beam_count, beam_width and bearings.
    """
    bin_count: int
    beam_count: int
    beam_width: float
    bin_length: float
    bearing_edges: np.ndarray        # (beam_count+1,)
    beam_centers: np.ndarray         # (beam_count,)
    corner_points: np.ndarray        # (beam_count+1, bin_count+1, 2) x, y
    center_points: np.ndarray        # (beam_count, bin_count, 2) x, y
    cart_size: Tuple[int, int]       # width, height
    cart_origin: Tuple[float, float] # x, y of the sonar apex
    cart_to_polar: np.ndarray        # (height, width) int32, -1 = unmapped
    radius: np.ndarray               # (height, width) float32
    angles: np.ndarray               # (height, width) float32
    angle_offset: np.ndarray         # (height, width) float32
    radial_offset: np.ndarray        # (height, width) float32

    @classmethod
    def build(cls, frame: PolarFrame, bin_length: float = None) -> "CartesianGrid":
        if frame.bin_count * frame.beam_count == 0:
            raise ValueError("Cannot build a cartesian grid for an empty frame")
        if bin_length is None:
            bin_length = GEOMETRY_CONFIG.get('bin_length', 1.0)
        if bin_length <= 0:
            raise ValueError(f"bin_length must be positive, got {bin_length}")

        edges = frame.bearing_edges().astype(np.float64)
        centers = frame.bearing_centers().astype(np.float64)

        # Corner points: bin edges x beam edges
        edge_radius = np.arange(frame.bin_count + 1, dtype=np.float64) * bin_length
        theta_grid, radius_grid = np.meshgrid(edges, edge_radius, indexing='ij')
        cx, cy = _to_cartesian(theta_grid, radius_grid)

        # Arc extremes can stick out past the corners for wide fans
        arc = np.linspace(edges.min(), edges.max(), 4 * frame.beam_count + 1)
        ax, ay = _to_cartesian(arc, np.full_like(arc, edge_radius[-1]))

        min_x = min(cx.min(), ax.min())
        min_y = min(cy.min(), ay.min())
        origin = (float(-min_x), float(-min_y))
        max_x = max(cx.max(), ax.max()) + origin[0]
        max_y = max(cy.max(), ay.max()) + origin[1]
        cart_size = (int(np.ceil(max_x)) + 1, int(np.ceil(max_y)) + 1)

        corner_points = np.stack([cx + origin[0], cy + origin[1]], axis=-1).astype(np.float32)

        center_radius = (np.arange(frame.bin_count, dtype=np.float64) + 0.5) * bin_length
        ct, cr = np.meshgrid(centers, center_radius, indexing='ij')
        ccx, ccy = _to_cartesian(ct, cr)
        center_points = np.stack([ccx + origin[0], ccy + origin[1]], axis=-1).astype(np.float32)

        cart_to_polar, radius, angles, angle_offset, radial_offset = rasterize_sectors_numba(
            edges, frame.bin_count, frame.beam_count, float(bin_length),
            origin[0], origin[1], cart_size[0], cart_size[1],
        )

        logger.debug(
            "Built cartesian grid %dx%d for %d bins x %d beams (%d mapped pixels)",
            cart_size[0], cart_size[1], frame.bin_count, frame.beam_count,
            int(np.count_nonzero(cart_to_polar >= 0)),
        )

        return cls(
            bin_count=frame.bin_count,
            beam_count=frame.beam_count,
            beam_width=float(frame.beam_width),
            bin_length=float(bin_length),
            bearing_edges=_readonly(edges.astype(np.float32)),
            beam_centers=_readonly(centers.astype(np.float32)),
            corner_points=_readonly(corner_points),
            center_points=_readonly(center_points),
            cart_size=cart_size,
            cart_origin=origin,
            cart_to_polar=_readonly(cart_to_polar),
            radius=_readonly(radius),
            angles=_readonly(angles),
            angle_offset=_readonly(angle_offset),
            radial_offset=_readonly(radial_offset),
        )

    def matches(self, frame: PolarFrame, bin_length: float = None) -> bool:
        """True if this grid describes the geometry of `frame`."""
        if bin_length is not None and bin_length != self.bin_length:
            return False
        return (
            frame.bin_count == self.bin_count
            and frame.beam_count == self.beam_count
            and float(frame.beam_width) == self.beam_width
            and np.array_equal(frame.bearing_edges(), self.bearing_edges)
        )

    @property
    def mask(self) -> np.ndarray:
        return np.where(self.cart_to_polar >= 0, 255, 0).astype(np.uint8)


class SonarHolder:
    """
    Holds one polar sonar frame and its cartesian reconstruction.

    The cartesian grid is rebuilt only when the frame geometry changes, so
    resetting with successive pings of the same sonar reuses the lookup.
    """

    def __init__(
        self,
        frame: PolarFrame,
        interpolation: Union[str, int, InterpolationType] = None,
        neighbor_size: int = None,
        grid: Optional[CartesianGrid] = None,
        bin_length: float = None,
        profiler: Optional[Profiler] = None,
    ):
        if interpolation is None:
            interpolation = GEOMETRY_CONFIG.get('interpolation', 'weighted')
        if neighbor_size is None:
            neighbor_size = GEOMETRY_CONFIG.get('neighbor_size', 3)
        if neighbor_size < 1:
            raise ValueError(f"neighbor_size must be >= 1, got {neighbor_size}")

        self.interpolation = InterpolationType.parse(interpolation)
        self.neighbor_size = int(neighbor_size)
        self.bin_length = bin_length
        self.profiler = profiler

        self._frame: Optional[PolarFrame] = None
        self._grid: Optional[CartesianGrid] = grid
        self._cart_image: Optional[np.ndarray] = None
        self._cart_image_mask: Optional[np.ndarray] = None

        self.reset(frame)

    def reset(self, frame: PolarFrame):
        """Load a new frame, rebuilding the grid only if its geometry differs."""
        if frame.bin_count * frame.beam_count == 0:
            raise ValueError("Sonar frame has no bins")

        self._frame = frame
        with self._measure('cartesian_grid'):
            if self._grid is not None and self._grid.matches(frame, self.bin_length):
                logger.debug("Reusing cartesian grid %s", self._grid.cart_size)
            else:
                self._grid = CartesianGrid.build(frame, self.bin_length)

        with self._measure('cartesian_image'):
            self._initialize_cartesian_image()

    def _measure(self, name: str):
        if self.profiler is None:
            return nullcontext()
        return self.profiler.measure(name)

    def _initialize_cartesian_image(self):
        grid = self._grid
        mapped = grid.cart_to_polar >= 0

        if self.interpolation == InterpolationType.NEAREST:
            image = np.zeros(grid.cart_to_polar.shape, dtype=np.float32)
            image[mapped] = self._frame.bins[grid.cart_to_polar[mapped]]
        else:
            image = weighted_polar_to_cartesian_numba(
                self._frame.bins, grid.cart_to_polar, grid.radius, grid.angles,
                grid.beam_centers, grid.bin_count, grid.beam_count,
                grid.bin_length, self.neighbor_size,
            )

        self._cart_image = image
        self._cart_image_mask = np.where(mapped, 255, 0).astype(np.uint8)

    # ------------------------------------------------------------------
    # Frame accessors
    # ------------------------------------------------------------------

    @property
    def frame(self) -> PolarFrame:
        return self._frame

    @property
    def grid(self) -> CartesianGrid:
        return self._grid

    def bins(self) -> np.ndarray:
        return self._frame.bins

    def bearings(self) -> np.ndarray:
        return self._frame.bearings

    def bin_count(self) -> int:
        return self._frame.bin_count

    def beam_count(self) -> int:
        return self._frame.beam_count

    def beam_width(self) -> float:
        return self._frame.beam_width

    def beam_step(self) -> float:
        return self._frame.beam_step()

    def value_at(self, index_or_bin: int, beam: int = None) -> float:
        return self._frame.value_at(index_or_bin, beam)

    def values(self, indices: Sequence[int]) -> np.ndarray:
        return self._frame.values(indices)

    def beam_value_at(self, beam: int) -> float:
        return self._frame.beam_value_at(beam)

    # ------------------------------------------------------------------
    # Cartesian accessors
    # ------------------------------------------------------------------

    def cart_size(self) -> Tuple[int, int]:
        return self._grid.cart_size

    def cart_origin(self) -> Tuple[float, float]:
        return self._grid.cart_origin

    def cart_image(self) -> np.ndarray:
        return self._cart_image.copy()

    def cart_image_mask(self) -> np.ndarray:
        return self._cart_image_mask.copy()

    def cart_points(self, indices: Sequence[int] = None) -> np.ndarray:
        """Sector top-left corners, for all cells or the given flat indices."""
        corners = self._grid.corner_points[:-1, :-1].reshape(-1, 2)
        if indices is None:
            return corners
        return corners[np.asarray(indices, dtype=np.intp)]

    def cart_center_points(self) -> np.ndarray:
        return self._grid.center_points.reshape(-1, 2)

    # ------------------------------------------------------------------
    # Index helpers
    # ------------------------------------------------------------------

    def index_to_beam(self, index: int) -> int:
        return index_to_beam(index, self.bin_count())

    def index_to_bin(self, index: int) -> int:
        return index_to_bin(index, self.bin_count())

    def index_to_polar(self, index: int) -> Tuple[int, int]:
        return index_to_polar(index, self.bin_count())

    def index_at(self, beam: int, bin: int) -> int:
        return index_at(beam, bin, self.bin_count())

    # ------------------------------------------------------------------
    # Point and rectangle queries
    # ------------------------------------------------------------------

    def cart_point(self, bin: int, beam: int) -> Tuple[float, float]:
        """Cartesian position of the (bin edge, beam edge) corner."""
        x, y = self._grid.corner_points[beam, bin]
        return float(x), float(y)

    def cart_center_point(self, index_or_bin: int, beam: int = None) -> Tuple[float, float]:
        if beam is None:
            bin, beam = self.index_to_polar(index_or_bin)
        else:
            bin = index_or_bin
        x, y = self._grid.center_points[beam, bin]
        return float(x), float(y)

    def sector_top_left_point(self, polar_index: int) -> Tuple[float, float]:
        bin, beam = self.index_to_polar(polar_index)
        return self.cart_point(bin, beam)

    def sector_top_right_point(self, polar_index: int) -> Tuple[float, float]:
        bin, beam = self.index_to_polar(polar_index)
        return self.cart_point(bin, beam + 1)

    def sector_bottom_left_point(self, polar_index: int) -> Tuple[float, float]:
        bin, beam = self.index_to_polar(polar_index)
        return self.cart_point(bin + 1, beam)

    def sector_bottom_right_point(self, polar_index: int) -> Tuple[float, float]:
        bin, beam = self.index_to_polar(polar_index)
        return self.cart_point(bin + 1, beam + 1)

    def get_polar_limits(self, polar_index: int) -> Tuple[float, float, float, float]:
        """(start_radius, final_radius, start_bearing, final_bearing) of a sector."""
        bin, beam = self.index_to_polar(polar_index)
        edges = self._grid.bearing_edges
        length = self._grid.bin_length
        return bin * length, (bin + 1) * length, float(edges[beam]), float(edges[beam + 1])

    def get_sector_points(self, polar_index: int) -> np.ndarray:
        """Closed sector outline: near arc, then far arc walked back."""
        start_r, final_r, start_t, final_t = self.get_polar_limits(polar_index)
        theta = np.linspace(start_t, final_t, SECTOR_ARC_SAMPLES)
        near_x, near_y = _to_cartesian(theta, np.full_like(theta, start_r))
        far_x, far_y = _to_cartesian(theta[::-1], np.full_like(theta, final_r))
        ox, oy = self._grid.cart_origin
        xs = np.concatenate([near_x, far_x]) + ox
        ys = np.concatenate([near_y, far_y]) + oy
        return np.stack([xs, ys], axis=-1).astype(np.float32)

    def cart_bounding_rect(self, bin0: int, beam0: int, bin1: int, beam1: int) -> Tuple[int, int, int, int]:
        """Integer (x, y, w, h) box of the four corners spanning two bins and two beams."""
        pts = np.array([
            self.cart_point(bin0, beam0),
            self.cart_point(bin1, beam0),
            self.cart_point(bin0, beam1),
            self.cart_point(bin1, beam1),
        ], dtype=np.float32)
        return tuple(int(v) for v in cv2.boundingRect(pts))

    def sector_bounding_rect(self, polar_index: int) -> Tuple[float, float, float, float]:
        pts = self.get_sector_points(polar_index)
        x0, y0 = pts.min(axis=0)
        x1, y1 = pts.max(axis=0)
        return float(x0), float(y0), float(x1 - x0), float(y1 - y0)

    # ------------------------------------------------------------------
    # Neighbourhood queries
    # ------------------------------------------------------------------

    def get_neighborhood(self, polar_index: int, neighbor_size: int = 3) -> List[int]:
        """Polar indices within neighbor_size bins and beams, clipped to the frame."""
        bin, beam = self.index_to_polar(polar_index)
        bin_count = self.bin_count()
        beams = range(max(0, beam - neighbor_size), min(self.beam_count(), beam + neighbor_size + 1))
        bins = range(max(0, bin - neighbor_size), min(bin_count, bin + neighbor_size + 1))
        return [index_at(b, n, bin_count) for b in beams for n in bins]

    def get_neighborhood_angles(self, origin_index: int, index: int,
                                neighbor_size: int = 3) -> Tuple[List[int], List[float]]:
        """Neighbours of `index` lying on the bin row of `origin_index`, with their bearings."""
        origin_bin = self.index_to_bin(origin_index)
        centers = self._grid.beam_centers
        indices = []
        angles = []
        for neighbor in self.get_neighborhood(index, neighbor_size):
            if self.index_to_bin(neighbor) != origin_bin:
                continue
            indices.append(neighbor)
            angles.append(float(centers[self.index_to_beam(neighbor)]))
        return indices, angles

    @staticmethod
    def get_min_angle_distance(angles: Sequence[float], indices: Sequence[int],
                               alpha: float) -> Tuple[int, int]:
        """
        Pick the candidate whose angle is closest to alpha.

        Returns (polar index, position in the candidate list); ties go to the
        earliest candidate.
        """
        if len(angles) == 0 or len(angles) != len(indices):
            raise ValueError("angles and indices must be non-empty and of equal length")
        position = int(np.argmin(np.abs(np.asarray(angles, dtype=np.float64) - alpha)))
        return int(indices[position]), position

