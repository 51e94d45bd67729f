#!/usr/bin/env python3
"""Polar sonar frame model and flat bin/beam indexing."""

from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np


def index_at(beam: int, bin: int, bin_count: int) -> int:
    """Flat index of (beam, bin) in a beam-major bin buffer."""
    return beam * bin_count + bin


def index_to_beam(index: int, bin_count: int) -> int:
    return index // bin_count


def index_to_bin(index: int, bin_count: int) -> int:
    return index % bin_count


def index_to_polar(index: int, bin_count: int) -> Tuple[int, int]:
    """Return (bin, beam) for a flat index."""
    return index_to_bin(index, bin_count), index_to_beam(index, bin_count)


def build_beam_bearings(start_beam: float, beam_width: float, beam_count: int) -> np.ndarray:
    """Beam edge bearings: beam_count+1 angles evenly spaced over the fan."""
    return np.linspace(start_beam, start_beam + beam_width, beam_count + 1).astype(np.float32)


def _check_counts(bins: np.ndarray, bin_count: int, beam_count: int):
    if bin_count <= 0 or beam_count <= 0:
        raise ValueError(
            f"Empty sonar frame: bin_count={bin_count}, beam_count={beam_count}"
        )
    if bins.size != bin_count * beam_count:
        raise ValueError(
            f"bins has {bins.size} samples, expected bin_count*beam_count={bin_count * beam_count}"
        )


@dataclass(frozen=True, eq=False)
class PolarFrame:
    """
    One sonar ping as delivered by the driver.

    `bins` is ordered beam-major: sample (bin, beam) lives at
    beam * bin_count + bin. `bearings` holds either the beam_count+1 beam
    edges or the beam_count beam centres, in radians, strictly monotonic.
    """
    bins: np.ndarray
    bearings: np.ndarray
    bin_count: int
    beam_count: int
    beam_width: float

    def __post_init__(self):
        bins = np.array(self.bins, dtype=np.float32).ravel()
        bearings = np.array(self.bearings, dtype=np.float32).ravel()
        _check_counts(bins, self.bin_count, self.beam_count)

        if bearings.size not in (self.beam_count, self.beam_count + 1):
            raise ValueError(
                f"bearings must have beam_count or beam_count+1 values, got {bearings.size}"
            )
        steps = np.diff(bearings)
        if steps.size and not (np.all(steps > 0) or np.all(steps < 0)):
            raise ValueError("bearings must be strictly monotonic")

        bins.setflags(write=False)
        bearings.setflags(write=False)
        object.__setattr__(self, 'bins', bins)
        object.__setattr__(self, 'bearings', bearings)

    @classmethod
    def from_start_beam(cls, bins: Sequence[float], start_beam: float, beam_width: float,
                        bin_count: int, beam_count: int) -> "PolarFrame":
        if bin_count <= 0 or beam_count <= 0:
            raise ValueError(
                f"Empty sonar frame: bin_count={bin_count}, beam_count={beam_count}"
            )
        bearings = build_beam_bearings(start_beam, beam_width, beam_count)
        return cls(np.asarray(bins), bearings, bin_count, beam_count, beam_width)

    @classmethod
    def from_bearings(cls, bins: Sequence[float], bearings: Sequence[float], beam_width: float,
                      bin_count: int, beam_count: int) -> "PolarFrame":
        return cls(np.asarray(bins), np.asarray(bearings), bin_count, beam_count, beam_width)

    @property
    def total_bins(self) -> int:
        return self.bin_count * self.beam_count

    def value_at(self, index_or_bin: int, beam: int = None) -> float:
        """Intensity at a flat index, or at (bin, beam) when beam is given."""
        if beam is None:
            return float(self.bins[index_or_bin])
        return float(self.bins[index_at(beam, index_or_bin, self.bin_count)])

    def values(self, indices: Sequence[int]) -> np.ndarray:
        return self.bins[np.asarray(indices, dtype=np.intp)]

    def beam_value_at(self, beam: int) -> float:
        """Bearing of a beam centre."""
        return float(self.bearing_centers()[beam])

    def beam_step(self) -> float:
        return self.beam_width / float(self.beam_count)

    def bearing_edges(self) -> np.ndarray:
        """Beam edge bearings (beam_count+1 values)."""
        if self.bearings.size == self.beam_count + 1:
            return self.bearings
        centers = self.bearings.astype(np.float64)
        if centers.size == 1:
            half = 0.5 * self.beam_width
            return np.array([centers[0] - half, centers[0] + half], dtype=np.float32)
        mids = 0.5 * (centers[1:] + centers[:-1])
        first = centers[0] - (mids[0] - centers[0])
        last = centers[-1] + (centers[-1] - mids[-1])
        return np.concatenate(([first], mids, [last])).astype(np.float32)

    def bearing_centers(self) -> np.ndarray:
        """Beam centre bearings (beam_count values)."""
        if self.bearings.size == self.beam_count:
            return self.bearings
        edges = self.bearings
        return (0.5 * (edges[1:] + edges[:-1])).astype(np.float32)

    def as_image(self) -> np.ndarray:
        """Read-only (beam_count, bin_count) view of the bins."""
        return self.bins.reshape(self.beam_count, self.bin_count)
