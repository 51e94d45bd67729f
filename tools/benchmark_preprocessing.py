"""Time polar->cartesian reconstruction and preprocessing on synthetic pings.

Each ping is speckle noise with a bright arc (a net wall) at a random range,
so the whole chain runs on realistic-looking data without a sonar attached.
"""
import argparse
import logging

import numpy as np
from tqdm import tqdm

from sonar_preprocessing import (
    PolarFrame,
    Profiler,
    SonarHolder,
    SonarImagePreprocessing,
    setup_logging,
)

logger = logging.getLogger("sonar_preprocessing.tools.benchmark")


def synthetic_ping(rng: np.random.Generator, bin_count: int, beam_count: int) -> np.ndarray:
    """Speckle background plus one bright arc, beam-major."""
    speckle = rng.gamma(shape=2.0, scale=0.08, size=(beam_count, bin_count))
    wall = int(rng.integers(bin_count // 4, 3 * bin_count // 4))
    speckle[:, max(0, wall - 2):wall + 2] += 0.6
    # Range falloff
    speckle *= np.linspace(1.0, 0.4, bin_count)[None, :]
    return np.clip(speckle, 0, 1).astype(np.float32).ravel()


def run(args):
    rng = np.random.default_rng(args.seed)
    profiler = Profiler()
    preprocessing = SonarImagePreprocessing({'scale_factor': args.scale}, profiler=profiler)

    beam_width = np.deg2rad(args.beam_width_deg)
    start_beam = -0.5 * beam_width

    holder = None
    for _ in tqdm(range(args.frames), desc="Preprocessing"):
        frame = PolarFrame.from_start_beam(
            synthetic_ping(rng, args.bins, args.beams),
            start_beam, beam_width, args.bins, args.beams,
        )
        with profiler.measure('reconstruction'):
            if holder is None:
                holder = SonarHolder(frame, interpolation=args.interpolation, profiler=profiler)
            else:
                holder.reset(frame)

        with profiler.measure('preprocessing'):
            preprocessed, mask = preprocessing.apply_holder(holder)

    width, height = holder.cart_size()
    logger.info("Cartesian size: %dx%d, valid pixels after preprocessing: %d",
                width, height, int(np.count_nonzero(mask)))
    profiler.report(min_time=0.0)


def main():
    parser = argparse.ArgumentParser(description='Benchmark sonar reconstruction and preprocessing')
    parser.add_argument('--bins', type=int, default=300, help='Range bins per beam (default: 300)')
    parser.add_argument('--beams', type=int, default=128, help='Beams per ping (default: 128)')
    parser.add_argument('--beam-width-deg', type=float, default=120.0,
                        help='Horizontal field of view in degrees (default: 120)')
    parser.add_argument('--frames', type=int, default=10, help='Number of pings (default: 10)')
    parser.add_argument('--interpolation', choices=['nearest', 'weighted'], default='weighted',
                        help='Polar to cartesian interpolation (default: weighted)')
    parser.add_argument('--scale', type=float, default=1.0, help='Preprocessing scale factor (default: 1.0)')
    parser.add_argument('--seed', type=int, default=0, help='Random seed (default: 0)')
    parser.add_argument('--verbose', action='store_true', help='Log debug messages')
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    run(args)


if __name__ == '__main__':
    main()
