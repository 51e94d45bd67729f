"""Stage timing for the geometry engine and the preprocessing pipeline."""

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


class Profiler:
    """Lightweight profiler for tracking execution time.

    The clock is injected so callers (and tests) control the time source;
    there is no process-wide instance.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter):
        self.clock = clock
        self.timings = defaultdict(list)
        self.call_counts = defaultdict(int)
        self.enabled = True

    @contextmanager
    def measure(self, name: str):
        """Context manager to measure execution time.

        Usage:
            with profiler.measure('insonification'):
                insonification_correction(image, mask)
        """
        if not self.enabled:
            yield
            return

        start = self.clock()
        try:
            yield
        finally:
            elapsed = self.clock() - start
            self.timings[name].append(elapsed)
            self.call_counts[name] += 1

    def reset(self):
        """Clear all timing data."""
        self.timings.clear()
        self.call_counts.clear()

    def summary(self, min_time: float = 0.0) -> List[Dict]:
        """Per-operation statistics sorted by total time, slowest first."""
        stats = []
        for name, times in self.timings.items():
            total = sum(times)
            if total < min_time:
                continue
            count = len(times)
            stats.append({
                'name': name,
                'total': total,
                'count': count,
                'avg': total / count if count > 0 else 0.0,
                'max': max(times) if times else 0.0,
                'min': min(times) if times else 0.0,
            })
        stats.sort(key=lambda s: s['total'], reverse=True)
        return stats

    def report(self, min_time: float = 0.001, top_n: int = 10):
        """Log a profiling table.

        Args:
            min_time: Only show operations taking more than this (seconds)
            top_n: Show top N slowest operations
        """
        stats = self.summary(min_time)
        if not stats:
            logger.info("No profiling data collected.")
            return

        total_time = sum(s['total'] for s in stats)
        lines = [
            "=" * 80,
            "PERFORMANCE PROFILE",
            "=" * 80,
            f"Total measured time: {total_time:.3f}s",
            f"Number of operations: {len(stats)}",
            "=" * 80,
            f"{'Operation':<30} {'Total(s)':>10} {'Calls':>8} {'Avg(ms)':>10} {'Min(ms)':>10} {'Max(ms)':>10} {'%':>6}",
            "-" * 80,
        ]
        for stat in stats[:top_n]:
            pct = (stat['total'] / total_time * 100) if total_time > 0 else 0
            lines.append(
                f"{stat['name']:<30} "
                f"{stat['total']:>10.3f} "
                f"{stat['count']:>8} "
                f"{stat['avg'] * 1000:>10.2f} "
                f"{stat['min'] * 1000:>10.2f} "
                f"{stat['max'] * 1000:>10.2f} "
                f"{pct:>5.1f}%"
            )
        lines.append("=" * 80)
        logger.info("\n%s", "\n".join(lines))

    def enable(self):
        """Enable profiling."""
        self.enabled = True

    def disable(self):
        """Disable profiling (no overhead)."""
        self.enabled = False
