"""Per-process timing for simulation runs.

Non-invasive wall-clock instrumentation around the daily processes
(dispersal, mortality, movement, overpopulation, removal). Zero overhead
when disabled.

Usage:
    perf = PerfMonitor(enabled=True)
    model = Model(config, susceptible, infected, capacity, perf=perf)
    model.run()
    print(perf.report())
"""

import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class ProcessStats:
    """Timing statistics for one process."""
    total_time: float = 0.0
    call_count: int = 0
    min_time: float = float('inf')
    max_time: float = 0.0

    @property
    def mean_time(self) -> float:
        return self.total_time / self.call_count if self.call_count > 0 else 0.0

    def add(self, elapsed: float) -> None:
        self.total_time += elapsed
        self.call_count += 1
        self.min_time = min(self.min_time, elapsed)
        self.max_time = max(self.max_time, elapsed)


class PerfMonitor:
    """When disabled, all methods are no-ops."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, ProcessStats] = defaultdict(ProcessStats)
        self._start_time: Optional[float] = None
        self._total_time: float = 0.0

    def start(self) -> None:
        if self.enabled:
            self._start_time = time.perf_counter()

    def stop(self) -> None:
        if self.enabled and self._start_time is not None:
            self._total_time = time.perf_counter() - self._start_time

    @contextmanager
    def track(self, process: str):
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self._stats[process].add(time.perf_counter() - t0)

    def get_stats(self) -> Dict[str, ProcessStats]:
        return dict(self._stats)

    def summary(self) -> dict:
        """Summary dict, slowest process first."""
        total = self._total_time or sum(s.total_time for s in self._stats.values())
        result = {}
        for name, stats in sorted(self._stats.items(), key=lambda x: -x[1].total_time):
            pct = (stats.total_time / total * 100) if total > 0 else 0
            result[name] = {
                'total_s': round(stats.total_time, 4),
                'calls': stats.call_count,
                'mean_ms': round(stats.mean_time * 1000, 3),
                'pct': round(pct, 1),
            }
        result['_total_s'] = round(total, 4)
        return result

    def report(self, title: str = "Process timing") -> str:
        total = self._total_time or sum(s.total_time for s in self._stats.values())
        lines = [
            f"{title}",
            f"{'Process':<18} {'Total (s)':>10} {'Calls':>8} {'Mean (ms)':>10} {'%':>6}",
        ]
        for name, stats in sorted(self._stats.items(), key=lambda x: -x[1].total_time):
            pct = (stats.total_time / total * 100) if total > 0 else 0
            lines.append(
                f"{name:<18} {stats.total_time:>10.4f} {stats.call_count:>8} "
                f"{stats.mean_time*1000:>10.3f} {pct:>5.1f}%"
            )
        lines.append(f"{'TOTAL':<18} {total:>10.4f}")
        return '\n'.join(lines)

    def reset(self) -> None:
        self._stats.clear()
        self._start_time = None
        self._total_time = 0.0
