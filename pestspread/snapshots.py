"""In-memory recording of host grids on output days.

The recorder keeps a copy of the susceptible, exposed, infected, resistant
and died grids for every step its output schedule marks. When disabled,
all methods are no-ops (zero overhead).

Usage:
    recorder = SnapshotRecorder(enabled=True, schedule=output_schedule)

    # In the day loop:
    recorder.capture(step, date, hosts)

    # After the run:
    infected = recorder.stack('infected')   # (n_snapshots, rows, cols)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from pestspread.dates import Date


@dataclass
class GridSnapshot:
    """Host compartments of the whole landscape at the end of one day."""
    step: int
    date: Date
    susceptible: np.ndarray
    exposed: np.ndarray
    infected: np.ndarray
    resistant: np.ndarray
    died: np.ndarray

    @property
    def n_infected(self) -> int:
        return int(self.infected.sum())


class SnapshotRecorder:
    """Captures GridSnapshots on scheduled steps.

    Args:
        enabled: Master switch. False = no-ops everywhere.
        schedule: One flag per step; None captures every step.
    """

    def __init__(self, enabled: bool = False, schedule: Optional[Sequence[bool]] = None):
        self.enabled = enabled
        self.schedule = list(schedule) if schedule is not None else None
        self.snapshots: Dict[int, GridSnapshot] = {}

    def should_capture(self, step: int) -> bool:
        if not self.enabled:
            return False
        if self.schedule is None:
            return True
        return 0 <= step < len(self.schedule) and self.schedule[step]

    def capture(self, step: int, date: Date, hosts) -> None:
        if not self.should_capture(step):
            return
        self.snapshots[step] = GridSnapshot(
            step=step,
            date=date,
            susceptible=hosts.susceptible.array.copy(),
            exposed=hosts.total_exposed(),
            infected=hosts.infected.array.copy(),
            resistant=hosts.resistant.array.copy(),
            died=hosts.died.array.copy(),
        )

    def get_steps(self) -> List[int]:
        return sorted(self.snapshots)

    def get_dates(self) -> List[Date]:
        return [self.snapshots[s].date for s in self.get_steps()]

    def get_snapshot(self, step: int) -> Optional[GridSnapshot]:
        return self.snapshots.get(step)

    def stack(self, compartment: str) -> np.ndarray:
        """All captured grids of one compartment as (n, rows, cols)."""
        steps = self.get_steps()
        if not steps:
            return np.zeros((0, 0, 0), dtype=np.int64)
        return np.stack([getattr(self.snapshots[s], compartment) for s in steps])

    def __len__(self) -> int:
        return len(self.snapshots)
