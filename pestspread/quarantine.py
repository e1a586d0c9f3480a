"""Quarantine escape queries.

A quarantine raster labels cells with a positive area id (0 = outside any
quarantine). The infection has escaped when any infected cell lies outside
every area. While it is contained, the distance from the infection to each
area's bounding-box edge tells how close it is to getting out, together
with the compass direction of that nearest edge.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from pestspread.errors import ConfigurationError
from pestspread.spread_rate import BBox
from pestspread.types import Direction

DistDir = Tuple[float, Direction]


@dataclass
class EscapeReport:
    """Result of one quarantine check.

    distances holds, per quarantine area (ordered by area id), the smallest
    distance from an infected cell to the area edge and its direction, or
    (inf, Direction.NONE) when the area holds no infection.
    """
    escaped: bool
    distances: List[DistDir] = field(default_factory=list)


class QuarantineEscape:
    """Tracks escape of the infection from quarantine areas.

    Args:
        quarantine_areas: Integer grid of area ids (0 = not quarantined).
        ew_res: East-west cell size.
        ns_res: North-south cell size.
        num_steps: Number of quarantine actions in the run.
    """

    def __init__(self, quarantine_areas, ew_res: float, ns_res: float, num_steps: int = 0):
        self.areas = np.array(quarantine_areas, dtype=np.int64, copy=True)
        if self.areas.ndim != 2:
            raise ConfigurationError("quarantine areas must be a 2-D grid")
        self.ew_res = ew_res
        self.ns_res = ns_res
        self.area_ids: List[int] = sorted(int(v) for v in np.unique(self.areas) if v > 0)
        self.boundaries: Dict[int, BBox] = {}
        for area_id in self.area_ids:
            cells = np.argwhere(self.areas == area_id)
            rows, cols = cells[:, 0], cells[:, 1]
            self.boundaries[area_id] = BBox(
                int(rows.min()), int(rows.max()), int(cols.max()), int(cols.min())
            )
        self.reports: List[Optional[EscapeReport]] = [None] * num_steps

    def closest_direction(self, row: int, col: int, bbox: BBox) -> DistDir:
        """Nearest bounding-box edge from a cell (ties: N, S, E, W order)."""
        candidates = [
            ((row - bbox.north) * self.ns_res, Direction.N),
            ((bbox.south - row) * self.ns_res, Direction.S),
            ((bbox.east - col) * self.ew_res, Direction.E),
            ((col - bbox.west) * self.ew_res, Direction.W),
        ]
        best = candidates[0]
        for candidate in candidates[1:]:
            if candidate[0] < best[0]:
                best = candidate
        return float(best[0]), best[1]

    def infection_inside_quarantine(self, infected) -> EscapeReport:
        infected = np.asarray(infected)
        if infected.shape != self.areas.shape:
            raise ConfigurationError(
                f"infected grid is {infected.shape}, quarantine grid is {self.areas.shape}"
            )
        nearest = {area_id: (math.inf, Direction.NONE) for area_id in self.area_ids}
        escaped = False
        for row, col in np.argwhere(infected > 0):
            area_id = int(self.areas[row, col])
            if area_id == 0:
                escaped = True
                continue
            dist_dir = self.closest_direction(int(row), int(col), self.boundaries[area_id])
            if dist_dir[0] < nearest[area_id][0]:
                nearest[area_id] = dist_dir
        return EscapeReport(escaped, [nearest[a] for a in self.area_ids])

    def action(self, infected, step: int) -> EscapeReport:
        """Check escape and store the report for action index step."""
        report = self.infection_inside_quarantine(infected)
        if 0 <= step < len(self.reports):
            self.reports[step] = report
        return report

    def escaped(self, step: int) -> bool:
        report = self.reports[step]
        return bool(report and report.escaped)

    def escape_distance(self, step: int, area_index: int = 0) -> DistDir:
        """(distance, direction) of the nearest escape for one area."""
        report = self.reports[step]
        if report is None or not report.distances:
            return math.inf, Direction.NONE
        return report.distances[area_index]
