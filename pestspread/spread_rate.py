"""Spread rate of the infection front.

On every spread-rate action the bounding box of infected cells is compared
with the previous one. The advance of each edge, in map units, is the rate
for that direction (north, south, east, west). A direction whose edge sits
on the grid border without moving gets NaN, since the front may have been
cut off there. With no infection at all every rate is NaN.
"""

from __future__ import annotations

import math
from typing import List, NamedTuple, Optional, Sequence

import numpy as np


class BBox(NamedTuple):
    """Row/column extent of infected cells; north is the smallest row."""
    north: int
    south: int
    east: int
    west: int


class Rates(NamedTuple):
    north: float
    south: float
    east: float
    west: float


NAN_RATES = Rates(math.nan, math.nan, math.nan, math.nan)


def infection_boundary(infected: np.ndarray) -> Optional[BBox]:
    """Bounding box of cells with infected > 0, or None if there are none."""
    cells = np.argwhere(np.asarray(infected) > 0)
    if len(cells) == 0:
        return None
    rows, cols = cells[:, 0], cells[:, 1]
    return BBox(int(rows.min()), int(rows.max()), int(cols.max()), int(cols.min()))


class SpreadRate:
    """Per-action spread rates over one run.

    Args:
        infected: Initial infected grid (defines the starting boundary).
        ew_res: East-west cell size.
        ns_res: North-south cell size.
        num_steps: Number of spread-rate actions in the run.
    """

    def __init__(self, infected: np.ndarray, ew_res: float, ns_res: float, num_steps: int):
        infected = np.asarray(infected)
        self.rows, self.cols = infected.shape
        self.ew_res = ew_res
        self.ns_res = ns_res
        self.num_steps = num_steps
        self.boundaries: List[Optional[BBox]] = [infection_boundary(infected)]
        self.rates: List[Rates] = [NAN_RATES] * num_steps

    def action(self, infected: np.ndarray, step: int) -> Rates:
        """Record the rate for action index step (0-based)."""
        bbox = infection_boundary(infected)
        previous = self.boundaries[-1]
        self.boundaries.append(bbox)
        if bbox is None or previous is None:
            rates = NAN_RATES
        else:
            north = (previous.north - bbox.north) * self.ns_res
            south = (bbox.south - previous.south) * self.ns_res
            east = (bbox.east - previous.east) * self.ew_res
            west = (previous.west - bbox.west) * self.ew_res
            if north == 0 and bbox.north == 0:
                north = math.nan
            if south == 0 and bbox.south == self.rows - 1:
                south = math.nan
            if east == 0 and bbox.east == self.cols - 1:
                east = math.nan
            if west == 0 and bbox.west == 0:
                west = math.nan
            rates = Rates(float(north), float(south), float(east), float(west))
        if 0 <= step < self.num_steps:
            self.rates[step] = rates
        return rates

    def step_rate(self, step: int) -> Rates:
        return self.rates[step]


def average_spread_rate(spread_rates: Sequence[SpreadRate], step: int) -> Rates:
    """Mean rate at one action step across runs, ignoring NaN entries."""
    values = np.array([sr.step_rate(step) for sr in spread_rates], dtype=float)
    if values.size == 0:
        return NAN_RATES
    averages = []
    for column in values.T:
        valid = column[~np.isnan(column)]
        averages.append(float(valid.mean()) if valid.size else math.nan)
    return Rates(*averages)
