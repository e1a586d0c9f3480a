"""Spread engine: the daily processes acting on a HostPool.

Each process is one method, run by the Model when its schedule allows:

  disperse_and_infect  generate dispersers from infected hosts, move each
                       through the kernel and try to establish it
  mortality            cohorts of infected hosts past the time lag die
  survival             only the surviving share of infected and exposed
                       pests is kept
  movement             infected hosts travel along network edges
  move_overpopulated   excess hosts above carrying capacity go to neighbours
  remove               treatments and explicit removal requests

Cells are always visited in row-major order and every random draw comes
from a named stream of the engine's own RNG hierarchy, so a fixed seed
reproduces a run exactly.

Dropped events are expected outcomes and are only counted in
DispersalDiagnostics: dispersers landing outside the grid, dispersers
reaching a cell without susceptible hosts, failed establishment draws,
infected cells without a network node, and excess hosts with no
neighbour to go to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from pestspread.errors import ConfigurationError
from pestspread.grid import Grid
from pestspread.hosts import HostPool
from pestspread.types import DIRECTION_OFFSETS, Direction, ModelType

LOGGER = logging.getLogger(__name__)

# Cyclic neighbour order used by overpopulation correction.
MOORE_ORDER = [
    Direction.N, Direction.NE, Direction.E, Direction.SE,
    Direction.S, Direction.SW, Direction.W, Direction.NW,
]
VON_NEUMANN_ORDER = [Direction.N, Direction.E, Direction.S, Direction.W]


@dataclass
class DispersalDiagnostics:
    """Counters for dropped events and process totals over a run.

    outside_dispersers holds destination cells of off-grid dispersers only
    when the engine records them; n_outside always counts them.
    """
    n_outside: int = 0
    outside_dispersers: List[Tuple[int, int]] = field(default_factory=list)
    established: int = 0
    no_susceptible: int = 0
    failed_establishment: int = 0
    emigrated: int = 0
    network_misses: int = 0
    moved_by_network: int = 0
    moved_overpopulation: int = 0
    unresolved_overpopulation: int = 0
    died: int = 0
    removed: int = 0
    killed_by_survival: int = 0

    def summary(self) -> Dict[str, int]:
        return {
            'outside_dispersers': self.n_outside,
            'established': self.established,
            'no_susceptible': self.no_susceptible,
            'failed_establishment': self.failed_establishment,
            'emigrated': self.emigrated,
            'network_misses': self.network_misses,
            'moved_by_network': self.moved_by_network,
            'moved_overpopulation': self.moved_overpopulation,
            'unresolved_overpopulation': self.unresolved_overpopulation,
            'died': self.died,
            'removed': self.removed,
            'killed_by_survival': self.killed_by_survival,
        }


class SpreadEngine:
    """Applies the daily processes to one HostPool.

    Args:
        hosts: Population state, mutated in place.
        rngs: RNG hierarchy from rng.create_rng_hierarchy().
        reproductive_rate: Dispersers per infected host per spread day.
        dispersal_percentage: Probability that a disperser establishes.
        generate_stochasticity: Poisson generation (else int(rate * I)).
        establishment_stochasticity: Random establishment draws (else a
            fixed tester of 1 - establishment_probability).
        establishment_probability: See establishment_stochasticity.
        dispersers_leave_origin: A disperser leaving its cell cures one
            infected host there (the pest emigrates).
        movement_stochasticity: Binomial network movement (else floor).
        overpopulation_stochasticity: Random choice of which hosts leave an
            overpopulated cell (else a proportional split).
        neighborhood: 'moore' or 'von_neumann' for overpopulation moves.
        record_outside_dispersers: Keep the destination of every disperser
            that leaves the grid (else only count them).
    """

    def __init__(
        self,
        hosts: HostPool,
        rngs: Dict[str, np.random.Generator],
        reproductive_rate: float,
        dispersal_percentage: float = 1.0,
        generate_stochasticity: bool = True,
        establishment_stochasticity: bool = True,
        establishment_probability: float = 0.5,
        dispersers_leave_origin: bool = False,
        movement_stochasticity: bool = True,
        overpopulation_stochasticity: bool = True,
        neighborhood: str = 'moore',
        record_outside_dispersers: bool = False,
    ):
        if reproductive_rate < 0:
            raise ConfigurationError(f"reproductive_rate must be >= 0, got {reproductive_rate}")
        if not 0 <= dispersal_percentage <= 1:
            raise ConfigurationError(
                f"dispersal_percentage must be in [0, 1], got {dispersal_percentage}"
            )
        if neighborhood not in ('moore', 'von_neumann'):
            raise ConfigurationError(f"unknown neighborhood '{neighborhood}'")
        self.hosts = hosts
        self.rngs = rngs
        self.reproductive_rate = reproductive_rate
        self.dispersal_percentage = dispersal_percentage
        self.generate_stochasticity = generate_stochasticity
        self.establishment_stochasticity = establishment_stochasticity
        self.establishment_tester = 1.0 - establishment_probability
        self.dispersers_leave_origin = dispersers_leave_origin
        self.movement_stochasticity = movement_stochasticity
        self.overpopulation_stochasticity = overpopulation_stochasticity
        self.neighbor_order = MOORE_ORDER if neighborhood == 'moore' else VON_NEUMANN_ORDER
        self.record_outside_dispersers = record_outside_dispersers
        self._rotation = 0

        # Kernels may borrow this grid; it is refilled in place, never replaced.
        self.dispersers = Grid(hosts.rows, hosts.cols)
        self.diagnostics = DispersalDiagnostics()

    # ═══════════════════════════════════════════════════════════════
    # DISPERSAL
    # ═══════════════════════════════════════════════════════════════

    def generate(self, weather: Optional[np.ndarray] = None) -> Grid:
        """Fill self.dispersers from the current infected grid.

        Args:
            weather: Optional per-cell coefficients in [0, 1] scaling the
                reproductive rate of each cell.
        """
        infected = self.hosts.infected.array
        expected = self.reproductive_rate * infected
        if weather is not None:
            expected = expected * weather
        if self.generate_stochasticity:
            counts = self.rngs['generation'].poisson(expected)
        else:
            counts = np.floor(expected)
        self.dispersers.array[...] = counts.astype(np.int64)
        return self.dispersers

    def _establishes(self, probability: float) -> bool:
        if self.establishment_stochasticity:
            return self.rngs['establishment'].random() < probability
        return self.establishment_tester < probability

    def disperse(self, kernel, weather: Optional[np.ndarray] = None) -> int:
        """Send every disperser through the kernel; returns establishments.

        With weather, the establishment probability at the destination is
        dispersal_percentage times the destination's coefficient.
        """
        hosts = self.hosts
        diag = self.diagnostics
        rng = self.rngs['dispersal']
        established = 0
        kernel.reset()
        for row, col in np.argwhere(self.dispersers.array > 0):
            row, col = int(row), int(col)
            for _ in range(int(self.dispersers.array[row, col])):
                dest_row, dest_col = kernel(rng, row, col)
                dest_row, dest_col = int(dest_row), int(dest_col)
                if self.dispersers_leave_origin and (dest_row, dest_col) != (row, col):
                    diag.emigrated += hosts.recover_infected_at(row, col, 1)
                if not hosts.contains(dest_row, dest_col):
                    diag.n_outside += 1
                    if self.record_outside_dispersers:
                        diag.outside_dispersers.append((dest_row, dest_col))
                    continue
                if hosts.susceptible.array[dest_row, dest_col] <= 0:
                    diag.no_susceptible += 1
                    continue
                probability = self.dispersal_percentage
                if weather is not None:
                    probability *= float(weather[dest_row, dest_col])
                if self._establishes(probability):
                    hosts.establish_at(dest_row, dest_col)
                    established += 1
                else:
                    diag.failed_establishment += 1
        diag.established += established
        return established

    def disperse_and_infect(self, kernel, weather: Optional[np.ndarray] = None) -> int:
        """Generate, disperse and (SEI) advance the latency cohorts."""
        self.generate(weather)
        established = self.disperse(kernel, weather)
        if self.hosts.model_type == ModelType.SEI:
            self.hosts.infect_exposed()
        return established

    # ═══════════════════════════════════════════════════════════════
    # MORTALITY
    # ═══════════════════════════════════════════════════════════════

    def mortality(self, rate: float, time_lag: int, override: Optional[np.ndarray] = None) -> int:
        """Apply mortality; override holds per-cell rates (NaN = no override)."""
        rates = rate
        if override is not None:
            rates = np.where(np.isnan(override), rate, override)
        dead = self.hosts.apply_mortality(rates, time_lag)
        self.diagnostics.died += dead
        return dead

    def survival(self, survival_rate: np.ndarray) -> int:
        """Keep only the surviving share of infected and exposed pests."""
        killed = self.hosts.apply_survival(survival_rate)
        self.diagnostics.killed_by_survival += killed
        return killed

    # ═══════════════════════════════════════════════════════════════
    # NETWORK MOVEMENT
    # ═══════════════════════════════════════════════════════════════

    def movement(self, network) -> int:
        """Move infected hosts along the network edges of their cells.

        Movers are drawn from the infected counts at the start of the phase,
        so hosts arriving at a cell travel on at the next movement day at
        the earliest. Each host takes at most one edge: with stochasticity
        the split over the edges and staying home is one multinomial draw,
        otherwise each edge takes floor(weight * count).
        """
        hosts = self.hosts
        rng = self.rngs['movement']
        moved_total = 0
        start = hosts.infected.array.copy()
        for row, col in np.argwhere(start > 0):
            row, col = int(row), int(col)
            edges = network.lookup(row, col)
            if not edges:
                self.diagnostics.network_misses += 1
                continue
            available = int(start[row, col])
            weights = [edge.weight for edge in edges]
            if self.movement_stochasticity:
                stay = max(0.0, 1.0 - sum(weights))
                counts = rng.multinomial(available, weights + [stay])[:-1]
            else:
                counts = np.floor(np.array(weights) * available)
            for edge, count in zip(edges, counts):
                count = int(count)
                if edge.capacity is not None:
                    count = min(count, edge.capacity)
                if not hosts.contains(edge.row, edge.col):
                    self.diagnostics.network_misses += 1
                    continue
                moved_total += hosts.move_infected((row, col), (edge.row, edge.col), count)
        self.diagnostics.moved_by_network += moved_total
        return moved_total

    # ═══════════════════════════════════════════════════════════════
    # OVERPOPULATION
    # ═══════════════════════════════════════════════════════════════

    def move_overpopulated(self) -> int:
        """Push hosts above carrying capacity into neighbouring cells.

        Neighbours are tried in a fixed cyclic order starting at a cursor
        that advances by one for every overpopulated cell handled. Only
        in-grid neighbours with spare capacity take hosts, and never more
        than their spare capacity. Excess with nowhere to go stays put and
        is counted as unresolved.
        """
        hosts = self.hosts
        rng = self.rngs['overpopulation'] if self.overpopulation_stochasticity else None
        n_dirs = len(self.neighbor_order)
        moved_total = 0
        for row, col in hosts.overpopulated_cells():
            excess = hosts.total_at(row, col) - int(hosts.carrying_capacity.array[row, col])
            for i in range(n_dirs):
                if excess <= 0:
                    break
                d_row, d_col = DIRECTION_OFFSETS[self.neighbor_order[(self._rotation + i) % n_dirs]]
                n_row, n_col = row + d_row, col + d_col
                if not hosts.contains(n_row, n_col):
                    continue
                spare = hosts.spare_capacity_at(n_row, n_col)
                if spare <= 0:
                    continue
                moved = hosts.move_hosts((row, col), (n_row, n_col), min(excess, spare), rng)
                excess -= moved
                moved_total += moved
            self._rotation = (self._rotation + 1) % n_dirs
            if excess > 0:
                self.diagnostics.unresolved_overpopulation += excess
                LOGGER.debug("cell (%d, %d) keeps %d hosts above capacity", row, col, excess)
        self.diagnostics.moved_overpopulation += moved_total
        return moved_total

    # ═══════════════════════════════════════════════════════════════
    # REMOVAL
    # ═══════════════════════════════════════════════════════════════

    def remove(self, infected=None, susceptible=None) -> int:
        """Remove explicit per-cell host counts, clamped at what is there."""
        hosts = self.hosts
        removed = 0
        for grid, remove_at in (
            (infected, hosts.remove_infected_at),
            (susceptible, hosts.remove_susceptible_at),
        ):
            if grid is None:
                continue
            array = grid.array if isinstance(grid, Grid) else np.asarray(grid)
            if array.shape != hosts.shape:
                raise ConfigurationError(
                    f"removal grid is {array.shape}, expected {hosts.shape}"
                )
            for row, col in np.argwhere(array > 0):
                removed += remove_at(int(row), int(col), int(array[row, col]))
        self.diagnostics.removed += removed
        return removed

    def treat(self, treatments, step: int) -> bool:
        return treatments.manage(step, self.hosts)

    def check_invariants(self, phase: str = "") -> None:
        self.hosts.check_invariants(phase)
