"""Per-cell host population state.

HostPool holds the compartments of every cell:

  susceptible         hosts that can become infected
  exposed             SEI only: cohorts waiting out the latency period,
                      oldest first (exposed[0] becomes infected next)
  infected            infected hosts
  mortality_tracker   infected hosts split into cohorts by infection time,
                      oldest first; cohorts always sum to `infected`
  resistant           hosts temporarily protected (pesticide treatment)
  died                cumulative deaths from mortality
  carrying_capacity   fixed maximum number of hosts per cell

The pool owns copies of the arrays it is built from. All decrements are
clamped at the available count so counts never go negative; check_invariants()
verifies that and the cohort sums, raising StateInvariantViolation.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from pestspread.errors import ConfigurationError, StateInvariantViolation
from pestspread.grid import Grid
from pestspread.types import ModelType

Cell = Tuple[int, int]


def _to_grid(data, name: str, dtype=np.int64) -> Grid:
    if isinstance(data, Grid):
        data = data.array
    array = np.array(data, dtype=dtype, copy=True)
    if array.ndim != 2:
        raise ConfigurationError(f"{name} must be a 2-D grid, got {array.ndim} dimensions")
    return Grid.from_array(array)


def _take_oldest_first(cohorts: Sequence[Grid], row: int, col: int, count: int) -> List[int]:
    """Remove up to count hosts from cohorts at a cell, oldest cohort first.

    Returns the number taken from each cohort.
    """
    taken = []
    for cohort in cohorts:
        amount = min(int(cohort.array[row, col]), count)
        cohort.array[row, col] -= amount
        count -= amount
        taken.append(amount)
    return taken


def _split_counts(
    counts: np.ndarray, n: int, rng: Optional[np.random.Generator]
) -> np.ndarray:
    """Choose n individuals out of compartments with the given counts.

    With a generator the choice is a multivariate hypergeometric draw;
    without one it is a proportional split using largest remainders.
    """
    counts = np.asarray(counts, dtype=np.int64)
    total = int(counts.sum())
    n = min(int(n), total)
    if n <= 0:
        return np.zeros_like(counts)
    if n == total:
        return counts.copy()
    if rng is not None:
        return rng.multivariate_hypergeometric(counts, n).astype(np.int64)
    exact = counts * (n / total)
    result = np.floor(exact).astype(np.int64)
    remainder = n - int(result.sum())
    if remainder > 0:
        order = np.argsort(-(exact - result), kind="stable")
        for index in order:
            if remainder == 0:
                break
            if result[index] < counts[index]:
                result[index] += 1
                remainder -= 1
    return result


class HostPool:
    """Compartment grids for every cell of the landscape.

    Args:
        susceptible: Initial susceptible hosts per cell.
        infected: Initial infected hosts per cell.
        carrying_capacity: Maximum hosts per cell.
        model_type: SI or SEI.
        latency_period_steps: SEI latency, in dispersal steps.
        resistant: Optional initial resistant hosts.

    Raises:
        ConfigurationError: If grids differ in shape or hold negative counts.
    """

    def __init__(
        self,
        susceptible,
        infected,
        carrying_capacity,
        model_type: ModelType = ModelType.SI,
        latency_period_steps: int = 0,
        resistant=None,
    ):
        self.susceptible = _to_grid(susceptible, "susceptible")
        self.infected = _to_grid(infected, "infected")
        self.carrying_capacity = _to_grid(carrying_capacity, "carrying_capacity")
        self.resistant = (
            _to_grid(resistant, "resistant")
            if resistant is not None
            else Grid(*self.susceptible.shape)
        )
        for name in ("infected", "carrying_capacity", "resistant"):
            grid = getattr(self, name)
            if not grid.same_shape(self.susceptible):
                raise ConfigurationError(
                    f"{name} grid is {grid.rows}x{grid.cols}, "
                    f"expected {self.susceptible.rows}x{self.susceptible.cols}"
                )
        for name in ("susceptible", "infected", "carrying_capacity", "resistant"):
            if (getattr(self, name).array < 0).any():
                raise ConfigurationError(f"{name} grid holds negative counts")
        if latency_period_steps < 0:
            raise ConfigurationError(
                f"latency_period_steps must be >= 0, got {latency_period_steps}"
            )

        self.model_type = model_type
        self.latency_period_steps = latency_period_steps
        self.died = Grid(*self.shape)
        self.exposed: List[Grid] = []
        if model_type == ModelType.SEI:
            self.exposed = [Grid(*self.shape) for _ in range(latency_period_steps + 1)]
        self.mortality_tracker: List[Grid] = [self.infected.copy()]

    # ── shape & totals ───────────────────────────────────────────────

    @property
    def shape(self) -> Tuple[int, int]:
        return self.susceptible.shape

    @property
    def rows(self) -> int:
        return self.susceptible.rows

    @property
    def cols(self) -> int:
        return self.susceptible.cols

    def contains(self, row: int, col: int) -> bool:
        return self.susceptible.contains(row, col)

    def _require_cell(self, row: int, col: int) -> None:
        if not self.contains(row, col):
            raise IndexError(f"cell ({row}, {col}) outside grid of {self.rows}x{self.cols}")

    def total_exposed(self) -> np.ndarray:
        total = np.zeros(self.shape, dtype=np.int64)
        for cohort in self.exposed:
            total += cohort.array
        return total

    def total_population(self) -> np.ndarray:
        return (
            self.susceptible.array
            + self.infected.array
            + self.resistant.array
            + self.total_exposed()
        )

    def total_at(self, row: int, col: int) -> int:
        total = (
            self.susceptible[row, col]
            + self.infected[row, col]
            + self.resistant[row, col]
        )
        for cohort in self.exposed:
            total += cohort.array[row, col]
        return int(total)

    def spare_capacity_at(self, row: int, col: int) -> int:
        return int(self.carrying_capacity[row, col]) - self.total_at(row, col)

    def overpopulated_cells(self) -> List[Cell]:
        """Cells above carrying capacity, row-major."""
        excess = self.total_population() > self.carrying_capacity.array
        return [(int(r), int(c)) for r, c in np.argwhere(excess)]

    # ── infection ────────────────────────────────────────────────────

    def establish_at(self, row: int, col: int) -> bool:
        """One susceptible host becomes exposed (SEI) or infected (SI)."""
        if self.susceptible[row, col] <= 0:
            return False
        self.susceptible.array[row, col] -= 1
        if self.model_type == ModelType.SEI:
            self.exposed[-1].array[row, col] += 1
        else:
            self.infected.array[row, col] += 1
            self.mortality_tracker[-1].array[row, col] += 1
        return True

    def infect_exposed(self) -> None:
        """Move the oldest exposed cohort to infected and age the others."""
        if not self.exposed:
            return
        oldest = self.exposed[0].array
        self.infected.array[...] += oldest
        self.mortality_tracker[-1].array[...] += oldest
        oldest.fill(0)
        self.exposed.append(self.exposed.pop(0))

    def recover_infected_at(self, row: int, col: int, count: int = 1) -> int:
        """Infected hosts return to susceptible (clamped)."""
        count = min(int(count), int(self.infected[row, col]))
        if count <= 0:
            return 0
        _take_oldest_first(self.mortality_tracker, row, col, count)
        self.infected.array[row, col] -= count
        self.susceptible.array[row, col] += count
        return count

    # ── mortality ────────────────────────────────────────────────────

    def apply_mortality(self, rate, time_lag: int) -> int:
        """Kill a fraction of every cohort at least time_lag steps old.

        Args:
            rate: Scalar rate or per-cell rate array in [0, 1].
            time_lag: Minimum cohort age (in mortality steps).

        Returns:
            Number of hosts that died.
        """
        rate = np.asarray(rate, dtype=float)
        n_cohorts = len(self.mortality_tracker)
        total_dead = 0
        for index, cohort in enumerate(self.mortality_tracker):
            age = n_cohorts - 1 - index
            if age < time_lag:
                continue
            dying = np.floor(rate * cohort.array).astype(np.int64)
            dying = np.clip(dying, 0, cohort.array)
            cohort.array[...] -= dying
            self.infected.array[...] -= dying
            self.died.array[...] += dying
            total_dead += int(dying.sum())
        self._age_mortality_cohorts(time_lag)
        return total_dead

    def apply_survival(self, survival_rate) -> int:
        """Keep round(count * rate) infected and exposed hosts per cell.

        The rest are removed, oldest cohorts first. Cells with a rate of 1
        or more are untouched.

        Returns:
            Number of hosts removed.
        """
        rate = np.asarray(survival_rate, dtype=float)
        if rate.shape != self.shape:
            raise ConfigurationError(f"survival rate grid is {rate.shape}, expected {self.shape}")
        removed = 0
        for row, col in np.argwhere(rate < 1):
            row, col = int(row), int(col)
            keep = max(float(rate[row, col]), 0.0)
            for count, remove_at in (
                (int(self.infected[row, col]), self.remove_infected_at),
                (self.exposed_at(row, col), self.remove_exposed_at),
            ):
                # half away from zero
                survivors = int(np.floor(count * keep + 0.5))
                removed += remove_at(row, col, count - survivors)
        return removed

    def _age_mortality_cohorts(self, time_lag: int) -> None:
        self.mortality_tracker.append(Grid(*self.shape))
        # Cohorts past the lag behave identically, so keep them merged.
        while len(self.mortality_tracker) > time_lag + 1:
            oldest = self.mortality_tracker.pop(0)
            self.mortality_tracker[0].array[...] += oldest.array

    # ── removal ──────────────────────────────────────────────────────

    def remove_infected_at(self, row: int, col: int, count: int) -> int:
        count = min(int(count), int(self.infected[row, col]))
        if count <= 0:
            return 0
        _take_oldest_first(self.mortality_tracker, row, col, count)
        self.infected.array[row, col] -= count
        return count

    def remove_susceptible_at(self, row: int, col: int, count: int) -> int:
        count = min(int(count), int(self.susceptible[row, col]))
        if count <= 0:
            return 0
        self.susceptible.array[row, col] -= count
        return count

    def remove_exposed_at(self, row: int, col: int, count: int) -> int:
        taken = _take_oldest_first(self.exposed, row, col, int(count))
        return sum(taken)

    def exposed_at(self, row: int, col: int) -> int:
        return int(sum(cohort.array[row, col] for cohort in self.exposed))

    # ── resistance ───────────────────────────────────────────────────

    def make_resistant_at(
        self, row: int, col: int, susceptible: int = 0, exposed: int = 0, infected: int = 0
    ) -> int:
        """Move hosts into the resistant compartment (clamped)."""
        moved = self.remove_susceptible_at(row, col, susceptible)
        moved += self.remove_exposed_at(row, col, exposed)
        moved += self.remove_infected_at(row, col, infected)
        self.resistant.array[row, col] += moved
        return moved

    def release_resistant_at(self, row: int, col: int) -> int:
        """All resistant hosts of a cell become susceptible again."""
        count = int(self.resistant[row, col])
        self.resistant.array[row, col] = 0
        self.susceptible.array[row, col] += count
        return count

    # ── movement ─────────────────────────────────────────────────────

    def move_infected(self, source: Cell, target: Cell, count: int) -> int:
        """Relocate infected hosts, keeping their cohort ages."""
        (sr, sc), (tr, tc) = source, target
        count = min(int(count), int(self.infected[sr, sc]))
        if count <= 0:
            return 0
        self._require_cell(tr, tc)
        taken = _take_oldest_first(self.mortality_tracker, sr, sc, count)
        for cohort, amount in zip(self.mortality_tracker, taken):
            cohort.array[tr, tc] += amount
        self.infected.array[sr, sc] -= count
        self.infected.array[tr, tc] += count
        return count

    def move_hosts(
        self,
        source: Cell,
        target: Cell,
        count: int,
        rng: Optional[np.random.Generator] = None,
    ) -> int:
        """Relocate count hosts of any compartment from source to target.

        Which hosts move is drawn with rng when given, otherwise split
        proportionally over the compartments.
        """
        (sr, sc), (tr, tc) = source, target
        self._require_cell(tr, tc)
        layers: List[Grid] = (
            [self.susceptible, self.resistant]
            + list(self.exposed)
            + list(self.mortality_tracker)
        )
        counts = np.array([int(g.array[sr, sc]) for g in layers], dtype=np.int64)
        moved = _split_counts(counts, count, rng)
        for grid, amount in zip(layers, moved):
            grid.array[sr, sc] -= amount
            grid.array[tr, tc] += amount
        n_tracked = len(self.mortality_tracker)
        infected_moved = int(moved[-n_tracked:].sum())
        self.infected.array[sr, sc] -= infected_moved
        self.infected.array[tr, tc] += infected_moved
        return int(moved.sum())

    # ── checks ───────────────────────────────────────────────────────

    def check_invariants(self, phase: str = "") -> None:
        """Raise StateInvariantViolation if any count is inconsistent."""
        where = f" after {phase}" if phase else ""
        grids = {
            "susceptible": self.susceptible,
            "infected": self.infected,
            "resistant": self.resistant,
            "died": self.died,
        }
        grids.update({f"exposed[{i}]": g for i, g in enumerate(self.exposed)})
        grids.update({f"mortality_tracker[{i}]": g for i, g in enumerate(self.mortality_tracker)})
        for name, grid in grids.items():
            if (grid.array < 0).any():
                cell = tuple(int(v) for v in np.argwhere(grid.array < 0)[0])
                raise StateInvariantViolation(f"negative {name} count at {cell}{where}")
        tracked = np.zeros(self.shape, dtype=np.int64)
        for cohort in self.mortality_tracker:
            tracked += cohort.array
        if not np.array_equal(tracked, self.infected.array):
            cell = tuple(int(v) for v in np.argwhere(tracked != self.infected.array)[0])
            raise StateInvariantViolation(
                f"mortality cohorts do not sum to infected at {cell}{where}"
            )

    def copy(self) -> "HostPool":
        clone = HostPool.__new__(HostPool)
        clone.susceptible = self.susceptible.copy()
        clone.infected = self.infected.copy()
        clone.carrying_capacity = self.carrying_capacity.copy()
        clone.resistant = self.resistant.copy()
        clone.died = self.died.copy()
        clone.model_type = self.model_type
        clone.latency_period_steps = self.latency_period_steps
        clone.exposed = [g.copy() for g in self.exposed]
        clone.mortality_tracker = [g.copy() for g in self.mortality_tracker]
        return clone
