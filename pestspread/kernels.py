"""Dispersal kernels.

A kernel maps an origin cell to the destination cell of one disperser.
All kernels share one calling convention:

    kernel.sample(rng, row, col) -> Displacement(direction, distance)
    kernel(rng, row, col)        -> (dest_row, dest_col)

The destination may lie outside the grid; dropping such dispersers is the
caller's job. Kernels never raise at call time; invalid parameters are
rejected with ConfigurationError when the kernel is built.

Kernel family:
  RadialKernel                random direction + distance from a distance law
  DeterministicKernel         probability window visited from the most likely cell
  NeighborKernel              always the adjacent cell in one compass direction
  NetworkKernel               jump along a weighted transport network edge
  SwitchKernel                chooses one of the above once, from the kernel type
  NaturalAnthropogenicKernel  Bernoulli mix of a natural and an anthropogenic kernel

Grid geometry: rows grow southward and columns eastward. A direction of
θ radians clockwise from north moves a distance d by
    row offset = -round(d·cos θ / ns_res),  col offset = round(d·sin θ / ew_res)
with rounding half away from zero.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np

from pestspread.distributions import DistanceDistribution, create_distribution
from pestspread.errors import ConfigurationError
from pestspread.grid import Grid
from pestspread.types import (
    DIRECTION_OFFSETS,
    Direction,
    Displacement,
    KernelType,
)

TWO_PI = 2.0 * math.pi


def round_half_away(x: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.copysign(math.floor(abs(x) + 0.5), x))


def displacement_to_offset(
    displacement: Displacement, ew_res: float, ns_res: float
) -> Tuple[int, int]:
    """(row offset, col offset) of a displacement on the grid."""
    d, theta = displacement.distance, displacement.direction
    return (
        -round_half_away(d * math.cos(theta) / ns_res),
        round_half_away(d * math.sin(theta) / ew_res),
    )


def offset_to_displacement(
    d_row: int, d_col: int, ew_res: float, ns_res: float
) -> Displacement:
    """Displacement corresponding to a whole-cell offset."""
    north = -d_row * ns_res
    east = d_col * ew_res
    return Displacement(math.atan2(east, north) % TWO_PI, math.hypot(north, east))


# ═══════════════════════════════════════════════════════════════════════
# BASE
# ═══════════════════════════════════════════════════════════════════════

class DispersalKernel:
    """Common interface. Subclasses implement __call__ or sample()."""

    def __init__(self, ew_res: float = 1.0, ns_res: float = 1.0):
        if not ew_res > 0 or not ns_res > 0:
            raise ConfigurationError(
                f"cell resolution must be positive, got ew={ew_res}, ns={ns_res}"
            )
        self.ew_res = float(ew_res)
        self.ns_res = float(ns_res)

    def __call__(self, rng: np.random.Generator, row: int, col: int) -> Tuple[int, int]:
        raise NotImplementedError

    def sample(self, rng: np.random.Generator, row: int, col: int) -> Displacement:
        dest_row, dest_col = self(rng, row, col)
        return offset_to_displacement(dest_row - row, dest_col - col, self.ew_res, self.ns_res)

    def is_cell_eligible(self, row: int, col: int) -> bool:
        """Whether this kernel can move dispersers out of the cell."""
        return True

    def reset(self) -> None:
        """Forget per-day state; called before each dispersal pass."""


# ═══════════════════════════════════════════════════════════════════════
# RADIAL
# ═══════════════════════════════════════════════════════════════════════

class RadialKernel(DispersalKernel):
    """Random direction and random distance.

    The direction is uniform on [0, 2π) unless a compass direction is
    given with kappa > 0, in which case it follows a von Mises distribution
    centred on that direction with concentration kappa.

    Args:
        distance: Distance law.
        ew_res: East-west cell size in map units.
        ns_res: North-south cell size in map units.
        direction: Prevailing direction (e.g. wind), or Direction.NONE.
        kappa: Von Mises concentration; ignored for Direction.NONE.
    """

    def __init__(
        self,
        distance: DistanceDistribution,
        ew_res: float = 1.0,
        ns_res: float = 1.0,
        direction: Direction = Direction.NONE,
        kappa: float = 0.0,
    ):
        super().__init__(ew_res, ns_res)
        if kappa < 0:
            raise ConfigurationError(f"direction kappa must be >= 0, got {kappa}")
        self.distance = distance
        self.direction = direction
        self.kappa = 0.0 if direction == Direction.NONE else float(kappa)

    def sample(self, rng, row, col):
        distance = self.distance.random(rng)
        if self.kappa > 0:
            theta = rng.vonmises(self.direction.radians, self.kappa) % TWO_PI
        else:
            theta = rng.uniform(0.0, TWO_PI)
        return Displacement(float(theta), float(distance))

    def __call__(self, rng, row, col):
        d_row, d_col = displacement_to_offset(self.sample(rng, row, col), self.ew_res, self.ns_res)
        return row + d_row, col + d_col


# ═══════════════════════════════════════════════════════════════════════
# DETERMINISTIC
# ═══════════════════════════════════════════════════════════════════════

class DeterministicKernel(DispersalKernel):
    """Deterministic counterpart of a radial kernel.

    A window reaching out to the `coverage` quantile of the distance law is
    filled with the law's density at each cell centre and normalised to
    sum to 1. Dispersers leaving an origin cell are sent, one per call, to
    the cell with the highest remaining probability, which is then reduced
    by 1 / (number of dispersers at the origin). Moving on to another
    origin cell starts again from the full window. No randomness is used.

    Args:
        distance: Distance law providing pdf and icdf.
        dispersers: Grid of disperser counts, borrowed; read at call time.
        ew_res: East-west cell size.
        ns_res: North-south cell size.
        coverage: Quantile of the distance law covered by the window.
    """

    def __init__(
        self,
        distance: DistanceDistribution,
        dispersers: Grid,
        ew_res: float = 1.0,
        ns_res: float = 1.0,
        coverage: float = 0.99,
    ):
        super().__init__(ew_res, ns_res)
        if not 0 < coverage < 1:
            raise ConfigurationError(f"deterministic coverage must be in (0, 1), got {coverage}")
        self.distance = distance
        self.dispersers = dispersers
        self.coverage = coverage

        max_distance = float(distance.icdf(coverage))
        self.half_rows = int(math.ceil(max_distance / self.ns_res))
        self.half_cols = int(math.ceil(max_distance / self.ew_res))
        self.probability = self._build_window()
        self._remaining = self.probability.copy()
        self._origin: Optional[Tuple[int, int]] = None
        self._proportion = 1.0

    def _build_window(self) -> np.ndarray:
        rows = np.arange(-self.half_rows, self.half_rows + 1) * self.ns_res
        cols = np.arange(-self.half_cols, self.half_cols + 1) * self.ew_res
        dist = np.hypot(rows[:, None], cols[None, :])
        window = np.asarray(self.distance.pdf(dist), dtype=float)
        center = (self.half_rows, self.half_cols)
        if not np.isfinite(window[center]):
            # Density diverges at zero for some shapes; use a quarter cell.
            window[center] = self.distance.pdf(min(self.ew_res, self.ns_res) / 4.0)
        window = np.nan_to_num(window, nan=0.0, posinf=0.0)
        total = window.sum()
        if total <= 0:
            window = np.zeros_like(window)
            window[center] = 1.0
            return window
        return window / total

    def reset(self) -> None:
        self._origin = None

    def __call__(self, rng, row, col):
        if self._origin != (row, col):
            self._origin = (row, col)
            self._remaining = self.probability.copy()
            count = self.dispersers[row, col]
            self._proportion = 1.0 / count if count > 0 else 1.0
        flat = int(np.argmax(self._remaining))
        w_row, w_col = divmod(flat, self._remaining.shape[1])
        self._remaining[w_row, w_col] -= self._proportion
        return row + w_row - self.half_rows, col + w_col - self.half_cols


# ═══════════════════════════════════════════════════════════════════════
# NEIGHBOR & NETWORK
# ═══════════════════════════════════════════════════════════════════════

class NeighborKernel(DispersalKernel):
    """Always moves to the adjacent cell in a fixed compass direction."""

    def __init__(self, direction: Direction, ew_res: float = 1.0, ns_res: float = 1.0):
        super().__init__(ew_res, ns_res)
        if direction not in DIRECTION_OFFSETS:
            raise ConfigurationError(
                f"neighbor kernel needs a compass direction, got {direction.name}"
            )
        self.direction = direction
        self._offset = DIRECTION_OFFSETS[direction]

    def __call__(self, rng, row, col):
        return row + self._offset[0], col + self._offset[1]


class NetworkKernel(DispersalKernel):
    """Jump to a network neighbour of the origin, chosen by edge weight.

    Only cells holding a network node are eligible; called on any other
    cell the kernel leaves the disperser in place.
    """

    def __init__(self, network, ew_res: float = 1.0, ns_res: float = 1.0):
        super().__init__(ew_res, ns_res)
        self.network = network

    def is_cell_eligible(self, row, col):
        return self.network.has_node_at(row, col)

    def __call__(self, rng, row, col):
        edges = self.network.lookup(row, col)
        if not edges:
            return row, col
        weights = np.array([edge.weight for edge in edges], dtype=float)
        total = weights.sum()
        if total > 0:
            index = rng.choice(len(edges), p=weights / total)
        else:
            index = rng.integers(len(edges))
        edge = edges[int(index)]
        return edge.row, edge.col


# ═══════════════════════════════════════════════════════════════════════
# COMPOSITION
# ═══════════════════════════════════════════════════════════════════════

class SwitchKernel(DispersalKernel):
    """Selects the concrete kernel once, from the kernel type and a flag.

    neighbor type → neighbor kernel; network type → network kernel;
    otherwise the deterministic kernel when use_deterministic is set, else
    the stochastic radial kernel.
    """

    def __init__(
        self,
        kernel_type: KernelType,
        stochastic: Optional[DispersalKernel] = None,
        deterministic: Optional[DispersalKernel] = None,
        neighbor: Optional[DispersalKernel] = None,
        network: Optional[DispersalKernel] = None,
        use_deterministic: bool = False,
    ):
        if kernel_type == KernelType.NEIGHBOR:
            active, label = neighbor, "neighbor"
        elif kernel_type == KernelType.NETWORK:
            active, label = network, "network"
        elif use_deterministic:
            active, label = deterministic, "deterministic"
        else:
            active, label = stochastic, "stochastic"
        if active is None:
            raise ConfigurationError(
                f"kernel type '{kernel_type.value}' needs a {label} kernel"
            )
        super().__init__(active.ew_res, active.ns_res)
        self.kernel_type = kernel_type
        self.active = active

    def __call__(self, rng, row, col):
        return self.active(rng, row, col)

    def sample(self, rng, row, col):
        return self.active.sample(rng, row, col)

    def is_cell_eligible(self, row, col):
        return self.active.is_cell_eligible(row, col)

    def reset(self):
        self.active.reset()


class NaturalAnthropogenicKernel(DispersalKernel):
    """Each disperser goes natural with probability percent_natural.

    The anthropogenic kernel is used for the rest, but only when it is
    enabled and eligible at the origin cell; otherwise the natural kernel
    takes the disperser.
    """

    def __init__(
        self,
        natural: DispersalKernel,
        anthropogenic: Optional[DispersalKernel] = None,
        use_anthropogenic: bool = False,
        percent_natural_dispersal: float = 1.0,
    ):
        super().__init__(natural.ew_res, natural.ns_res)
        if not 0 <= percent_natural_dispersal <= 1:
            raise ConfigurationError(
                f"percent_natural_dispersal must be in [0, 1], got {percent_natural_dispersal}"
            )
        if use_anthropogenic and anthropogenic is None:
            raise ConfigurationError("anthropogenic dispersal enabled without a kernel")
        self.natural = natural
        self.anthropogenic = anthropogenic
        self.use_anthropogenic = use_anthropogenic
        self.percent_natural_dispersal = percent_natural_dispersal

    def _choose(self, rng, row, col) -> DispersalKernel:
        if not self.use_anthropogenic:
            return self.natural
        if rng.random() < self.percent_natural_dispersal:
            return self.natural
        if self.anthropogenic.is_cell_eligible(row, col):
            return self.anthropogenic
        return self.natural

    def __call__(self, rng, row, col):
        return self._choose(rng, row, col)(rng, row, col)

    def sample(self, rng, row, col):
        return self._choose(rng, row, col).sample(rng, row, col)

    def reset(self):
        self.natural.reset()
        if self.anthropogenic is not None:
            self.anthropogenic.reset()


# ═══════════════════════════════════════════════════════════════════════
# FACTORIES
# ═══════════════════════════════════════════════════════════════════════

def build_kernel(
    kernel_type: KernelType,
    scale: float,
    shape: float = 1.0,
    direction: Direction = Direction.NONE,
    kappa: float = 0.0,
    ew_res: float = 1.0,
    ns_res: float = 1.0,
    dispersers: Optional[Grid] = None,
    deterministic: bool = False,
    coverage: float = 0.99,
    network=None,
) -> SwitchKernel:
    """Build a SwitchKernel with whichever sub-kernels the type needs."""
    if kernel_type == KernelType.NEIGHBOR:
        return SwitchKernel(kernel_type, neighbor=NeighborKernel(direction, ew_res, ns_res))
    if kernel_type == KernelType.NETWORK:
        if network is None:
            raise ConfigurationError("network kernel requires a transport network")
        return SwitchKernel(kernel_type, network=NetworkKernel(network, ew_res, ns_res))

    distance = create_distribution(kernel_type, scale, shape)
    if deterministic:
        if dispersers is None:
            raise ConfigurationError("deterministic kernel requires a dispersers grid")
        det = DeterministicKernel(distance, dispersers, ew_res, ns_res, coverage)
        return SwitchKernel(kernel_type, deterministic=det, use_deterministic=True)
    radial = RadialKernel(distance, ew_res, ns_res, direction, kappa)
    return SwitchKernel(kernel_type, stochastic=radial)


def create_natural_kernel(config, dispersers: Optional[Grid] = None, network=None) -> SwitchKernel:
    """Natural kernel from SimulationConfig.dispersal / .simulation."""
    d, sim = config.dispersal, config.simulation
    return build_kernel(
        KernelType.from_string(d.natural_kernel),
        d.natural_scale,
        d.natural_shape,
        Direction.from_string(d.natural_direction),
        d.natural_kappa,
        sim.ew_res,
        sim.ns_res,
        dispersers,
        sim.deterministic,
        d.deterministic_coverage,
        network,
    )


def create_anthropogenic_kernel(config, dispersers: Optional[Grid] = None, network=None) -> SwitchKernel:
    d, sim = config.dispersal, config.simulation
    return build_kernel(
        KernelType.from_string(d.anthropogenic_kernel),
        d.anthropogenic_scale,
        d.anthropogenic_shape,
        Direction.from_string(d.anthropogenic_direction),
        d.anthropogenic_kappa,
        sim.ew_res,
        sim.ns_res,
        dispersers,
        sim.deterministic,
        d.deterministic_coverage,
        network,
    )


def create_dispersal_kernel(config, dispersers: Optional[Grid] = None, network=None) -> NaturalAnthropogenicKernel:
    """Full dispersal kernel described by a SimulationConfig."""
    d = config.dispersal
    natural = create_natural_kernel(config, dispersers, network)
    anthropogenic = None
    if d.use_anthropogenic_kernel:
        anthropogenic = create_anthropogenic_kernel(config, dispersers, network)
    return NaturalAnthropogenicKernel(
        natural,
        anthropogenic,
        d.use_anthropogenic_kernel,
        d.percent_natural_dispersal,
    )
