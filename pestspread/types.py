"""Shared enumerations and small value types.

  - ModelType:   SI or SEI host dynamics
  - Direction:   compass directions in degrees clockwise from north
  - KernelType:  dispersal kernel families, parsed from config strings
  - Displacement: one sampled dispersal move (direction + distance)
"""

from __future__ import annotations

import math
from enum import Enum, IntEnum
from typing import NamedTuple

from pestspread.errors import ConfigurationError


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class ModelType(Enum):
    """Host infection dynamics.

    SI:  susceptible → infected on establishment
    SEI: susceptible → exposed → infected after a latency period
    """
    SI = "SI"
    SEI = "SEI"

    @classmethod
    def from_string(cls, text: str) -> "ModelType":
        key = str(text).strip().upper().replace("-", "")
        if key in ("SI", "SUSCEPTIBLEINFECTED"):
            return cls.SI
        if key in ("SEI", "SUSCEPTIBLEEXPOSEDINFECTED"):
            return cls.SEI
        raise ConfigurationError(f"unknown model type '{text}', expected SI or SEI")


class Direction(IntEnum):
    """Spread direction in degrees; NONE means non-directional."""
    N  = 0
    NE = 45
    E  = 90
    SE = 135
    S  = 180
    SW = 225
    W  = 270
    NW = 315
    NONE = -1

    @property
    def radians(self) -> float:
        return math.radians(self.value)

    @classmethod
    def from_string(cls, text) -> "Direction":
        if text is None:
            return cls.NONE
        key = str(text).strip().upper()
        if key in ("", "NONE"):
            return cls.NONE
        try:
            return cls[key]
        except KeyError:
            raise ConfigurationError(
                f"unknown direction '{text}', expected one of "
                f"N, NE, E, SE, S, SW, W, NW or NONE"
            )


# Row/column offsets of the adjacent cell in each compass direction
# (rows grow southward).
DIRECTION_OFFSETS = {
    Direction.N:  (-1, 0),
    Direction.NE: (-1, 1),
    Direction.E:  (0, 1),
    Direction.SE: (1, 1),
    Direction.S:  (1, 0),
    Direction.SW: (1, -1),
    Direction.W:  (0, -1),
    Direction.NW: (-1, -1),
}


class KernelType(Enum):
    """Dispersal kernel families."""
    CAUCHY = "cauchy"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_POWER = "exponential_power"
    GAMMA = "gamma"
    HYPERBOLIC_SECANT = "hyperbolic_secant"
    LOGISTIC = "logistic"
    LOG_NORMAL = "log_normal"
    NORMAL = "normal"
    POWER_LAW = "power_law"
    WEIBULL = "weibull"
    UNIFORM = "uniform"
    NEIGHBOR = "neighbor"
    NETWORK = "network"

    @property
    def is_radial(self) -> bool:
        return self not in (KernelType.NEIGHBOR, KernelType.NETWORK)

    @classmethod
    def from_string(cls, text: str) -> "KernelType":
        key = str(text).strip().lower().replace("-", "_").replace(" ", "_")
        key = _KERNEL_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ConfigurationError(
                f"unknown dispersal kernel '{text}', expected one of "
                f"{[k.value for k in cls]}"
            )


_KERNEL_ALIASES = {
    "deterministic_neighbor": "neighbor",
    "deterministic_neighbour": "neighbor",
    "neighbour": "neighbor",
    "lognormal": "log_normal",
    "powerlaw": "power_law",
    "exponentialpower": "exponential_power",
    "hyperbolicsecant": "hyperbolic_secant",
    "gaussian": "normal",
}


# ═══════════════════════════════════════════════════════════════════════
# VALUE TYPES
# ═══════════════════════════════════════════════════════════════════════

class Displacement(NamedTuple):
    """A sampled dispersal move.

    direction: radians clockwise from north, in [0, 2π)
    distance:  map units (same units as the cell resolution)
    """
    direction: float
    distance: float
