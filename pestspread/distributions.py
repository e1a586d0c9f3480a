"""Dispersal distance distributions.

Each law describes the distance a disperser travels from its origin cell.
Every class exposes:

  random(rng) -> float   one non-negative distance drawn with a numpy Generator
  pdf(x)                 density of the distance at x (vectorised)
  icdf(p)                quantile of the distance (vectorised)

Laws that are symmetric around zero (Cauchy, normal, logistic, hyperbolic
secant, exponential power) are folded: the distance is |X|, so pdf and icdf
describe the half-distribution. Densities and quantiles come from frozen
scipy.stats distributions; draws use the Generator directly.

Parameters are checked at construction. A non-positive scale, or shape
for laws that use one, raises ConfigurationError. Once built, a
distribution never raises.
"""

from __future__ import annotations

from typing import Dict, Type

import numpy as np
from scipy import stats

from pestspread.errors import ConfigurationError
from pestspread.types import KernelType


class DistanceDistribution:
    """Base class; subclasses set kernel_type and build self._dist."""

    kernel_type: KernelType
    uses_shape = False

    def __init__(self, scale: float, shape: float = 1.0):
        if not scale > 0:
            raise ConfigurationError(
                f"{self.kernel_type.value} kernel scale must be positive, got {scale}"
            )
        if self.uses_shape and not shape > 0:
            raise ConfigurationError(
                f"{self.kernel_type.value} kernel shape must be positive, got {shape}"
            )
        self.scale = float(scale)
        self.shape = float(shape)
        self._dist = self._build()

    def _build(self):
        raise NotImplementedError

    def random(self, rng: np.random.Generator) -> float:
        return float(self.icdf(rng.random()))

    def pdf(self, x):
        return self._dist.pdf(x)

    def icdf(self, p):
        return self._dist.ppf(p)

    def __repr__(self) -> str:
        if self.uses_shape:
            return f"{type(self).__name__}(scale={self.scale}, shape={self.shape})"
        return f"{type(self).__name__}(scale={self.scale})"


class _Folded(DistanceDistribution):
    """|X| for a distribution symmetric around zero."""

    def pdf(self, x):
        x = np.asarray(x, dtype=float)
        return np.where(x >= 0, 2.0 * self._dist.pdf(x), 0.0)

    def icdf(self, p):
        return self._dist.ppf((1.0 + np.asarray(p, dtype=float)) / 2.0)


# ═══════════════════════════════════════════════════════════════════════
# LAWS
# ═══════════════════════════════════════════════════════════════════════

class CauchyDistance(_Folded):
    kernel_type = KernelType.CAUCHY

    def _build(self):
        return stats.cauchy(loc=0.0, scale=self.scale)

    def random(self, rng):
        return abs(self.scale * rng.standard_cauchy())


class ExponentialDistance(DistanceDistribution):
    kernel_type = KernelType.EXPONENTIAL

    def _build(self):
        return stats.expon(scale=self.scale)

    def random(self, rng):
        return rng.exponential(self.scale)


class ExponentialPowerDistance(_Folded):
    """Generalised normal; shape 1 is Laplace, shape 2 is normal-like."""
    kernel_type = KernelType.EXPONENTIAL_POWER
    uses_shape = True

    def _build(self):
        return stats.gennorm(self.shape, loc=0.0, scale=self.scale)


class GammaDistance(DistanceDistribution):
    kernel_type = KernelType.GAMMA
    uses_shape = True

    def _build(self):
        return stats.gamma(self.shape, scale=self.scale)

    def random(self, rng):
        return rng.gamma(self.shape, self.scale)


class HyperbolicSecantDistance(_Folded):
    kernel_type = KernelType.HYPERBOLIC_SECANT

    def _build(self):
        return stats.hypsecant(loc=0.0, scale=self.scale)


class LogisticDistance(_Folded):
    kernel_type = KernelType.LOGISTIC

    def _build(self):
        return stats.logistic(loc=0.0, scale=self.scale)

    def random(self, rng):
        return abs(rng.logistic(0.0, self.scale))


class LogNormalDistance(DistanceDistribution):
    """Log-normal with median scale and log-space sigma shape."""
    kernel_type = KernelType.LOG_NORMAL
    uses_shape = True

    def _build(self):
        return stats.lognorm(self.shape, scale=self.scale)

    def random(self, rng):
        return self.scale * rng.lognormal(0.0, self.shape)


class NormalDistance(_Folded):
    kernel_type = KernelType.NORMAL

    def _build(self):
        return stats.norm(loc=0.0, scale=self.scale)

    def random(self, rng):
        return abs(rng.normal(0.0, self.scale))


class PowerLawDistance(DistanceDistribution):
    """Pareto tail p(x) ∝ x^-shape for x >= scale; needs shape > 1."""
    kernel_type = KernelType.POWER_LAW
    uses_shape = True

    def __init__(self, scale: float, shape: float = 2.0):
        if not shape > 1:
            raise ConfigurationError(
                f"power_law kernel shape must be greater than 1, got {shape}"
            )
        super().__init__(scale, shape)

    def _build(self):
        return stats.pareto(self.shape - 1.0, scale=self.scale)


class WeibullDistance(DistanceDistribution):
    kernel_type = KernelType.WEIBULL
    uses_shape = True

    def _build(self):
        return stats.weibull_min(self.shape, scale=self.scale)

    def random(self, rng):
        return self.scale * rng.weibull(self.shape)


class UniformDistance(DistanceDistribution):
    """Distance uniform on [0, scale]."""
    kernel_type = KernelType.UNIFORM

    def _build(self):
        return stats.uniform(loc=0.0, scale=self.scale)

    def random(self, rng):
        return rng.uniform(0.0, self.scale)


DISTRIBUTIONS: Dict[KernelType, Type[DistanceDistribution]] = {
    cls.kernel_type: cls
    for cls in (
        CauchyDistance, ExponentialDistance, ExponentialPowerDistance,
        GammaDistance, HyperbolicSecantDistance, LogisticDistance,
        LogNormalDistance, NormalDistance, PowerLawDistance,
        WeibullDistance, UniformDistance,
    )
}


def create_distribution(kernel_type: KernelType, scale: float, shape: float = 1.0) -> DistanceDistribution:
    """Build the distance law for a radial kernel type.

    Raises:
        ConfigurationError: If the type has no distance law (neighbor,
            network) or the parameters are invalid.
    """
    try:
        cls = DISTRIBUTIONS[kernel_type]
    except KeyError:
        raise ConfigurationError(
            f"kernel type '{kernel_type.value}' has no distance distribution"
        )
    return cls(scale, shape)
