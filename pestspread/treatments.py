"""Management treatments.

A treatment is a map of per-cell efficacy in [0, 1] applied on a start
date. Two kinds exist, distinguished by their length:

  simple (num_days == 0)    hosts are removed from the landscape on the
                            start day (host removal, sanitation cuts)
  pesticide (num_days > 0)  hosts become resistant on the start day and
                            return to susceptible when the window ends

The application mode decides how many infected hosts a treated cell loses:
  ratio_to_all           the same efficacy ratio as susceptible hosts
  all_infected_in_cell   every infected host in the cell, whatever the ratio

A treatment may also carry a mortality rate that replaces the configured
rate within its window, for cells it covers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np

from pestspread.dates import Date
from pestspread.errors import ConfigurationError
from pestspread.hosts import HostPool

LOGGER = logging.getLogger(__name__)


class TreatmentApplication(Enum):
    RATIO_TO_ALL = "ratio_to_all"
    ALL_INFECTED_IN_CELL = "all_infected_in_cell"

    @classmethod
    def from_string(cls, text: str) -> "TreatmentApplication":
        key = str(text).strip().lower().replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            raise ConfigurationError(
                f"unknown treatment application '{text}', expected one of "
                f"{[a.value for a in cls]}"
            )


def _treated(count: int, ratio: float) -> int:
    """Hosts affected when a fraction ratio of count is treated."""
    remaining = int(np.floor(count * (1.0 - ratio)))
    return count - remaining


@dataclass
class Treatment:
    """One treatment event, with steps resolved against the run's start date."""
    efficacy: np.ndarray
    start_step: int
    num_days: int = 0
    application: TreatmentApplication = TreatmentApplication.RATIO_TO_ALL
    mortality_rate: Optional[float] = None

    @property
    def end_step(self) -> int:
        return self.start_step + self.num_days

    @property
    def is_pesticide(self) -> bool:
        return self.num_days > 0

    def is_active(self, step: int) -> bool:
        return self.start_step <= step <= self.end_step

    def _cells(self):
        return [(int(r), int(c)) for r, c in np.argwhere(self.efficacy > 0)]

    def apply(self, hosts: HostPool) -> int:
        """Apply on the start day; returns the number of hosts affected."""
        affected = 0
        for row, col in self._cells():
            ratio = float(self.efficacy[row, col])
            n_sus = _treated(int(hosts.susceptible[row, col]), ratio)
            n_exp = _treated(hosts.exposed_at(row, col), ratio)
            if self.application == TreatmentApplication.ALL_INFECTED_IN_CELL:
                n_inf = int(hosts.infected[row, col])
            else:
                n_inf = _treated(int(hosts.infected[row, col]), ratio)
            if self.is_pesticide:
                affected += hosts.make_resistant_at(row, col, n_sus, n_exp, n_inf)
            else:
                affected += hosts.remove_susceptible_at(row, col, n_sus)
                affected += hosts.remove_exposed_at(row, col, n_exp)
                affected += hosts.remove_infected_at(row, col, n_inf)
        return affected

    def end(self, hosts: HostPool) -> int:
        """Close a pesticide window; resistant hosts become susceptible."""
        released = 0
        for row, col in self._cells():
            released += hosts.release_resistant_at(row, col)
        return released


class Treatments:
    """All treatments of one run.

    Args:
        start_date: First day of the simulation; treatment dates are
            converted to step indices relative to it.
        shape: (rows, cols) of the landscape.
    """

    def __init__(self, start_date: Date, shape):
        self.start_date = start_date
        self.shape = tuple(shape)
        self.treatments: List[Treatment] = []

    def add_treatment(
        self,
        efficacy,
        date: Date,
        num_days: int = 0,
        application="ratio_to_all",
        mortality_rate: Optional[float] = None,
    ) -> Treatment:
        """Register a treatment starting on date.

        Raises:
            ConfigurationError: For a mis-shaped map, efficacy outside [0, 1],
                negative num_days or an invalid mortality rate.
        """
        efficacy = np.array(efficacy, dtype=float, copy=True)
        if efficacy.shape != self.shape:
            raise ConfigurationError(
                f"treatment map is {efficacy.shape}, expected {self.shape}"
            )
        if (efficacy < 0).any() or (efficacy > 1).any():
            raise ConfigurationError("treatment efficacy must lie in [0, 1]")
        if num_days < 0:
            raise ConfigurationError(f"treatment num_days must be >= 0, got {num_days}")
        if mortality_rate is not None and not 0 <= mortality_rate <= 1:
            raise ConfigurationError(
                f"treatment mortality_rate must be in [0, 1], got {mortality_rate}"
            )
        if not isinstance(application, TreatmentApplication):
            application = TreatmentApplication.from_string(application)
        treatment = Treatment(
            efficacy=efficacy,
            start_step=self.start_date.days_until(date),
            num_days=num_days,
            application=application,
            mortality_rate=mortality_rate,
        )
        self.treatments.append(treatment)
        return treatment

    def __len__(self) -> int:
        return len(self.treatments)

    def manage(self, step: int, hosts: HostPool) -> bool:
        """Start and end the treatments due at step.

        Returns:
            True if any treatment started or ended.
        """
        changed = False
        for treatment in self.treatments:
            if treatment.start_step == step:
                n = treatment.apply(hosts)
                LOGGER.debug("step %d: treatment applied to %d hosts", step, n)
                changed = True
            elif treatment.is_pesticide and treatment.end_step == step:
                n = treatment.end(hosts)
                LOGGER.debug("step %d: pesticide window closed, %d hosts released", step, n)
                changed = True
        return changed

    def mortality_override(self, step: int) -> Optional[np.ndarray]:
        """Per-cell mortality rates replacing the configured one at step.

        Cells without an override hold NaN. Returns None when no treatment
        with a mortality rate is active. Later treatments win on overlap.
        """
        override = None
        for treatment in self.treatments:
            if treatment.mortality_rate is None or not treatment.is_active(step):
                continue
            if override is None:
                override = np.full(self.shape, np.nan)
            override[treatment.efficacy > 0] = treatment.mortality_rate
        return override
