"""Model orchestrator: builds a run from a configuration and iterates days.

A Model wires together the host state, the RNG hierarchy, the dispersal
kernel, the optional collaborators (network, treatments, quarantine areas)
and the per-process schedules, then advances one calendar day per step.

Within a day the processes run in `simulation.step_order` (default
disperse → mortality → movement → overpopulation → removal), each one only
when its schedule is true that day. On its yearly date, survival removes
the non-surviving share of pests before any of them. Spread-rate and
quarantine actions are evaluated at the end of the day, after all processes.

Runs are sequential; ensembles of independent runs may execute
concurrently because each run owns its RNG streams and its state copies.

Usage:
    config = load_config("configs/example.yaml")
    model = Model(config, susceptible, infected, capacity)
    result = model.run(collect="snapshots")
    result.infected[-1]           # infected grid on the last output day
"""

from __future__ import annotations

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from pestspread.config import SimulationConfig, validate_config
from pestspread.dates import Date, Season
from pestspread.errors import ConfigurationError
from pestspread.hosts import HostPool
from pestspread.kernels import create_dispersal_kernel
from pestspread.network import Network
from pestspread.perf import PerfMonitor
from pestspread.quarantine import QuarantineEscape
from pestspread.rng import create_rng_hierarchy, restore_rng_state, rng_state_snapshot, spawn_run_seeds
from pestspread.scheduling import (
    Scheduler,
    get_number_of_scheduled_actions,
    schedule_from_string,
    simulation_step_to_action_step,
)
from pestspread.simulation import DispersalDiagnostics, SpreadEngine
from pestspread.snapshots import SnapshotRecorder
from pestspread.spread_rate import Rates, SpreadRate, average_spread_rate
from pestspread.treatments import Treatments
from pestspread.types import KernelType

LOGGER = logging.getLogger(__name__)

COLLECT_MODES = ("snapshots", "final")


@dataclass
class SimulationResult:
    """Outputs of one run.

    susceptible / infected are stacked (n_output_days, rows, cols) arrays
    for collect="snapshots" and empty for collect="final"; the final state
    is always available through `hosts`.
    """
    dates: List[Date]
    susceptible: np.ndarray
    infected: np.ndarray
    hosts: HostPool
    diagnostics: DispersalDiagnostics
    spread_rate: Optional[SpreadRate] = None
    quarantine: Optional[QuarantineEscape] = None
    completed: bool = True
    steps_run: int = 0
    seed: int = 0
    perf: Dict = field(default_factory=dict)

    @property
    def final_infected(self) -> np.ndarray:
        return self.hosts.infected.array

    @property
    def final_susceptible(self) -> np.ndarray:
        return self.hosts.susceptible.array


class Model:
    """One simulation run.

    Args:
        config: Validated (or validatable) SimulationConfig.
        susceptible: Initial susceptible hosts (rows x cols).
        infected: Initial infected hosts.
        carrying_capacity: Maximum hosts per cell.
        network: Transport network; loaded from movement.network_file when
            omitted and the file is configured.
        treatments: Treatments to apply when treatments.enabled.
        quarantine_areas: Area-id grid, required when quarantine.enabled.
        weather_coefficients: Per-cell coefficients in [0, 1], required when
            weather.enabled. A 2-D grid applies to every spread day; a 3-D
            stack holds one grid per spread day, in order.
        survival_rate: Per-cell pest survival rate in [0, 1], required
            when survival.enabled.
        resistant: Optional initial resistant hosts.
        perf: Optional PerfMonitor for per-process timing.
        seed: Overrides simulation.random_seed (used by ensembles).

    Raises:
        ConfigurationError: On any mismatch detected before the first day.
    """

    def __init__(
        self,
        config: SimulationConfig,
        susceptible,
        infected,
        carrying_capacity,
        network: Optional[Network] = None,
        treatments: Optional[Treatments] = None,
        quarantine_areas=None,
        resistant=None,
        weather_coefficients=None,
        survival_rate=None,
        perf: Optional[PerfMonitor] = None,
        seed: Optional[int] = None,
    ):
        validate_config(config)
        self.config = config
        sim = config.simulation

        self.scheduler = Scheduler(config.start_date, config.end_date)
        self.hosts = HostPool(
            susceptible,
            infected,
            carrying_capacity,
            model_type=config.model_type,
            latency_period_steps=sim.latency_period_steps,
            resistant=resistant,
        )
        if self.hosts.shape != (sim.rows, sim.cols):
            raise ConfigurationError(
                f"host grids are {self.hosts.rows}x{self.hosts.cols}, "
                f"configuration says {sim.rows}x{sim.cols}"
            )

        self.seed = sim.random_seed if seed is None else seed
        self.rngs = create_rng_hierarchy(self.seed)
        self.network = self._resolve_network(network)
        self.treatments = self._resolve_treatments(treatments)
        self.perf = perf if perf is not None else PerfMonitor(enabled=False)

        self.engine = SpreadEngine(
            self.hosts,
            self.rngs,
            reproductive_rate=config.spread.reproductive_rate,
            dispersal_percentage=config.spread.dispersal_percentage,
            generate_stochasticity=sim.generate_stochasticity,
            establishment_stochasticity=sim.establishment_stochasticity,
            establishment_probability=sim.establishment_probability,
            dispersers_leave_origin=config.spread.dispersers_leave_origin,
            movement_stochasticity=config.movement.stochasticity,
            overpopulation_stochasticity=config.overpopulation.stochasticity,
            neighborhood=config.overpopulation.neighborhood,
            record_outside_dispersers=config.output.record_outside_dispersers,
        )
        self.kernel = create_dispersal_kernel(config, self.engine.dispersers, self.network)
        self._build_schedules()
        self.weather = self._resolve_weather(weather_coefficients)
        self.survival_rate = self._resolve_survival(survival_rate)

        self.spread_rate: Optional[SpreadRate] = None
        if config.spread_rate.enabled:
            self.spread_rate = SpreadRate(
                self.hosts.infected.array, sim.ew_res, sim.ns_res, self.rate_num_steps
            )
        self.quarantine: Optional[QuarantineEscape] = None
        if config.quarantine.enabled:
            if quarantine_areas is None:
                raise ConfigurationError("quarantine.enabled requires quarantine_areas")
            self.quarantine = QuarantineEscape(
                quarantine_areas,
                sim.ew_res,
                sim.ns_res,
                get_number_of_scheduled_actions(self.quarantine_schedule),
            )
            if self.quarantine.areas.shape != self.hosts.shape:
                raise ConfigurationError(
                    f"quarantine grid is {self.quarantine.areas.shape}, "
                    f"expected {self.hosts.shape}"
                )

        self.snapshots = SnapshotRecorder(enabled=True, schedule=self.output_schedule)
        self._pending_removals: List[Dict] = []
        self._processes: Dict[str, Callable[[int], None]] = {
            'disperse': self._disperse,
            'mortality': self._mortality,
            'movement': self._movement,
            'overpopulation': self._overpopulation,
            'removal': self._removal,
        }
        self.step = 0

    # ── construction helpers ─────────────────────────────────────────

    def _resolve_network(self, network: Optional[Network]) -> Optional[Network]:
        config = self.config
        needs_network = config.movement.enabled or (
            config.dispersal.use_anthropogenic_kernel
            and KernelType.from_string(config.dispersal.anthropogenic_kernel) == KernelType.NETWORK
        ) or KernelType.from_string(config.dispersal.natural_kernel) == KernelType.NETWORK
        if network is None and needs_network:
            if not config.movement.network_file:
                raise ConfigurationError(
                    "network movement or network kernel requires a network "
                    "(pass one in or set movement.network_file)"
                )
            network = Network.load(config.movement.network_file)
        if network is not None and not network.fits(self.hosts.rows, self.hosts.cols):
            raise ConfigurationError("network nodes lie outside the landscape grid")
        return network

    def _resolve_treatments(self, treatments: Optional[Treatments]) -> Optional[Treatments]:
        if not self.config.treatments.enabled:
            if treatments is not None and len(treatments):
                LOGGER.warning("treatments given but treatments.enabled is false; ignoring them")
            return None
        if treatments is None:
            raise ConfigurationError("treatments.enabled requires a Treatments instance")
        if treatments.shape != self.hosts.shape:
            raise ConfigurationError(
                f"treatment maps are {treatments.shape}, expected {self.hosts.shape}"
            )
        return treatments

    def _coefficient_grid(self, data, name: str) -> np.ndarray:
        array = np.asarray(data, dtype=float)
        if array.shape[-2:] != self.hosts.shape or array.ndim not in (2, 3):
            raise ConfigurationError(
                f"{name} must be {self.hosts.rows}x{self.hosts.cols} "
                f"(or a stack of such grids), got shape {array.shape}"
            )
        if np.isnan(array).any() or (array < 0).any() or (array > 1).any():
            raise ConfigurationError(f"{name} values must lie in [0, 1]")
        return array

    def _resolve_weather(self, weather_coefficients) -> Optional[np.ndarray]:
        if not self.config.weather.enabled:
            if weather_coefficients is not None:
                LOGGER.warning("weather coefficients given but weather.enabled is false; ignoring them")
            return None
        if weather_coefficients is None:
            raise ConfigurationError("weather.enabled requires weather_coefficients")
        weather = self._coefficient_grid(weather_coefficients, "weather_coefficients")
        n_spread = get_number_of_scheduled_actions(self.spread_schedule)
        if weather.ndim == 3 and len(weather) < n_spread:
            raise ConfigurationError(
                f"{len(weather)} weather grids given for {n_spread} spread days"
            )
        return weather

    def _resolve_survival(self, survival_rate) -> Optional[np.ndarray]:
        if not self.config.survival.enabled:
            if survival_rate is not None:
                LOGGER.warning("survival rate given but survival.enabled is false; ignoring it")
            return None
        if survival_rate is None:
            raise ConfigurationError("survival.enabled requires a survival_rate grid")
        rate = self._coefficient_grid(survival_rate, "survival_rate")
        if rate.ndim != 2:
            raise ConfigurationError("survival_rate must be a single grid")
        return rate

    def _build_schedules(self) -> None:
        config, scheduler = self.config, self.scheduler
        off = [False] * scheduler.num_steps

        season = Season(config.spread.season_start_month, config.spread.season_end_month)
        in_season = scheduler.schedule_spread(season)
        spread_days = schedule_from_string(
            scheduler, config.spread.frequency, config.spread.frequency_n
        )
        self.spread_schedule = [a and b for a, b in zip(in_season, spread_days)]

        mo, mv = config.mortality, config.movement
        self.mortality_schedule = (
            schedule_from_string(scheduler, mo.frequency, mo.frequency_n) if mo.enabled else off
        )
        self.movement_schedule = (
            schedule_from_string(scheduler, mv.frequency, mv.frequency_n) if mv.enabled else off
        )
        su = config.survival
        self.survival_schedule = (
            scheduler.schedule_action_yearly(su.month, su.day) if su.enabled else off
        )
        sr, qu, out = config.spread_rate, config.quarantine, config.output
        self.spread_rate_schedule = (
            schedule_from_string(scheduler, sr.frequency, sr.frequency_n) if sr.enabled else off
        )
        self.quarantine_schedule = (
            schedule_from_string(scheduler, qu.frequency, qu.frequency_n) if qu.enabled else off
        )
        self.output_schedule = schedule_from_string(scheduler, out.frequency, out.frequency_n)

    # ── properties ───────────────────────────────────────────────────

    @property
    def num_steps(self) -> int:
        return self.scheduler.num_steps

    @property
    def rate_num_steps(self) -> int:
        """Number of spread-rate actions in the run."""
        return get_number_of_scheduled_actions(self.spread_rate_schedule)

    @property
    def finished(self) -> bool:
        return self.step >= self.num_steps

    @property
    def current_date(self) -> Optional[Date]:
        """Date the next run_step() will simulate."""
        return None if self.finished else self.scheduler.date_of(self.step)

    # ── daily processes ──────────────────────────────────────────────

    def _check(self, phase: str) -> None:
        if self.config.output.check_invariants:
            self.engine.check_invariants(phase)

    def _weather_at(self, step: int) -> Optional[np.ndarray]:
        if self.weather is None or self.weather.ndim == 2:
            return self.weather
        return self.weather[simulation_step_to_action_step(self.spread_schedule, step)]

    def _survival(self, step: int) -> None:
        if self.survival_schedule[step]:
            self.engine.survival(self.survival_rate)
            self._check("survival")

    def _disperse(self, step: int) -> None:
        if self.spread_schedule[step]:
            self.engine.disperse_and_infect(self.kernel, self._weather_at(step))

    def _mortality(self, step: int) -> None:
        if not self.mortality_schedule[step]:
            return
        override = self.treatments.mortality_override(step) if self.treatments else None
        self.engine.mortality(self.config.mortality.rate, self.config.mortality.time_lag, override)
        self._check("mortality")

    def _movement(self, step: int) -> None:
        if self.movement_schedule[step]:
            self.engine.movement(self.network)

    def _overpopulation(self, step: int) -> None:
        if self.config.overpopulation.enabled:
            self.engine.move_overpopulated()

    def _removal(self, step: int) -> None:
        if self.treatments is not None:
            self.engine.treat(self.treatments, step)
        while self._pending_removals:
            self.engine.remove(**self._pending_removals.pop(0))
        self._check("removal")

    def request_removal(self, infected=None, susceptible=None) -> None:
        """Queue explicit host removal for the removal phase of the next day."""
        self._pending_removals.append({'infected': infected, 'susceptible': susceptible})

    # ── stepping ─────────────────────────────────────────────────────

    def run_step(self, step: Optional[int] = None) -> Date:
        """Advance exactly one day.

        Args:
            step: Day index to simulate; defaults to the next day. Passing an
                explicit index re-runs the processes scheduled for that day
                on the current state, which is useful for testing one day
                in isolation.

        Returns:
            The simulated date.

        Raises:
            IndexError: If step is outside the simulated range.
        """
        if step is None:
            step = self.step
        if not 0 <= step < self.num_steps:
            raise IndexError(f"step {step} outside 0..{self.num_steps - 1}")
        date = self.scheduler.date_of(step)

        if self.survival_rate is not None:
            with self.perf.track('survival'):
                self._survival(step)
        for name in self.config.simulation.step_order:
            with self.perf.track(name):
                self._processes[name](step)

        infected = self.hosts.infected.array
        if self.spread_rate is not None and self.spread_rate_schedule[step]:
            action = simulation_step_to_action_step(self.spread_rate_schedule, step)
            self.spread_rate.action(infected, action)
        if self.quarantine is not None and self.quarantine_schedule[step]:
            action = simulation_step_to_action_step(self.quarantine_schedule, step)
            self.quarantine.action(infected, action)

        self.snapshots.capture(step, date, self.hosts)
        self.step = step + 1
        LOGGER.debug(
            "%s: %d infected, %d susceptible",
            date, int(infected.sum()), int(self.hosts.susceptible.array.sum()),
        )
        return date

    def run(
        self,
        collect: str = "snapshots",
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> SimulationResult:
        """Run all remaining days.

        Args:
            collect: "snapshots" keeps grids for every output day,
                "final" only the final state.
            should_stop: Polled before each day; returning True ends the run
                early at a day boundary.

        Returns:
            SimulationResult with completed=False if the run was stopped.
        """
        if collect not in COLLECT_MODES:
            raise ValueError(f"collect must be one of {COLLECT_MODES}, got '{collect}'")
        self.snapshots.enabled = collect == "snapshots"
        completed = True
        self.perf.start()
        while not self.finished:
            if should_stop is not None and should_stop():
                completed = False
                LOGGER.info("run stopped before %s (step %d)", self.current_date, self.step)
                break
            self.run_step()
        self.perf.stop()
        LOGGER.info(
            "run finished after %d of %d days: %d infected cells, %d dispersers left the grid",
            self.step,
            self.num_steps,
            int((self.hosts.infected.array > 0).sum()),
            self.engine.diagnostics.n_outside,
        )
        return self.result(completed)

    def result(self, completed: bool = True) -> SimulationResult:
        return SimulationResult(
            dates=self.snapshots.get_dates(),
            susceptible=self.snapshots.stack('susceptible'),
            infected=self.snapshots.stack('infected'),
            hosts=self.hosts,
            diagnostics=self.engine.diagnostics,
            spread_rate=self.spread_rate,
            quarantine=self.quarantine,
            completed=completed,
            steps_run=self.step,
            seed=self.seed,
            perf=self.perf.summary() if self.perf.enabled else {},
        )

    # ── checkpointing ────────────────────────────────────────────────

    def checkpoint(self) -> Dict:
        """Capture everything needed to resume at the current day boundary."""
        return {
            'step': self.step,
            'hosts': self.hosts.copy(),
            'rng': rng_state_snapshot(self.rngs),
            'rotation': self.engine._rotation,
            'diagnostics': copy.deepcopy(self.engine.diagnostics),
            'spread_rate': copy.deepcopy(self.spread_rate),
            'quarantine': copy.deepcopy(self.quarantine),
            'pending_removals': list(self._pending_removals),
        }

    def restore(self, state: Dict) -> None:
        """Return to a checkpoint taken from this model."""
        saved: HostPool = state['hosts'].copy()
        hosts = self.hosts
        hosts.susceptible.array[...] = saved.susceptible.array
        hosts.infected.array[...] = saved.infected.array
        hosts.resistant.array[...] = saved.resistant.array
        hosts.died.array[...] = saved.died.array
        hosts.exposed = saved.exposed
        hosts.mortality_tracker = saved.mortality_tracker
        restore_rng_state(self.rngs, state['rng'])
        self.engine._rotation = state['rotation']
        self.engine.diagnostics = copy.deepcopy(state['diagnostics'])
        self.spread_rate = copy.deepcopy(state['spread_rate'])
        self.quarantine = copy.deepcopy(state['quarantine'])
        self._pending_removals = list(state['pending_removals'])
        self.snapshots.snapshots = {
            s: snap for s, snap in self.snapshots.snapshots.items() if s < state['step']
        }
        self.step = state['step']


# ═══════════════════════════════════════════════════════════════════════
# CONVENIENCE ENTRY POINTS
# ═══════════════════════════════════════════════════════════════════════

def run_simulation(
    config: SimulationConfig,
    susceptible,
    infected,
    carrying_capacity,
    collect: str = "snapshots",
    **kwargs,
) -> SimulationResult:
    """Build a Model and run it to the end."""
    model = Model(config, susceptible, infected, carrying_capacity, **kwargs)
    return model.run(collect=collect)


def run_ensemble(
    config: SimulationConfig,
    susceptible,
    infected,
    carrying_capacity,
    n_runs: int,
    workers: int = 1,
    collect: str = "final",
    **kwargs,
) -> List[SimulationResult]:
    """Run independent replicates, optionally on a thread pool.

    Each replicate gets its own seed (spawned from simulation.random_seed)
    and its own copies of the input grids, so results do not depend on
    `workers`. Shared collaborators (network, treatments) are only read.

    Returns:
        Results in replicate order.
    """
    if n_runs < 1:
        raise ConfigurationError(f"n_runs must be >= 1, got {n_runs}")
    if workers < 1:
        raise ConfigurationError(f"workers must be >= 1, got {workers}")
    seeds = spawn_run_seeds(config.simulation.random_seed, n_runs)

    def _one(seed: int) -> SimulationResult:
        model = Model(config, susceptible, infected, carrying_capacity, seed=seed, **kwargs)
        return model.run(collect=collect)

    if workers == 1:
        return [_one(seed) for seed in seeds]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(_one, seeds))


def ensemble_spread_rate(results: List[SimulationResult], step: int) -> Rates:
    """Average spread rate at one action step across ensemble members."""
    rates = [r.spread_rate for r in results if r.spread_rate is not None]
    return average_spread_rate(rates, step)
