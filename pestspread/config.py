"""Configuration system for pestspread.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → programmatic overrides

Each top-level YAML key maps to one section dataclass; unknown keys are
ignored so that configuration files can carry notes for other tools.
validate_config() raises ConfigurationError for anything that would make
the simulation meaningless, and warns (UserWarning) about problems that
only surface later, such as a network file that does not exist yet.

Frequencies are given as a string plus a multiplier n, e.g.
    frequency: month
    frequency_n: 3      # end of every third month
Valid strings: day, week, month, year, every_n_steps, final_step.
"""

from __future__ import annotations

import dataclasses
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from pestspread.dates import Date
from pestspread.errors import ConfigurationError
from pestspread.scheduling import FREQUENCY_STRINGS
from pestspread.types import Direction, KernelType, ModelType


DEFAULT_STEP_ORDER = ['disperse', 'mortality', 'movement', 'overpopulation', 'removal']


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Landscape, time span and randomness."""
    model_type: str = 'SI'            # 'SI' or 'SEI'
    latency_period_steps: int = 0     # SEI only, in dispersal steps
    rows: int = 100
    cols: int = 100
    ew_res: float = 30.0              # cell width (map units, e.g. m)
    ns_res: float = 30.0              # cell height (map units)
    date_start: str = '2020-01-01'
    date_end: str = '2020-12-31'
    random_seed: int = 42
    deterministic: bool = False       # deterministic kernel instead of radial
    generate_stochasticity: bool = True       # Poisson disperser generation
    establishment_stochasticity: bool = True  # random establishment draws
    establishment_probability: float = 0.5    # used when not stochastic
    step_order: List[str] = field(default_factory=lambda: list(DEFAULT_STEP_ORDER))


@dataclass
class SpreadSection:
    """Disperser generation and establishment."""
    reproductive_rate: float = 4.4        # dispersers per infected host per spread day
    dispersal_percentage: float = 0.99    # probability a disperser establishes
    season_start_month: int = 1
    season_end_month: int = 12
    frequency: str = 'day'
    frequency_n: int = 1
    dispersers_leave_origin: bool = False  # emigration: leaving dispersers free a host


@dataclass
class DispersalSection:
    """Natural and anthropogenic kernels."""
    natural_kernel: str = 'cauchy'
    natural_scale: float = 20.0
    natural_shape: float = 1.0
    natural_direction: str = 'NONE'
    natural_kappa: float = 0.0
    use_anthropogenic_kernel: bool = False
    percent_natural_dispersal: float = 1.0
    anthropogenic_kernel: str = 'cauchy'
    anthropogenic_scale: float = 1000.0
    anthropogenic_shape: float = 1.0
    anthropogenic_direction: str = 'NONE'
    anthropogenic_kappa: float = 0.0
    deterministic_coverage: float = 0.99  # quantile covered by the deterministic window


@dataclass
class MortalitySection:
    enabled: bool = False
    rate: float = 0.0
    time_lag: int = 0               # mortality steps before a cohort starts dying
    frequency: str = 'year'
    frequency_n: int = 1


@dataclass
class MovementSection:
    """Network movement of infected hosts."""
    enabled: bool = False
    network_file: Optional[str] = None
    stochasticity: bool = True
    frequency: str = 'day'
    frequency_n: int = 1


@dataclass
class WeatherSection:
    """Per-cell weather coefficients scaling generation and establishment."""
    enabled: bool = False


@dataclass
class SurvivalSection:
    """Yearly removal of the non-surviving share of pests."""
    enabled: bool = False
    month: int = 1
    day: int = 1


@dataclass
class OverpopulationSection:
    enabled: bool = True
    neighborhood: str = 'moore'     # 'moore' (8 neighbours) or 'von_neumann' (4)
    stochasticity: bool = True      # random choice of which hosts move


@dataclass
class TreatmentSection:
    enabled: bool = False


@dataclass
class SpreadRateSection:
    enabled: bool = False
    frequency: str = 'year'
    frequency_n: int = 1


@dataclass
class QuarantineSection:
    enabled: bool = False
    frequency: str = 'final_step'
    frequency_n: int = 1


@dataclass
class OutputSection:
    """Which days are kept when a run collects snapshots."""
    frequency: str = 'day'
    frequency_n: int = 1
    check_invariants: bool = True
    record_outside_dispersers: bool = False  # keep cells of off-grid dispersers


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    spread: SpreadSection = field(default_factory=SpreadSection)
    dispersal: DispersalSection = field(default_factory=DispersalSection)
    mortality: MortalitySection = field(default_factory=MortalitySection)
    movement: MovementSection = field(default_factory=MovementSection)
    weather: WeatherSection = field(default_factory=WeatherSection)
    survival: SurvivalSection = field(default_factory=SurvivalSection)
    overpopulation: OverpopulationSection = field(default_factory=OverpopulationSection)
    treatments: TreatmentSection = field(default_factory=TreatmentSection)
    spread_rate: SpreadRateSection = field(default_factory=SpreadRateSection)
    quarantine: QuarantineSection = field(default_factory=QuarantineSection)
    output: OutputSection = field(default_factory=OutputSection)

    @property
    def start_date(self) -> Date:
        return Date.from_string(self.simulation.date_start)

    @property
    def end_date(self) -> Date:
        return Date.from_string(self.simulation.date_end)

    @property
    def model_type(self) -> ModelType:
        return ModelType.from_string(self.simulation.model_type)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


SECTION_MAP = {
    'simulation': SimulationSection,
    'spread': SpreadSection,
    'dispersal': DispersalSection,
    'mortality': MortalitySection,
    'movement': MovementSection,
    'weather': WeatherSection,
    'survival': SurvivalSection,
    'overpopulation': OverpopulationSection,
    'treatments': TreatmentSection,
    'spread_rate': SpreadRateSection,
    'quarantine': QuarantineSection,
    'output': OutputSection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    for key, cls in SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def _check_frequency(name: str, frequency: str, n: int) -> None:
    if frequency not in FREQUENCY_STRINGS:
        raise ConfigurationError(
            f"{name}.frequency must be one of {FREQUENCY_STRINGS}, got '{frequency}'"
        )
    if n < 1:
        raise ConfigurationError(f"{name}.frequency_n must be >= 1, got {n}")


def _check_probability(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be in [0, 1], got {value}")


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ConfigurationError on failure.

    Checks:
      - Landscape dimensions and resolution are positive
      - Dates parse and the range holds at least one day
      - Enum strings (model type, kernels, directions, frequencies) are known
      - Probabilities lie in [0, 1]; kernel scales and shapes are positive
      - step_order is a permutation of the five daily processes
    """
    sim = config.simulation

    # Landscape
    if sim.rows <= 0 or sim.cols <= 0:
        raise ConfigurationError(
            f"simulation.rows and cols must be positive, got {sim.rows}x{sim.cols}"
        )
    if sim.ew_res <= 0 or sim.ns_res <= 0:
        raise ConfigurationError(
            f"simulation.ew_res and ns_res must be positive, got {sim.ew_res}, {sim.ns_res}"
        )

    # Dates
    try:
        start, end = config.start_date, config.end_date
    except ValueError as exc:
        raise ConfigurationError(f"invalid simulation date: {exc}") from exc
    if end < start:
        raise ConfigurationError(
            f"simulation.date_end ({end}) is before date_start ({start})"
        )

    # Model
    model_type = config.model_type
    if sim.latency_period_steps < 0:
        raise ConfigurationError(
            f"simulation.latency_period_steps must be >= 0, got {sim.latency_period_steps}"
        )
    if model_type == ModelType.SEI and sim.latency_period_steps == 0:
        warnings.warn(
            "SEI model with latency_period_steps=0 behaves like SI",
            UserWarning,
            stacklevel=2,
        )
    if sim.random_seed < 0:
        raise ConfigurationError("simulation.random_seed must be non-negative")
    _check_probability("simulation.establishment_probability", sim.establishment_probability)
    if sorted(sim.step_order) != sorted(DEFAULT_STEP_ORDER):
        raise ConfigurationError(
            f"simulation.step_order must be a permutation of {DEFAULT_STEP_ORDER}, "
            f"got {sim.step_order}"
        )

    # Spread
    sp = config.spread
    if sp.reproductive_rate < 0:
        raise ConfigurationError(
            f"spread.reproductive_rate must be >= 0, got {sp.reproductive_rate}"
        )
    _check_probability("spread.dispersal_percentage", sp.dispersal_percentage)
    for name in ("season_start_month", "season_end_month"):
        month = getattr(sp, name)
        if not 1 <= month <= 12:
            raise ConfigurationError(f"spread.{name} must be in 1..12, got {month}")
    _check_frequency("spread", sp.frequency, sp.frequency_n)

    # Kernels
    d = config.dispersal
    for prefix in ("natural", "anthropogenic"):
        if prefix == "anthropogenic" and not d.use_anthropogenic_kernel:
            continue
        kernel = KernelType.from_string(getattr(d, f"{prefix}_kernel"))
        direction = Direction.from_string(getattr(d, f"{prefix}_direction"))
        if kernel.is_radial:
            if getattr(d, f"{prefix}_scale") <= 0:
                raise ConfigurationError(f"dispersal.{prefix}_scale must be positive")
            if getattr(d, f"{prefix}_shape") <= 0:
                raise ConfigurationError(f"dispersal.{prefix}_shape must be positive")
        if getattr(d, f"{prefix}_kappa") < 0:
            raise ConfigurationError(f"dispersal.{prefix}_kappa must be >= 0")
        if kernel == KernelType.NEIGHBOR and direction == Direction.NONE:
            raise ConfigurationError(
                f"dispersal.{prefix}_direction is required for the neighbor kernel"
            )
    _check_probability("dispersal.percent_natural_dispersal", d.percent_natural_dispersal)
    if not 0.0 < d.deterministic_coverage < 1.0:
        raise ConfigurationError(
            f"dispersal.deterministic_coverage must be in (0, 1), got {d.deterministic_coverage}"
        )

    # Mortality
    mo = config.mortality
    _check_probability("mortality.rate", mo.rate)
    if mo.time_lag < 0:
        raise ConfigurationError(f"mortality.time_lag must be >= 0, got {mo.time_lag}")
    _check_frequency("mortality", mo.frequency, mo.frequency_n)

    # Movement
    mv = config.movement
    _check_frequency("movement", mv.frequency, mv.frequency_n)
    if mv.network_file and not os.path.isfile(mv.network_file):
        warnings.warn(
            f"movement.network_file '{mv.network_file}' does not exist. "
            f"Network loading will fail unless a network is passed in directly.",
            UserWarning,
            stacklevel=2,
        )

    # Survival (leap year so that Feb 29 is accepted)
    su = config.survival
    try:
        Date(2000, su.month, su.day)
    except ValueError as exc:
        raise ConfigurationError(
            f"survival.month/day ({su.month}/{su.day}) is not a calendar day"
        ) from exc

    if config.overpopulation.neighborhood not in ("moore", "von_neumann"):
        raise ConfigurationError(
            f"overpopulation.neighborhood must be 'moore' or 'von_neumann', "
            f"got '{config.overpopulation.neighborhood}'"
        )

    _check_frequency("spread_rate", config.spread_rate.frequency, config.spread_rate.frequency_n)
    _check_frequency("quarantine", config.quarantine.frequency, config.quarantine.frequency_n)
    _check_frequency("output", config.output.frequency, config.output.frequency_n)


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        overrides: Optional dict of overrides (e.g. from a parameter sweep).

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ConfigurationError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def config_from_dict(data: Dict) -> SimulationConfig:
    """Validated SimulationConfig from an in-memory dict of sections."""
    config = _yaml_to_config(data)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
