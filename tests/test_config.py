"""Tests for pestspread.config: configuration loading and validation."""

import warnings
from pathlib import Path

import pytest
import yaml

from pestspread.config import (
    DEFAULT_STEP_ORDER,
    DispersalSection,
    SimulationConfig,
    SimulationSection,
    config_from_dict,
    deep_merge,
    default_config,
    load_config,
    validate_config,
)
from pestspread.dates import Date
from pestspread.errors import ConfigurationError
from pestspread.types import ModelType


# ── deep_merge tests ──────────────────────────────────────────────────

class TestDeepMerge:
    def test_simple_override(self):
        base = {'a': 1, 'b': 2}
        result = deep_merge(base, {'b': 3})
        assert result == {'a': 1, 'b': 3}

    def test_nested_merge(self):
        base = {'x': {'a': 1, 'b': 2}, 'y': 10}
        result = deep_merge(base, {'x': {'b': 3, 'c': 4}})
        assert result == {'x': {'a': 1, 'b': 3, 'c': 4}, 'y': 10}

    def test_override_dict_with_scalar(self):
        base = {'a': {'nested': 1}}
        result = deep_merge(base, {'a': 'replaced'})
        assert result == {'a': 'replaced'}

    def test_empty_override(self):
        base = {'a': 1, 'b': 2}
        assert deep_merge(base, {}) == {'a': 1, 'b': 2}


# ── default_config tests ─────────────────────────────────────────────

class TestDefaultConfig:
    def test_creates_valid_config(self):
        config = default_config()
        assert isinstance(config, SimulationConfig)

    def test_default_values(self):
        config = default_config()
        assert config.simulation.random_seed == 42
        assert config.model_type == ModelType.SI
        assert config.simulation.step_order == DEFAULT_STEP_ORDER
        assert config.dispersal.natural_kernel == 'cauchy'
        assert config.overpopulation.enabled

    def test_dates(self):
        config = default_config()
        assert config.start_date == Date(2020, 1, 1)
        assert config.end_date == Date(2020, 12, 31)

    def test_step_order_not_shared(self):
        a, b = SimulationSection(), SimulationSection()
        a.step_order.reverse()
        assert b.step_order == DEFAULT_STEP_ORDER


# ── YAML loading ─────────────────────────────────────────────────────

class TestLoadConfig:
    def test_load_from_yaml(self, tmp_path):
        data = {
            'simulation': {'rows': 5, 'cols': 7, 'random_seed': 7},
            'spread': {'reproductive_rate': 2.0},
        }
        path = tmp_path / "test.yaml"
        path.write_text(yaml.safe_dump(data))
        config = load_config(path)
        assert (config.simulation.rows, config.simulation.cols) == (5, 7)
        assert config.simulation.random_seed == 7
        assert config.spread.reproductive_rate == 2.0
        # untouched fields keep defaults
        assert config.spread.dispersal_percentage == 0.99

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "test.yaml"
        path.write_text(yaml.safe_dump({
            'simulation': {'rows': 3, 'not_a_field': 1},
            'not_a_section': {'x': 1},
        }))
        config = load_config(path)
        assert config.simulation.rows == 3

    def test_scenario_override(self, tmp_path):
        base = tmp_path / "base.yaml"
        scenario = tmp_path / "scenario.yaml"
        base.write_text(yaml.safe_dump({'spread': {'reproductive_rate': 1.0, 'frequency': 'day'}}))
        scenario.write_text(yaml.safe_dump({'spread': {'reproductive_rate': 3.0}}))
        config = load_config(base, scenario)
        assert config.spread.reproductive_rate == 3.0
        assert config.spread.frequency == 'day'

    def test_programmatic_overrides(self, tmp_path):
        base = tmp_path / "base.yaml"
        base.write_text(yaml.safe_dump({'simulation': {'random_seed': 1}}))
        config = load_config(base, overrides={'simulation': {'random_seed': 99}})
        assert config.simulation.random_seed == 99

    def test_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        config = load_config(path)
        assert config.simulation.rows == SimulationSection().rows

    def test_load_example_yaml(self):
        example = Path(__file__).parent.parent / "configs" / "example.yaml"
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            config = load_config(example)
        assert config.simulation.rows == 20
        assert config.spread.season_start_month == 5
        assert config.mortality.enabled


# ── Validation tests ──────────────────────────────────────────────────

class TestValidation:
    def test_non_positive_rows(self):
        config = default_config()
        config.simulation.rows = 0
        with pytest.raises(ConfigurationError, match="rows"):
            validate_config(config)

    def test_inverted_dates(self):
        config = default_config()
        config.simulation.date_start = '2021-06-01'
        config.simulation.date_end = '2021-05-31'
        with pytest.raises(ConfigurationError, match="date_end"):
            validate_config(config)

    def test_bad_date_string(self):
        config = default_config()
        config.simulation.date_start = '2021-02-30'
        with pytest.raises(ConfigurationError, match="date"):
            validate_config(config)

    def test_survival_date_must_exist(self):
        config = default_config()
        config.survival.month = 4
        config.survival.day = 31
        with pytest.raises(ConfigurationError, match="survival"):
            validate_config(config)

    def test_survival_on_leap_day_accepted(self):
        config = default_config()
        config.survival.month = 2
        config.survival.day = 29
        validate_config(config)

    def test_single_day_range_is_valid(self):
        config = default_config()
        config.simulation.date_start = config.simulation.date_end = '2021-03-01'
        validate_config(config)

    def test_unknown_model_type(self):
        config = default_config()
        config.simulation.model_type = 'SIR'
        with pytest.raises(ConfigurationError, match="model type"):
            validate_config(config)

    def test_sei_without_latency_warns(self):
        config = default_config()
        config.simulation.model_type = 'SEI'
        with pytest.warns(UserWarning, match="latency"):
            validate_config(config)

    def test_step_order_must_be_permutation(self):
        config = default_config()
        config.simulation.step_order = ['disperse', 'disperse', 'movement',
                                        'overpopulation', 'removal']
        with pytest.raises(ConfigurationError, match="step_order"):
            validate_config(config)

    def test_custom_step_order_accepted(self):
        config = default_config()
        config.simulation.step_order = ['movement', 'mortality', 'disperse',
                                        'removal', 'overpopulation']
        validate_config(config)

    def test_dispersal_percentage_range(self):
        config = default_config()
        config.spread.dispersal_percentage = 1.5
        with pytest.raises(ConfigurationError, match="dispersal_percentage"):
            validate_config(config)

    def test_non_positive_kernel_scale(self):
        config = default_config()
        config.dispersal.natural_scale = 0.0
        with pytest.raises(ConfigurationError, match="natural_scale"):
            validate_config(config)

    def test_unknown_kernel(self):
        config = default_config()
        config.dispersal.natural_kernel = 'teleport'
        with pytest.raises(ConfigurationError, match="teleport"):
            validate_config(config)

    def test_neighbor_kernel_needs_direction(self):
        config = default_config()
        config.dispersal.natural_kernel = 'deterministic_neighbor'
        with pytest.raises(ConfigurationError, match="direction"):
            validate_config(config)

    def test_unused_anthropogenic_kernel_not_checked(self):
        config = default_config()
        config.dispersal.anthropogenic_scale = -1.0
        validate_config(config)

    def test_unknown_frequency(self):
        config = default_config()
        config.mortality.frequency = 'fortnight'
        with pytest.raises(ConfigurationError, match="mortality.frequency"):
            validate_config(config)

    def test_frequency_n_positive(self):
        config = default_config()
        config.output.frequency_n = 0
        with pytest.raises(ConfigurationError, match="output.frequency_n"):
            validate_config(config)

    def test_missing_network_file_warns(self, tmp_path):
        config = default_config()
        config.movement.network_file = str(tmp_path / "missing.yaml")
        with pytest.warns(UserWarning, match="network_file"):
            validate_config(config)

    def test_configuration_error_is_value_error(self):
        config = default_config()
        config.simulation.cols = -2
        with pytest.raises(ValueError):
            validate_config(config)


class TestConfigFromDict:
    def test_sections_built(self):
        config = config_from_dict({'dispersal': {'natural_kernel': 'exponential'}})
        assert isinstance(config.dispersal, DispersalSection)
        assert config.dispersal.natural_kernel == 'exponential'

    def test_weather_and_survival_sections(self):
        config = config_from_dict({
            'weather': {'enabled': True},
            'survival': {'enabled': True, 'month': 3, 'day': 15},
        })
        assert config.weather.enabled
        assert (config.survival.month, config.survival.day) == (3, 15)

    def test_round_trip_through_to_dict(self):
        config = default_config()
        config.spread.reproductive_rate = 1.7
        rebuilt = config_from_dict(config.to_dict())
        assert rebuilt.spread.reproductive_rate == 1.7
        assert rebuilt == config
