"""Tests for pestspread.treatments."""

import numpy as np
import pytest

from pestspread.dates import Date
from pestspread.errors import ConfigurationError
from pestspread.hosts import HostPool
from pestspread.treatments import TreatmentApplication, Treatments

START = Date(2021, 1, 1)


def make_hosts():
    S = np.full((2, 2), 10)
    I = np.full((2, 2), 4)
    return HostPool(S, I, np.full((2, 2), 100))


def half_left():
    efficacy = np.zeros((2, 2))
    efficacy[:, 0] = 0.5
    return efficacy


class TestSimpleTreatment:
    def test_ratio_to_all(self):
        hosts = make_hosts()
        treatments = Treatments(START, (2, 2))
        treatments.add_treatment(half_left(), Date(2021, 1, 3))
        assert not treatments.manage(0, hosts)
        assert treatments.manage(2, hosts)
        np.testing.assert_array_equal(hosts.susceptible.array, [[5, 10], [5, 10]])
        np.testing.assert_array_equal(hosts.infected.array, [[2, 4], [2, 4]])
        hosts.check_invariants()

    def test_all_infected_in_cell(self):
        hosts = make_hosts()
        treatments = Treatments(START, (2, 2))
        treatments.add_treatment(half_left(), START, application="all_infected_in_cell")
        treatments.manage(0, hosts)
        assert hosts.infected[0, 0] == 0
        assert hosts.susceptible[0, 0] == 5
        assert hosts.infected[0, 1] == 4

    def test_simple_treatment_not_reverted(self):
        hosts = make_hosts()
        treatments = Treatments(START, (2, 2))
        treatments.add_treatment(np.ones((2, 2)), START)
        treatments.manage(0, hosts)
        treatments.manage(1, hosts)
        assert hosts.total_population().sum() == 0


class TestPesticide:
    def test_resistance_window(self):
        hosts = make_hosts()
        treatments = Treatments(START, (2, 2))
        treatments.add_treatment(half_left(), START, num_days=5)
        treatments.manage(0, hosts)
        assert hosts.resistant[0, 0] == 7
        assert hosts.total_at(0, 0) == 14
        assert not treatments.manage(3, hosts)
        assert treatments.manage(5, hosts)
        assert hosts.resistant.sum() == 0
        # infected hosts come back as susceptible
        assert hosts.susceptible[0, 0] == 12
        assert hosts.infected[0, 0] == 2
        hosts.check_invariants()


class TestMortalityOverride:
    def test_override_inside_window(self):
        treatments = Treatments(START, (2, 2))
        treatments.add_treatment(half_left(), START, num_days=2, mortality_rate=0.8)
        override = treatments.mortality_override(1)
        assert override[0, 0] == pytest.approx(0.8)
        assert np.isnan(override[0, 1])
        assert treatments.mortality_override(3) is None


class TestValidation:
    def test_wrong_shape(self):
        treatments = Treatments(START, (2, 2))
        with pytest.raises(ConfigurationError, match="treatment map"):
            treatments.add_treatment(np.zeros((3, 3)), START)

    def test_efficacy_range(self):
        treatments = Treatments(START, (2, 2))
        with pytest.raises(ConfigurationError):
            treatments.add_treatment(np.full((2, 2), 1.5), START)

    def test_unknown_application(self):
        with pytest.raises(ConfigurationError, match="application"):
            TreatmentApplication.from_string("spray_everything")

    def test_application_from_string(self):
        assert TreatmentApplication.from_string("Ratio To All") == TreatmentApplication.RATIO_TO_ALL
