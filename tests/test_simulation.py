"""Tests for pestspread.simulation: the spread engine processes."""

import numpy as np
import pytest

from pestspread.errors import ConfigurationError
from pestspread.grid import Grid
from pestspread.hosts import HostPool
from pestspread.kernels import NeighborKernel
from pestspread.network import Network, Node
from pestspread.rng import create_rng_hierarchy
from pestspread.simulation import SpreadEngine
from pestspread.types import Direction, ModelType


def make_engine(S, I, K=None, seed=0, **kwargs):
    S, I = np.asarray(S), np.asarray(I)
    K = np.full(S.shape, 1000) if K is None else np.asarray(K)
    model_type = kwargs.pop('model_type', ModelType.SI)
    latency = kwargs.pop('latency_period_steps', 0)
    hosts = HostPool(S, I, K, model_type=model_type, latency_period_steps=latency)
    kwargs.setdefault('reproductive_rate', 1.0)
    return SpreadEngine(hosts, create_rng_hierarchy(seed), **kwargs)


def deterministic_engine(S, I, K=None, **kwargs):
    kwargs.setdefault('generate_stochasticity', False)
    kwargs.setdefault('establishment_stochasticity', False)
    kwargs.setdefault('dispersal_percentage', 1.0)
    return make_engine(S, I, K, **kwargs)


# ── generation ───────────────────────────────────────────────────────

class TestGenerate:
    def test_deterministic_floor(self):
        engine = deterministic_engine(np.full((2, 2), 5), [[3, 0], [0, 1]], reproductive_rate=1.5)
        dispersers = engine.generate()
        np.testing.assert_array_equal(dispersers.array, [[4, 0], [0, 1]])

    def test_stochastic_is_seeded(self):
        I = np.full((4, 4), 3)
        a = make_engine(np.full((4, 4), 5), I, seed=9, reproductive_rate=2.0)
        b = make_engine(np.full((4, 4), 5), I, seed=9, reproductive_rate=2.0)
        np.testing.assert_array_equal(a.generate().array, b.generate().array)

    def test_no_infection_no_dispersers(self):
        engine = make_engine(np.full((3, 3), 5), np.zeros((3, 3), dtype=int), reproductive_rate=4.0)
        assert engine.generate().sum() == 0

    def test_dispersers_grid_is_reused(self):
        engine = make_engine(np.full((3, 3), 5), np.ones((3, 3), dtype=int))
        grid = engine.dispersers
        assert engine.generate() is grid

    def test_weather_scales_generation(self):
        engine = deterministic_engine(np.full((2, 2), 5), [[3, 0], [0, 1]], reproductive_rate=2.0)
        weather = np.array([[0.5, 1.0], [1.0, 0.0]])
        np.testing.assert_array_equal(engine.generate(weather).array, [[3, 0], [0, 0]])

    def test_negative_rate_rejected(self):
        with pytest.raises(ConfigurationError):
            make_engine(np.ones((2, 2)), np.zeros((2, 2)), reproductive_rate=-1.0)


# ── dispersal ────────────────────────────────────────────────────────

class TestDisperse:
    def test_neighbor_spread(self):
        I = np.zeros((3, 3), dtype=int)
        I[1, 1] = 2
        engine = deterministic_engine(np.full((3, 3), 5), I)
        established = engine.disperse_and_infect(NeighborKernel(Direction.E))
        assert established == 2
        assert engine.hosts.infected[1, 2] == 2
        assert engine.hosts.susceptible[1, 2] == 3
        engine.check_invariants()

    def test_emigration_empties_origin(self):
        I = np.zeros((3, 3), dtype=int)
        I[1, 1] = 1
        engine = deterministic_engine(np.full((3, 3), 5), I, dispersers_leave_origin=True)
        engine.disperse_and_infect(NeighborKernel(Direction.E))
        assert engine.hosts.infected[1, 1] == 0
        assert engine.hosts.susceptible[1, 1] == 6
        assert engine.hosts.infected[1, 2] == 1
        assert engine.diagnostics.emigrated == 1

    def test_outside_dispersers_recorded(self):
        I = np.zeros((2, 2), dtype=int)
        I[0, 1] = 3
        engine = deterministic_engine(np.full((2, 2), 5), I, record_outside_dispersers=True)
        assert engine.disperse_and_infect(NeighborKernel(Direction.E)) == 0
        assert engine.diagnostics.n_outside == 3
        assert engine.diagnostics.outside_dispersers[0] == (0, 2)
        assert engine.hosts.infected.sum() == 3

    def test_outside_dispersers_only_counted_by_default(self):
        I = np.zeros((2, 2), dtype=int)
        I[0, 1] = 3
        engine = deterministic_engine(np.full((2, 2), 5), I)
        engine.disperse_and_infect(NeighborKernel(Direction.E))
        assert engine.diagnostics.n_outside == 3
        assert engine.diagnostics.outside_dispersers == []
        assert engine.diagnostics.summary()['outside_dispersers'] == 3

    @pytest.mark.parametrize("coefficient, established", [(0.4, 0), (0.6, 1)])
    def test_weather_scales_establishment(self, coefficient, established):
        # deterministic tester is 1 - 0.5; probability is 1.0 * coefficient
        engine = deterministic_engine(np.full((1, 2), 5), np.array([[1, 0]]))
        weather = np.array([[1.0, coefficient]])
        assert engine.disperse_and_infect(NeighborKernel(Direction.E), weather) == established
        assert engine.hosts.infected[0, 1] == established

    def test_no_susceptible_counted(self):
        S = np.full((1, 2), 0)
        I = np.array([[2, 0]])
        engine = deterministic_engine(S, I)
        engine.disperse_and_infect(NeighborKernel(Direction.E))
        assert engine.diagnostics.no_susceptible == 2
        assert engine.hosts.infected[0, 1] == 0

    def test_deterministic_establishment_threshold(self):
        I = np.array([[1, 0]])
        engine = deterministic_engine(
            np.full((1, 2), 5), I,
            dispersal_percentage=0.4, establishment_probability=0.5,
        )
        engine.disperse_and_infect(NeighborKernel(Direction.E))
        assert engine.diagnostics.failed_establishment == 1
        assert engine.hosts.infected[0, 1] == 0

    def test_sei_dispersal_goes_to_exposed(self):
        I = np.array([[1, 0]])
        engine = deterministic_engine(
            np.full((1, 2), 5), I,
            model_type=ModelType.SEI, latency_period_steps=2,
        )
        engine.disperse_and_infect(NeighborKernel(Direction.E))
        assert engine.hosts.infected[0, 1] == 0
        assert engine.hosts.exposed_at(0, 1) == 1

    def test_establishments_never_exceed_susceptible(self):
        I = np.zeros((1, 2), dtype=int)
        I[0, 0] = 50
        engine = deterministic_engine(np.array([[0, 4]]), I)
        engine.disperse_and_infect(NeighborKernel(Direction.E))
        assert engine.hosts.infected[0, 1] == 4
        assert engine.hosts.susceptible[0, 1] == 0
        assert engine.diagnostics.no_susceptible == 46


# ── mortality ────────────────────────────────────────────────────────

class TestMortality:
    def test_override_takes_precedence(self):
        I = np.full((2, 2), 10)
        engine = make_engine(np.zeros((2, 2), dtype=int), I)
        override = np.full((2, 2), np.nan)
        override[0, 0] = 1.0
        dead = engine.mortality(0.0, 0, override)
        assert dead == 10
        assert engine.hosts.infected[0, 0] == 0
        assert engine.hosts.infected[1, 1] == 10
        assert engine.diagnostics.died == 10


class TestSurvival:
    def test_non_surviving_share_removed(self):
        engine = make_engine(np.zeros((1, 2), dtype=int), np.array([[10, 3]]))
        killed = engine.survival(np.array([[0.25, 1.0]]))
        assert killed == 7
        np.testing.assert_array_equal(engine.hosts.infected.array, [[3, 3]])
        assert engine.diagnostics.killed_by_survival == 7
        engine.check_invariants()


# ── network movement ─────────────────────────────────────────────────

class TestMovement:
    def _network(self, capacity=None):
        nodes = [Node("a", 0, 0), Node("b", 0, 4)]
        return Network(nodes, [("a", "b", 1.0, capacity)])

    def test_all_infected_travel(self):
        I = np.zeros((1, 5), dtype=int)
        I[0, 0] = 6
        engine = make_engine(np.zeros((1, 5), dtype=int), I, movement_stochasticity=False)
        assert engine.movement(self._network()) == 6
        assert engine.hosts.infected[0, 4] == 6
        engine.check_invariants()

    def test_capacity_limits_travel(self):
        I = np.zeros((1, 5), dtype=int)
        I[0, 0] = 6
        engine = make_engine(np.zeros((1, 5), dtype=int), I)
        engine.movement(self._network(capacity=2))
        assert engine.hosts.infected[0, 4] == 2
        assert engine.hosts.infected[0, 0] == 4

    def test_arrivals_wait_for_next_movement_day(self):
        nodes = [Node("a", 0, 0), Node("b", 0, 3), Node("c", 0, 6)]
        network = Network(nodes, [("a", "b", 1.0, None), ("b", "c", 1.0, None)])
        I = np.zeros((1, 10), dtype=int)
        I[0, 0] = 3
        I[0, 3] = 1
        engine = make_engine(np.zeros((1, 10), dtype=int), I, movement_stochasticity=False)
        assert engine.movement(network) == 4
        np.testing.assert_array_equal(engine.hosts.infected.array, [[0, 0, 0, 3, 0, 0, 1, 0, 0, 0]])
        assert engine.diagnostics.moved_by_network == 4
        engine.check_invariants()

    def test_each_host_takes_one_edge(self):
        nodes = [Node("a", 0, 0), Node("b", 0, 4), Node("c", 0, 8)]
        network = Network(nodes, [("a", "b", 0.5, None), ("a", "c", 0.5, None)])
        I = np.zeros((1, 9), dtype=int)
        I[0, 0] = 1000
        engine = make_engine(np.zeros((1, 9), dtype=int), I, seed=4)
        assert engine.movement(network) == 1000
        assert engine.hosts.infected[0, 0] == 0
        assert engine.hosts.infected[0, 4] + engine.hosts.infected[0, 8] == 1000
        assert engine.hosts.infected[0, 4] > 0
        assert engine.hosts.infected[0, 8] > 0

    def test_cells_without_nodes_counted(self):
        I = np.zeros((1, 5), dtype=int)
        I[0, 2] = 1
        engine = make_engine(np.zeros((1, 5), dtype=int), I)
        assert engine.movement(self._network()) == 0
        assert engine.diagnostics.network_misses == 1


# ── overpopulation ───────────────────────────────────────────────────

class TestOverpopulation:
    def test_excess_moves_to_only_neighbour(self):
        S = np.array([[13, 0]])
        engine = make_engine(S, np.zeros((1, 2), dtype=int), K=np.full((1, 2), 10))
        assert engine.move_overpopulated() == 3
        np.testing.assert_array_equal(engine.hosts.susceptible.array, [[10, 3]])
        assert engine.diagnostics.unresolved_overpopulation == 0

    def test_neighbour_spare_capacity_respected(self):
        S = np.array([[15, 8]])
        engine = make_engine(S, np.zeros((1, 2), dtype=int), K=np.full((1, 2), 10))
        assert engine.move_overpopulated() == 2
        np.testing.assert_array_equal(engine.hosts.susceptible.array, [[13, 10]])
        assert engine.diagnostics.unresolved_overpopulation == 3

    def test_single_cell_cannot_resolve(self):
        engine = make_engine(np.array([[12]]), np.array([[0]]), K=np.array([[10]]))
        assert engine.move_overpopulated() == 0
        assert engine.hosts.susceptible[0, 0] == 12
        assert engine.diagnostics.unresolved_overpopulation == 2

    def test_infected_move_with_their_cohorts(self):
        S = np.array([[10, 0, 0]])
        I = np.array([[10, 0, 0]])
        engine = make_engine(S, I, K=np.full((1, 3), 15), overpopulation_stochasticity=False)
        engine.move_overpopulated()
        assert engine.hosts.total_at(0, 0) == 15
        assert engine.hosts.total_at(0, 1) == 5
        engine.check_invariants()

    def test_von_neumann_skips_diagonals(self):
        S = np.zeros((2, 2), dtype=int)
        S[0, 0] = 12
        K = np.array([[10, 0], [0, 10]])
        engine = make_engine(S, np.zeros((2, 2), dtype=int), K=K, neighborhood='von_neumann')
        engine.move_overpopulated()
        assert engine.hosts.susceptible[1, 1] == 0
        assert engine.diagnostics.unresolved_overpopulation == 2

    def test_moore_uses_diagonals(self):
        S = np.zeros((2, 2), dtype=int)
        S[0, 0] = 12
        K = np.array([[10, 0], [0, 10]])
        engine = make_engine(S, np.zeros((2, 2), dtype=int), K=K)
        engine.move_overpopulated()
        assert engine.hosts.susceptible[1, 1] == 2

    def test_unknown_neighborhood(self):
        with pytest.raises(ConfigurationError):
            make_engine(np.ones((2, 2)), np.zeros((2, 2)), neighborhood='hex')


# ── removal ──────────────────────────────────────────────────────────

class TestRemove:
    def test_removal_clamped(self):
        engine = make_engine(np.full((2, 2), 3), np.full((2, 2), 2))
        removed = engine.remove(
            infected=np.full((2, 2), 5),
            susceptible=Grid.from_array(np.array([[1, 0], [0, 0]])),
        )
        assert removed == 9
        assert engine.hosts.infected.sum() == 0
        assert engine.hosts.susceptible[0, 0] == 2
        engine.check_invariants()

    def test_shape_mismatch(self):
        engine = make_engine(np.full((2, 2), 3), np.zeros((2, 2), dtype=int))
        with pytest.raises(ConfigurationError):
            engine.remove(infected=np.zeros((3, 3)))
