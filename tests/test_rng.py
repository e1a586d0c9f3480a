"""Tests for pestspread.rng: seeded RNG hierarchy and checkpointing."""

import numpy as np
import pytest

from pestspread.rng import (
    STREAM_NAMES,
    create_rng_hierarchy,
    restore_rng_state,
    rng_state_snapshot,
    spawn_run_seeds,
)


class TestCreateRngHierarchy:
    def test_returns_all_streams(self):
        rngs = create_rng_hierarchy(42)
        assert set(rngs) == set(STREAM_NAMES)

    def test_generators_are_independent(self):
        rngs = create_rng_hierarchy(42)
        vals = {name: rng.random() for name, rng in rngs.items()}
        assert len(set(vals.values())) == len(vals)

    def test_reproducibility(self):
        rngs1 = create_rng_hierarchy(42)
        rngs2 = create_rng_hierarchy(42)
        for name in rngs1:
            np.testing.assert_array_equal(rngs1[name].random(100), rngs2[name].random(100))

    def test_different_seeds_differ(self):
        rngs1 = create_rng_hierarchy(42)
        rngs2 = create_rng_hierarchy(43)
        assert not np.array_equal(
            rngs1['dispersal'].random(10), rngs2['dispersal'].random(10)
        )

    def test_streams_do_not_shift_each_other(self):
        """Drawing from one stream leaves the others untouched."""
        rngs1 = create_rng_hierarchy(5)
        rngs2 = create_rng_hierarchy(5)
        rngs1['generation'].random(1000)
        np.testing.assert_array_equal(
            rngs1['dispersal'].random(10), rngs2['dispersal'].random(10)
        )


class TestSpawnRunSeeds:
    def test_count_and_uniqueness(self):
        seeds = spawn_run_seeds(42, 8)
        assert len(seeds) == 8
        assert len(set(seeds)) == 8

    def test_reproducible(self):
        assert spawn_run_seeds(42, 4) == spawn_run_seeds(42, 4)


class TestCheckpointing:
    def test_snapshot_and_restore(self):
        rngs = create_rng_hierarchy(42)
        rngs['dispersal'].random(50)
        snapshot = rng_state_snapshot(rngs)
        expected = rngs['dispersal'].random(20)
        restore_rng_state(rngs, snapshot)
        np.testing.assert_array_equal(rngs['dispersal'].random(20), expected)

    def test_restore_unknown_stream_raises(self):
        rngs = create_rng_hierarchy(42)
        with pytest.raises(KeyError, match="unknown stream"):
            restore_rng_state(rngs, {'larval': {}})
