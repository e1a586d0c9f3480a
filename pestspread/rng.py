"""Seeded RNG factory for reproducible simulations.

Uses NumPy's SeedSequence → PCG64 hierarchy to guarantee:
  - Statistical independence between per-process streams
  - Bit-exact replay with the same master seed
  - Turning one process on or off doesn't shift the draws of the others

Every run owns its own hierarchy; nothing reads numpy's global generator.
"""

from __future__ import annotations

from typing import Dict, List

import numpy as np

# Order matters: each name is bound to a fixed child of the master seed.
STREAM_NAMES = (
    'generation',       # disperser counts per infected host
    'dispersal',        # kernel draws and natural/anthropogenic choice
    'establishment',    # establishment of dispersers
    'movement',         # network movement
    'overpopulation',   # which hosts leave overpopulated cells
)


def create_rng_hierarchy(master_seed: int) -> Dict[str, np.random.Generator]:
    """Create one independent RNG stream per simulation process.

    Uses SeedSequence spawning to guarantee statistical independence
    between streams (no overlap in 2^128 period PCG64).

    Args:
        master_seed: Master RNG seed (non-negative integer).

    Returns:
        Dictionary mapping stream names (STREAM_NAMES) to Generators.

    Example:
        >>> rngs = create_rng_hierarchy(42)
        >>> rngs['generation'].poisson(4.4)  # reproducible
    """
    ss = np.random.SeedSequence(master_seed)
    child_seeds = ss.spawn(len(STREAM_NAMES))
    return {
        name: np.random.Generator(np.random.PCG64(seed))
        for name, seed in zip(STREAM_NAMES, child_seeds)
    }


def spawn_run_seeds(master_seed: int, n_runs: int) -> List[int]:
    """Independent master seeds for the runs of an ensemble."""
    ss = np.random.SeedSequence(master_seed)
    return [int(child.generate_state(1)[0]) for child in ss.spawn(n_runs)]


def rng_state_snapshot(
    rngs: Dict[str, np.random.Generator],
) -> Dict[str, dict]:
    """Capture full RNG state for checkpointing.

    Returns a dict of {name: state_dict} that can be serialized (e.g. via pickle)
    and restored to resume a simulation exactly.
    """
    return {name: rng.bit_generator.state for name, rng in rngs.items()}


def restore_rng_state(
    rngs: Dict[str, np.random.Generator],
    states: Dict[str, dict],
) -> None:
    """Restore RNG state from a checkpoint snapshot.

    Raises:
        KeyError: If a stream in states doesn't exist in rngs.
    """
    for name, state in states.items():
        if name not in rngs:
            raise KeyError(f"Cannot restore RNG state for unknown stream '{name}'")
        rngs[name].bit_generator.state = state
