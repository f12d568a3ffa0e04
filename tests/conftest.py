"""Shared fixtures for logisticbf tests.

Provides seeded simulated datasets at a moderate sample size and at the
n=1000, b0=-1, b=0.5 reference scenario.
"""

import pytest

from logisticbf import simulate

# ── Dataset fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def moderate_data():
    """n=500, b0=-1, b=0.5, seed 7."""
    return simulate(500, -1.0, 0.5, rng=7)


@pytest.fixture
def scenario_data():
    """n=1000, b0=-1, b=0.5, seed 12345."""
    return simulate(1000, -1.0, 0.5, rng=12345)
