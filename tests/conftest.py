"""
pytest configuration and shared fixtures.
"""

import pytest
import numpy as np


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def fixed_design(rng):
    """Fixed-effects model matrix [1, days, dose] for 12 subjects × 8 days."""
    days = np.tile(np.arange(8, dtype=np.float64), 12)
    dose = rng.uniform(0.5, 2.0, days.shape[0])
    return np.column_stack([np.ones_like(days), days, dose])


@pytest.fixture
def rank_deficient_design(fixed_design):
    """Model matrix whose last column is a combination of the others."""
    weeks = fixed_design[:, 1] / 7.0
    return np.column_stack([fixed_design, 2.0 + weeks])
