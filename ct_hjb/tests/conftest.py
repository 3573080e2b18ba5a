"""Pytest configuration and shared fixtures."""

from pathlib import Path

import numpy as np
import pytest
from scipy import sparse

from ct_hjb.config import HJBSolverConfig, HuggettConfig
from ct_hjb.grid import ExogenousChain, StateGrid
from ct_hjb.hjb_solver import ImplicitHJBSolver
from ct_hjb.models import HuggettModel


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: full-size grids, deselect with -m 'not slow'")


@pytest.fixture
def project_root():
    """Return the package root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def preset_dir(project_root):
    """Return the directory holding the packaged presets."""
    return project_root / "data"


@pytest.fixture
def income_chain():
    """Two-state Poisson income chain of the Huggett calibration."""
    return ExogenousChain("z", [0.1, 0.2], [[-0.02, 0.02], [0.03, -0.03]])


@pytest.fixture
def huggett_grid(income_chain):
    """Small uniform asset grid combined with the income chain."""
    return StateGrid.from_bounds({"a": (-0.1, 1.0, 50)}, income_chain)


@pytest.fixture
def small_huggett_config():
    """Huggett calibration on a coarse grid for fast tests."""
    return HuggettConfig(n_points=100)


@pytest.fixture(scope="module")
def huggett_solution():
    """Converged Huggett solution on a 100-point grid, shared per module."""
    model = HuggettModel(HuggettConfig(n_points=100))
    solver = ImplicitHJBSolver(model, config=HJBSolverConfig(tolerance=1e-8, verbose=False))
    return solver.solve()


@pytest.fixture
def birth_death_generator():
    """Irreducible birth-death chain on 6 states with known stationary law."""
    n = 6
    up = np.full(n - 1, 2.0)
    down = np.full(n - 1, 1.0)
    off = sparse.diags([up, down], [1, -1], shape=(n, n), format="csr")
    exit_rates = np.asarray(off.sum(axis=1)).ravel()
    return sparse.csr_matrix(off - sparse.diags(exit_rates))
