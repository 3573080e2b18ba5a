"""Tests for the bundled economic models."""

from unittest.mock import patch

import numpy as np
import pytest
from scipy import stats

from ct_hjb.config import (
    DiffusionIncomeConfig,
    HJBSolverConfig,
    HuggettConfig,
    StationaryDistributionConfig,
    StationaryMethod,
    TwoAssetConfig,
    load_config,
)
from ct_hjb.differencing import differentiate
from ct_hjb.generator import check_generator
from ct_hjb.hjb_solver import ImplicitHJBSolver, SolverStatus
from ct_hjb.kolmogorov import compare_methods, stationary_distribution
from ct_hjb.models import (
    DiffusionIncomeModel,
    HuggettModel,
    TwoAssetModel,
    equilibrium_interest_rate,
    excess_asset_demand,
)
from ct_hjb.policy import AdjustmentDirection, UpwindDirection

QUIET = HJBSolverConfig(verbose=False)


@pytest.fixture
def small_two_asset():
    """Two-asset model on a coarse grid."""
    return TwoAssetModel(TwoAssetConfig(n_liquid=20, n_illiquid=10))


class TestHuggettModel:
    """Policy resolution of the Huggett household."""

    def test_grid(self, small_huggett_config):
        """Asset grid plus the income chain."""
        grid = HuggettModel(small_huggett_config).build_grid()
        assert grid.shape == (100, 2)
        assert grid["a"][0] == pytest.approx(-0.1)
        assert grid.exogenous.name == "z"

    def test_initial_guess_policy(self, small_huggett_config):
        """The initial guess resolves to a policy that stays on the grid."""
        model = HuggettModel(small_huggett_config)
        grid = model.build_grid()
        value = model.initial_value(grid)
        evaluation = model(grid.mesh(), differentiate(value, grid, model.boundary_conditions()))
        savings = evaluation.policy["savings"]
        assert np.all(savings[0] >= 0) and np.all(savings[-1] <= 0)
        assert set(np.unique(evaluation.policy["direction"])) <= {int(d) for d in UpwindDirection}
        assert evaluation.vt.shape == grid.shape

    def test_borrowing_constraint_binds(self, huggett_solution):
        """The low-income household at the limit consumes its resources."""
        consumption = huggett_solution.policy["consumption"]
        assert consumption[0, 0] == pytest.approx(0.1 + 0.03 * -0.1)
        assert huggett_solution.policy["direction"][0, 0] == UpwindDirection.STEADY_STATE


class TestEquilibrium:
    """Market clearing in the Huggett economy."""

    def test_brent_finds_root(self):
        """The root of excess demand is returned."""
        with patch(
            "ct_hjb.models.huggett.excess_asset_demand",
            side_effect=lambda config, rate, *args: rate - 0.02,
        ):
            rate = equilibrium_interest_rate(HuggettConfig(), bracket=(0.01, 0.045), xtol=1e-10)
        assert rate == pytest.approx(0.02, abs=1e-8)

    def test_bracket_without_sign_change(self):
        """A bracket on one side of the root is rejected."""
        with patch(
            "ct_hjb.models.huggett.excess_asset_demand",
            side_effect=lambda config, rate, *args: rate + 1.0,
        ):
            with pytest.raises(ValueError, match="does not change sign"):
                equilibrium_interest_rate(HuggettConfig())

    def test_excess_demand_rises_with_rate(self):
        """A higher interest rate raises bond demand."""
        config = HuggettConfig(n_points=60)
        low = excess_asset_demand(config, 0.01, solver_config=QUIET)
        high = excess_asset_demand(config, 0.04, solver_config=QUIET)
        assert high > low

    def test_excess_demand_uses_stationary_density(self):
        """Demand integrates assets against the stationary density."""
        config = HuggettConfig(n_points=60)
        demand = excess_asset_demand(config, 0.03, solver_config=QUIET)
        solver = ImplicitHJBSolver(HuggettModel(config), config=QUIET)
        solution = solver.solve()
        measure = solver.grid.cell_measure().ravel()
        g = stationary_distribution(solution.generator, cell_measure=measure)
        expected = float(np.sum(solver.grid.mesh()["a"].ravel() * g * measure))
        assert demand == pytest.approx(expected, rel=1e-6, abs=1e-10)


class TestDiffusionIncomeModel:
    """One asset with Ornstein-Uhlenbeck income."""

    def test_income_grid_within_quantiles(self):
        """The income grid spans the configured Gamma quantiles."""
        config = DiffusionIncomeConfig()
        model = DiffusionIncomeModel(config)
        z = model.income_grid()
        shape = 2 * config.mean_reversion * config.income_mean / config.income_volatility**2
        scale = config.income_volatility**2 / (2 * config.mean_reversion)
        cdf = stats.gamma.cdf(z, shape, scale=scale)
        assert cdf[0] == pytest.approx(0.001)
        assert cdf[-1] == pytest.approx(0.9999)
        assert z.size == config.n_income
        assert z[0] < config.income_mean < z[-1]

    def test_grid_has_no_chain(self):
        """Both dimensions are continuous."""
        grid = DiffusionIncomeModel(DiffusionIncomeConfig(n_assets=20, n_income=5)).build_grid()
        assert grid.names == ("a", "z")
        assert grid.shape == (20, 5, 1)

    def test_initial_generator_valid(self):
        """Drift and diffusion at the initial guess give a valid generator."""
        model = DiffusionIncomeModel(DiffusionIncomeConfig(n_assets=20, n_income=5))
        solver = ImplicitHJBSolver(model, config=QUIET)
        evaluation, generator = solver.evaluate(model.initial_value(solver.grid))
        check_generator(generator)
        assert evaluation.variances is not None
        mu_z = evaluation.drifts["z"]
        assert np.all(mu_z[:, 0] > 0) and np.all(mu_z[:, -1] < 0)

    def test_converges(self):
        """The coarse problem converges and saves less when richer."""
        model = DiffusionIncomeModel(DiffusionIncomeConfig(n_assets=40, n_income=5))
        solution = ImplicitHJBSolver(
            model, config=HJBSolverConfig(verbose=False, max_iterations=200)
        ).solve()
        assert solution.converged
        assert np.all(np.diff(solution.value, axis=0) > 0)
        savings = solution.policy["savings"]
        assert np.all(savings[0] >= 0) and np.all(savings[-1] <= 0)


class TestTwoAssetModel:
    """Liquid/illiquid problem with a kinked adjustment cost."""

    def test_grid_layout(self, small_two_asset):
        """Liquid wealth on axis 0, illiquid on axis 1, income last."""
        grid = small_two_asset.build_grid()
        assert grid.names == ("b", "a")
        assert grid.shape == (20, 10, 2)

    def test_returns(self, small_two_asset):
        """Debt pays the borrowing rate and the illiquid return turns negative near a_max."""
        np.testing.assert_allclose(small_two_asset.liquid_return(np.array([-1.0, 1.0])), [0.12, 0.03])
        taxed = small_two_asset.illiquid_return(np.array([0.0, 0.98 * 70.0, 70.0]))
        assert taxed[0] == pytest.approx(0.05)
        assert taxed[1] == pytest.approx(0.0, abs=1e-12)
        assert taxed[2] < 0

    def test_passive_inflow_points_inward_at_a_max(self, small_two_asset):
        """Automatic deposits plus the taxed return do not push wealth past a_max."""
        grid = small_two_asset.build_grid()
        passive = small_two_asset.passive_deposit(grid.mesh())
        assert np.all(passive[:, -1] <= 0)
        assert np.all(passive[:, 0] > 0)

    def test_every_point_gets_one_adjustment(self, small_two_asset):
        """The selection labels every grid point with exactly one direction."""
        solver = ImplicitHJBSolver(small_two_asset, config=QUIET)
        evaluation, generator = solver.evaluate(small_two_asset.initial_value(solver.grid))
        labels = evaluation.policy["adjustment"]
        assert labels.shape == solver.grid.shape
        assert set(np.unique(labels)) <= {int(d) for d in AdjustmentDirection}
        assert np.all(np.isfinite(evaluation.policy["hamiltonian"]))
        check_generator(generator, 1e-9)

    def test_drifts_point_inward(self, small_two_asset):
        """Illiquid drift components never leave the grid at a_max."""
        solver = ImplicitHJBSolver(small_two_asset, config=QUIET)
        evaluation, _ = solver.evaluate(small_two_asset.initial_value(solver.grid))
        deposit, passive = evaluation.drifts["a"]
        assert np.all(deposit[:, -1] <= 0)
        assert np.all(passive[:, -1] <= 0)
        np.testing.assert_array_equal(deposit, evaluation.policy["deposit"])

    def test_warns_on_unbounded_deposits(self, caplog):
        """A return above 1/convex_cost is logged."""
        TwoAssetModel(TwoAssetConfig(illiquid_return=0.6, convex_cost=2.0))
        assert "deposits may not be bounded" in caplog.text


@pytest.fixture(scope="module")
def two_asset_solution():
    """Bundled two-asset preset solved to convergence."""
    preset = load_config("two_asset", {"solver.verbose": False})
    model = TwoAssetModel(preset.parameters)
    return ImplicitHJBSolver(model, config=preset.solver).solve()


class TestTwoAssetSolution:
    """Converged two-asset problem."""

    def test_preset_converges(self, two_asset_solution):
        """The preset reaches the tolerance within its iteration budget."""
        assert two_asset_solution.status is SolverStatus.CONVERGED
        assert two_asset_solution.residual_norm <= 1e-5
        assert two_asset_solution.iterations <= 35
        check_generator(two_asset_solution.generator, 1e-9)

    def test_one_label_per_point(self, two_asset_solution):
        """Every point carries a deposit, no deposit, or withdrawal label consistent with d."""
        labels = two_asset_solution.policy["adjustment"]
        deposit = two_asset_solution.policy["deposit"]
        hamiltonian = two_asset_solution.policy["hamiltonian"]
        assert labels.shape == two_asset_solution.grid.shape
        assert set(np.unique(labels)) <= {int(d) for d in AdjustmentDirection}

        up = np.isin(labels, [int(AdjustmentDirection.UP_UP), int(AdjustmentDirection.UP_DOWN)])
        down = np.isin(
            labels, [int(AdjustmentDirection.DOWN_UP), int(AdjustmentDirection.DOWN_DOWN)]
        )
        none = labels == int(AdjustmentDirection.NONE)
        assert np.all(up ^ down ^ none)
        assert np.all(deposit[up] > 0)
        assert np.all(deposit[down] < 0)
        assert np.all(deposit[none] == 0)
        assert np.all(hamiltonian[~none] > 0)
        assert np.all(hamiltonian[none] == 0)

    def test_no_moves_off_the_grid(self, two_asset_solution):
        """Deposits are never chosen at a_max and withdrawals never at a_min."""
        labels = two_asset_solution.policy["adjustment"]
        up = np.isin(labels, [int(AdjustmentDirection.UP_UP), int(AdjustmentDirection.UP_DOWN)])
        down = np.isin(
            labels, [int(AdjustmentDirection.DOWN_UP), int(AdjustmentDirection.DOWN_DOWN)]
        )
        assert not np.any(up[:, -1])
        assert not np.any(down[:, 0])

    def test_positive_consumption(self, two_asset_solution):
        """Consumption is positive everywhere."""
        assert np.all(two_asset_solution.policy["consumption"] > 0)

    def test_stationary_methods_agree(self, two_asset_solution):
        """DEATH, EIGEN and DIRECT pinned at a state with mass give the same density."""
        generator = two_asset_solution.generator
        measure = two_asset_solution.grid.cell_measure().ravel()
        death = stationary_distribution(generator, StationaryMethod.DEATH, measure)
        config = StationaryDistributionConfig(pin_index=int(np.argmax(death)))
        comparison = compare_methods(
            generator,
            [StationaryMethod.DEATH, StationaryMethod.EIGEN, StationaryMethod.DIRECT],
            measure,
            config,
        )
        assert comparison.max_difference <= 1e-5 * np.max(death)
        for density in comparison.distributions.values():
            assert np.sum(density * measure) == pytest.approx(1.0)
            assert np.all(density >= 0)

