"""Tests for state grids and exogenous chains."""

import numpy as np
import pytest

from ct_hjb.config.exceptions import ConfigurationError
from ct_hjb.grid import (
    ExogenousChain,
    StateGrid,
    power_spaced_grid,
    two_sided_power_spaced_grid,
)


class TestExogenousChain:
    """Test ExogenousChain validation and stationary law."""

    def test_valid_chain(self, income_chain):
        """A valid chain stores read-only float arrays."""
        assert income_chain.size == 2
        assert income_chain.values.dtype == float
        assert not income_chain.intensity.flags.writeable

    def test_rows_must_sum_to_zero(self):
        """Intensity rows that do not sum to zero are rejected."""
        with pytest.raises(ConfigurationError, match="sum to zero"):
            ExogenousChain("z", [1.0, 2.0], [[-0.1, 0.2], [0.3, -0.3]])

    def test_negative_off_diagonal_rejected(self):
        """Negative transition rates are rejected."""
        with pytest.raises(ConfigurationError, match="negative off-diagonal"):
            ExogenousChain("z", [1.0, 2.0], [[0.1, -0.1], [0.3, -0.3]])

    def test_shape_mismatch_rejected(self):
        """The intensity matrix must match the number of levels."""
        with pytest.raises(ConfigurationError, match="shape"):
            ExogenousChain("z", [1.0, 2.0, 3.0], [[-0.1, 0.1], [0.3, -0.3]])

    def test_stationary_distribution(self, income_chain):
        """Two-state chain: p1 = l2 / (l1 + l2)."""
        p = income_chain.stationary_distribution()
        assert p == pytest.approx([0.03 / 0.05, 0.02 / 0.05])


class TestStateGrid:
    """Test StateGrid construction and helpers."""

    def test_shape_includes_exogenous_axis(self, huggett_grid):
        """Full shape is the continuous shape plus the exogenous axis."""
        assert huggett_grid.shape == (50, 2)
        assert huggett_grid.size == 100
        assert huggett_grid.names == ("a",)

    def test_shape_without_chain(self):
        """Without a chain the trailing axis has length one."""
        grid = StateGrid({"a": [0.0, 1.0, 2.0], "z": [1.0, 2.0]})
        assert grid.shape == (3, 2, 1)
        assert grid.n_exogenous == 1
        assert np.all(grid.intensity == 0)

    @pytest.mark.parametrize(
        "points, message",
        [
            ([0.0, 0.0, 1.0], "strictly increasing"),
            ([1.0, 0.5, 2.0], "strictly increasing"),
            ([0.0, np.nan, 1.0], "non-finite"),
            ([0.0], "at least 2 points"),
            ([[0.0, 1.0]], "one-dimensional"),
        ],
    )
    def test_invalid_dimension(self, points, message):
        """Malformed grids raise ConfigurationError at construction."""
        with pytest.raises(ConfigurationError, match=message):
            StateGrid({"a": points})

    def test_all_issues_reported(self):
        """Every malformed dimension is listed."""
        with pytest.raises(ConfigurationError) as exc_info:
            StateGrid({"a": [1.0, 0.0], "b": [0.0]})
        assert len(exc_info.value.issues) == 2

    def test_name_clash(self, income_chain):
        """The chain name may not reuse a continuous dimension name."""
        with pytest.raises(ConfigurationError, match="clashes"):
            StateGrid({"z": [0.0, 1.0]}, income_chain)

    def test_grid_points_read_only(self, huggett_grid):
        """Stored grid points cannot be modified."""
        with pytest.raises(ValueError):
            huggett_grid["a"][0] = 5.0

    def test_spacing_clamped_at_edges(self):
        """Edge spacings copy the adjacent interval."""
        grid = StateGrid({"x": [0.0, 1.0, 3.0, 6.0]})
        up, down = grid.spacing("x")
        np.testing.assert_allclose(up, [1.0, 2.0, 3.0, 3.0])
        np.testing.assert_allclose(down, [1.0, 1.0, 2.0, 3.0])
        np.testing.assert_allclose(grid.avg_spacing("x"), [1.0, 1.5, 2.5, 3.0])

    def test_cell_measure_is_product_of_spacings(self):
        """Cell measure multiplies average spacings over dimensions."""
        grid = StateGrid({"a": [0.0, 1.0, 3.0], "z": [0.0, 0.5]})
        measure = grid.cell_measure()
        assert measure.shape == grid.shape
        assert measure[1, 0, 0] == pytest.approx(1.5 * 0.5)

    def test_mesh(self, huggett_grid):
        """Mesh broadcasts every dimension and the chain levels."""
        state = huggett_grid.mesh()
        assert set(state) == {"a", "z"}
        assert state["a"].shape == huggett_grid.shape
        np.testing.assert_allclose(state["a"][:, 1], huggett_grid["a"])
        np.testing.assert_allclose(state["z"][7], [0.1, 0.2])

    def test_flat_index_round_trip_is_c_order(self, huggett_grid):
        """Flat indices follow row-major order."""
        assert huggett_grid.flat_index((3, 1)) == 7
        assert huggett_grid.unravel(7) == (3, 1)

    def test_edge_masks(self, huggett_grid):
        """Lower and upper masks mark the first and last asset points."""
        lower = huggett_grid.lower_mask("a")
        upper = huggett_grid.upper_mask("a")
        assert lower[0].all() and not lower[1:].any()
        assert upper[-1].all() and not upper[:-1].any()

    def test_from_bounds(self, income_chain):
        """Uniform grids are built from bounds."""
        grid = StateGrid.from_bounds({"a": (0.0, 1.0, 11)}, income_chain)
        np.testing.assert_allclose(np.diff(grid["a"]), 0.1)

    def test_from_bounds_rejects_reversed(self):
        """Reversed bounds are a configuration error."""
        with pytest.raises(ConfigurationError):
            StateGrid.from_bounds({"a": (1.0, 0.0, 5)})

    def test_unknown_axis(self, huggett_grid):
        """Asking for an unknown dimension raises KeyError."""
        with pytest.raises(KeyError, match="Unknown dimension"):
            huggett_grid.axis("b")

    def test_from_bounds_with_curvature(self, income_chain):
        """A fourth bound entry selects a power-spaced dimension."""
        grid = StateGrid.from_bounds({"a": (-0.1, 1.0, 50, 0.5)}, income_chain)
        np.testing.assert_allclose(grid["a"], power_spaced_grid(50, 0.5, -0.1, 1.0))
        up, _ = grid.spacing("a")
        assert up[0] < up[-2]


class TestPowerSpacedGrid:
    """Grids crowded towards their ends."""

    def test_unit_curvature_is_uniform(self):
        """k = 1 gives the uniform grid."""
        np.testing.assert_array_equal(power_spaced_grid(7, 1.0, -1.0, 2.0), np.linspace(-1.0, 2.0, 7))

    @pytest.mark.parametrize("curvature", [0.3, 0.5, 2.0])
    def test_endpoints_and_order(self, curvature):
        """Every grid runs exactly from lower to upper and strictly increases."""
        points = power_spaced_grid(20, curvature, 0.0, 70.0)
        assert points[0] == 0.0
        assert points[-1] == 70.0
        assert np.all(np.diff(points) > 0)

    def test_small_curvature_crowds_lower_end(self):
        """k < 1 puts the finest spacing at the lower end."""
        steps = np.diff(power_spaced_grid(20, 0.5, 0.0, 1.0))
        assert np.all(np.diff(steps) > 0)
        assert steps[0] == pytest.approx((1 / 19) ** 2)

    @pytest.mark.parametrize(
        "args, message",
        [
            ((1, 0.5, 0.0, 1.0), "at least 2 points"),
            ((5, 0.0, 0.0, 1.0), "curvature must be positive"),
            ((5, 0.5, 1.0, 1.0), "must be below upper"),
        ],
    )
    def test_invalid_arguments(self, args, message):
        """Out-of-range arguments raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match=message):
            power_spaced_grid(*args)


class TestTwoSidedPowerSpacedGrid:
    """Grids dense at the borrowing limit and around zero."""

    def test_layout(self):
        """n points from lower to upper with mid on the grid."""
        points = two_sided_power_spaced_grid(
            30, -10.0, 20.0, curvature_negative=0.5, curvature_positive=0.5, fraction_negative=0.3
        )
        assert points.size == 30
        assert points[0] == -10.0
        assert points[-1] == 20.0
        assert np.all(np.diff(points) > 0)
        assert points[10] == 0.0

    def test_dense_at_limit_and_mid(self):
        """Below mid the spacing is smallest at both ends of the negative part."""
        points = two_sided_power_spaced_grid(40, -1.0, 1.0, 0.5, 0.5, fraction_negative=0.5)
        steps = np.diff(points[:21])
        middle = steps[len(steps) // 2]
        assert steps[0] < middle
        assert steps[-1] < middle

    def test_odd_negative_count_rounded_up(self, caplog):
        """An odd number of negative points is raised by one and logged."""
        points = two_sided_power_spaced_grid(20, -1.0, 1.0, 0.5, 0.5, fraction_negative=0.25)
        assert points.size == 20
        assert points[6] == 0.0
        assert "must be even" in caplog.text

    def test_mid_must_lie_inside(self):
        """mid outside (lower, upper) is rejected."""
        with pytest.raises(ConfigurationError, match="lower < mid < upper"):
            two_sided_power_spaced_grid(20, 0.0, 1.0, 0.5, 0.5)
