"""State grids for continuous-time heterogeneous-agent problems.

A :class:`StateGrid` is an ordered set of named continuous dimensions (assets,
a continuous income process) combined with an optional discrete exogenous
Markov chain. The full state shape is the continuous shape followed by one
trailing axis for the exogenous states; without a chain that axis has length
one. Flattening always uses row-major (C) order, so the flat index of a state
is the same everywhere in the package.
"""

from dataclasses import dataclass
import logging
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config.exceptions import ConfigurationError
from .config.models import intensity_issues

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ExogenousChain:
    """Discrete exogenous state following a continuous-time Markov chain.

    Attributes:
        name: Name under which the state level appears in :meth:`StateGrid.mesh`.
        values: Level of the exogenous variable in each state.
        intensity: Intensity matrix; rows sum to zero, off-diagonals non-negative.
    """

    name: str
    values: np.ndarray
    intensity: np.ndarray

    def __post_init__(self):
        """Validate the chain and store read-only float arrays."""
        values = np.array(self.values, dtype=float).ravel()
        intensity = np.array(self.intensity, dtype=float)
        issues = intensity_issues(values.tolist(), intensity.tolist())
        if values.size == 0:
            issues.append(f"exogenous chain '{self.name}' has no states")
        if issues:
            raise ConfigurationError(issues)
        values.setflags(write=False)
        intensity.setflags(write=False)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "intensity", intensity)

    @property
    def size(self) -> int:
        """Number of exogenous states."""
        return int(self.values.size)

    def stationary_distribution(self) -> np.ndarray:
        """Stationary probabilities of the chain alone.

        Solves ``p Lambda = 0`` together with ``sum(p) = 1`` in the least
        squares sense, which is exact for an irreducible chain.

        Returns:
            Probability vector over the exogenous states.
        """
        n = self.size
        system = np.vstack([self.intensity.T, np.ones((1, n))])
        rhs = np.zeros(n + 1)
        rhs[-1] = 1.0
        probabilities, *_ = np.linalg.lstsq(system, rhs, rcond=None)
        probabilities = np.clip(probabilities, 0.0, None)
        return np.asarray(probabilities / probabilities.sum())


@dataclass(frozen=True, eq=False)
class StateGrid:
    """Cartesian product of continuous grids and an exogenous chain.

    Args:
        dimensions: Ordered mapping from dimension name to grid points. Points
            must be finite and strictly increasing with at least two entries.
        exogenous: Optional discrete exogenous chain.

    Raises:
        ConfigurationError: If any dimension or the chain is malformed.

    Examples:
        A Huggett grid with two income states::

            chain = ExogenousChain("z", [0.1, 0.2], [[-0.02, 0.02], [0.03, -0.03]])
            grid = StateGrid({"a": np.linspace(-0.1, 1.0, 500)}, chain)
            grid.shape  # (500, 2)
    """

    dimensions: Mapping[str, np.ndarray]
    exogenous: Optional[ExogenousChain] = None

    def __post_init__(self):
        issues = []
        points: Dict[str, np.ndarray] = {}
        if not self.dimensions:
            issues.append("at least one continuous dimension is required")
        for name, raw in self.dimensions.items():
            x = np.array(raw, dtype=float)
            if x.ndim != 1:
                issues.append(f"dimension '{name}' must be one-dimensional, got shape {x.shape}")
                continue
            if x.size < 2:
                issues.append(f"dimension '{name}' needs at least 2 points, got {x.size}")
                continue
            if not np.all(np.isfinite(x)):
                issues.append(f"dimension '{name}' contains non-finite points")
                continue
            if np.any(np.diff(x) <= 0):
                first = int(np.argmax(np.diff(x) <= 0))
                issues.append(
                    f"dimension '{name}' must be strictly increasing (violated at index {first})"
                )
                continue
            x.setflags(write=False)
            points[name] = x
        if self.exogenous is not None and self.exogenous.name in self.dimensions:
            issues.append(f"exogenous name '{self.exogenous.name}' clashes with a continuous dimension")
        if issues:
            raise ConfigurationError(issues)
        object.__setattr__(self, "dimensions", points)
        logger.debug(f"StateGrid created with shape {self.shape}")

    @classmethod
    def from_bounds(
        cls,
        bounds: Mapping[str, Tuple[float, ...]],
        exogenous: Optional[ExogenousChain] = None,
    ) -> "StateGrid":
        """Build grids from ``{name: (lower, upper, n_points)}``.

        A fourth entry ``(lower, upper, n_points, curvature)`` selects a
        :func:`power_spaced_grid`; without it the grid is uniform.
        """
        dimensions = {}
        for name, spec in bounds.items():
            lower, upper, n = spec[:3]
            if not lower < upper:
                raise ConfigurationError([f"dimension '{name}': lower bound must be below upper"])
            curvature = spec[3] if len(spec) > 3 else 1.0
            dimensions[name] = power_spaced_grid(int(n), curvature, lower, upper)
        return cls(dimensions, exogenous)

    # ------------------------------------------------------------------
    # Shape and indexing
    # ------------------------------------------------------------------

    @property
    def names(self) -> Tuple[str, ...]:
        """Names of the continuous dimensions, in axis order."""
        return tuple(self.dimensions)

    @property
    def ndim(self) -> int:
        """Number of continuous dimensions."""
        return len(self.dimensions)

    @property
    def n_exogenous(self) -> int:
        """Number of exogenous states (1 without a chain)."""
        return self.exogenous.size if self.exogenous is not None else 1

    @property
    def continuous_shape(self) -> Tuple[int, ...]:
        return tuple(x.size for x in self.dimensions.values())

    @property
    def shape(self) -> Tuple[int, ...]:
        """Full state shape: continuous shape plus the exogenous axis."""
        return self.continuous_shape + (self.n_exogenous,)

    @property
    def size(self) -> int:
        """Number of states in the flattened state space."""
        return int(np.prod(self.shape))

    @property
    def intensity(self) -> np.ndarray:
        """Intensity matrix of the exogenous chain (``[[0.0]]`` without one)."""
        if self.exogenous is None:
            return np.zeros((1, 1))
        return self.exogenous.intensity

    def __getitem__(self, name: str) -> np.ndarray:
        return self.dimensions[name]

    def axis(self, name: str) -> int:
        """Array axis of a continuous dimension."""
        try:
            return self.names.index(name)
        except ValueError:
            raise KeyError(f"Unknown dimension '{name}'; grid has {self.names}") from None

    def flat_index(self, multi_index: Sequence[int]) -> int:
        """Flat (C-order) index of a full multi-index."""
        return int(np.ravel_multi_index(tuple(multi_index), self.shape))

    def unravel(self, flat: int) -> Tuple[int, ...]:
        """Full multi-index of a flat index."""
        return tuple(int(i) for i in np.unravel_index(flat, self.shape))

    # ------------------------------------------------------------------
    # Spacing and measure
    # ------------------------------------------------------------------

    def _broadcast(self, name: str, values: np.ndarray) -> np.ndarray:
        shape = [1] * len(self.shape)
        shape[self.axis(name)] = -1
        return values.reshape(shape)

    def spacing(self, name: str) -> Tuple[np.ndarray, np.ndarray]:
        """Up and down spacing at each point of a dimension.

        The up spacing at the last point and the down spacing at the first
        point are clamped to the adjacent interval.

        Returns:
            Tuple ``(up, down)`` of 1-D arrays, both the length of the grid.
        """
        h = np.diff(self.dimensions[name])
        up = np.append(h, h[-1])
        down = np.insert(h, 0, h[0])
        return up, down

    def avg_spacing(self, name: str) -> np.ndarray:
        """Average of up and down spacing at each point."""
        up, down = self.spacing(name)
        return 0.5 * (up + down)

    def cell_measure(self) -> np.ndarray:
        """Measure of the cell around every state, shaped like the full state.

        The product of the average local spacings over continuous
        dimensions; exogenous states carry unit measure.
        """
        measure = np.ones(self.shape)
        for name in self.names:
            measure = measure * self._broadcast(name, self.avg_spacing(name))
        return measure

    # ------------------------------------------------------------------
    # State arrays
    # ------------------------------------------------------------------

    def mesh(self) -> Dict[str, np.ndarray]:
        """Named state arrays, each shaped like the full state.

        Contains every continuous dimension and, when present, the exogenous
        chain's levels under its name.
        """
        state = {
            name: np.broadcast_to(self._broadcast(name, x), self.shape).copy()
            for name, x in self.dimensions.items()
        }
        if self.exogenous is not None:
            levels = self.exogenous.values.reshape((1,) * self.ndim + (-1,))
            state[self.exogenous.name] = np.broadcast_to(levels, self.shape).copy()
        return state

    def lower_mask(self, name: str) -> np.ndarray:
        """Boolean array marking the lowest grid point of a dimension."""
        mask = np.zeros(self.shape, dtype=bool)
        index = [slice(None)] * len(self.shape)
        index[self.axis(name)] = 0
        mask[tuple(index)] = True
        return mask

    def upper_mask(self, name: str) -> np.ndarray:
        """Boolean array marking the highest grid point of a dimension."""
        mask = np.zeros(self.shape, dtype=bool)
        index = [slice(None)] * len(self.shape)
        index[self.axis(name)] = -1
        mask[tuple(index)] = True
        return mask


def power_spaced_grid(n: int, curvature: float, lower: float, upper: float) -> np.ndarray:
    """Grid ``lower + (upper - lower) x^(1/k)`` for ``x`` uniform on ``[0, 1]``.

    ``curvature`` (k) equal to one gives a uniform grid; values below one
    crowd the points towards ``lower``, values above one towards ``upper``.

    Args:
        n: Number of points, at least 2.
        curvature: Exponent k, positive.
        lower: First point.
        upper: Last point.

    Returns:
        Strictly increasing array of ``n`` points.

    Raises:
        ConfigurationError: If any argument is out of range.
    """
    issues = []
    if n < 2:
        issues.append(f"power-spaced grid needs at least 2 points, got {n}")
    if curvature <= 0:
        issues.append(f"curvature must be positive, got {curvature}")
    if not lower < upper:
        issues.append(f"lower ({lower}) must be below upper ({upper})")
    if issues:
        raise ConfigurationError(issues)
    if curvature == 1.0:
        return np.linspace(lower, upper, int(n))
    unit = np.linspace(0.0, 1.0, int(n)) ** (1.0 / curvature)
    points = lower + (upper - lower) * unit
    points[-1] = upper
    return points


def two_sided_power_spaced_grid(
    n: int,
    lower: float,
    upper: float,
    curvature_negative: float,
    curvature_positive: float,
    mid: float = 0.0,
    fraction_negative: Optional[float] = None,
) -> np.ndarray:
    """Grid that is dense at ``lower``, at ``mid`` and sparse in between and above.

    The part above ``mid`` is a :func:`power_spaced_grid`. The part below
    is built from two mirrored power-spaced halves, so points crowd both at
    the borrowing limit and around ``mid``.

    Args:
        n: Total number of points.
        lower: Borrowing limit.
        upper: Last point.
        curvature_negative: Exponent of the two halves below ``mid``.
        curvature_positive: Exponent above ``mid``.
        mid: Point where the two parts meet.
        fraction_negative: Share of points below ``mid``. Defaults to the
            share of the interval below ``mid``.

    Returns:
        Strictly increasing array of ``n`` points containing ``mid``.

    Raises:
        ConfigurationError: If the bounds are not ordered or a part gets
            fewer than two points.
    """
    if not lower < mid < upper:
        raise ConfigurationError([f"expected lower < mid < upper, got {lower}, {mid}, {upper}"])
    if fraction_negative is None:
        fraction_negative = (mid - lower) / (upper - lower)
    n_negative = int(round(n * fraction_negative))
    if n_negative % 2:
        logger.warning(
            f"Points below mid must be even; using {n_negative + 1} instead of {n_negative}"
        )
        n_negative += 1
    n_positive = n - n_negative
    if n_negative < 2 or n_positive < 2:
        raise ConfigurationError(
            [f"both parts need at least 2 points, got {n_negative} below and {n_positive} above mid"]
        )

    grid = np.empty(n)
    grid[n_negative:] = power_spaced_grid(n_positive, curvature_positive, mid, upper)
    m = n_negative // 2 + 1
    half = power_spaced_grid(m, curvature_negative, 0.0, (mid - lower) / 2.0)
    grid[:m] = lower + half
    grid[m - 1 : 2 * m - 1] = mid - half[::-1]
    return grid
