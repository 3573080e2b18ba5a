"""Assembly of the sparse generator implied by a resolved policy.

Every drift component moves probability one grid step in the direction of
its sign at rate ``|drift| / spacing``; optional variances add symmetric
diffusion edges; the exogenous chain adds jumps that keep continuous
coordinates fixed. Edges are accumulated as ``(from, to, rate)`` triples in a
:class:`TransitionList` and turned into one CSR matrix in a single
``coo_matrix`` call, after which the diagonal is set to minus the
off-diagonal row sums.

The resulting matrix is always passed through :func:`check_generator`
before it is returned.
"""

import logging
from typing import List, Mapping, Optional, Sequence, Union

import numpy as np
from scipy import sparse

from .config.constants import DEFAULT_ROW_SUM_TOLERANCE, DRIFT_THRESHOLD
from .exceptions import InvalidGeneratorError
from .grid import StateGrid

logger = logging.getLogger(__name__)

DriftInput = Union[np.ndarray, Sequence[np.ndarray]]


class TransitionList:
    """Arena of ``(from, to, rate)`` triples over a flattened state space.

    Args:
        size: Number of states.
    """

    def __init__(self, size: int):
        self.size = size
        self._sources: List[np.ndarray] = []
        self._targets: List[np.ndarray] = []
        self._rates: List[np.ndarray] = []

    def __len__(self) -> int:
        return sum(r.size for r in self._rates)

    def add(self, sources: np.ndarray, targets: np.ndarray, rates: np.ndarray) -> None:
        """Append a batch of edges; zero rates are dropped."""
        sources = np.asarray(sources, dtype=np.int64).ravel()
        targets = np.asarray(targets, dtype=np.int64).ravel()
        rates = np.asarray(rates, dtype=float).ravel()
        if not sources.size == targets.size == rates.size:
            raise ValueError(
                f"Edge arrays differ in length: {sources.size}, {targets.size}, {rates.size}"
            )
        keep = rates != 0
        self._sources.append(sources[keep])
        self._targets.append(targets[keep])
        self._rates.append(rates[keep])

    def to_matrix(self) -> sparse.csr_matrix:
        """Build the generator: off-diagonal rates plus a balancing diagonal.

        Duplicate edges are summed.
        """
        if self._rates:
            rows = np.concatenate(self._sources)
            cols = np.concatenate(self._targets)
            data = np.concatenate(self._rates)
        else:
            rows = cols = np.zeros(0, dtype=np.int64)
            data = np.zeros(0)
        off_diagonal = sparse.coo_matrix((data, (rows, cols)), shape=(self.size, self.size)).tocsr()
        exit_rates = np.asarray(off_diagonal.sum(axis=1)).ravel()
        generator = sparse.csr_matrix(off_diagonal - sparse.diags(exit_rates, format="csr"))
        generator.eliminate_zeros()
        return generator


def _components(drift: DriftInput) -> List[np.ndarray]:
    if isinstance(drift, np.ndarray):
        return [drift]
    return [np.asarray(d, dtype=float) for d in drift]


def assemble_generator(
    grid: StateGrid,
    drifts: Mapping[str, DriftInput],
    variances: Optional[Mapping[str, np.ndarray]] = None,
    tolerance: float = DEFAULT_ROW_SUM_TOLERANCE,
) -> sparse.csr_matrix:
    """Build the generator of the controlled state process.

    Args:
        grid: State grid.
        drifts: Drift per continuous dimension; either one array or a
            sequence of independently upwinded components, each shaped like
            ``grid.shape``. Dimensions without an entry do not drift.
        variances: Optional instantaneous variance per continuous dimension.
            Diffusion edges reflect at the grid edges.
        tolerance: Largest admissible rate pointing off the grid and largest
            admissible absolute row sum.

    Returns:
        CSR generator over the flattened state space.

    Raises:
        InvalidGeneratorError: If a drift leaves the grid, a rate is negative
            or non-finite, or a row sum exceeds ``tolerance``.
    """
    unknown = set(drifts) - set(grid.names)
    if variances:
        unknown |= set(variances) - set(grid.names)
    if unknown:
        raise InvalidGeneratorError(f"Drift or variance given for unknown dimensions {sorted(unknown)}")

    flat = np.arange(grid.size).reshape(grid.shape)
    edges = TransitionList(grid.size)

    for name, drift in drifts.items():
        axis = grid.axis(name)
        up, down = grid.spacing(name)
        shape = [1] * len(grid.shape)
        shape[axis] = -1
        up = np.broadcast_to(up.reshape(shape), grid.shape)
        down = np.broadcast_to(down.reshape(shape), grid.shape)
        at_lower = grid.lower_mask(name)
        at_upper = grid.upper_mask(name)
        stride = flat.strides[axis] // flat.itemsize

        for component in _components(drift):
            component = np.broadcast_to(component, grid.shape)
            if not np.all(np.isfinite(component)):
                raise InvalidGeneratorError(f"Drift of '{name}' contains non-finite values")
            component = np.where(np.abs(component) <= DRIFT_THRESHOLD, 0.0, component)
            outward = ((component > 0) & at_upper & (component / up > tolerance)) | (
                (component < 0) & at_lower & (-component / down > tolerance)
            )
            if np.any(outward):
                first = tuple(int(i) for i in np.argwhere(outward)[0])
                raise InvalidGeneratorError(
                    f"Drift of '{name}' points off the grid at {int(np.count_nonzero(outward))} "
                    f"edge points (first at index {first})"
                )
            rising = (component > 0) & ~at_upper
            falling = (component < 0) & ~at_lower
            edges.add(flat[rising], flat[rising] + stride, component[rising] / up[rising])
            edges.add(flat[falling], flat[falling] - stride, -component[falling] / down[falling])

    for name, variance in (variances or {}).items():
        axis = grid.axis(name)
        up, down = grid.spacing(name)
        shape = [1] * len(grid.shape)
        shape[axis] = -1
        up = np.broadcast_to(up.reshape(shape), grid.shape)
        down = np.broadcast_to(down.reshape(shape), grid.shape)
        variance = np.broadcast_to(np.asarray(variance, dtype=float), grid.shape)
        if np.any(variance < 0) or not np.all(np.isfinite(variance)):
            raise InvalidGeneratorError(f"Variance of '{name}' must be finite and non-negative")
        stride = flat.strides[axis] // flat.itemsize
        inner_up = ~grid.upper_mask(name)
        inner_down = ~grid.lower_mask(name)
        span = up + down
        edges.add(
            flat[inner_up],
            flat[inner_up] + stride,
            variance[inner_up] / (up[inner_up] * span[inner_up]),
        )
        edges.add(
            flat[inner_down],
            flat[inner_down] - stride,
            variance[inner_down] / (down[inner_down] * span[inner_down]),
        )

    intensity = grid.intensity
    for i in range(grid.n_exogenous):
        for j in range(grid.n_exogenous):
            if i != j and intensity[i, j] != 0:
                sources = flat[..., i]
                edges.add(sources, flat[..., j], np.full(sources.shape, intensity[i, j]))

    generator = edges.to_matrix()
    check_generator(generator, tolerance)
    logger.debug(f"Assembled generator: {grid.size} states, {generator.nnz} non-zeros")
    return generator


def max_row_sum(generator: sparse.spmatrix) -> float:
    """Largest absolute row sum of a generator."""
    return float(np.abs(np.asarray(generator.sum(axis=1)).ravel()).max(initial=0.0))


def check_generator(generator: sparse.spmatrix, tolerance: float = DEFAULT_ROW_SUM_TOLERANCE) -> None:
    """Verify the invariants of a generator matrix.

    Args:
        generator: Square sparse matrix.
        tolerance: Largest admissible absolute row sum.

    Raises:
        InvalidGeneratorError: If the matrix is not square, has non-finite
            entries, negative off-diagonal entries or non-zero row sums.
    """
    rows, cols = generator.shape
    if rows != cols:
        raise InvalidGeneratorError(f"Generator must be square, got shape {generator.shape}")

    coo = sparse.coo_matrix(generator)
    if not np.all(np.isfinite(coo.data)):
        raise InvalidGeneratorError(
            f"Generator has {int(np.count_nonzero(~np.isfinite(coo.data)))} non-finite entries"
        )
    negative = (coo.row != coo.col) & (coo.data < 0)
    if np.any(negative):
        first = int(coo.row[negative][0])
        raise InvalidGeneratorError(
            f"Generator has {int(np.count_nonzero(negative))} negative off-diagonal rates "
            f"(first in row {first})"
        )
    worst = max_row_sum(generator)
    if worst > tolerance:
        raise InvalidGeneratorError(
            f"Generator row sums must vanish: max |row sum| = {worst:.3e} exceeds {tolerance:.1e}",
            max_row_sum=worst,
        )
