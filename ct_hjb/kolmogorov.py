"""Stationary distribution of a generator (Kolmogorov Forward equation).

The generator ``A`` of a continuous-time chain is singular: for an
irreducible chain its left null space is one-dimensional. The stationary
density ``g`` solves ``A^T g = 0`` and is normalised so that
``sum(g * cell_measure) = 1``. Four strategies are available through
:class:`~ct_hjb.config.solver.StationaryMethod`:

- DIRECT pins one equation and solves the square system once; a singular
  factorization is retried exactly once with a small diagonal shift.
- DEATH solves ``(delta I - A^T) g = delta g0``, which is non-singular for
  any ``delta > 0``.
- EIGEN takes the eigenvector of ``A^T`` whose eigenvalue is nearest zero.
- ITERATIVE runs explicit Euler steps of ``dg/dt = A^T g``.

On an irreducible generator all four agree; :func:`compare_methods` reports
how closely.

Away from the steady state, :func:`evolve_distribution` pushes a density
forward along a path of generators, e.g. the per-node generators of a
finite-horizon solve.
"""

from dataclasses import dataclass
from itertools import combinations
import logging
from typing import Dict, Iterable, Optional, Sequence, Union
import warnings

import numpy as np
from scipy import linalg, sparse
from scipy.sparse.linalg import eigs, splu

from ._warnings import IllConditionedGeneratorWarning
from .config.exceptions import ConfigurationError
from .config.solver import StationaryDistributionConfig, StationaryMethod
from .exceptions import NonFiniteResultError, NumericalDivergenceError, SingularSystemError

logger = logging.getLogger(__name__)

CellMeasure = Union[float, np.ndarray]

_MIXED_SIGN_TOLERANCE = 1e-8


def _normalize(density: np.ndarray, cell_measure: CellMeasure, method: StationaryMethod):
    density = np.real(np.asarray(density)).astype(float).ravel()
    most_negative = float(density.min(initial=0.0))
    if most_negative < 0:
        logger.debug(
            f"{method.name}: clipping negative densities (min {most_negative:.3e}) to zero"
        )
        density = np.clip(density, 0.0, None)
    mass = float(np.sum(density * np.asarray(cell_measure).ravel()))
    if not np.isfinite(mass) or mass <= 0:
        raise NonFiniteResultError(
            f"{method.name}: stationary density has total mass {mass}, cannot normalise"
        )
    return density / mass


def _pinned_solve(transposed: sparse.csr_matrix, pin: int, pin_value: float) -> np.ndarray:
    system = transposed.tolil()
    system[pin, :] = 0.0
    system[pin, pin] = 1.0
    rhs = np.zeros(transposed.shape[0])
    rhs[pin] = pin_value
    try:
        solution = splu(sparse.csc_matrix(system)).solve(rhs)
    except RuntimeError as exc:
        raise SingularSystemError(f"Pinned stationary system is singular: {exc}") from exc
    if not np.all(np.isfinite(solution)):
        raise SingularSystemError("Pinned stationary system produced non-finite values")
    return solution


def _direct(generator: sparse.csr_matrix, config: StationaryDistributionConfig) -> np.ndarray:
    n = generator.shape[0]
    if config.pin_index >= n:
        raise ConfigurationError([f"pin_index {config.pin_index} outside a {n}-state generator"])
    transposed = sparse.csr_matrix(generator.T)
    try:
        return _pinned_solve(transposed, config.pin_index, config.pin_value)
    except SingularSystemError as exc:
        logger.warning(
            f"DIRECT: {exc}; retrying once with diagonal shift {config.regularization:.2e}"
        )
    shifted = sparse.csr_matrix(
        (generator + config.regularization * sparse.identity(n, format="csr")).T
    )
    try:
        return _pinned_solve(shifted, config.pin_index, config.pin_value)
    except SingularSystemError as exc:
        raise SingularSystemError(
            f"Pinned stationary system is singular even after a diagonal shift of "
            f"{config.regularization:.2e}"
        ) from exc


def _death(
    generator: sparse.csr_matrix, config: StationaryDistributionConfig, cell_measure: CellMeasure
) -> np.ndarray:
    n = generator.shape[0]
    delta = config.death_rate
    initial = np.ones(n) / np.sum(np.broadcast_to(cell_measure, (n,)))
    system = sparse.csc_matrix(delta * sparse.identity(n, format="csc") - generator.T)
    return np.asarray(splu(system).solve(delta * initial))


def _eigen(generator: sparse.csr_matrix, config: StationaryDistributionConfig) -> np.ndarray:
    n = generator.shape[0]
    transposed = sparse.csc_matrix(generator.T)
    if n <= config.dense_eigen_threshold:
        eigenvalues, eigenvectors = linalg.eig(transposed.toarray())
        k = int(np.argmin(np.abs(eigenvalues)))
        eigenvalue, vector = eigenvalues[k], eigenvectors[:, k]
    else:
        eigenvalues, eigenvectors = eigs(transposed, k=1, sigma=config.eigen_shift, which="LM")
        eigenvalue, vector = eigenvalues[0], eigenvectors[:, 0]

    if abs(eigenvalue) > config.eigenvalue_tolerance:
        warnings.warn(
            f"Principal eigenvalue of the generator is {abs(eigenvalue):.3e}, above tolerance "
            f"{config.eigenvalue_tolerance:.1e}; the chain may be reducible or ill-conditioned",
            IllConditionedGeneratorWarning,
            stacklevel=3,
        )
    logger.debug(f"EIGEN: principal eigenvalue {eigenvalue:.3e}")

    vector = np.real(vector)
    vector = vector * np.sign(vector[np.argmax(np.abs(vector))])
    scale = float(np.max(np.abs(vector)))
    if float(vector.min()) < -_MIXED_SIGN_TOLERANCE * scale:
        warnings.warn(
            f"Principal eigenvector has entries of both signs (min {vector.min() / scale:.3e} "
            f"relative to the largest); the chain may be reducible",
            IllConditionedGeneratorWarning,
            stacklevel=3,
        )
    return vector


def _iterative(
    generator: sparse.csr_matrix, config: StationaryDistributionConfig, cell_measure: CellMeasure
) -> np.ndarray:
    n = generator.shape[0]
    transposed = sparse.csr_matrix(generator.T)
    exit_rate = float(np.max(np.abs(generator.diagonal()), initial=0.0))
    if config.time_step is not None:
        dt = config.time_step
    elif exit_rate > 0:
        dt = 0.9 / exit_rate
    else:
        dt = 1.0
    density = np.ones(n) / np.sum(np.broadcast_to(cell_measure, (n,)))

    change = float("inf")
    for iteration in range(1, config.iterative_max_iterations + 1):
        updated = density + dt * (transposed @ density)
        if not np.all(np.isfinite(updated)):
            raise NonFiniteResultError(
                f"ITERATIVE: density became non-finite at iteration {iteration} (dt={dt:.3e})",
                iteration=iteration,
            )
        change = float(np.max(np.abs(updated - density)))
        density = updated
        if change <= config.iterative_tolerance * float(np.max(np.abs(density))):
            logger.debug(f"ITERATIVE: converged after {iteration} steps (dt={dt:.3e})")
            return density

    raise NumericalDivergenceError(
        f"ITERATIVE: no convergence within {config.iterative_max_iterations} steps, "
        f"last change {change:.3e}",
        iteration=config.iterative_max_iterations,
    )


def stationary_distribution(
    generator: sparse.spmatrix,
    method: Optional[StationaryMethod] = None,
    cell_measure: CellMeasure = 1.0,
    config: Optional[StationaryDistributionConfig] = None,
) -> np.ndarray:
    """Stationary density of a generator.

    Args:
        generator: Square sparse generator with zero row sums.
        method: Strategy. Defaults to ``config.method``.
        cell_measure: Measure per state, scalar or aligned with the
            flattened state space.
        config: Method settings. Defaults to :class:`StationaryDistributionConfig`.

    Returns:
        Density ``g >= 0`` with ``sum(g * cell_measure) = 1``.

    Raises:
        SingularSystemError: DIRECT, if the shifted retry also fails.
        NonFiniteResultError: ITERATIVE, on a non-finite iterate; any method,
            if the result cannot be normalised.
        NumericalDivergenceError: ITERATIVE, if the step budget runs out.
    """
    config = config if config is not None else StationaryDistributionConfig()
    method = method if method is not None else config.method
    generator = sparse.csr_matrix(generator, dtype=float)
    n = generator.shape[0]
    measure = np.asarray(cell_measure, dtype=float)
    if measure.size not in (1, n):
        raise ConfigurationError([f"cell_measure has {measure.size} entries, expected 1 or {n}"])
    measure = measure.ravel() if measure.size == n else float(measure)

    logger.info(f"Computing stationary distribution of {n} states with method {method.name}")
    if method is StationaryMethod.DIRECT:
        raw = _direct(generator, config)
    elif method is StationaryMethod.DEATH:
        raw = _death(generator, config, measure)
    elif method is StationaryMethod.EIGEN:
        raw = _eigen(generator, config)
    elif method is StationaryMethod.ITERATIVE:
        raw = _iterative(generator, config, measure)
    else:
        raise ValueError(f"Unknown stationary method: {method}")
    return _normalize(raw, measure, method)


@dataclass
class MethodComparison:
    """Stationary densities from several methods and their largest disagreement."""

    distributions: Dict[StationaryMethod, np.ndarray]
    max_difference: float


def compare_methods(
    generator: sparse.spmatrix,
    methods: Optional[Iterable[StationaryMethod]] = None,
    cell_measure: CellMeasure = 1.0,
    config: Optional[StationaryDistributionConfig] = None,
) -> MethodComparison:
    """Run several stationary methods on one generator.

    Args:
        generator: Square sparse generator.
        methods: Methods to run. Defaults to all four.
        cell_measure: Measure per state.
        config: Shared method settings.

    Returns:
        MethodComparison with the pairwise sup-norm of the largest disagreement.
    """
    methods = list(methods) if methods is not None else list(StationaryMethod)
    distributions = {
        method: stationary_distribution(generator, method, cell_measure, config)
        for method in methods
    }
    max_difference = max(
        (
            float(np.max(np.abs(distributions[a] - distributions[b])))
            for a, b in combinations(methods, 2)
        ),
        default=0.0,
    )
    logger.info(
        f"Stationary methods {[m.name for m in methods]} differ by at most {max_difference:.3e}"
    )
    return MethodComparison(distributions=distributions, max_difference=max_difference)


def evolve_distribution(
    generators: Sequence[sparse.spmatrix],
    time_nodes: Sequence[float],
    initial: np.ndarray,
    cell_measure: CellMeasure = 1.0,
    implicit: bool = False,
) -> np.ndarray:
    """Push a density forward along a path of generators.

    The mass per state ``p = g * cell_measure`` follows ``dp/dt = A_t^T p``,
    so total mass is preserved on non-uniform grids. Between ``time_nodes[k]``
    and ``time_nodes[k + 1]`` the generator ``generators[k]`` is held fixed and
    one step is taken, explicit ``p <- (I + dt A^T) p`` by default or implicit
    ``(I - dt A^T) p_new = p``.

    Args:
        generators: Generator in force from each node on; at least one per
            interval.
        time_nodes: Strictly increasing times.
        initial: Density at ``time_nodes[0]``.
        cell_measure: Measure per state, scalar or aligned with the
            flattened state space.
        implicit: Use implicit steps, which keep densities non-negative for
            any step size.

    Returns:
        Array of shape ``(len(time_nodes), n_states)``, one density per node.

    Raises:
        ConfigurationError: If the nodes, generators or initial density do
            not fit together.
        NonFiniteResultError: If a step produces non-finite values.
    """
    nodes = np.asarray(time_nodes, dtype=float)
    density = np.asarray(initial, dtype=float).ravel()
    n = density.size
    issues = []
    if nodes.ndim != 1 or nodes.size == 0:
        issues.append("time_nodes must be a non-empty one-dimensional sequence")
    elif not np.all(np.isfinite(nodes)) or np.any(np.diff(nodes) <= 0):
        issues.append("time_nodes must be finite and strictly increasing")
    elif len(generators) < nodes.size - 1:
        issues.append(f"{len(generators)} generators given for {nodes.size - 1} intervals")
    if not np.all(np.isfinite(density)) or np.any(density < 0):
        issues.append("initial density must be finite and non-negative")
    for k, generator in enumerate(generators):
        if generator.shape != (n, n):
            issues.append(f"generator {k} has shape {generator.shape}, expected ({n}, {n})")
    measure = np.asarray(cell_measure, dtype=float).ravel()
    if measure.size not in (1, n):
        issues.append(f"cell_measure has {measure.size} entries, expected 1 or {n}")
    if issues:
        raise ConfigurationError(issues)

    measure = np.broadcast_to(measure, (n,))
    mass = density * measure
    densities = [density]
    identity = sparse.identity(n, format="csc")
    warned = False
    logger.info(
        f"Evolving a {n}-state density over {nodes.size - 1} steps "
        f"({'implicit' if implicit else 'explicit'})"
    )
    for k in range(nodes.size - 1):
        dt = float(nodes[k + 1] - nodes[k])
        transposed = sparse.csc_matrix(generators[k].T, dtype=float)
        if implicit:
            mass = np.asarray(splu(sparse.csc_matrix(identity - dt * transposed)).solve(mass))
        else:
            exit_rate = float(np.max(np.abs(transposed.diagonal()), initial=0.0))
            if dt * exit_rate > 1.0 and not warned:
                warnings.warn(
                    f"Explicit step {dt:g} exceeds 1 / largest exit rate ({1.0 / exit_rate:.3e}); "
                    f"densities may turn negative",
                    IllConditionedGeneratorWarning,
                    stacklevel=2,
                )
                warned = True
            mass = mass + dt * (transposed @ mass)
        if not np.all(np.isfinite(mass)):
            raise NonFiniteResultError(
                f"Forward evolution became non-finite at step {k + 1} (dt={dt:.3e})",
                iteration=k + 1,
            )
        densities.append(mass / measure)
    return np.stack(densities)
