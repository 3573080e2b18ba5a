"""Implicit upwind solver for continuous-time Hamilton-Jacobi-Bellman equations.

Each iteration differentiates the current value function, lets the model
resolve its policy, assembles the generator of the controlled process and
solves the implicit update

    ((ρ + 1/Δ) I - A) V_new = u + V_old / Δ

with a sparse LU factorization. The scheme is unconditionally stable, so Δ
may be very large; it affects the path to the fixed point, not the fixed
point itself.

A finite-horizon variant runs one backward pass over a decreasing sequence
of time nodes, using the node spacing as step size. Model parameters may
change from node to node, and the per-node generators can push a density
forward along the resulting transition path.
"""

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import warnings

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.sparse.linalg import splu

from ._warnings import ConvergenceWarning
from .config.exceptions import ConfigurationError
from .config.solver import HJBSolverConfig
from .differencing import differentiate
from .exceptions import NumericalDivergenceError
from .generator import DriftInput, assemble_generator
from .grid import StateGrid
from .hjb_model import HJBModel, ModelEvaluation
from .kolmogorov import evolve_distribution

logger = logging.getLogger(__name__)


class SolverStatus(Enum):
    """Lifecycle of an HJB solve."""

    ITERATING = "iterating"
    CONVERGED = "converged"
    FAILED = "failed"


def _total_drift(drift: DriftInput) -> np.ndarray:
    if isinstance(drift, np.ndarray):
        return drift
    return np.sum(np.stack([np.asarray(d) for d in drift]), axis=0)


@dataclass
class HJBSolution:
    """Result of an infinite-horizon solve.

    Attributes:
        value: Value function shaped like the grid.
        policy: Policy arrays implied by ``value``.
        drifts: Drifts implied by ``value``.
        generator: Generator implied by ``value``, frozen.
        residuals: Sup-norm of ``V_new - V_old`` per iteration.
        iterations: Number of implicit updates performed.
        status: CONVERGED or FAILED.
        hjb_residual: ``max |vt|`` at the returned value function.
        grid: Grid the problem was solved on.
    """

    value: np.ndarray
    policy: Dict[str, np.ndarray]
    drifts: Dict[str, DriftInput]
    generator: sparse.csr_matrix
    residuals: List[float]
    iterations: int
    status: SolverStatus
    hjb_residual: float
    grid: StateGrid

    @property
    def converged(self) -> bool:
        return self.status is SolverStatus.CONVERGED

    @property
    def residual_norm(self) -> float:
        """Last recorded change of the value function."""
        return self.residuals[-1] if self.residuals else float("nan")

    def value_by_regime(self) -> Dict[str, np.ndarray]:
        """Value function split along the exogenous axis.

        Keys are ``"<chain name>=<level>"``; without an exogenous chain the
        single slice is returned under ``"value"``.
        """
        chain = self.grid.exogenous
        if chain is None:
            return {"value": self.value[..., 0].copy()}
        return {
            f"{chain.name}={level:g}": self.value[..., i].copy()
            for i, level in enumerate(chain.values)
        }

    def to_frame(self, density: Optional[np.ndarray] = None) -> pd.DataFrame:
        """One row per grid point with states, value, drifts and policy.

        Args:
            density: Optional stationary density aligned with the flattened
                grid, added as column ``density``.

        Returns:
            DataFrame in flattened (C) state order.
        """
        columns: Dict[str, np.ndarray] = {
            name: values.ravel() for name, values in self.grid.mesh().items()
        }
        columns["value"] = self.value.ravel()
        for name, drift in self.drifts.items():
            columns[f"drift_{name}"] = _total_drift(drift).ravel()
        for name, values in self.policy.items():
            columns[name] = np.broadcast_to(values, self.grid.shape).ravel()
        if density is not None:
            density = np.asarray(density).ravel()
            if density.size != self.grid.size:
                raise ValueError(
                    f"density has {density.size} entries, grid has {self.grid.size} states"
                )
            columns["density"] = density
        return pd.DataFrame(columns)


@dataclass
class FiniteHorizonSolution:
    """Result of a finite-horizon backward pass.

    Attributes:
        time_nodes: Decreasing time nodes; node 0 is the terminal date.
        values: One value function per node, stacked on the first axis.
        policies: Policy implied by each node's value function.
        generators: Generator implied by each node's policy, in force from
            that node until the next later one.
        grid: Grid the problem was solved on.
    """

    time_nodes: np.ndarray
    values: np.ndarray
    policies: List[Dict[str, np.ndarray]] = field(default_factory=list)
    generators: List[sparse.csr_matrix] = field(default_factory=list)
    grid: Optional[StateGrid] = None

    def value_at(self, time: float) -> np.ndarray:
        """Value function at the node closest to ``time``."""
        return self.values[int(np.argmin(np.abs(self.time_nodes - time)))]

    def evolve(self, initial_density: np.ndarray, implicit: bool = False) -> np.ndarray:
        """Push a density forward in time under the per-node policies.

        Args:
            initial_density: Density at the earliest node, ``time_nodes[-1]``.
            implicit: Use implicit instead of explicit steps.

        Returns:
            Array of densities shaped ``(len(time_nodes),) + grid.shape``,
            aligned with ``time_nodes`` (the last entry is the initial
            density, the first the density at the terminal date).

        Raises:
            ConfigurationError: If no generators were recorded.
        """
        if len(self.generators) != self.time_nodes.size or self.grid is None:
            raise ConfigurationError(["solution carries no per-node generators to evolve with"])
        forward = evolve_distribution(
            self.generators[::-1],
            self.time_nodes[::-1],
            initial_density,
            cell_measure=self.grid.cell_measure().ravel(),
            implicit=implicit,
        )
        return forward[::-1].reshape((self.time_nodes.size,) + self.grid.shape)


class ImplicitHJBSolver:
    """Fixed-point iteration of the implicit upwind scheme.

    Args:
        model: Model to solve.
        grid: State grid. Defaults to ``model.build_grid()``.
        config: Solver settings. Defaults to :class:`HJBSolverConfig`.

    Examples:
        Solving the Huggett preset::

            preset = load_config("huggett")
            model = HuggettModel(preset.parameters)
            solution = ImplicitHJBSolver(model, config=preset.solver).solve()
    """

    def __init__(
        self,
        model: HJBModel,
        grid: Optional[StateGrid] = None,
        config: Optional[HJBSolverConfig] = None,
    ):
        self.model = model
        self.grid = grid if grid is not None else model.build_grid()
        self.config = config if config is not None else HJBSolverConfig()
        self.status = SolverStatus.ITERATING
        self._state = self.grid.mesh()
        self._boundary = model.boundary_conditions()

    def evaluate(
        self, value: np.ndarray, model: Optional[HJBModel] = None
    ) -> Tuple[ModelEvaluation, sparse.csr_matrix]:
        """Differentiate, resolve the policy and assemble the generator.

        Args:
            value: Current value function. Not modified.
            model: Model to evaluate instead of the solver's own, on the
                same grid.

        Returns:
            Tuple of (model evaluation, checked generator).
        """
        if model is None or model is self.model:
            model, boundary = self.model, self._boundary
        else:
            boundary = model.boundary_conditions()
        bundle = differentiate(value, self.grid, boundary)
        evaluation = model(self._state, bundle)
        generator = assemble_generator(
            self.grid,
            evaluation.drifts,
            evaluation.variances,
            tolerance=self.config.row_sum_tolerance,
        )
        return evaluation, generator

    def _implicit_step(
        self,
        value: np.ndarray,
        flow_utility: np.ndarray,
        generator: sparse.csr_matrix,
        step: float,
        discount_rate: Optional[float] = None,
    ) -> np.ndarray:
        n = self.grid.size
        rho = self.model.discount_rate if discount_rate is None else discount_rate
        diagonal = sparse.diags(np.full(n, rho + 1.0 / step), format="csc")
        system = sparse.csc_matrix(diagonal - generator)
        rhs = np.broadcast_to(flow_utility, self.grid.shape).ravel() + value.ravel() / step
        return np.asarray(splu(system).solve(rhs)).reshape(self.grid.shape)

    def _prepare(self, value: Optional[np.ndarray], label: str) -> np.ndarray:
        if value is None:
            value = self.model.initial_value(self.grid)
        value = np.array(value, dtype=float)
        issues = []
        if value.shape != self.grid.shape:
            issues.append(f"{label} has shape {value.shape}, grid expects {self.grid.shape}")
        elif not np.all(np.isfinite(value)):
            issues.append(f"{label} contains non-finite values")
        if issues:
            raise ConfigurationError(issues)
        return value

    @staticmethod
    def _check_finite(value: np.ndarray, iteration: int, residuals: Sequence[float]) -> None:
        if np.all(np.isfinite(value)):
            return
        n_nan = int(np.sum(np.isnan(value)))
        n_inf = int(np.sum(np.isinf(value)))
        raise NumericalDivergenceError(
            f"HJB update diverged at iteration {iteration}: value function contains "
            f"{n_nan} NaN and {n_inf} Inf values",
            residuals=residuals,
            iteration=iteration,
        )

    def solve(self, initial_value: Optional[np.ndarray] = None) -> HJBSolution:
        """Iterate the implicit update to its fixed point.

        Args:
            initial_value: Starting guess shaped like the grid. Defaults to
                ``model.initial_value(grid)``.

        Returns:
            HJBSolution. Its status is FAILED only when
            ``config.raise_on_failure`` is False.

        Raises:
            ConfigurationError: If the initial value is malformed.
            NumericalDivergenceError: If the value function becomes
                non-finite, or the budget is exhausted and
                ``raise_on_failure`` is set.
            InvalidGeneratorError: If an assembled generator is invalid.
            PolicyResolutionError: If the model cannot resolve its policy.
        """
        config = self.config
        value = self._prepare(initial_value, "initial value")
        residuals: List[float] = []
        self.status = SolverStatus.ITERATING
        logger.info(
            f"Starting implicit HJB iteration: {self.grid.size} states, "
            f"step size {config.step_size:g}, tolerance {config.tolerance:.1e}"
        )

        iteration = 0
        for iteration in range(1, config.max_iterations + 1):
            evaluation, generator = self.evaluate(value)
            new_value = self._implicit_step(
                value, evaluation.flow_utility, generator, config.step_size
            )
            self._check_finite(new_value, iteration, residuals)

            change = float(np.max(np.abs(new_value - value)))
            residuals.append(change)
            value = new_value

            logger.debug(f"Iteration {iteration}: value change = {change:.6e}")
            if config.verbose and iteration % config.log_every == 0:
                logger.info(f"Iteration {iteration}: value change = {change:.6e}")

            if change < config.tolerance:
                self.status = SolverStatus.CONVERGED
                logger.info(f"Converged after {iteration} iterations")
                break
        else:
            self.status = SolverStatus.FAILED
            message = (
                f"HJB iteration did not converge within {config.max_iterations} iterations: "
                f"last change {residuals[-1]:.3e} exceeds tolerance {config.tolerance:.1e}"
            )
            if config.raise_on_failure:
                raise NumericalDivergenceError(message, residuals=residuals, iteration=iteration)
            logger.warning(message)
            warnings.warn(message, ConvergenceWarning, stacklevel=2)

        evaluation, generator = self.evaluate(value)
        return HJBSolution(
            value=value,
            policy=evaluation.policy,
            drifts=evaluation.drifts,
            generator=generator,
            residuals=residuals,
            iterations=iteration,
            status=self.status,
            hjb_residual=float(np.max(np.abs(evaluation.vt))),
            grid=self.grid,
        )

    def solve_finite_horizon(
        self,
        time_nodes: Sequence[float],
        terminal_value: np.ndarray,
        model_at: Optional[Callable[[float], HJBModel]] = None,
    ) -> FiniteHorizonSolution:
        """Step backward from a terminal value over decreasing time nodes.

        Node 0 carries ``terminal_value``; every later node is one implicit
        step with the node spacing as step size. No convergence check is
        made. With ``model_at`` the parameters may vary over time: the step
        that produces node ``k`` and the policy recorded there use
        ``model_at(time_nodes[k])``. All models share the solver's grid.

        Args:
            time_nodes: Strictly decreasing times, e.g. ``[T, ..., 0]``.
            terminal_value: Value function at ``time_nodes[0]``.
            model_at: Optional factory returning the model in force at a time.
                Defaults to the solver's model at every node.

        Returns:
            FiniteHorizonSolution with one value function, policy and
            generator per node.

        Raises:
            ConfigurationError: If the nodes are not strictly decreasing or
                the terminal value is malformed.
            NumericalDivergenceError: If a step produces non-finite values.

        Examples:
            A bond return that falls linearly from 4% to 3%::

                def model_at(t):
                    rate = np.interp(t, [0.0, 50.0], [0.04, 0.03])
                    return HuggettModel(config.model_copy(update={"interest_rate": rate}))

                path = solver.solve_finite_horizon(nodes, stationary.value, model_at)
                densities = path.evolve(initial_density)
        """
        nodes = np.asarray(time_nodes, dtype=float)
        if nodes.ndim != 1 or nodes.size == 0:
            raise ConfigurationError(["time_nodes must be a non-empty one-dimensional sequence"])
        if not np.all(np.isfinite(nodes)) or np.any(np.diff(nodes) >= 0):
            raise ConfigurationError(["time_nodes must be finite and strictly decreasing"])
        value = self._prepare(terminal_value, "terminal value")

        def model_for(k: int) -> HJBModel:
            return model_at(float(nodes[k])) if model_at is not None else self.model

        logger.info(
            f"Starting finite-horizon pass: {nodes.size} nodes from t={nodes[0]:g} to t={nodes[-1]:g}"
        )
        values = [value]
        evaluation, generator = self.evaluate(value, model_for(0))
        policies = [evaluation.policy]
        generators = [generator]
        for k in range(1, nodes.size):
            model = model_for(k)
            if model_at is not None:
                evaluation, generator = self.evaluate(value, model)
            step = float(nodes[k - 1] - nodes[k])
            value = self._implicit_step(
                value, evaluation.flow_utility, generator, step, model.discount_rate
            )
            self._check_finite(value, k, [])
            values.append(value)
            evaluation, generator = self.evaluate(value, model)
            policies.append(evaluation.policy)
            generators.append(generator)

        return FiniteHorizonSolution(
            time_nodes=nodes,
            values=np.stack(values),
            policies=policies,
            generators=generators,
            grid=self.grid,
        )
