"""Interface between concrete economic models and the HJB solver.

A model is a callable: given the state arrays and the finite differences of
the current value function, it resolves its policy and reports the implied
drifts, flow utility and value-function time derivative. The solver owns the
value function; models only read the :class:`~ct_hjb.differencing.DerivativeBundle`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import numpy as np

from .differencing import BoundaryCallback, DerivativeBundle, DimensionDerivatives
from .generator import DriftInput
from .grid import StateGrid


@dataclass(frozen=True, eq=False)
class ModelEvaluation:
    """Output of one model evaluation.

    Attributes:
        vt: Implied time derivative of the value function,
            ``rho V - u - (generator applied to V)``; zero at the solution.
        flow_utility: Flow utility at the resolved policy.
        drifts: Drift per continuous dimension, one array or a sequence of
            independently upwinded components.
        policy: Named policy arrays recorded for analysis.
        variances: Optional instantaneous variance per continuous dimension.
    """

    vt: np.ndarray
    flow_utility: np.ndarray
    drifts: Dict[str, DriftInput]
    policy: Dict[str, np.ndarray]
    variances: Optional[Dict[str, np.ndarray]] = None


class HJBModel(ABC):
    """Base class for models solved by :class:`~ct_hjb.hjb_solver.ImplicitHJBSolver`."""

    @property
    @abstractmethod
    def discount_rate(self) -> float:
        """Time preference rate rho."""

    @abstractmethod
    def build_grid(self) -> StateGrid:
        """State grid implied by the model's configuration."""

    def boundary_conditions(self) -> Dict[str, BoundaryCallback]:
        """Boundary callbacks per continuous dimension (none by default)."""
        return {}

    @abstractmethod
    def initial_value(self, grid: StateGrid) -> np.ndarray:
        """Starting guess for the fixed-point iteration."""

    @abstractmethod
    def __call__(
        self, state: Mapping[str, np.ndarray], derivatives: DerivativeBundle
    ) -> ModelEvaluation:
        """Resolve the policy at every state."""

    @staticmethod
    def upwind_term(drift: DriftInput, derivatives: DimensionDerivatives) -> np.ndarray:
        """Sum of ``drift * V'`` over drift components, each upwinded by its sign."""
        components = [drift] if isinstance(drift, np.ndarray) else list(drift)
        total = np.zeros_like(derivatives.forward)
        for component in components:
            total = total + np.where(
                component > 0, component * derivatives.forward, component * derivatives.backward
            )
        return total

    @staticmethod
    def exogenous_term(value: np.ndarray, intensity: np.ndarray) -> np.ndarray:
        """Jump term ``sum_j Lambda[i, j] V[..., j]`` of the exogenous chain."""
        return np.asarray(value @ intensity.T)
