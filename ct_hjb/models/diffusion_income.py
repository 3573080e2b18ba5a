"""Savings problem with a continuous Ornstein-Uhlenbeck income process.

Income follows ``dz = κ (z̄ - z) dt + σ dW``. The income grid spans quantiles
of the Gamma distribution with shape ``2κz̄/σ²`` and scale ``σ²/(2κ)``, the
stationary law of the square-root analogue of this process, which keeps
the grid inside positive income. Both state dimensions are continuous, so
the diffusion enters the generator through its variance.
"""

import logging
from typing import Mapping, Optional

import numpy as np
from scipy import stats

from ..config.models import DiffusionIncomeConfig
from ..differencing import BoundarySide, DerivativeBundle
from ..grid import StateGrid
from ..hjb_model import HJBModel, ModelEvaluation
from ..policy import consumption_candidate, resolve_upwind, steady_state_candidate
from ..utility import CRRAUtility

logger = logging.getLogger(__name__)


class DiffusionIncomeModel(HJBModel):
    """One asset, diffusive income.

    Args:
        config: Calibration. Defaults to :class:`DiffusionIncomeConfig`.
    """

    def __init__(self, config: Optional[DiffusionIncomeConfig] = None):
        self.config = config if config is not None else DiffusionIncomeConfig()
        self.utility = CRRAUtility(self.config.risk_aversion)

    @property
    def discount_rate(self) -> float:
        return self.config.discount_rate

    def income_grid(self) -> np.ndarray:
        """Uniform income grid between the configured Gamma quantiles."""
        c = self.config
        shape = 2.0 * c.mean_reversion * c.income_mean / c.income_volatility**2
        scale = c.income_volatility**2 / (2.0 * c.mean_reversion)
        low, high = stats.gamma.ppf(c.income_quantiles, shape, scale=scale)
        return np.linspace(low, high, c.n_income)

    def build_grid(self) -> StateGrid:
        c = self.config
        return StateGrid({"a": np.linspace(c.a_min, c.a_max, c.n_assets), "z": self.income_grid()})

    def resources(self, state: Mapping[str, np.ndarray]) -> np.ndarray:
        return state["z"] + self.config.interest_rate * state["a"]

    def income_drift(self, state: Mapping[str, np.ndarray]) -> np.ndarray:
        """Mean reversion ``κ (z̄ - z)``."""
        return self.config.mean_reversion * (self.config.income_mean - state["z"])

    def _asset_boundary(self, state: Mapping[str, np.ndarray], side: BoundarySide) -> np.ndarray:
        return self.utility.derivative(self.resources(state))

    @staticmethod
    def _reflecting(state: Mapping[str, np.ndarray], side: BoundarySide) -> np.ndarray:
        return np.zeros_like(state["z"])

    def boundary_conditions(self):
        return {"a": self._asset_boundary, "z": self._reflecting}

    def initial_value(self, grid: StateGrid) -> np.ndarray:
        return self.utility.evaluate(self.resources(grid.mesh())) / self.discount_rate

    def __call__(
        self, state: Mapping[str, np.ndarray], derivatives: DerivativeBundle
    ) -> ModelEvaluation:
        a = state["a"]
        resources = self.resources(state)
        va, vz = derivatives["a"], derivatives["z"]

        resolved = resolve_upwind(
            consumption_candidate(va.forward, resources, self.utility),
            consumption_candidate(va.backward, resources, self.utility),
            steady_state_candidate(resources, self.utility),
            at_lower=a <= a.min(),
            at_upper=a >= a.max(),
        )
        consumption = resolved.controls["consumption"]
        flow = self.utility.evaluate(consumption)
        mu_z = self.income_drift(state)
        variance = np.full_like(mu_z, self.config.income_volatility**2)

        vt = self.discount_rate * derivatives.value - (
            flow
            + resolved.drift * resolved.derivative
            + self.upwind_term(mu_z, vz)
            + 0.5 * variance * vz.second
        )
        return ModelEvaluation(
            vt=vt,
            flow_utility=flow,
            drifts={"a": resolved.drift, "z": mu_z},
            variances={"z": variance},
            policy={
                "consumption": consumption,
                "savings": resolved.drift,
                "direction": resolved.direction,
            },
        )
