"""Huggett economy: one bond, Poisson income, CRRA utility.

The household chooses consumption to solve

    ρ V(a, z_i) = max_c u(c) + V_a(a, z_i) (z_i + r a - c)
                  + Σ_j λ_ij (V(a, z_j) - V(a, z_i))

on ``a_min <= a <= a_max``. At both asset edges the state constraint is
imposed through the derivative ``u'(z + r a)``, i.e. consuming all resources.

The bond is in zero net supply; :func:`equilibrium_interest_rate` finds the
rate that clears the market.
"""

import logging
from typing import Mapping, Optional, Tuple

import numpy as np
from scipy.optimize import brentq

from ..config.models import HuggettConfig
from ..config.solver import HJBSolverConfig, StationaryDistributionConfig
from ..differencing import BoundarySide, DerivativeBundle
from ..grid import ExogenousChain, StateGrid
from ..hjb_model import HJBModel, ModelEvaluation
from ..hjb_solver import ImplicitHJBSolver
from ..kolmogorov import stationary_distribution
from ..policy import consumption_candidate, resolve_upwind, steady_state_candidate
from ..utility import CRRAUtility

logger = logging.getLogger(__name__)


class HuggettModel(HJBModel):
    """Consumption-savings problem of the Huggett economy.

    Args:
        config: Calibration. Defaults to :class:`HuggettConfig`.
    """

    def __init__(self, config: Optional[HuggettConfig] = None):
        self.config = config if config is not None else HuggettConfig()
        self.utility = CRRAUtility(self.config.risk_aversion)
        self.intensity = np.asarray(self.config.intensity, dtype=float)

    @property
    def discount_rate(self) -> float:
        return self.config.discount_rate

    def build_grid(self) -> StateGrid:
        c = self.config
        chain = ExogenousChain("z", c.income, c.intensity)
        return StateGrid.from_bounds(
            {"a": (c.a_min, c.a_max, c.n_points, c.grid_curvature)}, chain
        )

    def resources(self, state: Mapping[str, np.ndarray]) -> np.ndarray:
        """Income plus interest, ``z + r a``."""
        return state["z"] + self.config.interest_rate * state["a"]

    def _asset_boundary(self, state: Mapping[str, np.ndarray], side: BoundarySide) -> np.ndarray:
        return self.utility.derivative(self.resources(state))

    def boundary_conditions(self):
        return {"a": self._asset_boundary}

    def initial_value(self, grid: StateGrid) -> np.ndarray:
        """Value of consuming current resources forever, ``u(z + r a) / ρ``."""
        return self.utility.evaluate(self.resources(grid.mesh())) / self.discount_rate

    def __call__(
        self, state: Mapping[str, np.ndarray], derivatives: DerivativeBundle
    ) -> ModelEvaluation:
        a = state["a"]
        resources = self.resources(state)
        va = derivatives["a"]

        resolved = resolve_upwind(
            consumption_candidate(va.forward, resources, self.utility),
            consumption_candidate(va.backward, resources, self.utility),
            steady_state_candidate(resources, self.utility),
            at_lower=a <= a.min(),
            at_upper=a >= a.max(),
        )
        consumption = resolved.controls["consumption"]
        flow = self.utility.evaluate(consumption)
        value = derivatives.value
        vt = self.discount_rate * value - (
            flow + resolved.drift * resolved.derivative + self.exogenous_term(value, self.intensity)
        )
        return ModelEvaluation(
            vt=vt,
            flow_utility=flow,
            drifts={"a": resolved.drift},
            policy={
                "consumption": consumption,
                "savings": resolved.drift,
                "direction": resolved.direction,
            },
        )


def excess_asset_demand(
    config: HuggettConfig,
    interest_rate: float,
    solver_config: Optional[HJBSolverConfig] = None,
    stationary_config: Optional[StationaryDistributionConfig] = None,
) -> float:
    """Aggregate bond holdings at a given interest rate.

    Solves the household problem, computes the stationary distribution and
    integrates assets against it. Zero at the equilibrium rate.

    Args:
        config: Calibration; its interest rate is replaced.
        interest_rate: Rate to evaluate.
        solver_config: HJB settings.
        stationary_config: Stationary-distribution settings.

    Returns:
        Aggregate asset demand ``Σ a g(a, z) Δ``.
    """
    calibration = HuggettConfig(**{**config.model_dump(), "interest_rate": interest_rate})
    model = HuggettModel(calibration)
    solver = ImplicitHJBSolver(model, config=solver_config)
    solution = solver.solve()
    measure = solver.grid.cell_measure().ravel()
    density = stationary_distribution(
        solution.generator, cell_measure=measure, config=stationary_config
    )
    assets = solver.grid.mesh()["a"].ravel()
    demand = float(np.sum(assets * density * measure))
    logger.info(f"Excess bond demand at r={interest_rate:.5f}: {demand:.6e}")
    return demand


def equilibrium_interest_rate(
    config: HuggettConfig,
    bracket: Tuple[float, float] = (0.01, 0.045),
    xtol: float = 1e-6,
    solver_config: Optional[HJBSolverConfig] = None,
    stationary_config: Optional[StationaryDistributionConfig] = None,
) -> float:
    """Interest rate at which bonds are in zero net supply.

    Uses Brent's method on :func:`excess_asset_demand`.

    Args:
        config: Calibration.
        bracket: Rates between which excess demand changes sign.
        xtol: Absolute tolerance on the rate.
        solver_config: HJB settings.
        stationary_config: Stationary-distribution settings.

    Returns:
        Market-clearing interest rate.

    Raises:
        ValueError: If excess demand has the same sign at both ends of the
            bracket.
    """
    low, high = bracket

    def demand(rate: float) -> float:
        return excess_asset_demand(config, rate, solver_config, stationary_config)

    demand_low, demand_high = demand(low), demand(high)
    if np.sign(demand_low) == np.sign(demand_high):
        raise ValueError(
            f"Excess demand does not change sign on [{low}, {high}]: "
            f"{demand_low:.3e} and {demand_high:.3e}"
        )
    rate = float(brentq(demand, low, high, xtol=xtol))
    logger.info(f"Bond market clears at r={rate:.6f}")
    return rate
