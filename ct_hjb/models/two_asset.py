"""Two-asset household problem with a kinked adjustment cost.

States are liquid wealth ``b``, illiquid wealth ``a`` and Poisson income
``z``. The household consumes out of liquid wealth and moves ``d`` into the
illiquid account at cost ``χ(d, a) = χ₀|d| + χ₁ d²/(2 max(a, 1e-5))``:

    db = ((1 - ξ) w z + r_b(b) b - d - χ(d, a) - c) dt
    da = (d + ξ w z + r_a(a) a) dt

Liquid debt pays a higher rate than liquid savings. The illiquid return is
taxed away as ``a`` approaches ``a_max``: it turns negative past
``tax_threshold * a_max``, and the configuration guarantees that the passive
inflow ``ξ w z + r_a(a) a`` is not positive at ``a_max``. Deposits that
would leave the grid are never selected, so the ranked deposit is the
deposit that enters the generator.

The liquid drift is split into its consumption part and its deposit part,
each upwinded on its own; the illiquid drift is split into the deposit and
the passive inflow.
"""

import logging
from typing import Mapping, Optional

import numpy as np

from ..config.models import TwoAssetConfig
from ..differencing import BoundarySide, DerivativeBundle
from ..grid import ExogenousChain, StateGrid
from ..hjb_model import HJBModel, ModelEvaluation
from ..policy import (
    AdjustmentBounds,
    KinkedAdjustmentCost,
    consumption_candidate,
    resolve_upwind,
    select_adjustment,
    steady_state_candidate,
)
from ..utility import CRRAUtility

logger = logging.getLogger(__name__)


class TwoAssetModel(HJBModel):
    """Liquid/illiquid portfolio problem.

    Args:
        config: Calibration. Defaults to :class:`TwoAssetConfig`.
    """

    def __init__(self, config: Optional[TwoAssetConfig] = None):
        self.config = config if config is not None else TwoAssetConfig()
        self.utility = CRRAUtility(self.config.risk_aversion)
        self.cost = KinkedAdjustmentCost(self.config.fixed_cost, self.config.convex_cost)
        self.intensity = np.asarray(self.config.intensity, dtype=float)
        if self.config.illiquid_return - 1.0 / self.config.convex_cost > 0:
            logger.warning(
                f"illiquid_return ({self.config.illiquid_return}) exceeds 1/convex_cost "
                f"({1.0 / self.config.convex_cost:.4g}); deposits may not be bounded"
            )

    @property
    def discount_rate(self) -> float:
        return self.config.discount_rate

    def build_grid(self) -> StateGrid:
        c = self.config
        chain = ExogenousChain("z", c.income, c.intensity)
        return StateGrid.from_bounds(
            {"b": (c.b_min, c.b_max, c.n_liquid), "a": (c.a_min, c.a_max, c.n_illiquid)}, chain
        )

    def liquid_return(self, b: np.ndarray) -> np.ndarray:
        """``rb_pos`` on savings, ``rb_neg`` on debt."""
        return np.where(
            b >= 0, self.config.liquid_return_positive, self.config.liquid_return_negative
        )

    def illiquid_return(self, a: np.ndarray) -> np.ndarray:
        """``ra (1 - (a / (threshold a_max))^(τ-1))``."""
        c = self.config
        ratio = a / (c.tax_threshold * c.a_max)
        return c.illiquid_return * (1.0 - ratio ** (c.tax_curvature - 1.0))

    def liquid_resources(self, state: Mapping[str, np.ndarray]) -> np.ndarray:
        """Liquid inflow before consumption and deposits."""
        b = state["b"]
        labour = (1.0 - self.config.deposit_share) * self.config.wage * state["z"]
        return labour + self.liquid_return(b) * b

    def passive_deposit(self, state: Mapping[str, np.ndarray]) -> np.ndarray:
        """Automatic deposit plus illiquid return, ``ξ w z + r_a(a) a``."""
        a = state["a"]
        automatic = self.config.deposit_share * self.config.wage * state["z"]
        return automatic + self.illiquid_return(a) * a

    def _liquid_boundary(self, state: Mapping[str, np.ndarray], side: BoundarySide) -> np.ndarray:
        return self.utility.derivative(self.liquid_resources(state))

    def boundary_conditions(self):
        return {"b": self._liquid_boundary}

    def initial_value(self, grid: StateGrid) -> np.ndarray:
        """Utility of consuming labour income plus untaxed returns, divided by ρ."""
        state = grid.mesh()
        c = self.config
        resources = (
            (1.0 - c.deposit_share) * c.wage * state["z"]
            + c.illiquid_return * state["a"]
            + c.liquid_return_negative * state["b"]
        )
        return self.utility.evaluate(resources) / self.discount_rate

    def __call__(
        self, state: Mapping[str, np.ndarray], derivatives: DerivativeBundle
    ) -> ModelEvaluation:
        b, a = state["b"], state["a"]
        vb, va = derivatives["b"], derivatives["a"]
        b_lower, b_upper = b <= b.min(), b >= b.max()
        a_lower, a_upper = a <= a.min(), a >= a.max()

        resources = self.liquid_resources(state)
        consumption_policy = resolve_upwind(
            consumption_candidate(vb.forward, resources, self.utility),
            consumption_candidate(vb.backward, resources, self.utility),
            steady_state_candidate(resources, self.utility),
            at_lower=b_lower,
            at_upper=b_upper,
        )
        selection = select_adjustment(
            va.forward,
            va.backward,
            vb.forward,
            vb.backward,
            a,
            self.cost,
            AdjustmentBounds(a_lower, a_upper, b_lower, b_upper),
        )

        liquid_drifts = [consumption_policy.drift, selection.liquid_drift]
        illiquid_drifts = [selection.illiquid_drift, self.passive_deposit(state)]

        consumption = consumption_policy.controls["consumption"]
        flow = self.utility.evaluate(consumption)
        value = derivatives.value
        vt = self.discount_rate * value - (
            flow
            + self.upwind_term(liquid_drifts, vb)
            + self.upwind_term(illiquid_drifts, va)
            + self.exogenous_term(value, self.intensity)
        )
        return ModelEvaluation(
            vt=vt,
            flow_utility=flow,
            drifts={"b": liquid_drifts, "a": illiquid_drifts},
            policy={
                "consumption": consumption,
                "deposit": selection.deposit,
                "adjustment": selection.direction,
                "consumption_direction": consumption_policy.direction,
                "hamiltonian": selection.hamiltonian,
            },
        )
