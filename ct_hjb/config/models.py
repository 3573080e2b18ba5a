"""Economic parameters of the bundled heterogeneous-agent models.

Each model is described by one frozen pydantic model. Grids are not stored
here; they are derived from the bounds and point counts when the model builds
its :class:`~ct_hjb.grid.StateGrid`.

Since:
    Version 0.1.0
"""

from typing import List, Literal, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_INTENSITY_TOLERANCE = 1e-10


def intensity_issues(values: List[float], intensity: List[List[float]]) -> List[str]:
    """Collect problems with an exogenous Poisson chain.

    Args:
        values: Level of the exogenous variable in each state.
        intensity: Intensity matrix, one row per state.

    Returns:
        List of human-readable issues, empty when the chain is valid.
    """
    issues = []
    matrix = np.asarray(intensity, dtype=float)
    n = len(values)
    if matrix.shape != (n, n):
        issues.append(f"intensity matrix has shape {matrix.shape}, expected ({n}, {n})")
        return issues
    if not np.all(np.isfinite(matrix)):
        issues.append("intensity matrix contains non-finite entries")
        return issues
    off_diagonal = matrix[~np.eye(n, dtype=bool)]
    if np.any(off_diagonal < 0):
        issues.append("intensity matrix has negative off-diagonal rates")
    row_sums = np.abs(matrix.sum(axis=1))
    if np.any(row_sums > _INTENSITY_TOLERANCE * max(1.0, float(np.abs(matrix).max()))):
        issues.append(f"intensity rows must sum to zero, largest |row sum| is {row_sums.max():.3e}")
    return issues


class HuggettConfig(BaseModel):
    """One-asset consumption-savings problem with Poisson income.

    The agent solves ``max E int e^{-rho t} u(c) dt`` subject to
    ``da = (z + r a - c) dt`` and ``a >= a_min``, where ``z`` follows a
    continuous-time Markov chain with intensity matrix ``intensity``.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["huggett"] = "huggett"
    income: List[float] = Field(default=[0.1, 0.2], min_length=1, description="Income levels z")
    intensity: List[List[float]] = Field(
        default=[[-0.02, 0.02], [0.03, -0.03]],
        description="Intensity matrix of the income chain; rows sum to zero",
    )
    interest_rate: float = Field(default=0.03, description="Return r on the bond")
    discount_rate: float = Field(default=0.05, gt=0, description="Time preference rho")
    risk_aversion: float = Field(default=2.0, gt=0, description="CRRA coefficient gamma")
    a_min: float = Field(default=-0.1, description="Borrowing limit")
    a_max: float = Field(default=1.0, description="Upper end of the asset grid")
    n_points: int = Field(default=500, ge=3, description="Asset grid points")
    grid_curvature: float = Field(
        default=1.0, gt=0, description="Power-spacing exponent of the asset grid; 1 is uniform"
    )

    @model_validator(mode="after")
    def validate_problem(self):
        """Check grid bounds, the income chain and the borrowing limit.

        Returns:
            Validated config.

        Raises:
            ValueError: If any check fails.
        """
        issues = []
        if self.a_min >= self.a_max:
            issues.append(f"a_min ({self.a_min}) must be below a_max ({self.a_max})")
        issues.extend(intensity_issues(self.income, self.intensity))
        worst = min(self.income) + self.interest_rate * self.a_min
        if worst <= 0:
            issues.append(
                f"income plus interest at the borrowing limit must be positive, got {worst:.4g}"
            )
        if issues:
            raise ValueError("; ".join(issues))
        return self


class DiffusionIncomeConfig(BaseModel):
    """One-asset problem with Ornstein-Uhlenbeck income.

    Income follows ``dz = kappa (zbar - z) dt + sigma dW``; the income grid
    spans quantiles of the Gamma approximation of its stationary law.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["diffusion_income"] = "diffusion_income"
    mean_reversion: float = Field(default=0.1, gt=0, description="kappa")
    income_mean: float = Field(default=1.0, gt=0, description="zbar")
    income_volatility: float = Field(default=0.07, gt=0, description="sigma")
    interest_rate: float = Field(default=0.03)
    discount_rate: float = Field(default=0.05, gt=0)
    risk_aversion: float = Field(default=2.0, gt=0)
    a_min: float = Field(default=0.0, ge=0, description="Borrowing limit (no borrowing)")
    a_max: float = Field(default=5.0)
    n_assets: int = Field(default=100, ge=3)
    n_income: int = Field(default=10, ge=3)
    income_quantiles: Tuple[float, float] = Field(
        default=(0.001, 0.9999),
        description="Lower and upper quantiles of the stationary income law",
    )

    @field_validator("income_quantiles")
    @classmethod
    def validate_quantiles(cls, v: Tuple[float, float]) -> Tuple[float, float]:
        """Quantiles must lie strictly inside (0, 1) and increase.

        Args:
            v: Quantile pair.

        Returns:
            Validated pair.

        Raises:
            ValueError: If the pair is not an increasing pair in (0, 1).
        """
        low, high = v
        if not 0.0 < low < high < 1.0:
            raise ValueError(f"income_quantiles must satisfy 0 < low < high < 1, got {v}")
        return v

    @model_validator(mode="after")
    def validate_bounds(self):
        """Asset bounds must be ordered.

        Returns:
            Validated config.

        Raises:
            ValueError: If a_min is not below a_max.
        """
        if self.a_min >= self.a_max:
            raise ValueError(f"a_min ({self.a_min}) must be below a_max ({self.a_max})")
        return self


class TwoAssetConfig(BaseModel):
    """Liquid/illiquid portfolio problem with a kinked adjustment cost.

    Liquid wealth ``b`` earns ``rb_pos`` when positive and ``rb_neg`` when
    negative; illiquid wealth ``a`` earns a taxed return that vanishes near
    ``a_max``. Moving ``d`` from liquid to illiquid wealth costs
    ``chi0 |d| + chi1 d^2 / (2 max(a, 1e-5))``. A fixed share ``xi`` of
    labour income is deposited automatically.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["two_asset"] = "two_asset"
    risk_aversion: float = Field(default=2.0, gt=0)
    discount_rate: float = Field(default=0.06, gt=0)
    illiquid_return: float = Field(default=0.05, description="ra")
    liquid_return_positive: float = Field(default=0.03, description="rb_pos")
    liquid_return_negative: float = Field(default=0.12, description="rb_neg")
    fixed_cost: float = Field(default=0.03, ge=0, description="chi0")
    convex_cost: float = Field(default=2.0, gt=0, description="chi1")
    deposit_share: float = Field(default=0.1, ge=0, lt=1, description="xi")
    wage: float = Field(default=4.0, gt=0)
    income: List[float] = Field(default=[0.8, 1.3], min_length=1)
    intensity: List[List[float]] = Field(
        default=[[-1 / 3, 1 / 3], [1 / 3, -1 / 3]],
    )
    b_min: float = Field(default=-2.0)
    b_max: float = Field(default=40.0)
    n_liquid: int = Field(default=100, ge=3)
    a_min: float = Field(default=0.0, ge=0)
    a_max: float = Field(default=70.0)
    n_illiquid: int = Field(default=50, ge=3)
    tax_curvature: float = Field(default=10.0, gt=1, description="tau")
    tax_threshold: float = Field(
        default=0.98, gt=0, le=1, description="Return vanishes at tax_threshold * a_max"
    )

    @model_validator(mode="after")
    def validate_problem(self):
        """Check bounds, the income chain, resources at b_min and the a_max inflow.

        Returns:
            Validated config.

        Raises:
            ValueError: If any check fails.
        """
        issues = []
        if self.b_min >= self.b_max:
            issues.append(f"b_min ({self.b_min}) must be below b_max ({self.b_max})")
        if self.a_min >= self.a_max:
            issues.append(f"a_min ({self.a_min}) must be below a_max ({self.a_max})")
        issues.extend(intensity_issues(self.income, self.intensity))
        rate = self.liquid_return_negative if self.b_min < 0 else self.liquid_return_positive
        worst = (1 - self.deposit_share) * self.wage * min(self.income) + rate * self.b_min
        if worst <= 0:
            issues.append(
                f"liquid resources at b_min must be positive, got {worst:.4g}"
            )
        ratio = 1.0 / self.tax_threshold
        edge_return = self.illiquid_return * (1.0 - ratio ** (self.tax_curvature - 1.0))
        edge_inflow = (
            self.deposit_share * self.wage * max(self.income) + edge_return * self.a_max
        )
        if edge_inflow > 0:
            issues.append(
                f"passive illiquid inflow at a_max must not be positive, got {edge_inflow:.4g}; "
                "lower tax_threshold or raise tax_curvature"
            )
        if issues:
            raise ValueError("; ".join(issues))
        return self
