"""Numerical settings for the HJB loop and the stationary-distribution solver.

These are tuning knobs of the algorithms, not economic parameters. Both
models are frozen so a configuration can be shared between solver
instances without being mutated.
"""

from enum import Enum
from typing import Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import DEFAULT_ROW_SUM_TOLERANCE


class StationaryMethod(Enum):
    """Strategies for computing the stationary distribution of a generator.

    Attributes:
        DIRECT: Pin one equation of A^T x = 0 and solve the square system.
        DEATH: Solve the death/rebirth system (delta I - A^T) g = delta g0.
        EIGEN: Eigenvector of A^T for the eigenvalue nearest zero.
        ITERATIVE: Explicit Euler steps of dg/dt = A^T g.
    """

    DIRECT = "direct"
    DEATH = "death"
    EIGEN = "eigen"
    ITERATIVE = "iterative"


class HJBSolverConfig(BaseModel):
    """Configuration for the implicit HJB update loop."""

    model_config = ConfigDict(frozen=True)

    step_size: float = Field(
        default=1000.0,
        gt=0,
        description="Implicit step size Delta. The scheme is unconditionally stable, "
        "so large values approach policy iteration.",
    )
    tolerance: float = Field(
        default=1e-6,
        gt=0,
        description="Sup-norm of V_new - V_old below which the loop has converged.",
    )
    max_iterations: int = Field(default=100, ge=1, description="Iteration budget.")
    row_sum_tolerance: float = Field(
        default=DEFAULT_ROW_SUM_TOLERANCE,
        gt=0,
        description="Largest admissible absolute row sum of an assembled generator.",
    )
    raise_on_failure: bool = Field(
        default=True,
        description="Raise NumericalDivergenceError when the budget is exhausted; "
        "otherwise return a FAILED solution and log a warning.",
    )
    verbose: bool = Field(default=True, description="Log progress every log_every iterations.")
    log_every: int = Field(default=10, ge=1)


class StationaryDistributionConfig(BaseModel):
    """Configuration for the Kolmogorov Forward (stationary distribution) solver."""

    model_config = ConfigDict(frozen=True)

    method: StationaryMethod = StationaryMethod.DIRECT

    # DIRECT
    pin_index: int = Field(default=0, ge=0, description="State whose equation is replaced.")
    pin_value: float = Field(default=0.1, gt=0, description="Value the pinned state is fixed to.")
    regularization: float = Field(
        default=float(np.sqrt(np.finfo(float).eps)),
        gt=0,
        description="Diagonal shift used for the single retry of a singular pinned system.",
    )

    # DEATH
    death_rate: float = Field(
        default=1e-10,
        gt=0,
        description="Death/rebirth intensity delta; the solution converges as delta -> 0.",
    )

    # EIGEN
    eigenvalue_tolerance: float = Field(
        default=1e-5,
        gt=0,
        description="Largest admissible |lambda| of the principal eigenvalue before warning.",
    )
    dense_eigen_threshold: int = Field(
        default=200,
        ge=2,
        description="Systems up to this size use a dense eigen-decomposition.",
    )
    eigen_shift: float = Field(
        default=1e-10,
        gt=0,
        description="Shift-invert target for the sparse eigen solver.",
    )

    # ITERATIVE
    time_step: Optional[float] = Field(
        default=None,
        gt=0,
        description="Euler step; defaults to 0.9 / (largest exit rate of A).",
    )
    iterative_tolerance: float = Field(
        default=1e-12,
        gt=0,
        description="Sup-norm of successive iterates, relative to the largest density.",
    )
    iterative_max_iterations: int = Field(default=500_000, ge=1)

    @model_validator(mode="after")
    def validate_death_rate(self):
        """Ensure the death rate stays a perturbation.

        Returns:
            Validated config.

        Raises:
            ValueError: If the death rate is not small.
        """
        if self.death_rate >= 1.0:
            raise ValueError(
                f"death_rate must be much smaller than one, got {self.death_rate}"
            )
        return self
