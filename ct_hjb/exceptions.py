"""Exception hierarchy for the numerical core.

Every fault names the invariant it violates. Only the singular pinned system
of the direct stationary-distribution method is recovered locally; all other
errors propagate to the caller.
"""

from typing import List, Optional, Sequence

from .config.exceptions import ConfigurationError

__all__ = [
    "ConfigurationError",
    "CtHjbError",
    "InvalidGeneratorError",
    "NonFiniteResultError",
    "NumericalDivergenceError",
    "PolicyResolutionError",
    "SingularSystemError",
]


class CtHjbError(RuntimeError):
    """Base class for numerical faults raised by ct_hjb."""


class InvalidGeneratorError(CtHjbError):
    """Raised when an assembled generator violates its invariants.

    Checked before any linear solve: row sums must vanish, off-diagonal
    rates must be non-negative and finite, and no rate may point off the grid.
    """

    def __init__(self, message: str, max_row_sum: Optional[float] = None):
        self.max_row_sum = max_row_sum
        super().__init__(message)


class NumericalDivergenceError(CtHjbError):
    """Raised when an iteration fails to converge or produces NaN/Inf.

    Attributes:
        residuals: Sup-norm history up to the failure.
        iteration: Iteration at which the failure was detected.
    """

    def __init__(
        self,
        message: str,
        residuals: Optional[Sequence[float]] = None,
        iteration: Optional[int] = None,
    ):
        self.residuals: List[float] = list(residuals) if residuals is not None else []
        self.iteration = iteration
        super().__init__(message)


class SingularSystemError(CtHjbError):
    """Raised when the pinned stationary system cannot be factorized."""


class NonFiniteResultError(CtHjbError):
    """Raised when an explicit iteration produces NaN or Inf values."""

    def __init__(self, message: str, iteration: Optional[int] = None):
        self.iteration = iteration
        super().__init__(message)


class PolicyResolutionError(CtHjbError):
    """Raised when no upwind candidate satisfies any guard at some point."""
