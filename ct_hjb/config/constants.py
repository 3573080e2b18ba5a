"""Module-level numerical constants shared across the solver.

Centralizes thresholds used by several modules so that the generator check,
the policy resolver and the tests agree on them.
"""

DEFAULT_ROW_SUM_TOLERANCE: float = 1e-10
"""Largest admissible absolute row sum of an assembled generator."""

MARGINAL_UTILITY_FLOOR: float = 1e-10
"""Lower bound applied to value-function derivatives before inverting u'."""

CONSUMPTION_FLOOR: float = 1e-10
"""Lower bound applied to consumption before evaluating utility."""

DRIFT_THRESHOLD: float = 1e-12
"""Drift components with smaller magnitude add no edges to the generator."""

ILLIQUID_FLOOR: float = 1e-5
"""Floor on illiquid wealth inside the adjustment cost."""
