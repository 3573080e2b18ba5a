"""Upwind policy resolution.

Two selection problems are solved here, both as pure functions of the
current finite differences.

One control dimension (consumption). Candidates are built from the forward
derivative, the backward derivative and the no-drift condition. The
guards are evaluated in a fixed order:

- FORWARD iff the forward drift is strictly positive and the point is not on
  the upper edge;
- BACKWARD iff not FORWARD, the backward drift is strictly negative and the
  point is not on the lower edge;
- STEADY_STATE iff neither applies and both drifts are finite.

A point where no guard holds raises :class:`PolicyResolutionError`.

Two control dimensions (deposits into an illiquid asset under a kinked
adjustment cost). The four derivative combinations are ranked by their
Hamiltonian among those whose implied drifts agree with the differencing
direction. Ties go to the first entry of :data:`ADJUSTMENT_TIE_ORDER`; with
no compatible combination the point does not adjust.
"""

from dataclasses import dataclass, field
from enum import IntEnum
import logging
from typing import Dict, Mapping, Tuple

import numpy as np

from .config.constants import CONSUMPTION_FLOOR, ILLIQUID_FLOOR, MARGINAL_UTILITY_FLOOR
from .exceptions import PolicyResolutionError
from .utility import UtilityFunction

logger = logging.getLogger(__name__)


class UpwindDirection(IntEnum):
    """Difference used for a one-dimensional control."""

    FORWARD = 1
    BACKWARD = -1
    STEADY_STATE = 0


@dataclass(frozen=True, eq=False)
class UpwindCandidate:
    """Policy implied by one choice of derivative.

    Attributes:
        derivative: Value-function derivative the policy was computed from.
        drift: Implied drift of the state.
        controls: Named control arrays (e.g. ``{"consumption": c}``).
    """

    derivative: np.ndarray
    drift: np.ndarray
    controls: Mapping[str, np.ndarray] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class ResolvedPolicy:
    """Upwind policy at every grid point.

    Attributes:
        direction: Integer array of :class:`UpwindDirection` values.
        derivative: Selected derivative.
        drift: Selected drift; zero where STEADY_STATE.
        controls: Selected controls, one array per name.
    """

    direction: np.ndarray
    derivative: np.ndarray
    drift: np.ndarray
    controls: Dict[str, np.ndarray]

    def mask(self, direction: UpwindDirection) -> np.ndarray:
        """Boolean array of points resolved to ``direction``."""
        return np.asarray(self.direction == int(direction))

    def counts(self) -> Dict[str, int]:
        """Number of points per direction, keyed by direction name."""
        return {d.name: int(np.count_nonzero(self.mask(d))) for d in UpwindDirection}


def consumption_candidate(
    derivative: np.ndarray,
    resources: np.ndarray,
    utility: UtilityFunction,
    floor: float = MARGINAL_UTILITY_FLOOR,
) -> UpwindCandidate:
    """Consumption and drift implied by one derivative.

    Args:
        derivative: Value-function derivative with respect to wealth.
        resources: Income plus capital income at each point.
        utility: Flow utility.
        floor: Lower bound applied to the derivative before inversion.

    Returns:
        Candidate with drift ``resources - c``.
    """
    safe = np.maximum(derivative, floor)
    consumption = utility.inverse_derivative(safe)
    return UpwindCandidate(
        derivative=safe, drift=resources - consumption, controls={"consumption": consumption}
    )


def steady_state_candidate(resources: np.ndarray, utility: UtilityFunction) -> UpwindCandidate:
    """Candidate with zero drift: consume exactly the available resources."""
    consumption = np.maximum(resources, CONSUMPTION_FLOOR)
    return UpwindCandidate(
        derivative=utility.derivative(consumption),
        drift=np.zeros_like(consumption),
        controls={"consumption": consumption},
    )


def resolve_upwind(
    forward: UpwindCandidate,
    backward: UpwindCandidate,
    steady: UpwindCandidate,
    at_lower: np.ndarray,
    at_upper: np.ndarray,
) -> ResolvedPolicy:
    """Select forward, backward or steady-state policy at each point.

    Args:
        forward: Candidate from the forward difference.
        backward: Candidate from the backward difference.
        steady: Zero-drift candidate.
        at_lower: True on the lowest grid point of the controlled dimension.
        at_upper: True on the highest grid point of the controlled dimension.

    Returns:
        ResolvedPolicy with exactly one direction per point.

    Raises:
        PolicyResolutionError: If some point satisfies no guard.
    """
    is_forward = (forward.drift > 0) & ~at_upper
    is_backward = ~is_forward & (backward.drift < 0) & ~at_lower
    is_steady = (
        ~is_forward & ~is_backward & np.isfinite(forward.drift) & np.isfinite(backward.drift)
    )

    unresolved = ~(is_forward | is_backward | is_steady)
    if np.any(unresolved):
        first = tuple(int(i) for i in np.argwhere(unresolved)[0])
        raise PolicyResolutionError(
            f"Upwind resolution failed at {int(np.count_nonzero(unresolved))} points "
            f"(first at index {first}): no forward, backward or steady-state guard holds"
        )

    conditions = [is_forward, is_backward]

    def pick(f, b, s):
        return np.select(conditions, [f, b], default=s)

    direction = np.select(
        conditions,
        [int(UpwindDirection.FORWARD), int(UpwindDirection.BACKWARD)],
        default=int(UpwindDirection.STEADY_STATE),
    ).astype(np.int8)
    controls = {
        name: pick(forward.controls[name], backward.controls[name], steady.controls[name])
        for name in forward.controls
    }
    return ResolvedPolicy(
        direction=direction,
        derivative=pick(forward.derivative, backward.derivative, steady.derivative),
        drift=pick(forward.drift, backward.drift, np.zeros_like(forward.drift)),
        controls=controls,
    )


# ----------------------------------------------------------------------
# Two-asset adjustment
# ----------------------------------------------------------------------


class AdjustmentDirection(IntEnum):
    """Differencing directions of a deposit policy.

    The first half names the illiquid-asset derivative, the second half the
    liquid-asset derivative. NONE means no adjustment.
    """

    NONE = 0
    UP_UP = 1
    UP_DOWN = 2
    DOWN_UP = 3
    DOWN_DOWN = 4

    @property
    def illiquid_up(self) -> bool:
        return self in (AdjustmentDirection.UP_UP, AdjustmentDirection.UP_DOWN)

    @property
    def liquid_up(self) -> bool:
        return self in (AdjustmentDirection.UP_UP, AdjustmentDirection.DOWN_UP)


ADJUSTMENT_TIE_ORDER: Tuple[AdjustmentDirection, ...] = (
    AdjustmentDirection.UP_DOWN,
    AdjustmentDirection.DOWN_UP,
    AdjustmentDirection.DOWN_DOWN,
    AdjustmentDirection.UP_UP,
)
"""Order in which equal Hamiltonians are resolved: earlier entries win."""


@dataclass(frozen=True)
class KinkedAdjustmentCost:
    """Adjustment cost ``chi0 |d| + chi1 d^2 / (2 max(a, floor))``.

    Attributes:
        fixed: Linear coefficient chi0.
        convex: Quadratic coefficient chi1.
        floor: Lower bound on illiquid wealth in the quadratic term.
    """

    fixed: float
    convex: float
    floor: float = ILLIQUID_FLOOR

    def __call__(self, deposit: np.ndarray, illiquid: np.ndarray) -> np.ndarray:
        scale = np.maximum(illiquid, self.floor)
        return self.fixed * np.abs(deposit) + self.convex * deposit**2 / (2.0 * scale)

    def optimal_deposit(
        self, va: np.ndarray, vb: np.ndarray, illiquid: np.ndarray
    ) -> np.ndarray:
        """Deposit solving the first-order condition for given derivatives.

        ``d = min(va/vb - 1 + chi0, 0) a/chi1 + max(va/vb - 1 - chi0, 0) a/chi1``
        """
        ratio = va / np.maximum(vb, MARGINAL_UTILITY_FLOOR)
        scale = np.maximum(illiquid, self.floor) / self.convex
        return (
            np.minimum(ratio - 1.0 + self.fixed, 0.0) * scale
            + np.maximum(ratio - 1.0 - self.fixed, 0.0) * scale
        )


@dataclass(frozen=True, eq=False)
class AdjustmentBounds:
    """Edge masks of the two asset dimensions."""

    illiquid_lower: np.ndarray
    illiquid_upper: np.ndarray
    liquid_lower: np.ndarray
    liquid_upper: np.ndarray


@dataclass(frozen=True, eq=False)
class AdjustmentSelection:
    """Selected deposit policy.

    Attributes:
        direction: Integer array of :class:`AdjustmentDirection` values.
        deposit: Deposit ``d`` into the illiquid asset (zero where NONE).
        illiquid_drift: Drift of illiquid wealth due to the deposit.
        liquid_drift: Drift of liquid wealth due to the deposit, ``-d - chi(d, a)``.
        hamiltonian: Hamiltonian of the selected combination (zero where NONE).
    """

    direction: np.ndarray
    deposit: np.ndarray
    illiquid_drift: np.ndarray
    liquid_drift: np.ndarray
    hamiltonian: np.ndarray

    def counts(self) -> Dict[str, int]:
        """Number of points per direction, keyed by direction name."""
        return {
            d.name: int(np.count_nonzero(self.direction == int(d))) for d in AdjustmentDirection
        }


def select_adjustment(
    va_forward: np.ndarray,
    va_backward: np.ndarray,
    vb_forward: np.ndarray,
    vb_backward: np.ndarray,
    illiquid: np.ndarray,
    cost: KinkedAdjustmentCost,
    bounds: AdjustmentBounds,
) -> AdjustmentSelection:
    """Choose the deposit policy among the four upwind combinations.

    A combination is compatible iff its illiquid drift and liquid drift have
    the strict signs its directions require, its Hamiltonian
    ``va d + vb (-d - chi)`` is strictly positive and neither move leaves the
    grid. The compatible combination with the largest Hamiltonian wins, ties
    resolved by :data:`ADJUSTMENT_TIE_ORDER`; without one the point selects
    NONE.

    Args:
        va_forward: Forward derivative with respect to illiquid wealth.
        va_backward: Backward derivative with respect to illiquid wealth.
        vb_forward: Forward derivative with respect to liquid wealth.
        vb_backward: Backward derivative with respect to liquid wealth.
        illiquid: Illiquid wealth at each point.
        cost: Adjustment cost.
        bounds: Edge masks of both dimensions.

    Returns:
        AdjustmentSelection with exactly one label per point.

    Raises:
        PolicyResolutionError: If a Hamiltonian cannot be ranked (NaN).
    """
    derivatives = {
        AdjustmentDirection.UP_UP: (va_forward, vb_forward),
        AdjustmentDirection.UP_DOWN: (va_forward, vb_backward),
        AdjustmentDirection.DOWN_UP: (va_backward, vb_forward),
        AdjustmentDirection.DOWN_DOWN: (va_backward, vb_backward),
    }
    shape = np.broadcast(va_forward, illiquid).shape
    best = np.zeros(shape)
    label = np.full(shape, int(AdjustmentDirection.NONE), dtype=np.int8)
    deposit = np.zeros(shape)
    liquid_drift = np.zeros(shape)
    unrankable = np.zeros(shape, dtype=bool)

    for direction in ADJUSTMENT_TIE_ORDER:
        va, vb = derivatives[direction]
        d = cost.optimal_deposit(va, vb, illiquid)
        liquid = -d - cost(d, illiquid)
        hamiltonian = va * d + vb * liquid
        unrankable |= np.isnan(hamiltonian)

        illiquid_ok = (d > 0) if direction.illiquid_up else (d < 0)
        liquid_ok = (liquid > 0) if direction.liquid_up else (liquid < 0)
        leaves = (bounds.illiquid_upper if direction.illiquid_up else bounds.illiquid_lower) | (
            bounds.liquid_upper if direction.liquid_up else bounds.liquid_lower
        )
        compatible = illiquid_ok & liquid_ok & (hamiltonian > 0) & ~leaves

        # strict comparison keeps the earlier combination on ties
        better = compatible & (hamiltonian > best)
        best = np.where(better, hamiltonian, best)
        label = np.where(better, int(direction), label).astype(np.int8)
        deposit = np.where(better, d, deposit)
        liquid_drift = np.where(better, liquid, liquid_drift)

    if np.any(unrankable):
        first = tuple(int(i) for i in np.argwhere(unrankable)[0])
        raise PolicyResolutionError(
            f"Adjustment selection failed at {int(np.count_nonzero(unrankable))} points "
            f"(first at index {first}): Hamiltonian is not a number"
        )

    return AdjustmentSelection(
        direction=label,
        deposit=deposit,
        illiquid_drift=deposit.copy(),
        liquid_drift=liquid_drift,
        hamiltonian=best,
    )
