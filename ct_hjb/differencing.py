"""Finite differences of a value function on a :class:`~ct_hjb.grid.StateGrid`.

For every continuous dimension :func:`differentiate` produces the forward
difference, the backward difference and a second-difference estimate. The
difference that would need a point outside the grid (forward at the upper
edge, backward at the lower edge) comes from a boundary callback registered
for that dimension. Callbacks encode the state constraint analytically, for
a consumption model typically ``u'(income + r * a_edge)``::

    def asset_boundary(state, side):
        return utility.derivative(state["z"] + r * state["a"])

    bundle = differentiate(value, grid, {"a": asset_boundary})

The callback receives the state arrays restricted to the edge (the
differentiated axis kept with length one) and the :class:`BoundarySide`, and
returns an array broadcastable to that edge. Without a callback the missing
difference copies the available one-sided difference, which implies zero
curvature at the edge.
"""

from dataclasses import dataclass, field
from enum import Enum
from itertools import combinations
from typing import Callable, Dict, Mapping, Optional, Tuple

import numpy as np

from .grid import StateGrid


class BoundarySide(Enum):
    """Edge of a continuous dimension."""

    LOWER = "lower"
    UPPER = "upper"


BoundaryCallback = Callable[[Mapping[str, np.ndarray], BoundarySide], np.ndarray]


@dataclass(frozen=True, eq=False)
class DimensionDerivatives:
    """One-sided and second differences along one dimension."""

    forward: np.ndarray
    backward: np.ndarray
    second: np.ndarray


@dataclass(frozen=True, eq=False)
class DerivativeBundle:
    """All finite differences of one value function.

    Attributes:
        value: Read-only copy of the differentiated value function.
        derivatives: Differences per continuous dimension.
        cross: Cross second derivatives keyed by dimension pair in grid order.
    """

    value: np.ndarray
    derivatives: Dict[str, DimensionDerivatives]
    cross: Dict[Tuple[str, str], np.ndarray] = field(default_factory=dict)

    def __getitem__(self, name: str) -> DimensionDerivatives:
        return self.derivatives[name]

    def cross_derivative(self, first: str, second: str) -> np.ndarray:
        """Cross second derivative of two dimensions, in either order."""
        if (first, second) in self.cross:
            return self.cross[(first, second)]
        return self.cross[(second, first)]


def _take(array: np.ndarray, axis: int, index) -> Tuple:
    key = [slice(None)] * array.ndim
    key[axis] = index
    return tuple(key)


def _edge_state(state: Mapping[str, np.ndarray], axis: int, edge: slice):
    return {name: values[_take(values, axis, edge)] for name, values in state.items()}


def _central_difference(array: np.ndarray, x: np.ndarray, axis: int) -> np.ndarray:
    """Central difference along ``axis``; one-sided at both edges.

    Always divides by the true distance between the two points used.
    """
    result = np.empty_like(array)
    shape = [1] * array.ndim
    shape[axis] = -1

    interior_span = (x[2:] - x[:-2]).reshape(shape)
    result[_take(array, axis, slice(1, -1))] = (
        array[_take(array, axis, slice(2, None))] - array[_take(array, axis, slice(None, -2))]
    ) / interior_span
    result[_take(array, axis, 0)] = (
        array[_take(array, axis, 1)] - array[_take(array, axis, 0)]
    ) / (x[1] - x[0])
    result[_take(array, axis, -1)] = (
        array[_take(array, axis, -1)] - array[_take(array, axis, -2)]
    ) / (x[-1] - x[-2])
    return result


def differentiate(
    value: np.ndarray,
    grid: StateGrid,
    boundary: Optional[Mapping[str, BoundaryCallback]] = None,
) -> DerivativeBundle:
    """Compute the finite differences of ``value`` on ``grid``.

    Args:
        value: Value function shaped like ``grid.shape``. Not modified.
        grid: State grid.
        boundary: Optional boundary callback per continuous dimension.

    Returns:
        DerivativeBundle with forward, backward and second differences per
        dimension and, for two or more dimensions, cross derivatives per pair.

    Raises:
        ValueError: If ``value`` does not match the grid shape.
    """
    value = np.array(value, dtype=float)
    if value.shape != grid.shape:
        raise ValueError(f"value has shape {value.shape}, grid expects {grid.shape}")
    value.setflags(write=False)
    boundary = boundary or {}
    state = grid.mesh() if boundary else {}

    derivatives: Dict[str, DimensionDerivatives] = {}
    for name in grid.names:
        axis = grid.axis(name)
        x = grid[name]
        shape = [1] * value.ndim
        shape[axis] = -1
        diff = np.diff(value, axis=axis) / np.diff(x).reshape(shape)

        forward = np.empty_like(value)
        backward = np.empty_like(value)
        forward[_take(value, axis, slice(None, -1))] = diff
        backward[_take(value, axis, slice(1, None))] = diff

        callback = boundary.get(name)
        if callback is None:
            forward[_take(value, axis, slice(-1, None))] = diff[_take(diff, axis, slice(-1, None))]
            backward[_take(value, axis, slice(0, 1))] = diff[_take(diff, axis, slice(0, 1))]
        else:
            upper = _take(value, axis, slice(-1, None))
            lower = _take(value, axis, slice(0, 1))
            upper_value = callback(_edge_state(state, axis, slice(-1, None)), BoundarySide.UPPER)
            lower_value = callback(_edge_state(state, axis, slice(0, 1)), BoundarySide.LOWER)
            forward[upper] = np.broadcast_to(upper_value, forward[upper].shape)
            backward[lower] = np.broadcast_to(lower_value, backward[lower].shape)

        second = (forward - backward) / grid.avg_spacing(name).reshape(shape)
        derivatives[name] = DimensionDerivatives(forward, backward, second)

    cross: Dict[Tuple[str, str], np.ndarray] = {}
    for first, second_name in combinations(grid.names, 2):
        inner = _central_difference(value, grid[second_name], grid.axis(second_name))
        cross[(first, second_name)] = _central_difference(inner, grid[first], grid.axis(first))

    return DerivativeBundle(value=value, derivatives=derivatives, cross=cross)
