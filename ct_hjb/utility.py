"""Flow utility functions used by the bundled models.

Each utility exposes the level, the marginal utility and the inverse of the
marginal utility. The inverse is what the policy resolver needs: the
first-order condition ``u'(c) = V_a`` gives ``c = (u')^{-1}(V_a)``.
"""

from abc import ABC, abstractmethod

import numpy as np

from .config.constants import CONSUMPTION_FLOOR, MARGINAL_UTILITY_FLOOR

_GAMMA_TOLERANCE = 1e-10


class UtilityFunction(ABC):
    """Abstract base class for utility functions."""

    @abstractmethod
    def evaluate(self, consumption: np.ndarray) -> np.ndarray:
        """Evaluate utility at given consumption levels.

        Args:
            consumption: Consumption values

        Returns:
            Utility values
        """
        pass  # pylint: disable=unnecessary-pass

    @abstractmethod
    def derivative(self, consumption: np.ndarray) -> np.ndarray:
        """Compute marginal utility (first derivative).

        Args:
            consumption: Consumption values

        Returns:
            Marginal utility values
        """
        pass  # pylint: disable=unnecessary-pass

    @abstractmethod
    def inverse_derivative(self, marginal_utility: np.ndarray) -> np.ndarray:
        """Compute inverse of marginal utility.

        Args:
            marginal_utility: Marginal utility values

        Returns:
            Consumption values corresponding to given marginal utilities
        """
        pass  # pylint: disable=unnecessary-pass


class LogUtility(UtilityFunction):
    """Logarithmic utility, u(c) = log(c)."""

    def __init__(self, consumption_floor: float = CONSUMPTION_FLOOR):
        self.consumption_floor = consumption_floor

    def evaluate(self, consumption: np.ndarray) -> np.ndarray:
        """Evaluate log utility."""
        return np.array(np.log(np.maximum(consumption, self.consumption_floor)))

    def derivative(self, consumption: np.ndarray) -> np.ndarray:
        """Compute marginal utility: u'(c) = 1/c."""
        return np.array(1.0 / np.maximum(consumption, self.consumption_floor))

    def inverse_derivative(self, marginal_utility: np.ndarray) -> np.ndarray:
        """Compute inverse: (u')^(-1)(m) = 1/m."""
        return np.array(1.0 / np.maximum(marginal_utility, MARGINAL_UTILITY_FLOOR))


class CRRAUtility(UtilityFunction):
    """Constant relative risk aversion utility.

    u(c) = c^(1-γ)/(1-γ) for γ ≠ 1
    u(c) = log(c) for γ = 1

    where γ is the coefficient of relative risk aversion.
    """

    def __init__(self, risk_aversion: float = 2.0, consumption_floor: float = CONSUMPTION_FLOOR):
        """Initialize CRRA utility.

        Args:
            risk_aversion: Coefficient of relative risk aversion (γ)
            consumption_floor: Consumption below this level is clamped

        Raises:
            ValueError: If risk aversion is not positive.
        """
        if risk_aversion <= 0:
            raise ValueError(f"risk_aversion must be positive, got {risk_aversion}")
        self.gamma = risk_aversion
        self.consumption_floor = consumption_floor
        self._log = (
            LogUtility(consumption_floor) if abs(self.gamma - 1.0) < _GAMMA_TOLERANCE else None
        )

    def evaluate(self, consumption: np.ndarray) -> np.ndarray:
        """Evaluate CRRA utility."""
        if self._log is not None:
            return self._log.evaluate(consumption)
        safe = np.maximum(consumption, self.consumption_floor)
        return np.array(np.power(safe, 1 - self.gamma) / (1 - self.gamma))

    def derivative(self, consumption: np.ndarray) -> np.ndarray:
        """Compute marginal utility: u'(c) = c^(-γ)."""
        if self._log is not None:
            return self._log.derivative(consumption)
        safe = np.maximum(consumption, self.consumption_floor)
        return np.array(np.power(safe, -self.gamma))

    def inverse_derivative(self, marginal_utility: np.ndarray) -> np.ndarray:
        """Compute inverse: (u')^(-1)(m) = m^(-1/γ)."""
        if self._log is not None:
            return self._log.inverse_derivative(marginal_utility)
        safe = np.maximum(marginal_utility, MARGINAL_UTILITY_FLOOR)
        return np.array(np.power(safe, -1.0 / self.gamma))
