"""Concrete heterogeneous-agent models solved by the implicit HJB solver."""

from .diffusion_income import DiffusionIncomeModel
from .huggett import HuggettModel, equilibrium_interest_rate, excess_asset_demand
from .two_asset import TwoAssetModel

__all__ = [
    "DiffusionIncomeModel",
    "HuggettModel",
    "TwoAssetModel",
    "equilibrium_interest_rate",
    "excess_asset_demand",
]
