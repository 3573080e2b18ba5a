"""Configuration models for ct_hjb.

Solver settings, model calibrations and the YAML preset loader. All models
are frozen pydantic models.

Since:
    Version 0.1.0
"""

from .constants import DEFAULT_ROW_SUM_TOLERANCE
from .exceptions import ConfigurationError
from .loader import PresetConfig, list_presets, load_config
from .models import DiffusionIncomeConfig, HuggettConfig, TwoAssetConfig
from .solver import HJBSolverConfig, StationaryDistributionConfig, StationaryMethod

__all__ = [
    "ConfigurationError",
    "DEFAULT_ROW_SUM_TOLERANCE",
    "DiffusionIncomeConfig",
    "HJBSolverConfig",
    "HuggettConfig",
    "PresetConfig",
    "StationaryDistributionConfig",
    "StationaryMethod",
    "TwoAssetConfig",
    "list_presets",
    "load_config",
]
