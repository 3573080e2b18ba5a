"""Loading of model presets from YAML files.

A preset bundles the economic parameters of one model with the numerical
settings used to solve it::

    kind: huggett            # selects the parameter model
    parameters: {...}        # HuggettConfig / DiffusionIncomeConfig / TwoAssetConfig
    solver: {...}            # HJBSolverConfig
    stationary: {...}        # StationaryDistributionConfig

Presets shipped with the package live in ``ct_hjb/data``.

Since:
    Version 0.1.0
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
import yaml

from .models import DiffusionIncomeConfig, HuggettConfig, TwoAssetConfig
from .solver import HJBSolverConfig, StationaryDistributionConfig
from .utils import deep_merge, expand_dotted

logger = logging.getLogger(__name__)

DEFAULT_PRESET_DIR = Path(__file__).resolve().parent.parent / "data"

ModelConfig = Union[HuggettConfig, DiffusionIncomeConfig, TwoAssetConfig]


class PresetConfig(BaseModel):
    """A model calibration together with its solver settings."""

    model_config = ConfigDict(frozen=True)

    parameters: ModelConfig = Field(discriminator="kind")
    solver: HJBSolverConfig = Field(default_factory=HJBSolverConfig)
    stationary: StationaryDistributionConfig = Field(
        default_factory=StationaryDistributionConfig
    )


def list_presets(preset_dir: Optional[Path] = None) -> List[str]:
    """List the preset names available in a directory.

    Args:
        preset_dir: Directory to scan. Defaults to the packaged presets.

    Returns:
        Sorted preset names (file stems).
    """
    directory = Path(preset_dir) if preset_dir is not None else DEFAULT_PRESET_DIR
    return sorted(f.stem for f in directory.glob("*.yaml") if not f.stem.startswith("_"))


def _resolve(name: Union[str, Path], preset_dir: Path) -> Path:
    candidate = Path(name)
    if candidate.suffix in (".yaml", ".yml") and candidate.exists():
        return candidate
    path = preset_dir / f"{name}.yaml"
    if path.exists():
        return path
    raise FileNotFoundError(f"Preset '{name}' not found in {preset_dir}")


def load_config(
    name: Union[str, Path] = "huggett",
    overrides: Optional[Dict[str, Any]] = None,
    preset_dir: Optional[Path] = None,
) -> PresetConfig:
    """Load a preset with optional overrides.

    Args:
        name: Preset name (file stem in ``preset_dir``) or path to a YAML file.
        overrides: Values to change before validation. Supports dot-notation
            keys (``{"parameters.interest_rate": 0.04}``) and section-level
            dicts (``{"solver": {"step_size": 100.0}}``).
        preset_dir: Directory holding presets. Defaults to ``ct_hjb/data``.

    Returns:
        Validated preset.

    Raises:
        FileNotFoundError: If the preset does not exist.
        ValidationError: If the resulting configuration is invalid.

    Examples:
        Solve the Huggett preset with a smaller step::

            preset = load_config("huggett", {"solver.step_size": 100.0})
    """
    directory = Path(preset_dir) if preset_dir is not None else DEFAULT_PRESET_DIR
    path = _resolve(name, directory)

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    data = {k: v for k, v in data.items() if not k.startswith("_")}
    kind = data.pop("kind", None)
    if kind is not None:
        data.setdefault("parameters", {})["kind"] = kind

    if overrides:
        data = deep_merge(data, expand_dotted(overrides))

    logger.debug(f"Loaded preset {path.stem} from {path}")
    return PresetConfig(**data)
