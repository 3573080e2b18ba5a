"""Tests for configuration models and the preset loader."""

import pytest
from pydantic import ValidationError
import yaml

from ct_hjb.config import (
    DiffusionIncomeConfig,
    HJBSolverConfig,
    HuggettConfig,
    PresetConfig,
    StationaryDistributionConfig,
    StationaryMethod,
    TwoAssetConfig,
    list_presets,
    load_config,
)
from ct_hjb.config.models import intensity_issues
from ct_hjb.config.utils import deep_merge, expand_dotted


class TestSolverConfig:
    """Numerical settings."""

    def test_defaults(self):
        """Defaults match the reference calibration."""
        config = HJBSolverConfig()
        assert config.step_size == 1000.0
        assert config.tolerance == 1e-6
        assert config.max_iterations == 100
        assert config.raise_on_failure

    def test_frozen(self):
        """Solver settings cannot be mutated."""
        config = HJBSolverConfig()
        with pytest.raises(ValidationError):
            config.step_size = 10.0

    @pytest.mark.parametrize(
        "field, value",
        [("step_size", 0.0), ("tolerance", -1e-6), ("max_iterations", 0), ("log_every", 0)],
    )
    def test_invalid_values(self, field, value):
        """Non-positive settings are rejected."""
        with pytest.raises(ValidationError):
            HJBSolverConfig(**{field: value})

    def test_death_rate_must_be_small(self):
        """A death rate of order one is not a perturbation."""
        with pytest.raises(ValidationError, match="much smaller than one"):
            StationaryDistributionConfig(death_rate=2.0)

    def test_method_from_string(self):
        """Methods parse from their lowercase names."""
        assert StationaryDistributionConfig(method="eigen").method is StationaryMethod.EIGEN


class TestModelConfigs:
    """Economic calibrations."""

    def test_intensity_issues(self):
        """Every problem with a chain is reported."""
        assert intensity_issues([1.0, 2.0], [[-1.0, 1.0], [2.0, -2.0]]) == []
        issues = intensity_issues([1.0, 2.0], [[-1.0, 2.0], [-1.0, 1.0]])
        assert any("negative" in issue for issue in issues)
        assert any("sum to zero" in issue for issue in issues)
        assert "shape" in intensity_issues([1.0], [[0.0, 0.0]])[0]

    def test_huggett_bounds(self):
        """a_min must lie below a_max."""
        with pytest.raises(ValidationError, match="a_min"):
            HuggettConfig(a_min=2.0, a_max=1.0)

    def test_huggett_borrowing_limit(self):
        """Income must cover interest at the borrowing limit."""
        with pytest.raises(ValidationError, match="borrowing limit"):
            HuggettConfig(a_min=-10.0)

    def test_huggett_chain(self):
        """A malformed income chain is rejected."""
        with pytest.raises(ValidationError, match="sum to zero"):
            HuggettConfig(intensity=[[-0.02, 0.03], [0.03, -0.03]])

    @pytest.mark.parametrize("quantiles", [(0.0, 0.9), (0.9, 0.1), (0.1, 1.0)])
    def test_diffusion_quantiles(self, quantiles):
        """Quantiles must increase strictly inside (0, 1)."""
        with pytest.raises(ValidationError, match="income_quantiles"):
            DiffusionIncomeConfig(income_quantiles=quantiles)

    def test_diffusion_no_borrowing(self):
        """The diffusion model does not allow borrowing."""
        with pytest.raises(ValidationError):
            DiffusionIncomeConfig(a_min=-1.0)

    def test_two_asset_resources(self):
        """Liquid resources at b_min must be positive."""
        with pytest.raises(ValidationError, match="liquid resources"):
            TwoAssetConfig(b_min=-40.0)

    @pytest.mark.parametrize("threshold", [0.0, 1.33])
    def test_two_asset_threshold_range(self, threshold):
        """The tax threshold lies in (0, 1]."""
        with pytest.raises(ValidationError, match="tax_threshold"):
            TwoAssetConfig(tax_threshold=threshold)

    def test_two_asset_inflow_at_a_max(self):
        """Automatic deposits must not push wealth past a_max."""
        with pytest.raises(ValidationError, match="passive illiquid inflow at a_max"):
            TwoAssetConfig(tax_threshold=0.999)
        TwoAssetConfig(tax_threshold=0.999, deposit_share=0.0)

    def test_two_asset_defaults(self):
        """Default calibration is valid and frozen."""
        config = TwoAssetConfig()
        assert config.kind == "two_asset"
        with pytest.raises(ValidationError):
            config.wage = 5.0


class TestPresets:
    """YAML presets and overrides."""

    def test_list_presets(self):
        """All bundled presets are found."""
        assert list_presets() == ["diffusion_income", "huggett", "two_asset"]

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("huggett", HuggettConfig),
            ("diffusion_income", DiffusionIncomeConfig),
            ("two_asset", TwoAssetConfig),
        ],
    )
    def test_load_each_preset(self, name, expected):
        """The kind selects the parameter model."""
        preset = load_config(name)
        assert isinstance(preset, PresetConfig)
        assert isinstance(preset.parameters, expected)

    def test_huggett_preset_values(self):
        """The Huggett preset matches the reference calibration."""
        preset = load_config("huggett")
        assert preset.parameters == HuggettConfig()
        assert preset.stationary.method is StationaryMethod.DIRECT

    def test_two_asset_preset_solver(self):
        """The two-asset preset uses a smaller step and the death method."""
        preset = load_config("two_asset")
        assert preset.solver.step_size == 100.0
        assert preset.solver.max_iterations == 35
        assert preset.stationary.method is StationaryMethod.DEATH

    def test_dotted_overrides(self):
        """Dot-notation keys override nested values."""
        preset = load_config(
            "huggett", {"parameters.interest_rate": 0.02, "solver.step_size": 50.0}
        )
        assert preset.parameters.interest_rate == 0.02
        assert preset.solver.step_size == 50.0
        assert preset.solver.tolerance == 1e-6

    def test_section_overrides(self):
        """Section-level dicts merge rather than replace."""
        preset = load_config("huggett", {"stationary": {"method": "eigen"}})
        assert preset.stationary.method is StationaryMethod.EIGEN
        assert preset.parameters.n_points == 500

    def test_invalid_override(self):
        """Overrides are validated like the file itself."""
        with pytest.raises(ValidationError):
            load_config("huggett", {"solver.max_iterations": 0})

    def test_missing_preset(self):
        """Unknown presets raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Preset 'nope' not found"):
            load_config("nope")

    def test_custom_directory(self, tmp_path):
        """Presets load from any directory; private keys are ignored."""
        data = {
            "_comment": "scratch preset",
            "kind": "huggett",
            "parameters": {"n_points": 40},
            "solver": {"verbose": False},
        }
        (tmp_path / "small.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")
        assert list_presets(tmp_path) == ["small"]
        preset = load_config("small", preset_dir=tmp_path)
        assert preset.parameters.n_points == 40
        assert not preset.solver.verbose

    def test_path_to_file(self, preset_dir):
        """A direct path to a YAML file is accepted."""
        preset = load_config(preset_dir / "diffusion_income.yaml")
        assert preset.parameters.kind == "diffusion_income"


class TestMergeUtilities:
    """Dictionary helpers used by the loader."""

    def test_deep_merge_does_not_mutate(self):
        """Inputs are left untouched."""
        base = {"solver": {"step_size": 1.0, "tolerance": 1e-6}}
        merged = deep_merge(base, {"solver": {"step_size": 2.0}})
        assert merged == {"solver": {"step_size": 2.0, "tolerance": 1e-6}}
        assert base["solver"]["step_size"] == 1.0

    def test_expand_dotted(self):
        """Dotted keys become nested dictionaries."""
        assert expand_dotted({"a.b.c": 1, "a.d": 2, "e": 3}) == {
            "a": {"b": {"c": 1}, "d": 2},
            "e": 3,
        }
