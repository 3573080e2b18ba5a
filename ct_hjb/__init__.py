"""Continuous-time HJB solver, generator assembly and stationary distributions."""

from ._version import __version__

# Use lazy imports so that importing the package does not pull in scipy and pandas
# Modules are imported only when an attribute is accessed

__all__ = [
    "__version__",
    "DiffusionIncomeModel",
    "ExogenousChain",
    "HJBModel",
    "HJBSolution",
    "HJBSolverConfig",
    "HuggettModel",
    "ImplicitHJBSolver",
    "StateGrid",
    "StationaryDistributionConfig",
    "StationaryMethod",
    "TwoAssetModel",
    "assemble_generator",
    "compare_methods",
    "differentiate",
    "evolve_distribution",
    "load_config",
    "power_spaced_grid",
    "stationary_distribution",
    "two_sided_power_spaced_grid",
]

_LAZY = {
    "DiffusionIncomeModel": "models",
    "HuggettModel": "models",
    "TwoAssetModel": "models",
    "ExogenousChain": "grid",
    "StateGrid": "grid",
    "power_spaced_grid": "grid",
    "two_sided_power_spaced_grid": "grid",
    "HJBModel": "hjb_model",
    "HJBSolution": "hjb_solver",
    "ImplicitHJBSolver": "hjb_solver",
    "HJBSolverConfig": "config",
    "StationaryDistributionConfig": "config",
    "StationaryMethod": "config",
    "load_config": "config",
    "assemble_generator": "generator",
    "compare_methods": "kolmogorov",
    "evolve_distribution": "kolmogorov",
    "stationary_distribution": "kolmogorov",
    "differentiate": "differencing",
}


def __getattr__(name):
    """Lazy import modules to avoid circular dependencies during test discovery."""
    if name in _LAZY:
        from importlib import import_module

        module = import_module(f".{_LAZY[name]}", __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
