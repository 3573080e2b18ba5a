"""Helpers for merging preset data with user overrides.

Since:
    Version 0.1.0
"""

from typing import Any, Dict


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge preset sections with overrides, section by section.

    A section present in both inputs as a dict is merged key by key, so
    ``{"solver": {"step_size": 10}}`` changes only the step size of the
    preset's solver block. Any other value in ``override`` replaces the
    preset value.

    Args:
        base: Preset data.
        override: Values that take precedence.

    Returns:
        New dictionary; neither input is mutated.
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def expand_dotted(overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Turn ``{"solver.step_size": 10}`` into ``{"solver": {"step_size": 10}}``.

    Args:
        overrides: Mapping whose keys may use dot notation.

    Returns:
        Nested dictionary suitable for :func:`deep_merge`.
    """
    nested: Dict[str, Any] = {}
    for key, value in overrides.items():
        parts = key.split(".")
        current = nested
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        if isinstance(value, dict) and isinstance(current.get(parts[-1]), dict):
            current[parts[-1]] = deep_merge(current[parts[-1]], value)
        else:
            current[parts[-1]] = value
    return nested
