"""
YAML configuration files and command line overrides.

A configuration file is one YAML mapping mirroring ``SimulationConfig.to_dict``:

    root_pk: coupled
    pks:
      flow: {pk_type: richards flow, water_table_elevation: 2.0}
      ...
    mesh: {n_cells: 20, dz: 0.1}

Overrides are nested dicts merged group by group, or dotted assignments
such as ``pks.flow.porosity=0.3`` whose values are parsed as YAML scalars.
"""

from pathlib import Path
from typing import Any, Iterable

import yaml

from hydrocore import __version__
from hydrocore.params.schema import SimulationConfig, ValidationError


def load_config(path: str | Path) -> SimulationConfig:
    """
    Load a simulation configuration from a YAML file.

    An empty file gives the default configuration.

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValidationError: If the YAML is malformed or a parameter is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as err:
        where = ""
        mark = getattr(err, "problem_mark", None)
        if mark is not None:
            where = f" (line {mark.line + 1}, column {mark.column + 1})"
        raise ValidationError(f"Malformed YAML in {path}{where}: {err}") from err

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"Configuration must be a dictionary, got {type(data)}")

    return SimulationConfig.from_dict(data)


def save_config(config: SimulationConfig, path: str | Path) -> None:
    """Write the configuration as plain YAML, readable by load_config."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        f.write(f"# hydrocore {__version__} configuration\n")
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)


def parse_assignment(text: str) -> dict[str, Any]:
    """Turn ``a.b.c=value`` into ``{"a": {"b": {"c": value}}}``.

    Raises:
        ValidationError: If there is no '=' or the key is empty
    """
    key, sep, raw = text.partition("=")
    parts = [p for p in key.strip().split(".") if p]
    if not sep or not parts:
        raise ValidationError(f"Override '{text}' is not of the form group.key=value")
    try:
        value = yaml.safe_load(raw) if raw.strip() else None
    except yaml.YAMLError as err:
        raise ValidationError(f"Override '{text}': cannot parse value") from err

    nested: dict[str, Any] = {parts[-1]: value}
    for part in reversed(parts[:-1]):
        nested = {part: nested}
    return nested


def merge_overrides(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; update wins on leaves. Neither input is modified."""
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config_with_overrides(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
    assignments: Iterable[str] = (),
) -> SimulationConfig:
    """
    Load configuration (or the defaults when path is None) and apply overrides.

    Args:
        path: Optional path to base YAML file
        overrides: Nested dict of parameter groups to merge
        assignments: Dotted ``key=value`` strings, applied after overrides

    Example:
        config = load_config_with_overrides(
            path="column.yaml",
            overrides={"mesh": {"n_cells": 50}},
            assignments=["pks.flow.porosity=0.3"],
        )
    """
    config = load_config(path) if path is not None else SimulationConfig()

    combined: dict[str, Any] = dict(overrides or {})
    for text in assignments:
        combined = merge_overrides(combined, parse_assignment(text))

    if combined:
        config = config.with_updates(**combined)
    return config
