"""Loader for the mapper's YAML configuration file."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from iam_identity_mapper.errors import ConfigurationError
from iam_identity_mapper.mapping.models import MapperConfig, validate_model

_MAX_ENV_VAR_DEPTH = 20


def _substitute_env_vars(value: str) -> str:
    """Substitute ${VAR} and $VAR patterns with environment variables."""

    def replace(match: re.Match[str]) -> str:
        var_name = match.group(1) or match.group(2)
        return os.environ.get(var_name, match.group(0))

    pattern = r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)"
    return re.sub(pattern, replace, value)


def _process_env_vars(obj: Any, _depth: int = 0) -> Any:
    """Recursively substitute environment variables in strings."""
    if _depth > _MAX_ENV_VAR_DEPTH:
        return obj
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_env_vars(v, _depth + 1) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_env_vars(item, _depth + 1) for item in obj]
    return obj


def load_mapper_config(path: str | Path) -> MapperConfig:
    """Load a ``MapperConfig`` from YAML.

    Top-level keys follow the authenticator config file (``clusterID``,
    ``partitionID``, ``backendMode``); mapping lists may sit at the top level
    or under ``server``.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Mapper config file not found: {config_path}")
    with config_path.open("r", encoding="utf-8") as handle:
        try:
            raw_data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(raw_data, dict):
        raise ConfigurationError(f"Mapper config {config_path} must contain a mapping")

    data = _process_env_vars(raw_data)
    server = data.pop("server", None)
    if isinstance(server, dict):
        data = {**server, **data}
    return validate_model(MapperConfig, data, f"mapper config {config_path}")
