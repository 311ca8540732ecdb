"""Config Loader - Loads runtime configuration and descriptor tables.

Both files are YAML with ${ENV_VAR} substitution, validated into pydantic
models. A descriptor table file looks like:

    operations:
      listSnapshots:
        path_template: /client/api
        fixed_query: {response: json, command: listSnapshots}
        fixed_headers: {Accept: application/json}
        bindings:
          - {role: options}
        parser: unwrap_only_json_value
        not_found: return_empty_collection
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from restbind.errors import RestBindError
from restbind.models import (
    DescriptorTable,
    EndpointConfig,
    OperationDescriptor,
    RuntimeConfig,
)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigError(RestBindError):
    """Raised when configuration loading fails."""


def _load_yaml_mapping(path: Path, what: str) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"{what} not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {what.lower()}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{what} must be a YAML mapping")
    return _substitute_env_vars(raw)


def load_runtime_config(config_path: Path) -> RuntimeConfig:
    """Load runtime configuration from YAML with ${ENV_VAR} substitution."""
    raw_config = _load_yaml_mapping(config_path, "Config file")
    try:
        return RuntimeConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def load_descriptor_table(table_path: Path) -> DescriptorTable:
    """Load an operations table; the mapping key becomes the operation id."""
    raw_table = _load_yaml_mapping(table_path, "Descriptor table")
    return parse_descriptor_table(raw_table)


def parse_descriptor_table(raw_table: dict[str, Any]) -> DescriptorTable:
    """Validate an already-loaded ``{"operations": {...}}`` mapping."""
    operations = raw_table.get("operations")
    if not isinstance(operations, dict) or not operations:
        raise ConfigError("Descriptor table must contain a non-empty 'operations' mapping")

    descriptors = []
    for operation_id, raw in operations.items():
        if not isinstance(raw, dict):
            raise ConfigError(f"Operation '{operation_id}' must be a mapping")
        if "operation_id" in raw and raw["operation_id"] != operation_id:
            raise ConfigError(
                f"Operation '{operation_id}' declares a different operation_id "
                f"'{raw['operation_id']}'"
            )
        try:
            descriptors.append(
                OperationDescriptor.model_validate({**raw, "operation_id": str(operation_id)})
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid operation '{operation_id}': {e}") from e

    return DescriptorTable(descriptors)


def resolve_endpoint(config: RuntimeConfig, name: str) -> EndpointConfig:
    """Return the named endpoint or raise ConfigError listing the available ones."""
    if name not in config.endpoints:
        available = ", ".join(config.endpoints.keys()) or "(none)"
        raise ConfigError(f"Endpoint '{name}' not found in config. Available: {available}")
    return config.endpoints[name]


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
