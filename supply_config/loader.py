"""
Configuration loader (``supply_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``SupplyConfig`` dataclass.  Runtime code obtains configuration through
``supply_config.get_active_config()``, not from here.

Failure modes
-------------
* Missing YAML file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Wrong types, unknown keys or invalid values -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from supply_config.schema import NumberPrefixes, SupplyConfig

_KNOWN_KEYS = {
    "config_id",
    "version",
    "branches",
    "default_branch",
    "currency",
    "money_places",
    "max_conflict_retries",
    "retry_backoff_ms",
    "number_prefixes",
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the parsed configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    return value


def parse_number_prefixes(data: dict[str, Any] | None) -> NumberPrefixes:
    if data is None:
        return NumberPrefixes()
    if not isinstance(data, dict):
        raise ValueError("number_prefixes must be a mapping")
    unknown = set(data) - set(NumberPrefixes.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown number_prefixes keys: {sorted(unknown)}")
    return NumberPrefixes(**{k: str(v) for k, v in data.items()})


def parse_config(data: dict[str, Any]) -> SupplyConfig:
    """
    Build a SupplyConfig from a parsed mapping.

    Missing keys take the schema defaults; unknown keys are rejected.
    """
    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    defaults = SupplyConfig()
    branches = data.get("branches", list(defaults.branches))
    if not isinstance(branches, list) or not all(isinstance(b, str) for b in branches):
        raise ValueError("branches must be a list of strings")

    return SupplyConfig(
        config_id=str(data.get("config_id", defaults.config_id)),
        version=_int(data, "version", defaults.version),
        branches=tuple(branches),
        default_branch=str(data.get("default_branch", branches[0] if branches else "")),
        currency=str(data.get("currency", defaults.currency)),
        money_places=_int(data, "money_places", defaults.money_places),
        max_conflict_retries=_int(data, "max_conflict_retries", defaults.max_conflict_retries),
        retry_backoff_ms=_int(data, "retry_backoff_ms", defaults.retry_backoff_ms),
        number_prefixes=parse_number_prefixes(data.get("number_prefixes")),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> SupplyConfig:
    return parse_config(load_yaml_file(path))
