"""
supply_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings
    (branches, currency rounding, retry policy, document number prefixes).
    Services receive the resulting ``SupplyConfig`` by injection and never
    read files or environment variables themselves.

Failure modes:
    - ``FileNotFoundError`` when the requested file does not exist.
    - ``ValueError`` on schema or value validation failures.

Audit relevance:
    Every successful load emits ``SUPPLY_CONFIG_TRACE`` with the config id,
    version and checksum.
"""

from __future__ import annotations

from pathlib import Path

from supply_config.loader import load_config
from supply_config.schema import NumberPrefixes, SupplyConfig
from supply_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> SupplyConfig:
    """
    Load, validate and return the active configuration.

    Args:
        config_path: YAML file to load.  Defaults to the bundled
            ``sets/default.yaml``.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    config = load_config(path)
    _logger.info(
        "SUPPLY_CONFIG_TRACE",
        extra={
            "trace_type": "SUPPLY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "branch_count": len(config.branches),
        },
    )
    return config


__all__ = ["DEFAULT_CONFIG_PATH", "NumberPrefixes", "SupplyConfig", "get_active_config"]
