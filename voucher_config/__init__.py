"""
voucher_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``voucher_kernel`` and ``voucher_engines``
    and below ``voucher_services``.  The kernel MUST NEVER import from
    ``voucher_config``; ``voucher_config.bridges`` translates the config
    into kernel and engine constructor arguments.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - The returned ``EngineConfig`` is frozen and already validated.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- schema validation failures.
    - ``yaml.YAMLError`` -- malformed YAML.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``VOUCHER_CONFIG_TRACE`` log entry with config_id, version, checksum
    and the source path.
"""

from __future__ import annotations

import os
from pathlib import Path

from voucher_config.loader import load_yaml_file, parse_engine_config
from voucher_config.schema import EngineConfig
from voucher_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "VOUCHER_CONFIG_PATH"

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "defaults" / "engine.yaml"


def get_active_config(config_path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: ``config_path`` argument, then the
    ``VOUCHER_CONFIG_PATH`` environment variable, then the packaged
    ``defaults/engine.yaml``.  Relative file references inside the YAML
    (the jurisdiction alias table) resolve against the YAML's directory.

    Non-goals:
        - Does NOT cache; callers hold the returned config.

    Raises:
        FileNotFoundError, ValueError, yaml.YAMLError
    """
    source = Path(config_path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_FILE)
    config = parse_engine_config(load_yaml_file(source), base_dir=source.parent)

    _logger.info(
        "VOUCHER_CONFIG_TRACE",
        extra={
            "trace_type": "VOUCHER_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(source),
            "jurisdiction_alias_count": len(config.tax.jurisdiction_aliases),
            "missing_jurisdiction_policy": config.tax.missing_jurisdiction_policy,
        },
    )
    return config


__all__ = ["CONFIG_PATH_ENV", "EngineConfig", "get_active_config"]
