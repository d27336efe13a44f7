"""
Configuration Loader (``voucher_config.loader``).

Responsibility
--------------
Reads the engine YAML and the jurisdiction alias table and parses them into
the frozen dataclasses of ``voucher_config.schema``.  Runtime callers use
``voucher_config.get_active_config()`` instead of this module.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown keys in a section raise ``ValueError``; a typo never silently
  falls back to a default.
* ``compute_checksum`` is a deterministic SHA-256 over the merged source.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema dataclasses.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from voucher_config.schema import (
    EngineConfig,
    LedgerSettings,
    NumberingSettings,
    PostingSettings,
    TaxSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, key: str) -> Decimal:
    """Parse a Decimal from YAML; floats go through ``str``."""
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key} must be a decimal number, got {value!r}") from None


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown key(s) in {section}: {', '.join(unknown)}")


def parse_numbering(data: dict[str, Any]) -> NumberingSettings:
    """Parse the ``numbering`` section."""
    _check_keys("numbering", data, {f.name for f in fields(NumberingSettings)})
    return NumberingSettings(**data)


def parse_jurisdictions(data: dict[str, Any]) -> dict[str, str]:
    """
    Parse the alias table.

    Accepts ``{jurisdictions: [{code: "27", name: "Maharashtra",
    aliases: [...]}, ...]}`` and returns name/alias -> code.
    """
    aliases: dict[str, str] = {}
    for entry in data.get("jurisdictions", []):
        code = str(entry["code"]).zfill(2)
        aliases[entry["name"]] = code
        for alias in entry.get("aliases", []):
            aliases[str(alias)] = code
    return aliases


def parse_tax(data: dict[str, Any], base_dir: Path | None = None) -> TaxSettings:
    """
    Parse the ``tax`` section.

    ``jurisdiction_aliases_file`` is resolved relative to ``base_dir``;
    inline ``jurisdiction_aliases`` entries override file entries.
    """
    _check_keys(
        "tax",
        data,
        {
            "missing_jurisdiction_policy",
            "component_decimal_places",
            "grand_total_quantum",
            "jurisdiction_aliases_file",
            "jurisdiction_aliases",
        },
    )
    aliases: dict[str, str] = {}
    aliases_file = data.get("jurisdiction_aliases_file")
    if aliases_file:
        path = Path(aliases_file)
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        aliases.update(parse_jurisdictions(load_yaml_file(path)))
    aliases.update({str(k): str(v) for k, v in (data.get("jurisdiction_aliases") or {}).items()})

    return TaxSettings(
        missing_jurisdiction_policy=str(
            data.get("missing_jurisdiction_policy", "same_region")
        ).lower(),
        component_decimal_places=int(data.get("component_decimal_places", 2)),
        grand_total_quantum=parse_decimal(
            data.get("grand_total_quantum", "1"), "tax.grand_total_quantum"
        ),
        jurisdiction_aliases=aliases,
    )


def parse_posting(data: dict[str, Any]) -> PostingSettings:
    """Parse the ``posting`` section."""
    _check_keys("posting", data, {"balance_tolerance"})
    return PostingSettings(
        balance_tolerance=parse_decimal(
            data.get("balance_tolerance", "0.01"), "posting.balance_tolerance"
        ),
    )


def parse_ledgers(data: dict[str, Any]) -> LedgerSettings:
    """Parse the ``ledgers`` section: role -> ledger reference."""
    return LedgerSettings(references={str(k): str(v) for k, v in data.items()})


def parse_engine_config(data: dict[str, Any], base_dir: Path | None = None) -> EngineConfig:
    """Parse a whole engine configuration document."""
    _check_keys(
        "engine config",
        data,
        {"config_id", "version", "numbering", "tax", "posting", "ledgers"},
    )
    return EngineConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        numbering=parse_numbering(data.get("numbering") or {}),
        tax=parse_tax(data.get("tax") or {}, base_dir),
        posting=parse_posting(data.get("posting") or {}),
        ledgers=parse_ledgers(data.get("ledgers") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
