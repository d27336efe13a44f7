"""
Engine configuration schema.

Frozen dataclasses that the loader fills from YAML.  Each section validates
itself in ``__post_init__`` and raises ``ValueError`` on a bad value, so an
``EngineConfig`` that exists is a valid one.

    EngineConfig
    +-- numbering: NumberingSettings
    +-- tax:       TaxSettings
    +-- posting:   PostingSettings
    +-- ledgers:   LedgerSettings
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

MISSING_JURISDICTION_POLICIES = ("same_region", "cross_region", "reject")


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NumberingSettings:
    """Compliance limits and defaults for document numbering."""

    max_number_length: int = 16
    allowed_characters: str = r"A-Za-z0-9\-/"
    max_prefix_length: int = 10
    default_sequence_length: int = 4
    max_sequence_length: int = 10
    default_separator: str = "-"
    fiscal_year_start_month: int = 4
    fiscal_year_start_day: int = 1
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if self.max_number_length < 1:
            raise ValueError("numbering.max_number_length must be positive")
        if not 1 <= self.max_prefix_length <= self.max_number_length:
            raise ValueError("numbering.max_prefix_length must be between 1 and max_number_length")
        if not 1 <= self.default_sequence_length <= self.max_sequence_length:
            raise ValueError(
                "numbering.default_sequence_length must be between 1 and max_sequence_length"
            )
        if not 1 <= self.fiscal_year_start_month <= 12:
            raise ValueError("numbering.fiscal_year_start_month must be between 1 and 12")
        if not 1 <= self.fiscal_year_start_day <= 28:
            raise ValueError("numbering.fiscal_year_start_day must be between 1 and 28")
        if not self.allowed_characters:
            raise ValueError("numbering.allowed_characters cannot be empty")


# ---------------------------------------------------------------------------
# Tax
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaxSettings:
    """Tax split and rounding settings."""

    missing_jurisdiction_policy: str = "same_region"
    component_decimal_places: int = 2
    grand_total_quantum: Decimal = Decimal("1")
    jurisdiction_aliases: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.missing_jurisdiction_policy not in MISSING_JURISDICTION_POLICIES:
            raise ValueError(
                "tax.missing_jurisdiction_policy must be one of "
                f"{MISSING_JURISDICTION_POLICIES}, got {self.missing_jurisdiction_policy!r}"
            )
        if not 0 <= self.component_decimal_places <= 6:
            raise ValueError("tax.component_decimal_places must be between 0 and 6")
        if self.grand_total_quantum <= 0:
            raise ValueError("tax.grand_total_quantum must be positive")
        object.__setattr__(
            self, "jurisdiction_aliases", MappingProxyType(dict(self.jurisdiction_aliases))
        )


# ---------------------------------------------------------------------------
# Posting and ledgers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostingSettings:
    balance_tolerance: Decimal = Decimal("0.01")

    def __post_init__(self) -> None:
        if self.balance_tolerance <= 0:
            raise ValueError("posting.balance_tolerance must be positive")


@dataclass(frozen=True)
class LedgerSettings:
    """Ledger reference per ledger role used by the default entry builder."""

    references: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for role, reference in self.references.items():
            if not reference or not str(reference).strip():
                raise ValueError(f"ledgers.{role} must name a ledger")
        object.__setattr__(self, "references", MappingProxyType(dict(self.references)))


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    """The complete, validated engine configuration."""

    config_id: str
    version: int
    numbering: NumberingSettings
    tax: TaxSettings
    posting: PostingSettings
    ledgers: LedgerSettings
    checksum: str = ""
