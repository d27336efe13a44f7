"""
Config -> Kernel/Engine Bridges.

Functions that turn an ``EngineConfig`` into the constructor arguments of
kernel services and engines.  They live here because the kernel must NEVER
import voucher_config.

Usage:
    from voucher_config.bridges import build_numbering_rules, build_tax_calculator

    config = get_active_config()
    rules = build_numbering_rules(config)
    calculator = build_tax_calculator(config)
"""

from __future__ import annotations

from voucher_config.schema import EngineConfig
from voucher_engines.aggregator import DocumentAggregator
from voucher_engines.tax_split import (
    JurisdictionResolver,
    MissingJurisdictionPolicy,
    TaxSplitCalculator,
)
from voucher_kernel.domain.numbering import NumberingRules


def build_numbering_rules(config: EngineConfig) -> NumberingRules:
    """NumberingRules from the ``numbering`` section."""
    n = config.numbering
    return NumberingRules(
        max_length=n.max_number_length,
        allowed_characters=n.allowed_characters,
        max_prefix_length=n.max_prefix_length,
        max_sequence_length=n.max_sequence_length,
        fiscal_year_start_month=n.fiscal_year_start_month,
        fiscal_year_start_day=n.fiscal_year_start_day,
        timezone=n.timezone,
    )


def build_jurisdiction_resolver(config: EngineConfig) -> JurisdictionResolver:
    return JurisdictionResolver(config.tax.jurisdiction_aliases)


def build_tax_calculator(config: EngineConfig) -> TaxSplitCalculator:
    """TaxSplitCalculator honouring the missing-jurisdiction policy."""
    return TaxSplitCalculator(
        resolver=build_jurisdiction_resolver(config),
        missing_policy=MissingJurisdictionPolicy.parse(config.tax.missing_jurisdiction_policy),
        decimal_places=config.tax.component_decimal_places,
    )


def build_aggregator(config: EngineConfig) -> DocumentAggregator:
    return DocumentAggregator(
        calculator=build_tax_calculator(config),
        total_quantum=config.tax.grand_total_quantum,
        decimal_places=config.tax.component_decimal_places,
    )


def state_names_by_code(config: EngineConfig) -> dict[str, str]:
    """Two-digit state code -> display name, for GSTIN validation."""
    names: dict[str, str] = {}
    for name, code in config.tax.jurisdiction_aliases.items():
        names.setdefault(code, name)
    return names
