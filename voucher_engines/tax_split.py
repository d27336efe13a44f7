"""
Tax Split Engine - divide a tax between same-region and cross-region components.

When supplier and place of supply normalize to the same jurisdiction the rate
is split evenly into two same-region components (e.g. CGST + SGST); otherwise
the whole rate goes to the single cross-region component (e.g. IGST).  An
optional surcharge (cess) is computed on the same taxable amount.

Pure functions with no I/O.

Usage:
    from decimal import Decimal
    from voucher_engines.tax_split import JurisdictionResolver, TaxSplitCalculator

    calculator = TaxSplitCalculator(JurisdictionResolver({"maharashtra": "27"}))
    split = calculator.split(Decimal("1000"), Decimal("18"), "Maharashtra", "27")
    print(split.same_region_component_a)  # 90.00
    print(split.cross_region_component)   # 0.00
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from voucher_kernel.db.types import MONEY_DECIMAL_PLACES, round_money, to_decimal
from voucher_kernel.exceptions import (
    InvalidAmountError,
    InvalidRateError,
    MissingJurisdictionError,
)
from voucher_kernel.logging_config import get_logger

logger = get_logger("engines.tax_split")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class MissingJurisdictionPolicy(str, Enum):
    """Treatment of a document whose origin or destination is unknown."""

    SAME_REGION = "same_region"
    CROSS_REGION = "cross_region"
    REJECT = "reject"

    @classmethod
    def parse(cls, value: str | MissingJurisdictionPolicy) -> MissingJurisdictionPolicy:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("-", "_"))
        except ValueError:
            raise ValueError(
                f"missing_jurisdiction_policy must be one of {[p.value for p in cls]}, "
                f"got {value!r}"
            ) from None


class JurisdictionResolver:
    """
    Case-insensitive jurisdiction identity with an alias table.

    Aliases map any spelling (usually a state name) to a canonical
    identifier (usually a two-digit state code).  Values that are not
    aliases normalize to themselves, so "27" and "Maharashtra" compare
    equal once "maharashtra" -> "27" is registered.
    """

    def __init__(self, aliases: Mapping[str, str] | None = None):
        self._aliases = {
            self._clean(name): self._clean(code) for name, code in (aliases or {}).items()
        }

    @staticmethod
    def _clean(value: object) -> str:
        return " ".join(str(value).split()).casefold()

    def normalize(self, value: str | None) -> str | None:
        """Canonical identifier, or None for an absent/blank value."""
        if value is None:
            return None
        cleaned = self._clean(value)
        if not cleaned:
            return None
        return self._aliases.get(cleaned, cleaned)

    def same(self, first: str | None, second: str | None) -> bool:
        a, b = self.normalize(first), self.normalize(second)
        return a is not None and a == b

    @property
    def codes(self) -> frozenset[str]:
        """Canonical identifiers known to the alias table."""
        return frozenset(self._aliases.values())

    def name_for(self, code: str) -> str | None:
        """First alias registered for a canonical identifier, title-cased."""
        target = self._clean(code)
        for name, alias_code in self._aliases.items():
            if alias_code == target and name != target:
                return name.title()
        return None


@dataclass(frozen=True)
class TaxSplit:
    """
    Tax for one taxable amount.

    Exactly one regime is non-zero: either both same-region components
    (always equal) or the cross-region component.
    """

    taxable_amount: Decimal
    rate: Decimal
    is_same_region: bool
    same_region_component_a: Decimal
    same_region_component_b: Decimal
    cross_region_component: Decimal
    surcharge_rate: Decimal = ZERO
    surcharge: Decimal = ZERO

    @property
    def component_total(self) -> Decimal:
        """Same-region plus cross-region components, surcharge excluded."""
        return (
            self.same_region_component_a
            + self.same_region_component_b
            + self.cross_region_component
        )

    @property
    def total_tax(self) -> Decimal:
        return self.component_total + self.surcharge


def _validated_amount(value: object, field: str = "taxable_amount") -> Decimal:
    try:
        amount = to_decimal(value, field)
    except ValueError as exc:
        raise InvalidAmountError(field, value, "must be a number") from exc
    if not amount.is_finite():
        raise InvalidAmountError(field, value, "must be finite")
    if amount < ZERO:
        raise InvalidAmountError(field, value, "must not be negative")
    return amount


def _validated_rate(value: object) -> Decimal:
    try:
        rate = to_decimal(value, "rate")
    except ValueError as exc:
        raise InvalidRateError(value, "rate must be a number") from exc
    if not rate.is_finite() or rate < ZERO or rate > HUNDRED:
        raise InvalidRateError(value)
    return rate


class TaxSplitCalculator:
    """
    Split a tax rate between same-region and cross-region components.

    Pure - no I/O, no state beyond the constructor configuration.

    Handles:
        - Same-region split into two equal half-rate components
        - Cross-region single component
        - Optional surcharge on the taxable amount
        - Missing jurisdictions per ``MissingJurisdictionPolicy``
    """

    def __init__(
        self,
        resolver: JurisdictionResolver | None = None,
        missing_policy: MissingJurisdictionPolicy | str = MissingJurisdictionPolicy.SAME_REGION,
        decimal_places: int = MONEY_DECIMAL_PLACES,
    ):
        self.resolver = resolver or JurisdictionResolver()
        self.missing_policy = MissingJurisdictionPolicy.parse(missing_policy)
        self.decimal_places = decimal_places

    def is_same_region(self, origin: str | None, destination: str | None) -> bool:
        """
        Whether a supply from ``origin`` to ``destination`` is same-region.

        Raises:
            MissingJurisdictionError: a side is absent and the policy is REJECT.
        """
        o = self.resolver.normalize(origin)
        d = self.resolver.normalize(destination)
        if o is None or d is None:
            if self.missing_policy is MissingJurisdictionPolicy.REJECT:
                raise MissingJurisdictionError("origin" if o is None else "destination")
            logger.debug(
                "jurisdiction_missing_default_applied",
                extra={
                    "origin": origin,
                    "destination": destination,
                    "policy": self.missing_policy.value,
                },
            )
            return self.missing_policy is MissingJurisdictionPolicy.SAME_REGION
        return o == d

    def split(
        self,
        taxable_amount: Decimal,
        rate: Decimal,
        origin: str | None = None,
        destination: str | None = None,
        surcharge_rate: Decimal = ZERO,
    ) -> TaxSplit:
        """
        Compute the tax split for one taxable amount.

        Args:
            taxable_amount: Non-negative, finite amount after discount.
            rate: Tax rate in percent, 0-100 (e.g. 18 for 18%).
            origin: Supplier jurisdiction (code or name).
            destination: Place-of-supply jurisdiction (code or name).
            surcharge_rate: Surcharge rate in percent, 0-100.

        Raises:
            InvalidAmountError, InvalidRateError, MissingJurisdictionError
        """
        amount = _validated_amount(taxable_amount)
        tax_rate = _validated_rate(rate)
        surcharge = _validated_rate(surcharge_rate)
        same_region = self.is_same_region(origin, destination)
        return self.split_for_region(amount, tax_rate, same_region, surcharge)

    def split_for_region(
        self,
        taxable_amount: Decimal,
        rate: Decimal,
        same_region: bool,
        surcharge_rate: Decimal = ZERO,
    ) -> TaxSplit:
        """
        Split once the region has been decided.

        Each same-region component is the half rate applied to the amount,
        rounded half-up on its own, so the two are always equal.
        """
        amount = _validated_amount(taxable_amount)
        tax_rate = _validated_rate(rate)
        surcharge_pct = _validated_rate(surcharge_rate)
        places = self.decimal_places

        if same_region:
            half = round_money(amount * tax_rate / (HUNDRED * 2), places)
            a, b, cross = half, half, round_money(ZERO, places)
        else:
            a = b = round_money(ZERO, places)
            cross = round_money(amount * tax_rate / HUNDRED, places)

        result = TaxSplit(
            taxable_amount=amount,
            rate=tax_rate,
            is_same_region=same_region,
            same_region_component_a=a,
            same_region_component_b=b,
            cross_region_component=cross,
            surcharge_rate=surcharge_pct,
            surcharge=round_money(amount * surcharge_pct / HUNDRED, places),
        )
        logger.debug(
            "tax_split_computed",
            extra={
                "taxable_amount": str(amount),
                "rate": str(tax_rate),
                "is_same_region": same_region,
                "total_tax": str(result.total_tax),
            },
        )
        return result
