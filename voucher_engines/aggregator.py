"""
Document Aggregator - fold line items into document totals.

Each line is priced (quantity x rate, less discount), split through the
TaxSplitCalculator and accumulated.  The grand total is rounded exactly once,
half-to-even to a whole currency unit, and the rounding delta is reported.

Pure functions with no I/O.

Usage:
    from decimal import Decimal
    from voucher_engines.aggregator import DocumentAggregator, LineInput

    totals = DocumentAggregator().aggregate(
        [
            LineInput.of(quantity=1, rate="90000", tax_rate=18),
            LineInput.of(quantity=1, rate="25000", tax_rate=18),
            LineInput.of(quantity=1, rate="0", tax_rate=0),
        ],
        origin="27",
        destination="27",
    )
    print(totals.subtotal)      # 115000.00
    print(totals.grand_total)   # 135700.00
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from voucher_engines.tax_split import HUNDRED, ZERO, TaxSplit, TaxSplitCalculator
from voucher_engines.tracer import traced_engine
from voucher_kernel.db.types import (
    MONEY_DECIMAL_PLACES,
    TOTAL_ROUNDING,
    round_money,
    round_to_quantum,
    to_decimal,
)
from voucher_kernel.exceptions import EmptyDocumentError, InvalidAmountError
from voucher_kernel.logging_config import get_logger

logger = get_logger("engines.aggregator")


def _decimal(value: object, field: str) -> Decimal:
    try:
        result = to_decimal(value, field)
    except ValueError as exc:
        raise InvalidAmountError(field, value, "must be a number") from exc
    if not result.is_finite():
        raise InvalidAmountError(field, value, "must be finite")
    return result


@dataclass(frozen=True)
class LineInput:
    """
    One priced line as supplied by the caller.

    Rates are percentages (18 for 18%).  Use ``LineInput.of`` to coerce
    ints and strings.
    """

    quantity: Decimal
    rate: Decimal
    tax_rate: Decimal = ZERO
    discount_percent: Decimal = ZERO
    surcharge_rate: Decimal = ZERO
    description: str | None = None

    def __post_init__(self) -> None:
        if self.quantity < ZERO:
            raise InvalidAmountError("quantity", self.quantity, "must not be negative")
        if self.rate < ZERO:
            raise InvalidAmountError("rate", self.rate, "must not be negative")
        if not ZERO <= self.discount_percent <= HUNDRED:
            raise InvalidAmountError(
                "discount_percent", self.discount_percent, "must be between 0 and 100"
            )

    @classmethod
    def of(
        cls,
        quantity: object,
        rate: object,
        tax_rate: object = 0,
        discount_percent: object = 0,
        surcharge_rate: object = 0,
        description: str | None = None,
    ) -> LineInput:
        return cls(
            quantity=_decimal(quantity, "quantity"),
            rate=_decimal(rate, "rate"),
            tax_rate=_decimal(tax_rate, "tax_rate"),
            discount_percent=_decimal(discount_percent, "discount_percent"),
            surcharge_rate=_decimal(surcharge_rate, "surcharge_rate"),
            description=description,
        )


@dataclass(frozen=True)
class LineBreakdown:
    """Computed amounts for one line."""

    line_number: int
    line: LineInput
    line_amount: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    split: TaxSplit

    @property
    def same_region_tax_1(self) -> Decimal:
        return self.split.same_region_component_a

    @property
    def same_region_tax_2(self) -> Decimal:
        return self.split.same_region_component_b

    @property
    def cross_region_tax(self) -> Decimal:
        return self.split.cross_region_component

    @property
    def surcharge(self) -> Decimal:
        return self.split.surcharge

    @property
    def total_tax(self) -> Decimal:
        return self.split.total_tax


@dataclass(frozen=True)
class DocumentTotals:
    """
    Totals for a whole document.

    ``grand_total`` is subtotal plus every tax component before rounding;
    ``rounded_total`` is the payable amount and ``rounding_delta`` is
    ``rounded_total - grand_total``.
    """

    lines: tuple[LineBreakdown, ...]
    is_same_region: bool
    reverse_liability: bool
    subtotal: Decimal
    same_region_tax_1: Decimal
    same_region_tax_2: Decimal
    cross_region_tax: Decimal
    surcharge: Decimal
    total_tax: Decimal
    grand_total: Decimal
    rounded_total: Decimal
    rounding_delta: Decimal

    @property
    def tax_components(self) -> dict[str, Decimal]:
        return {
            "same_region_tax_1": self.same_region_tax_1,
            "same_region_tax_2": self.same_region_tax_2,
            "cross_region_tax": self.cross_region_tax,
            "surcharge": self.surcharge,
        }


class DocumentAggregator:
    """
    Compute document totals from line items.

    Pure - identical inputs always give identical totals.  Total tax is the
    sum of the per-line taxes; it is never re-derived from the subtotal.
    """

    def __init__(
        self,
        calculator: TaxSplitCalculator | None = None,
        total_quantum: Decimal = Decimal("1"),
        decimal_places: int = MONEY_DECIMAL_PLACES,
    ):
        self.calculator = calculator or TaxSplitCalculator(decimal_places=decimal_places)
        self.total_quantum = total_quantum
        self.decimal_places = decimal_places

    def price_line(self, line_number: int, line: LineInput, same_region: bool) -> LineBreakdown:
        """Price and split a single line."""
        places = self.decimal_places
        line_amount = round_money(line.quantity * line.rate, places)
        discount = round_money(line_amount * line.discount_percent / HUNDRED, places)
        taxable = line_amount - discount
        split = self.calculator.split_for_region(
            taxable, line.tax_rate, same_region, line.surcharge_rate
        )
        return LineBreakdown(
            line_number=line_number,
            line=line,
            line_amount=line_amount,
            discount_amount=discount,
            taxable_amount=taxable,
            split=split,
        )

    @traced_engine(
        "document_aggregator",
        "1.0",
        fingerprint_fields=("lines", "origin", "destination", "reverse_liability"),
    )
    def aggregate(
        self,
        lines: Sequence[LineInput],
        origin: str | None = None,
        destination: str | None = None,
        reverse_liability: bool = False,
    ) -> DocumentTotals:
        """
        Fold line items into document totals.

        Args:
            lines: Ordered line items; line numbers are assigned from 1.
            origin: Supplier jurisdiction.
            destination: Place-of-supply jurisdiction.
            reverse_liability: Recipient pays the tax (carried through to
                the totals for the ledger builder; amounts are unchanged).

        Raises:
            EmptyDocumentError, InvalidAmountError, InvalidRateError,
            MissingJurisdictionError
        """
        t0 = time.monotonic()
        logger.info("document_aggregation_started", extra={
            "line_count": len(lines),
            "origin": origin,
            "destination": destination,
            "reverse_liability": reverse_liability,
        })

        if not lines:
            logger.warning("document_aggregation_empty", extra={})
            raise EmptyDocumentError()

        same_region = self.calculator.is_same_region(origin, destination)
        breakdowns = tuple(
            self.price_line(number, line, same_region)
            for number, line in enumerate(lines, start=1)
        )

        subtotal = sum((b.taxable_amount for b in breakdowns), ZERO)
        tax_1 = sum((b.same_region_tax_1 for b in breakdowns), ZERO)
        tax_2 = sum((b.same_region_tax_2 for b in breakdowns), ZERO)
        cross = sum((b.cross_region_tax for b in breakdowns), ZERO)
        surcharge = sum((b.surcharge for b in breakdowns), ZERO)
        total_tax = tax_1 + tax_2 + cross + surcharge
        grand_total = subtotal + total_tax

        # The single rounding step for the document
        rounded = round_to_quantum(grand_total, self.total_quantum, TOTAL_ROUNDING)
        delta = rounded - grand_total

        totals = DocumentTotals(
            lines=breakdowns,
            is_same_region=same_region,
            reverse_liability=reverse_liability,
            subtotal=subtotal,
            same_region_tax_1=tax_1,
            same_region_tax_2=tax_2,
            cross_region_tax=cross,
            surcharge=surcharge,
            total_tax=total_tax,
            grand_total=grand_total,
            rounded_total=rounded,
            rounding_delta=delta,
        )

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("document_aggregation_completed", extra={
            "line_count": len(breakdowns),
            "subtotal": str(subtotal),
            "total_tax": str(total_tax),
            "grand_total": str(grand_total),
            "rounding_delta": str(delta),
            "is_same_region": same_region,
            "duration_ms": duration_ms,
        })
        return totals
