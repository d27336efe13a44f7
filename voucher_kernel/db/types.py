"""
Module: voucher_kernel.db.types
Responsibility: Decimal coercion and rounding helpers for document
    amounts.  Centralizes precision and rounding so that models, engines and
    services quantize values identically.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and by voucher_engines.  MUST NOT import from any of those.

Invariants enforced:
    - No floats.  Every amount is a Decimal with explicit precision.
    - Tax components are rounded half-up to the minor unit (2 places).
    - The document grand total is rounded half-to-even to a whole unit,
      exactly once per document.
"""

from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
TOTAL_ROUNDING = ROUND_HALF_EVEN


def to_decimal(value: object, field: str = "amount") -> Decimal:
    """
    Coerce an int, str or Decimal to Decimal.

    Floats are converted through ``str`` so 0.1 becomes Decimal("0.1").

    Raises:
        ValueError: If value cannot be represented as a Decimal.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be numeric, got {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"{field} must be numeric, got {value!r}") from exc


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    Preconditions: value is a finite Decimal.
    Postconditions: Returns value quantized to decimal_places.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


def round_to_quantum(
    value: Decimal,
    quantum: Decimal = Decimal("1"),
    rounding: str = TOTAL_ROUNDING,
) -> Decimal:
    """Round value to a multiple of quantum (default: whole unit, half-even)."""
    return (value / quantum).quantize(Decimal("1"), rounding=rounding) * quantum
