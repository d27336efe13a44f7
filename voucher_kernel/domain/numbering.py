"""
Numbering -- format tokens, rendering, compliance and reset epochs.

Responsibility:
    Pure rules for turning a series configuration plus a sequence value into
    a document number, and for deciding when a series restarts.  Both the
    SequenceAllocator (under the series row lock) and the read-only preview
    call ``plan_allocation`` so they can never disagree.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imports only
    exceptions.  Used by models/ (snapshots) and services/.

Invariants enforced:
    - Format tokens are a closed enum resolved in a single left-to-right
      scan.  Substituted values are never re-scanned, so a prefix such as
      ``MMX`` is emitted verbatim.
    - A rendered number is at most ``max_length`` characters drawn from
      ``allowed_characters``; checked before any sequence is consumed.
    - A format must contain PREFIX and SEQUENCE, must stay within the length
      limit at its widest rendering, and, for resetting series, must contain
      a token that identifies the reset epoch.
    - Epochs only move forward: a clock running backwards never triggers a
      reset.

Failure modes:
    - InvalidFormatError, InvalidPrefixError, InvalidSeriesConfigError on
      configuration problems.
    - SequenceExhaustedError when the next value passes end_number.
    - ComplianceViolationError when the rendered number is not compliant.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo

from voucher_kernel.exceptions import (
    ComplianceViolationError,
    InvalidFormatError,
    InvalidPrefixError,
    InvalidSeriesConfigError,
    SequenceExhaustedError,
)


class FormatToken(str, Enum):
    """Placeholders recognised inside a series format string."""

    PREFIX = "PREFIX"
    YEAR = "YEAR"
    YY = "YY"
    MONTH = "MONTH"
    MM = "MM"
    FY = "FY"
    SEQUENCE = "SEQUENCE"
    BRANCH = "BRANCH"
    SEPARATOR = "SEPARATOR"


class ResetFrequency(str, Enum):
    """How often a series restarts from its start number."""

    NEVER = "never"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    FISCAL_YEAR = "fiscal_year"

    @classmethod
    def parse(cls, value: str | ResetFrequency) -> ResetFrequency:
        """Accept enum members and the spellings ``fiscal-year`` / ``financial_year``."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        if normalized == "financial_year":
            normalized = cls.FISCAL_YEAR.value
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidSeriesConfigError(
                "reset_frequency",
                f"must be one of {[f.value for f in cls]}, got {value!r}",
            ) from None


# Longest first so YEAR is not read as YY + "AR"
_TOKEN_PATTERN = re.compile(
    "|".join(sorted((t.value for t in FormatToken), key=len, reverse=True))
)

_PREFIX_PATTERN = re.compile(r"^[A-Z0-9]+$")

_BRANCH_WIDTH = 4


@dataclass(frozen=True)
class NumberingRules:
    """
    Compliance limits and calendar settings shared by every series.

    Contract: frozen; validated at construction.
    Guarantees: ``allowed_pattern`` matches a whole number made only of
        ``allowed_characters``.
    """

    max_length: int = 16
    # Regex character-class body
    allowed_characters: str = r"A-Za-z0-9\-/"
    max_prefix_length: int = 10
    max_sequence_length: int = 10
    max_separator_length: int = 2
    fiscal_year_start_month: int = 4
    fiscal_year_start_day: int = 1
    timezone: str = "UTC"
    allowed_pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_length < 1:
            raise ValueError("max_length must be positive")
        if not 1 <= self.max_prefix_length <= self.max_length:
            raise ValueError("max_prefix_length must be between 1 and max_length")
        if not 1 <= self.max_sequence_length <= 18:
            raise ValueError("max_sequence_length must be between 1 and 18")
        if not 1 <= self.fiscal_year_start_month <= 12:
            raise ValueError("fiscal_year_start_month must be between 1 and 12")
        # Day capped at 28 so every month, including February, has the boundary
        if not 1 <= self.fiscal_year_start_day <= 28:
            raise ValueError("fiscal_year_start_day must be between 1 and 28")
        object.__setattr__(
            self, "allowed_pattern", re.compile(f"^[{self.allowed_characters}]+$")
        )
        if self.timezone.upper() != "UTC":
            ZoneInfo(self.timezone)

    @property
    def tz(self) -> tzinfo:
        if self.timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone)

    def localize(self, moment: datetime) -> datetime:
        """Convert a stored or clock timestamp into the configured zone."""
        return as_utc(moment).astimezone(self.tz)

    @property
    def fiscal_starts_on_january_first(self) -> bool:
        return self.fiscal_year_start_month == 1 and self.fiscal_year_start_day == 1


@dataclass(frozen=True)
class NumberLayout:
    """The series fields that shape a rendered number."""

    format: str
    prefix: str
    separator: str = "-"
    sequence_length: int = 4
    branch_code: str | None = None


@dataclass(frozen=True)
class SeriesState:
    """Read-only snapshot of a series row, taken under lock or for preview."""

    series_id: str
    layout: NumberLayout
    current_sequence: int
    start_number: int
    end_number: int | None
    reset_frequency: ResetFrequency
    last_reset_at: datetime | None


@dataclass(frozen=True)
class AllocationPlan:
    """Outcome of planning the next allocation; nothing has been written."""

    sequence: int
    document_number: str
    reset_applied: bool


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def format_tokens(format: str) -> tuple[FormatToken, ...]:
    """Tokens present in a format string, in order of appearance."""
    return tuple(FormatToken(m.group(0)) for m in _TOKEN_PATTERN.finditer(format))


def fiscal_year_start(local: datetime, rules: NumberingRules) -> int:
    """Calendar year in which the fiscal year containing ``local`` began."""
    if (local.month, local.day) >= (rules.fiscal_year_start_month, rules.fiscal_year_start_day):
        return local.year
    return local.year - 1


def _branch_value(branch_code: str | None) -> str:
    if not branch_code:
        return "0" * _BRANCH_WIDTH
    return branch_code[-_BRANCH_WIDTH:].upper().rjust(_BRANCH_WIDTH, "0")


def token_values(
    layout: NumberLayout,
    sequence: int,
    at: datetime,
    rules: NumberingRules,
) -> dict[FormatToken, str]:
    """Map every token to its rendered text for one allocation."""
    local = rules.localize(at)
    fy = fiscal_year_start(local, rules)
    month = f"{local.month:02d}"
    return {
        FormatToken.PREFIX: layout.prefix,
        FormatToken.YEAR: f"{local.year:04d}",
        FormatToken.YY: f"{local.year % 100:02d}",
        FormatToken.MONTH: month,
        FormatToken.MM: month,
        FormatToken.FY: f"{fy % 100:02d}{(fy + 1) % 100:02d}",
        FormatToken.SEQUENCE: str(sequence).zfill(layout.sequence_length),
        FormatToken.BRANCH: _branch_value(layout.branch_code),
        FormatToken.SEPARATOR: layout.separator,
    }


def render_number(
    layout: NumberLayout,
    sequence: int,
    at: datetime,
    rules: NumberingRules,
) -> str:
    """
    Substitute every token in ``layout.format``.

    Characters that are not part of a token are copied unchanged.
    """
    values = token_values(layout, sequence, at, rules)
    return _TOKEN_PATTERN.sub(lambda m: values[FormatToken(m.group(0))], layout.format)


def check_compliance(
    document_number: str,
    rules: NumberingRules,
    series_id: str | None = None,
) -> None:
    """
    Reject numbers longer than ``max_length`` or with disallowed characters.

    Raises:
        ComplianceViolationError
    """
    if len(document_number) > rules.max_length:
        raise ComplianceViolationError(
            document_number,
            f"length {len(document_number)} exceeds {rules.max_length} characters",
            series_id=series_id,
        )
    if not rules.allowed_pattern.match(document_number):
        raise ComplianceViolationError(
            document_number,
            f"only characters [{rules.allowed_characters}] are allowed",
            series_id=series_id,
        )


# ---------------------------------------------------------------------------
# Configuration validation
# ---------------------------------------------------------------------------


def validate_prefix(prefix: str | None, rules: NumberingRules) -> str:
    """
    Validate a series prefix.

    Returns:
        The prefix unchanged.

    Raises:
        InvalidPrefixError: empty, longer than max_prefix_length, or not A-Z0-9.
    """
    if not prefix:
        raise InvalidPrefixError(prefix, "prefix is required")
    if len(prefix) > rules.max_prefix_length:
        raise InvalidPrefixError(
            prefix, f"must be at most {rules.max_prefix_length} characters"
        )
    if not _PREFIX_PATTERN.match(prefix):
        raise InvalidPrefixError(
            prefix, "must contain only uppercase letters and digits"
        )
    return prefix


def validate_separator(separator: str, rules: NumberingRules) -> str:
    if len(separator) > rules.max_separator_length:
        raise InvalidSeriesConfigError(
            "separator", f"must be at most {rules.max_separator_length} characters"
        )
    if separator and not rules.allowed_pattern.match(separator):
        raise InvalidSeriesConfigError(
            "separator", f"only characters [{rules.allowed_characters}] are allowed"
        )
    return separator


def _epoch_tokens_present(
    tokens: set[FormatToken],
    frequency: ResetFrequency,
    rules: NumberingRules,
) -> bool:
    has_year = bool(tokens & {FormatToken.YEAR, FormatToken.YY})
    has_month = bool(tokens & {FormatToken.MONTH, FormatToken.MM})
    if frequency is ResetFrequency.NEVER:
        return True
    if frequency is ResetFrequency.MONTHLY:
        return has_month and (has_year or FormatToken.FY in tokens)
    if frequency is ResetFrequency.YEARLY:
        return has_year
    # FISCAL_YEAR
    return FormatToken.FY in tokens or (has_year and rules.fiscal_starts_on_january_first)


def validate_format(
    layout: NumberLayout,
    rules: NumberingRules,
    reset_frequency: ResetFrequency = ResetFrequency.NEVER,
    end_number: int | None = None,
) -> str:
    """
    Validate a format string against the series it belongs to.

    The widest possible rendering uses the series prefix, the larger of
    ``sequence_length`` and the digits of ``end_number``, and fixed-width
    date and branch tokens.  It must pass ``check_compliance``.

    Raises:
        InvalidFormatError
    """
    fmt = layout.format
    if not fmt or not fmt.strip():
        raise InvalidFormatError(fmt, "format is required")

    tokens = set(format_tokens(fmt))
    missing = [t.value for t in (FormatToken.PREFIX, FormatToken.SEQUENCE) if t not in tokens]
    if missing:
        raise InvalidFormatError(fmt, f"must contain token(s) {', '.join(missing)}")

    if not _epoch_tokens_present(tokens, reset_frequency, rules):
        raise InvalidFormatError(
            fmt,
            f"a series resetting {reset_frequency.value} must include a token "
            "identifying the reset period, or numbers would repeat",
        )

    digits = layout.sequence_length
    if end_number is not None:
        digits = max(digits, len(str(end_number)))
    widest = render_number(
        NumberLayout(
            format=fmt,
            prefix=layout.prefix,
            separator=layout.separator,
            sequence_length=layout.sequence_length,
            branch_code="W" * _BRANCH_WIDTH,
        ),
        10**digits - 1,
        datetime(2099, 12, 31, tzinfo=timezone.utc),
        rules,
    )
    try:
        check_compliance(widest, rules)
    except ComplianceViolationError as exc:
        raise InvalidFormatError(
            fmt, f"widest rendering '{widest}' is not compliant: {exc.reason}"
        ) from exc
    return fmt


def validate_layout(
    layout: NumberLayout,
    rules: NumberingRules,
    reset_frequency: ResetFrequency,
    start_number: int,
    end_number: int | None,
) -> None:
    """Validate every configurable series field together."""
    validate_prefix(layout.prefix, rules)
    validate_separator(layout.separator, rules)
    if not 1 <= layout.sequence_length <= rules.max_sequence_length:
        raise InvalidSeriesConfigError(
            "sequence_length",
            f"must be between 1 and {rules.max_sequence_length}",
        )
    if start_number < 1:
        raise InvalidSeriesConfigError("start_number", "must be at least 1")
    if end_number is not None and end_number < start_number:
        raise InvalidSeriesConfigError(
            "end_number", f"must not be below start_number {start_number}"
        )
    validate_format(layout, rules, reset_frequency, end_number)


# ---------------------------------------------------------------------------
# Reset epochs and allocation planning
# ---------------------------------------------------------------------------


def epoch_key(
    moment: datetime,
    frequency: ResetFrequency,
    rules: NumberingRules,
) -> tuple[int, ...]:
    """Ordered identifier of the reset epoch containing ``moment``."""
    local = rules.localize(moment)
    if frequency is ResetFrequency.MONTHLY:
        return (local.year, local.month)
    if frequency is ResetFrequency.YEARLY:
        return (local.year,)
    if frequency is ResetFrequency.FISCAL_YEAR:
        return (fiscal_year_start(local, rules),)
    return ()


def needs_reset(
    last_reset_at: datetime | None,
    now: datetime,
    frequency: ResetFrequency,
    rules: NumberingRules,
) -> bool:
    """True when ``now`` lies in a later epoch than ``last_reset_at``."""
    if frequency is ResetFrequency.NEVER:
        return False
    if last_reset_at is None:
        return True
    return epoch_key(now, frequency, rules) > epoch_key(last_reset_at, frequency, rules)


def plan_allocation(
    state: SeriesState,
    now: datetime,
    rules: NumberingRules,
) -> AllocationPlan:
    """
    Work out the next sequence and number without changing anything.

    Preconditions: ``state`` was read under the series lock (allocation) or
        is a throwaway snapshot (preview).
    Postconditions: the returned number already passed ``check_compliance``.

    Raises:
        SequenceExhaustedError, ComplianceViolationError
    """
    current = state.current_sequence
    reset = needs_reset(state.last_reset_at, now, state.reset_frequency, rules)
    if reset:
        current = state.start_number - 1

    next_sequence = current + 1
    if state.end_number is not None and next_sequence > state.end_number:
        raise SequenceExhaustedError(state.series_id, state.end_number, next_sequence)

    number = render_number(state.layout, next_sequence, now, rules)
    check_compliance(number, rules, series_id=state.series_id)
    return AllocationPlan(sequence=next_sequence, document_number=number, reset_applied=reset)
