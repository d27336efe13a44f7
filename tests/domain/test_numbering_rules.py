"""
Tests for document number rendering, validation and reset planning.

Covers:
- Token substitution (dates, fiscal year, branch, separator)
- Compliance checks on rendered numbers
- Prefix, separator, format and layout validation
- Reset epochs and allocation planning
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfoNotFoundError

import pytest

from voucher_kernel.domain.numbering import (
    FormatToken,
    NumberingRules,
    NumberLayout,
    ResetFrequency,
    SeriesState,
    as_utc,
    check_compliance,
    epoch_key,
    format_tokens,
    needs_reset,
    plan_allocation,
    render_number,
    validate_format,
    validate_layout,
    validate_prefix,
    validate_separator,
)
from voucher_kernel.exceptions import (
    ComplianceViolationError,
    InvalidFormatError,
    InvalidPrefixError,
    InvalidSeriesConfigError,
    SequenceExhaustedError,
)

RULES = NumberingRules()
JAN_15 = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


def _at(year, month, day, hour=12):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def _state(
    layout=None,
    current=0,
    start=1,
    end=None,
    frequency=ResetFrequency.NEVER,
    last_reset_at=JAN_15,
):
    return SeriesState(
        series_id="series-1",
        layout=layout or NumberLayout("PREFIX-YEAR-SEQUENCE", "INV"),
        current_sequence=current,
        start_number=start,
        end_number=end,
        reset_frequency=frequency,
        last_reset_at=last_reset_at,
    )


class TestRendering:
    """Token substitution."""

    def test_prefix_year_sequence(self):
        layout = NumberLayout("PREFIX-YEAR-SEQUENCE", "INV")

        assert render_number(layout, 1, JAN_15, RULES) == "INV-2025-0001"

    def test_sequence_wider_than_length_is_not_truncated(self):
        layout = NumberLayout("PREFIX-SEQUENCE", "INV", sequence_length=2)

        assert render_number(layout, 1234, JAN_15, RULES) == "INV-1234"

    def test_short_year_and_month(self):
        layout = NumberLayout("PREFIXYYMMSEQUENCE", "INV")

        assert render_number(layout, 1, JAN_15, RULES) == "INV25010001"

    def test_tokens_recognised_longest_first(self):
        assert format_tokens("PREFIXYEARYYSEQUENCE") == (
            FormatToken.PREFIX,
            FormatToken.YEAR,
            FormatToken.YY,
            FormatToken.SEQUENCE,
        )

    @pytest.mark.parametrize(
        "moment,expected",
        [
            (_at(2025, 1, 15), "INV/2425/0007"),
            (_at(2025, 3, 31), "INV/2425/0007"),
            (_at(2025, 4, 1), "INV/2526/0007"),
            (_at(2099, 12, 31), "INV/9900/0007"),
        ],
    )
    def test_fiscal_year_token(self, moment, expected):
        layout = NumberLayout("PREFIX/FY/SEQUENCE", "INV")

        assert render_number(layout, 7, moment, RULES) == expected

    @pytest.mark.parametrize(
        "branch,expected",
        [("mumbai01", "INV-AI01-0001"), ("7", "INV-0007-0001"), (None, "INV-0000-0001")],
    )
    def test_branch_token(self, branch, expected):
        layout = NumberLayout("PREFIX-BRANCH-SEQUENCE", "INV", branch_code=branch)

        assert render_number(layout, 1, JAN_15, RULES) == expected

    def test_separator_token(self):
        layout = NumberLayout("PREFIXSEPARATORSEQUENCE", "INV", separator="/")

        assert render_number(layout, 1, JAN_15, RULES) == "INV/0001"

    def test_rendered_in_configured_timezone(self):
        try:
            rules = NumberingRules(timezone="Asia/Kolkata")
        except ZoneInfoNotFoundError:
            pytest.skip("time zone database not installed")
        layout = NumberLayout("PREFIX-YEAR-SEQUENCE", "INV")
        new_year_ist = datetime(2024, 12, 31, 20, 0, tzinfo=timezone.utc)

        assert render_number(layout, 1, new_year_ist, rules) == "INV-2025-0001"
        assert render_number(layout, 1, new_year_ist, RULES) == "INV-2024-0001"

    def test_naive_datetimes_are_utc(self):
        assert as_utc(datetime(2025, 1, 15, 10, 0)) == JAN_15


class TestCompliance:
    """Length and character rules."""

    def test_sixteen_characters_allowed(self):
        check_compliance("ABCDEFGHIJ-12345", RULES)

    def test_too_long(self):
        with pytest.raises(ComplianceViolationError, match="exceeds 16"):
            check_compliance("ABCDEFGHIJ-123456", RULES, series_id="s-1")

    def test_disallowed_character(self):
        with pytest.raises(ComplianceViolationError) as exc_info:
            check_compliance("INV#0001", RULES)

        assert exc_info.value.document_number == "INV#0001"

    def test_slash_and_hyphen_allowed(self):
        check_compliance("INV/25-26/0001", RULES)


class TestConfigurationValidation:
    """Prefix, separator, format and layout checks."""

    @pytest.mark.parametrize("prefix", [None, "", "inv", "IN-V", "ABCDEFGHIJK"])
    def test_invalid_prefix(self, prefix):
        with pytest.raises(InvalidPrefixError):
            validate_prefix(prefix, RULES)

    def test_valid_prefix(self):
        assert validate_prefix("SI2025", RULES) == "SI2025"

    @pytest.mark.parametrize("separator", ["---", "#"])
    def test_invalid_separator(self, separator):
        with pytest.raises(InvalidSeriesConfigError) as exc_info:
            validate_separator(separator, RULES)

        assert exc_info.value.field == "separator"

    def test_empty_separator_allowed(self):
        assert validate_separator("", RULES) == ""

    @pytest.mark.parametrize("fmt", ["", "   ", "PREFIX-YEAR", "YEAR-SEQUENCE"])
    def test_format_missing_required_tokens(self, fmt):
        with pytest.raises(InvalidFormatError):
            validate_format(NumberLayout(fmt, "INV"), RULES)

    def test_yearly_reset_needs_year_token(self):
        with pytest.raises(InvalidFormatError, match="reset period"):
            validate_format(NumberLayout("PREFIX-SEQUENCE", "INV"), RULES, ResetFrequency.YEARLY)

    def test_monthly_reset_needs_month_and_year(self):
        with pytest.raises(InvalidFormatError):
            validate_format(
                NumberLayout("PREFIX-MM-SEQUENCE", "INV"), RULES, ResetFrequency.MONTHLY
            )
        validate_format(
            NumberLayout("PREFIXYYMMSEQUENCE", "INV"), RULES, ResetFrequency.MONTHLY
        )

    def test_fiscal_reset_with_calendar_year_needs_january_start(self):
        layout = NumberLayout("PREFIX-YEAR-SEQUENCE", "INV")

        with pytest.raises(InvalidFormatError):
            validate_format(layout, RULES, ResetFrequency.FISCAL_YEAR)
        validate_format(
            layout, NumberingRules(fiscal_year_start_month=1), ResetFrequency.FISCAL_YEAR
        )

    def test_widest_rendering_too_long(self):
        with pytest.raises(InvalidFormatError, match="widest rendering"):
            validate_format(NumberLayout("PREFIX-YEAR-SEQUENCE", "ABCDEFGHIJ"), RULES)

    def test_end_number_widens_sequence(self):
        layout = NumberLayout("PREFIX-SEQUENCE", "INV")

        validate_format(layout, RULES, end_number=10**11)
        with pytest.raises(InvalidFormatError):
            validate_format(layout, RULES, end_number=10**12)

    def test_layout_checks(self):
        layout = NumberLayout("PREFIX-SEQUENCE", "INV")

        with pytest.raises(InvalidSeriesConfigError) as exc_info:
            validate_layout(layout, RULES, ResetFrequency.NEVER, 0, None)
        assert exc_info.value.field == "start_number"

        with pytest.raises(InvalidSeriesConfigError) as exc_info:
            validate_layout(layout, RULES, ResetFrequency.NEVER, 10, 9)
        assert exc_info.value.field == "end_number"

        with pytest.raises(InvalidSeriesConfigError) as exc_info:
            validate_layout(
                NumberLayout("PREFIX-SEQUENCE", "INV", sequence_length=11),
                RULES,
                ResetFrequency.NEVER,
                1,
                None,
            )
        assert exc_info.value.field == "sequence_length"

    def test_reset_frequency_spellings(self):
        assert ResetFrequency.parse("Financial-Year") is ResetFrequency.FISCAL_YEAR
        assert ResetFrequency.parse("fiscal-year") is ResetFrequency.FISCAL_YEAR
        assert ResetFrequency.parse(" YEARLY ") is ResetFrequency.YEARLY
        with pytest.raises(InvalidSeriesConfigError):
            ResetFrequency.parse("weekly")

    def test_rules_reject_bad_calendar(self):
        with pytest.raises(ValueError):
            NumberingRules(fiscal_year_start_month=13)
        with pytest.raises(ValueError):
            NumberingRules(fiscal_year_start_day=29)


class TestResetEpochs:
    """When a series restarts."""

    def test_never_resets(self):
        assert needs_reset(_at(2020, 1, 1), _at(2030, 1, 1), ResetFrequency.NEVER, RULES) is False

    def test_first_allocation_without_reset_stamp(self):
        assert needs_reset(None, JAN_15, ResetFrequency.YEARLY, RULES) is True

    def test_yearly(self):
        assert needs_reset(_at(2024, 12, 31), _at(2025, 1, 1), ResetFrequency.YEARLY, RULES)
        assert not needs_reset(_at(2025, 1, 1), _at(2025, 12, 31), ResetFrequency.YEARLY, RULES)

    def test_monthly(self):
        assert needs_reset(_at(2025, 1, 31), _at(2025, 2, 1), ResetFrequency.MONTHLY, RULES)
        assert not needs_reset(_at(2025, 2, 1), _at(2025, 2, 28), ResetFrequency.MONTHLY, RULES)

    def test_fiscal_year(self):
        assert needs_reset(_at(2025, 3, 31), _at(2025, 4, 1), ResetFrequency.FISCAL_YEAR, RULES)
        assert not needs_reset(
            _at(2025, 1, 1), _at(2025, 3, 31), ResetFrequency.FISCAL_YEAR, RULES
        )

    def test_clock_moving_backwards_does_not_reset(self):
        assert not needs_reset(_at(2025, 6, 1), _at(2024, 6, 1), ResetFrequency.YEARLY, RULES)

    def test_epoch_keys(self):
        moment = _at(2025, 2, 10)

        assert epoch_key(moment, ResetFrequency.MONTHLY, RULES) == (2025, 2)
        assert epoch_key(moment, ResetFrequency.FISCAL_YEAR, RULES) == (2024,)
        assert epoch_key(moment, ResetFrequency.NEVER, RULES) == ()


class TestPlanAllocation:
    """Next sequence and number, without mutation."""

    def test_next_sequence(self):
        plan = plan_allocation(_state(current=5), JAN_15, RULES)

        assert plan.sequence == 6
        assert plan.document_number == "INV-2025-0006"
        assert plan.reset_applied is False

    def test_reset_restarts_from_start_number(self):
        state = _state(
            current=99,
            start=100,
            frequency=ResetFrequency.YEARLY,
            last_reset_at=_at(2024, 6, 1),
        )

        plan = plan_allocation(state, JAN_15, RULES)

        assert plan.sequence == 100
        assert plan.reset_applied is True

    def test_exhausted(self):
        with pytest.raises(SequenceExhaustedError) as exc_info:
            plan_allocation(_state(current=5, end=5), JAN_15, RULES)

        assert exc_info.value.next_sequence == 6
        assert exc_info.value.end_number == 5

    def test_last_number_before_end(self):
        plan = plan_allocation(_state(current=4, end=5), JAN_15, RULES)

        assert plan.sequence == 5

    def test_non_compliant_number(self):
        layout = NumberLayout("PREFIX-YEAR-SEQUENCE", "ABCDEFGHIJ", sequence_length=6)

        with pytest.raises(ComplianceViolationError) as exc_info:
            plan_allocation(_state(layout=layout), JAN_15, RULES)

        assert exc_info.value.series_id == "series-1"

    def test_plan_is_pure(self):
        state = _state(current=5)

        assert plan_allocation(state, JAN_15, RULES) == plan_allocation(state, JAN_15, RULES)
        assert state.current_sequence == 5
