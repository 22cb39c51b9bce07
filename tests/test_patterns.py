"""Tests for the temporal pattern resolver."""

from datetime import datetime, timezone

import pytest

from courier_scheduler.exceptions import InvalidPatternError, ValidationError
from courier_scheduler.patterns import PatternResolver, next_occurrence, parse_pattern


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestParse:
    def test_normalises_whitespace(self) -> None:
        parsed = parse_pattern("  */5   *  * * * ")
        assert parsed.expression == "*/5 * * * *"
        assert parsed.fields == ("*/5", "*", "*", "*", "*")
        assert parsed.timezone == "UTC"

    @pytest.mark.parametrize(
        "pattern",
        [
            "",
            "   ",
            "* * * *",
            "0 0 * * * *",
            "61 * * * *",
            "* 24 * * *",
            "* * 32 * *",
            "* * * 13 *",
            "not a pattern at all",
        ],
    )
    def test_rejects_invalid(self, pattern: str) -> None:
        with pytest.raises(InvalidPatternError) as exc:
            parse_pattern(pattern)
        assert "pattern" in exc.value.errors

    def test_invalid_pattern_is_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            parse_pattern("0 0 0 0 0 0")

    def test_rejects_unknown_timezone(self) -> None:
        with pytest.raises(InvalidPatternError, match="unknown timezone"):
            parse_pattern("0 9 * * *", "Mars/Olympus_Mons")

    def test_accepts_named_fields(self) -> None:
        parsed = parse_pattern("0 9 * JAN-MAR MON-FRI")
        assert parsed.expression == "0 9 * JAN-MAR MON-FRI"


class TestNextOccurrence:
    def test_daily_after_todays_slot_goes_to_tomorrow(self) -> None:
        parsed = parse_pattern("0 9 * * *")
        assert next_occurrence(parsed, utc(2024, 1, 1, 10, 0)) == utc(2024, 1, 2, 9, 0)

    def test_daily_before_todays_slot(self) -> None:
        parsed = parse_pattern("0 9 * * *")
        assert next_occurrence(parsed, utc(2024, 1, 1, 8, 59)) == utc(2024, 1, 1, 9, 0)

    def test_strictly_after(self) -> None:
        parsed = parse_pattern("0 9 * * *")
        assert next_occurrence(parsed, utc(2024, 1, 1, 9, 0)) == utc(2024, 1, 2, 9, 0)

    def test_step(self) -> None:
        parsed = parse_pattern("*/15 * * * *")
        assert next_occurrence(parsed, utc(2024, 1, 1, 10, 7)) == utc(2024, 1, 1, 10, 15)

    def test_list_and_range(self) -> None:
        parsed = parse_pattern("30 9-17 * * *")
        assert next_occurrence(parsed, utc(2024, 1, 1, 17, 31)) == utc(2024, 1, 2, 9, 30)

    def test_day_of_month_or_day_of_week(self) -> None:
        # 2024-01-02 is a Tuesday; Monday the 8th comes before the 1st of February.
        parsed = parse_pattern("0 0 1 * 1")
        assert next_occurrence(parsed, utc(2024, 1, 2, 0, 0)) == utc(2024, 1, 8, 0, 0)

    def test_result_is_utc(self) -> None:
        parsed = parse_pattern("0 9 * * *", "America/New_York")
        result = next_occurrence(parsed, utc(2024, 1, 1, 0, 0))
        assert result == utc(2024, 1, 1, 14, 0)
        assert result.utcoffset() is not None
        assert result.utcoffset().total_seconds() == 0

    def test_naive_input_treated_as_utc(self) -> None:
        parsed = parse_pattern("0 9 * * *")
        assert next_occurrence(parsed, datetime(2024, 1, 1, 10, 0)) == utc(2024, 1, 2, 9, 0)

    def test_leap_day(self) -> None:
        parsed = parse_pattern("0 0 29 2 *")
        assert next_occurrence(parsed, utc(2024, 3, 1)) == utc(2028, 2, 29)

    def test_impossible_date_raises_invalid_pattern(self) -> None:
        parsed = parse_pattern("0 0 31 2 *")
        with pytest.raises(InvalidPatternError, match="never matches"):
            next_occurrence(parsed, utc(2024, 1, 1))

    def test_resolver_instance_matches_module_helpers(self) -> None:
        resolver = PatternResolver()
        parsed = resolver.parse("0 12 * * *")
        after = utc(2024, 6, 1, 13, 0)
        assert resolver.next_occurrence(parsed, after) == next_occurrence(parsed, after)
