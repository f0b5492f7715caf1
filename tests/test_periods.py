from datetime import date, datetime

import pytest

from errors import ValidationError
from periods import month_period, resolve_period


def test_month_period_covers_whole_month() -> None:
    feb = month_period(2024, 2)
    assert feb.slug == "2024-02"
    assert feb.start == date(2024, 2, 1)
    assert feb.end == date(2024, 2, 29)
    assert feb.end_at.date() == date(2024, 2, 29)
    assert feb.start_at == datetime(2024, 2, 1)


def test_december_rolls_into_next_year() -> None:
    assert month_period(2025, 12).end == date(2025, 12, 31)


def test_last_representable_month_resolves() -> None:
    period = resolve_period("9999-12", None)
    assert period.slug == "9999-12"
    assert period.start == date(9999, 12, 1)
    assert period.end == date(9999, 12, 31)


def test_resolve_period_prefers_month_over_year() -> None:
    period = resolve_period("2025-03", "2024")
    assert period.start == date(2025, 3, 1)
    assert period.end == date(2025, 3, 31)


def test_resolve_year() -> None:
    period = resolve_period(None, "2024")
    assert period.start == date(2024, 1, 1)
    assert period.end == date(2024, 12, 31)


def test_no_filter_without_month_or_year() -> None:
    assert resolve_period(None, None) is None


@pytest.mark.parametrize("month", ["2025-13", "2025-1", "March", "2025-00"])
def test_invalid_month_format(month) -> None:
    with pytest.raises(ValidationError, match="Invalid month format"):
        resolve_period(month, None)


@pytest.mark.parametrize("year", ["25", "20x5", "0000"])
def test_invalid_year_format(year) -> None:
    with pytest.raises(ValidationError, match="Invalid year format"):
        resolve_period(None, year)
