"""Financial year helpers (March to February)."""

import calendar
from datetime import date, datetime
from typing import Optional, Union

from finsync.models.sync import DateRange

FINANCIAL_YEAR_START_MONTH = 3


def get_financial_year(when: Optional[Union[date, datetime]] = None) -> str:
    """
    Return the financial year containing ``when`` as ``"YYYY-YYYY"``.

    Example: 2026-02-10 -> "2025-2026", 2026-03-01 -> "2026-2027".
    """
    when = when or date.today()
    if when.month >= FINANCIAL_YEAR_START_MONTH:
        return f"{when.year}-{when.year + 1}"
    return f"{when.year - 1}-{when.year}"


def financial_year_dates(financial_year: str) -> DateRange:
    """Return 1 March to the last day of February for ``"YYYY-YYYY"``."""
    try:
        start_year = int(financial_year.split("-")[0])
    except ValueError as e:
        raise ValueError(f"Invalid financial year: {financial_year!r}") from e

    end_year = start_year + 1
    last_day = calendar.monthrange(end_year, 2)[1]
    return DateRange(
        start=date(start_year, FINANCIAL_YEAR_START_MONTH, 1),
        end=date(end_year, 2, last_day),
    )
