import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from errors import ValidationError

_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
_YEAR_RE = re.compile(r"^\d{4}$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_at(self) -> datetime:
        return datetime.combine(self.end, time.max)


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    if month == 12:
        # date(10000, 1, 1) does not exist
        return Period(f"{year:04d}-12", first, date(year, 12, 31))
    next_month = first.replace(month=month + 1)
    return Period(f"{year:04d}-{month:02d}", first, next_month - date.resolution)


def resolve_period(month: Optional[str], year: Optional[str]) -> Optional[Period]:
    if month:
        if not _MONTH_RE.match(month):
            raise ValidationError("Invalid month format. Use YYYY-MM")
        y, m = (int(part) for part in month.split("-"))
        if y < 1 or not 1 <= m <= 12:
            raise ValidationError("Invalid month format. Use YYYY-MM")
        return month_period(y, m)
    if year:
        if not _YEAR_RE.match(year):
            raise ValidationError("Invalid year format. Use YYYY")
        y = int(year)
        if y < 1:
            raise ValidationError("Invalid year format. Use YYYY")
        return Period(year, date(y, 1, 1), date(y, 12, 31))
    return None
