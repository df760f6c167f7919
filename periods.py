from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError

EPOCH = date(1970, 1, 1)

CANONICAL_PERIODS = ("week", "month", "quarter", "year", "all")

# external vocabulary: every accepted spelling maps onto one canonical token
PERIOD_SYNONYMS = {
    "week": "week",
    "weekly": "week",
    "month": "month",
    "monthly": "month",
    "quarter": "quarter",
    "quarterly": "quarter",
    "year": "year",
    "yearly": "year",
    "annual": "year",
    "all": "all",
}

_MONTHS_BACK = {"month": 1, "quarter": 3, "year": 12}


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


@dataclass(frozen=True)
class DateWindow:
    """Inclusive calendar-date window.

    ``end`` is the last day included, so the window is equivalent to the
    half-open range ``[start, end + 1 day)``. A ``None`` bound means the
    window is unbounded on that side.
    """

    slug: str
    start: Optional[date]
    end: Optional[date]

    @property
    def days(self) -> int:
        if self.start is None or self.end is None:
            return 0
        return (self.end - self.start).days + 1

    def contains(self, value: date) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True

    def previous(self) -> "DateWindow":
        """Window of equal length ending the day before this one starts."""
        if self.start is None or self.end is None:
            return DateWindow("previous", None, None)
        prev_end = self.start - timedelta(days=1)
        prev_start = prev_end - timedelta(days=self.days - 1)
        return DateWindow("previous", prev_start, prev_end)

    def as_dict(self) -> dict[str, Optional[str]]:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


def shift_months(d: date, count: int) -> date:
    """Move ``d`` by ``count`` months, clamping the day to the target month."""
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    day = min(d.day, monthrange(year, month)[1])
    return date(year, month, day)


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    return d.replace(day=monthrange(d.year, d.month)[1])


def normalize_period(period: Optional[str]) -> str:
    if not period:
        return "month"
    return PERIOD_SYNONYMS.get(period.strip().lower(), "month")


def parse_iso_date(value: str, field: str = "date") -> date:
    raw = value.strip()
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}: {value!r}") from exc


def resolve_window(
    period: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> DateWindow:
    today = today or local_today()
    start_override = parse_iso_date(start, "start date") if start else None
    end_override = parse_iso_date(end, "end date") if end else None

    slug = normalize_period(period)
    if slug == "week":
        # weeks start on Sunday
        window_start = today - timedelta(days=(today.weekday() + 1) % 7)
    elif slug == "all":
        window_start = EPOCH
    else:
        window_start = shift_months(today, -_MONTHS_BACK[slug])
    window_end = today

    if start_override and end_override:
        slug = "custom"
    if start_override:
        window_start = start_override
    if end_override:
        window_end = end_override
        if not start_override and window_start > window_end:
            # computed start follows an earlier end; collapse to that day
            window_start = window_end
    if window_start > window_end:
        raise ValidationError("Start date must be before end date")
    return DateWindow(slug, window_start, window_end)


def trailing_months(today: date, months: int) -> DateWindow:
    """Whole calendar months ending with the month containing ``today``."""
    start = shift_months(month_start(today), -(months - 1))
    return DateWindow("custom", start, today)
