from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    """Half-open cycle window ``[start, end)``."""

    start: date
    end: date

    @property
    def length_days(self) -> int:
        return (self.end - self.start).days

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def parse_anchor_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValueError("Anchor date must be valid (YYYY-MM-DD)") from exc


def validate_cycle_length(cycle_length_days: int) -> int:
    if cycle_length_days < 1:
        raise ValueError("Cycle length must be at least 1 day")
    return cycle_length_days


def resolve_cycle(
    anchor_date: date,
    cycle_length_days: int,
    at: Union[date, datetime],
    offset: int = 0,
) -> Period:
    """Return the cycle containing ``at``, shifted by ``offset`` cycles.

    Points before the anchor resolve to the anchor cycle; negative offsets
    still walk backwards from there.
    """
    validate_cycle_length(cycle_length_days)
    if isinstance(at, datetime):
        at = at.date()
    days_since_anchor = max(0, (at - anchor_date).days)
    period_index = days_since_anchor // cycle_length_days + offset
    start = anchor_date + timedelta(days=period_index * cycle_length_days)
    return Period(start, start + timedelta(days=cycle_length_days))


def shift_cycle(period_start: date, cycle_length_days: int, offset: int) -> Period:
    return resolve_cycle(period_start, cycle_length_days, period_start, offset)


def cycle_window(period_start: date, cycle_length_days: int) -> Period:
    return shift_cycle(period_start, cycle_length_days, 0)


@dataclass(frozen=True)
class CycleSettings:
    cycle_length_days: int
    anchor_date: date

    def __post_init__(self) -> None:
        validate_cycle_length(self.cycle_length_days)

    def resolve(self, at: Union[date, datetime], offset: int = 0) -> Period:
        return resolve_cycle(self.anchor_date, self.cycle_length_days, at, offset)

    def current(self, today: Optional[date] = None) -> Period:
        return self.resolve(today or local_today())

    def window(self, period_start: date) -> Period:
        return cycle_window(period_start, self.cycle_length_days)

    def previous(self, period_start: date) -> Period:
        return shift_cycle(period_start, self.cycle_length_days, -1)

    def is_boundary(self, day: date) -> bool:
        return (day - self.anchor_date).days % self.cycle_length_days == 0


def default_cycle_settings(today: Optional[date] = None) -> CycleSettings:
    today = today or local_today()
    return CycleSettings(
        cycle_length_days=get_settings().default_cycle_length_days,
        anchor_date=today.replace(day=1),
    )
