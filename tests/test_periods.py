from datetime import date, datetime

import pytest

from periods import (
    CycleSettings,
    Period,
    default_cycle_settings,
    parse_anchor_date,
    resolve_cycle,
    shift_cycle,
)


def test_resolve_cycle_contains_day() -> None:
    period = resolve_cycle(date(2025, 1, 1), 14, date(2025, 1, 20))
    assert period == Period(date(2025, 1, 15), date(2025, 1, 29))
    assert period.length_days == 14
    assert period.contains(date(2025, 1, 20))
    assert not period.contains(date(2025, 1, 29))


def test_resolve_cycle_offsets_walk_whole_cycles() -> None:
    anchor = date(2025, 1, 1)
    previous = resolve_cycle(anchor, 30, date(2025, 3, 10), offset=-1)
    following = resolve_cycle(anchor, 30, date(2025, 3, 10), offset=1)
    assert previous == Period(date(2025, 1, 31), date(2025, 3, 2))
    assert following == Period(date(2025, 4, 1), date(2025, 5, 1))


def test_resolve_cycle_before_anchor_clamps_to_anchor_cycle() -> None:
    period = resolve_cycle(date(2025, 6, 1), 7, date(2025, 5, 1))
    assert period.start == date(2025, 6, 1)


def test_resolve_cycle_accepts_datetime() -> None:
    period = resolve_cycle(date(2025, 1, 1), 10, datetime(2025, 1, 11, 23, 59))
    assert period.start == date(2025, 1, 11)


def test_resolve_cycle_rejects_zero_length() -> None:
    with pytest.raises(ValueError, match="at least 1 day"):
        resolve_cycle(date(2025, 1, 1), 0, date(2025, 1, 5))


def test_shift_cycle_before_anchor_is_not_clamped() -> None:
    assert shift_cycle(date(2025, 1, 1), 30, -1).start == date(2024, 12, 2)


def test_parse_anchor_date() -> None:
    assert parse_anchor_date("2025-02-03") == date(2025, 2, 3)
    assert parse_anchor_date("2025-02-03T10:00:00") == date(2025, 2, 3)
    with pytest.raises(ValueError, match="Anchor date must be valid"):
        parse_anchor_date("03.02.2025")


def test_cycle_settings_helpers() -> None:
    settings = CycleSettings(cycle_length_days=30, anchor_date=date(2025, 1, 1))
    assert settings.current(date(2025, 4, 10)).start == date(2025, 4, 1)
    assert settings.window(date(2025, 1, 31)).end == date(2025, 3, 2)
    assert settings.previous(date(2025, 1, 31)).start == date(2025, 1, 1)
    assert settings.is_boundary(date(2025, 3, 2))
    assert not settings.is_boundary(date(2025, 3, 3))


def test_default_cycle_settings_anchor_first_of_month() -> None:
    settings = default_cycle_settings(date(2025, 7, 19))
    assert settings.anchor_date == date(2025, 7, 1)
    assert settings.cycle_length_days == 30
