from datetime import datetime, timezone

import pytest

from autoseo.cron import next_fire, parse_cron, previous_fire
from autoseo.errors import ValidationFailed


def _at(day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2026, 3, day, hour, minute, second, tzinfo=timezone.utc)


def test_parse_cron_fields():
    cron = parse_cron("*/15 9-17 * * 1-5")
    assert cron.minutes == frozenset({0, 15, 30, 45})
    assert cron.hours == frozenset(range(9, 18))
    assert cron.weekdays == frozenset({1, 2, 3, 4, 5})


@pytest.mark.parametrize("pattern", ["* * * *", "61 * * * *", "a * * * *", "*/0 * * * *", "5-1 * * * *"])
def test_parse_cron_rejects_invalid(pattern):
    with pytest.raises(ValidationFailed):
        parse_cron(pattern)


def test_previous_fire_daily():
    assert previous_fire("0 9 * * *", _at(10, 8, 30)) == _at(9, 9)
    assert previous_fire("0 9 * * *", _at(10, 9, 0, 45)) == _at(10, 9)


def test_previous_fire_every_five_minutes():
    assert previous_fire("*/5 * * * *", _at(10, 10, 7, 30)) == _at(10, 10, 5)


def test_previous_fire_weekday():
    # 2026-03-09 is a Monday.
    assert previous_fire("0 9 * * 1", _at(11, 12)) == _at(9, 9)


def test_day_fields_match_either_when_both_restricted():
    cron = parse_cron("0 0 1 * 1")
    assert cron.matches(_at(1, 0))
    assert cron.matches(_at(9, 0))
    assert not cron.matches(_at(10, 0))


def test_next_fire():
    assert next_fire("0 9 * * *", _at(10, 9)) == _at(11, 9)
    assert next_fire("30 * * * *", _at(10, 9, 10)) == _at(10, 9, 30)
