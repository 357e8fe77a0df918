from datetime import datetime, timedelta

import pytest

from revtun.metric import Counter, DateCounter


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, days):
        self.now += timedelta(days=days)


def test_counter():
    c = Counter()
    c.inc(10)
    assert c.count == 10

    c.dec(5)
    assert c.count == 5

    tmp = c.snapshot()
    assert tmp.count == 5

    c.clear()
    assert c.count == 0
    assert tmp.count == 5


def test_date_counter():
    dc = DateCounter(3)
    dc.inc(10)
    assert dc.today_count() == 10

    dc.dec(5)
    assert dc.today_count() == 5

    counts = dc.last_days_count(3)
    assert len(counts) == 3
    assert counts == [5, 0, 0]

    tmp = dc.snapshot()
    assert tmp.today_count() == 5


def test_reserve_days_minimum():
    dc = DateCounter(0)
    assert dc.reserve_days == 1
    assert dc.last_days_count(5) == [0]


def test_last_days_count_capped():
    dc = DateCounter(2)
    dc.inc(4)
    assert dc.last_days_count(10) == [4, 0]


def test_last_days_count_negative():
    with pytest.raises(ValueError):
        DateCounter(2).last_days_count(-1)


def test_rotation_shifts_days():
    clock = FakeClock(datetime(2020, 1, 1, 12))
    dc = DateCounter(3, clock)
    dc.inc(10)
    clock.advance(1)
    dc.inc(3)
    assert dc.last_days_count(3) == [3, 10, 0]
    clock.advance(1)
    assert dc.last_days_count(3) == [0, 3, 10]


def test_rotation_past_reserve_resets():
    clock = FakeClock(datetime(2020, 1, 1, 23, 59))
    dc = DateCounter(2, clock)
    dc.inc(7)
    clock.advance(2)
    assert dc.last_days_count(2) == [0, 0]


def test_clear_resets_all_days():
    clock = FakeClock(datetime(2020, 1, 1))
    dc = DateCounter(2, clock)
    dc.inc(1)
    clock.advance(1)
    dc.inc(2)
    dc.clear()
    assert dc.last_days_count(2) == [0, 0]


def test_snapshot_is_independent():
    dc = DateCounter(2)
    dc.inc(3)
    snap = dc.snapshot()
    dc.inc(4)
    assert snap.today_count() == 3
    assert dc.today_count() == 7