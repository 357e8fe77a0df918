"""Thread-safe counters, including one that keeps per-day totals."""

from __future__ import annotations

import threading
from datetime import date, datetime
from typing import Callable


class Counter:
    """A simple thread-safe integer counter."""

    def __init__(self, count: int = 0) -> None:
        self._count = count
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def inc(self, count: int) -> None:
        with self._lock:
            self._count += count

    def dec(self, count: int) -> None:
        with self._lock:
            self._count -= count

    def snapshot(self) -> "Counter":
        return Counter(self.count)

    def clear(self) -> None:
        with self._lock:
            self._count = 0


class DateCounter:
    """Counter that keeps one total per day for the last ``reserve_days`` days.

    Index 0 is today, index 1 yesterday and so on.
    """

    def __init__(
        self,
        reserve_days: int = 1,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if reserve_days <= 0:
            reserve_days = 1
        self.reserve_days = reserve_days
        self._clock = clock or datetime.now
        self._counts = [0] * reserve_days
        self._last_update: date = self._today()
        self._lock = threading.Lock()

    def _today(self) -> date:
        return self._clock().date()

    def _rotate(self) -> None:
        today = self._today()
        days = (today - self._last_update).days
        self._last_update = today
        if days <= 0:
            return
        if days >= self.reserve_days:
            self._counts = [0] * self.reserve_days
            return
        self._counts = [0] * days + self._counts[: self.reserve_days - days]

    def today_count(self) -> int:
        with self._lock:
            self._rotate()
            return self._counts[0]

    def last_days_count(self, last_days: int) -> list[int]:
        """Totals for the most recent days, today first."""
        if last_days < 0:
            raise ValueError(f"last_days must not be negative: {last_days}")
        last_days = min(last_days, self.reserve_days)
        with self._lock:
            self._rotate()
            return self._counts[:last_days]

    def inc(self, count: int) -> None:
        with self._lock:
            self._rotate()
            self._counts[0] += count

    def dec(self, count: int) -> None:
        with self._lock:
            self._rotate()
            self._counts[0] -= count

    def snapshot(self) -> "DateCounter":
        with self._lock:
            copy = DateCounter(self.reserve_days, self._clock)
            copy._counts = list(self._counts)
            return copy

    def clear(self) -> None:
        with self._lock:
            self._counts = [0] * self.reserve_days