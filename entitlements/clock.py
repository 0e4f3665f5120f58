"""Injectable time sources"""

from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


class SystemClock:
    """
    Wall clock of the device.

    Naive local time by default. With an IANA ``tz_name`` the clock returns
    aware datetimes in that zone, so day keys follow its midnight.
    """

    def __init__(self, tz_name: Optional[str] = None):
        self.tz_name = tz_name
        self._tz = ZoneInfo(tz_name) if tz_name else None

    def now(self) -> datetime:
        if self._tz is not None:
            return datetime.now(self._tz)
        return datetime.now()


class FixedClock:
    """
    Clock frozen at a given instant, for deterministic tests and replays.

    Usage:
        clock = FixedClock(datetime(2025, 1, 1, 9, 0))
        clock.advance(days=3)
    """

    def __init__(self, current: Optional[datetime] = None):
        self._current = current or datetime(2025, 1, 1, 12, 0, 0)

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = current

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta expressed as keyword arguments"""
        self._current = self._current + timedelta(**kwargs)
        return self._current


def elapsed_between(start: datetime, end: datetime) -> timedelta:
    """
    Time from ``start`` to ``end``, tolerant of naive/aware mixing.

    Naive values are taken as device-local time. A negative span (clock set
    backwards) is clamped to zero.
    """
    if (start.tzinfo is None) != (end.tzinfo is None):
        start = start.astimezone() if start.tzinfo is None else start
        end = end.astimezone() if end.tzinfo is None else end
    return max(timedelta(0), end - start)


def local_day(now: datetime, tz_name: Optional[str] = None) -> date:
    """
    Calendar day of ``now`` at device-local midnight boundaries.

    Naive datetimes are already local. Aware ones are converted to
    ``tz_name`` (IANA) when given, otherwise to the host zone.
    """
    if now.tzinfo is None:
        return now.date()
    if tz_name:
        return now.astimezone(ZoneInfo(tz_name)).date()
    return now.astimezone().date()
