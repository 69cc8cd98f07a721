"""
Injectable clock for threshold comparisons.

Services and jobs never call ``date.today()`` directly; they take a
``Clock`` so tests can pin "today".
"""
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from batchtrace.config import settings


class Clock(ABC):
    """Supplies "now" and "today"."""

    @abstractmethod
    def now(self) -> datetime:
        pass

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall clock in the configured business timezone."""

    def __init__(self, tz_name: Optional[str] = None):
        self.tz = ZoneInfo(tz_name or settings.APP_TIMEZONE)

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock(Clock):
    """Clock pinned to a single instant."""

    def __init__(self, instant):
        if isinstance(instant, datetime):
            self._now = instant if instant.tzinfo else instant.replace(tzinfo=timezone.utc)
        else:
            self._now = datetime(instant.year, instant.month, instant.day, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def today(self) -> date:
        return self._now.date()
