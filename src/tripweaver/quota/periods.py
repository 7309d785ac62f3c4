"""UTC accounting windows for usage quotas."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from tripweaver.models import PeriodType


@dataclass(frozen=True)
class PeriodWindow:
    """A half-open [start, end) accounting window."""

    period_type: PeriodType
    start: datetime
    end: datetime

    @property
    def key(self) -> str:
        """Counter key component identifying the window."""
        return self.start.date().isoformat()

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def current_window(period_type: PeriodType, now: datetime | None = None) -> PeriodWindow:
    """
    Compute the window containing ``now``.

    Daily windows follow the UTC day, weekly windows start on
    Monday 00:00 UTC and monthly windows follow the calendar month.

    Args:
        period_type: Window granularity
        now: Reference time (defaults to the current UTC time)

    Returns:
        PeriodWindow covering ``now``
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    today = now.date()

    if period_type == PeriodType.DAILY:
        start = today
        end = today + timedelta(days=1)
    elif period_type == PeriodType.WEEKLY:
        start = today - timedelta(days=today.weekday())
        end = start + timedelta(days=7)
    elif period_type == PeriodType.MONTHLY:
        start = today.replace(day=1)
        if start.month == 12:
            end = date(start.year + 1, 1, 1)
        else:
            end = date(start.year, start.month + 1, 1)
    else:
        raise ValueError(f"Unknown period type: {period_type}")

    return PeriodWindow(
        period_type=period_type,
        start=_midnight(start),
        end=_midnight(end),
    )


def _midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
