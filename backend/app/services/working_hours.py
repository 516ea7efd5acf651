"""Working-hours aware scheduling of hold point notifications."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta

from ..config import settings


@dataclass(frozen=True)
class WorkingHours:
    start: str
    end: str
    days: str

    @property
    def start_time(self) -> time:
        return _parse_hhmm(self.start)

    @property
    def end_time(self) -> time:
        return _parse_hhmm(self.end)

    @property
    def day_numbers(self) -> set[int]:
        """Working days, 0=Sunday .. 6=Saturday."""
        return {int(part) for part in self.days.split(",") if part.strip()}

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end, "days": self.days}


@dataclass(frozen=True)
class NotificationSchedule:
    scheduled_time: datetime
    adjusted: bool
    reason: str


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(hour=int(hours), minute=int(minutes))


def _weekday_sunday_zero(moment: datetime) -> int:
    # datetime.weekday(): Monday=0 .. Sunday=6
    return (moment.weekday() + 1) % 7


def project_working_hours(project) -> WorkingHours:
    """Project working hours, falling back to configured defaults."""
    return WorkingHours(
        start=getattr(project, "working_hours_start", None) or settings.DEFAULT_WORKING_HOURS_START,
        end=getattr(project, "working_hours_end", None) or settings.DEFAULT_WORKING_HOURS_END,
        days=getattr(project, "working_days", None) or settings.DEFAULT_WORKING_DAYS,
    )


def _next_working_day_start(moment: datetime, hours: WorkingHours) -> datetime:
    working_days = hours.day_numbers
    weekday = _weekday_sunday_zero(moment)
    days_to_add = 1
    while (weekday + days_to_add) % 7 not in working_days and days_to_add < 7:
        days_to_add += 1
    target = moment + timedelta(days=days_to_add)
    start = hours.start_time
    return target.replace(hour=start.hour, minute=start.minute, second=0, microsecond=0)


def calculate_notification_time(requested: datetime, hours: WorkingHours) -> NotificationSchedule:
    """
    Move a requested notification time into working hours.

    Non-working day or at/after the end of the day: next working day at the
    start time. Before the start time: same day at the start time.
    """
    start = hours.start_time
    end = hours.end_time
    requested_minutes = requested.hour * 60 + requested.minute
    start_minutes = start.hour * 60 + start.minute
    end_minutes = end.hour * 60 + end.minute

    if _weekday_sunday_zero(requested) not in hours.day_numbers:
        scheduled = _next_working_day_start(requested, hours)
        return NotificationSchedule(
            scheduled_time=scheduled,
            adjusted=True,
            reason=f"Adjusted to next working day ({scheduled:%a %b %d %Y}) at {hours.start}",
        )
    if requested_minutes < start_minutes:
        scheduled = requested.replace(hour=start.hour, minute=start.minute, second=0, microsecond=0)
        return NotificationSchedule(
            scheduled_time=scheduled,
            adjusted=True,
            reason=f"Adjusted to start of working hours ({hours.start})",
        )
    if requested_minutes >= end_minutes:
        scheduled = _next_working_day_start(requested, hours)
        return NotificationSchedule(
            scheduled_time=scheduled,
            adjusted=True,
            reason=(
                f"Scheduled after hours - moved to next working day "
                f"({scheduled:%a %b %d %Y}) at {hours.start}"
            ),
        )
    return NotificationSchedule(
        scheduled_time=requested,
        adjusted=False,
        reason="Within working hours",
    )
