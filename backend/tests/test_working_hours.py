from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace

from app.services.working_hours import WorkingHours, calculate_notification_time, project_working_hours

WEEKDAYS = WorkingHours(start="07:00", end="17:00", days="1,2,3,4,5")


def test_saturday_request_moves_to_monday_start() -> None:
    saturday = datetime(2024, 6, 1, 10, 0)
    assert saturday.weekday() == 5

    schedule = calculate_notification_time(saturday, WEEKDAYS)

    assert schedule.adjusted is True
    assert schedule.scheduled_time == datetime(2024, 6, 3, 7, 0)
    assert "next working day" in schedule.reason


def test_request_before_start_moves_to_same_day_start() -> None:
    schedule = calculate_notification_time(datetime(2024, 6, 4, 5, 45), WEEKDAYS)

    assert schedule.adjusted is True
    assert schedule.scheduled_time == datetime(2024, 6, 4, 7, 0)
    assert schedule.reason == "Adjusted to start of working hours (07:00)"


def test_request_after_end_on_friday_moves_to_monday() -> None:
    friday = datetime(2024, 5, 31, 17, 30)
    assert friday.weekday() == 4

    schedule = calculate_notification_time(friday, WEEKDAYS)

    assert schedule.adjusted is True
    assert schedule.scheduled_time == datetime(2024, 6, 3, 7, 0)
    assert schedule.reason.startswith("Scheduled after hours")


def test_request_at_end_of_day_counts_as_after_hours() -> None:
    schedule = calculate_notification_time(datetime(2024, 6, 4, 17, 0), WEEKDAYS)

    assert schedule.scheduled_time == datetime(2024, 6, 5, 7, 0)


def test_request_within_hours_is_unchanged() -> None:
    requested = datetime(2024, 6, 4, 11, 15)
    schedule = calculate_notification_time(requested, WEEKDAYS)

    assert schedule.adjusted is False
    assert schedule.scheduled_time == requested
    assert schedule.reason == "Within working hours"


def test_sunday_working_day_uses_zero() -> None:
    six_day_week = WorkingHours(start="06:00", end="18:00", days="0,1,2,3,4,5")
    saturday = datetime(2024, 6, 1, 9, 0)

    schedule = calculate_notification_time(saturday, six_day_week)

    assert schedule.scheduled_time == datetime(2024, 6, 2, 6, 0)


def test_project_without_hours_falls_back_to_defaults() -> None:
    hours = project_working_hours(SimpleNamespace(working_hours_start=None, working_hours_end=None, working_days=None))

    assert hours.to_dict() == {"start": "07:00", "end": "17:00", "days": "1,2,3,4,5"}
    assert hours.day_numbers == {1, 2, 3, 4, 5}
