"""Hold point state rules, staleness and release-token checks."""
from __future__ import annotations

import secrets
from datetime import datetime, time, timedelta, timezone
from typing import Any

from ..config import settings
from ..domain_errors import DomainError

AWAITING_RELEASE_STATUSES = frozenset({"requested", "scheduled"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_not_released(hold_point: Any) -> None:
    if hold_point.status == "released":
        raise DomainError(
            code="HOLD_POINT_ALREADY_RELEASED",
            http_status=409,
            message="Hold point has already been released",
        )


def request_status(scheduled_date: datetime | None, *, external_recipients: int) -> str:
    """Status after a release request; without external recipients only site staff are told."""
    if not external_recipients:
        return "notified"
    return "scheduled" if scheduled_date else "requested"


def due_at(hold_point: Any) -> datetime | None:
    """Scheduled date combined with the optional "HH:MM" scheduled time."""
    scheduled = as_utc(hold_point.scheduled_date)
    if scheduled is None:
        return None
    try:
        return combine_date_and_time(scheduled, hold_point.scheduled_time)
    except ValueError:
        return scheduled


def hours_stale(hold_point: Any, now: datetime) -> float | None:
    """Hours past the due time for a hold point awaiting release, else None."""
    if hold_point.status not in AWAITING_RELEASE_STATUSES:
        return None
    due = due_at(hold_point)
    if due is None or due >= now:
        return None
    return (now - due).total_seconds() / 3600


def stale_severity(hours: float) -> str:
    if hours < 24:
        return "medium"
    if hours <= 48:
        return "high"
    return "critical"


def monotonic_after(previous: datetime | None, now: datetime) -> datetime:
    """``now``, or one microsecond past ``previous`` when the clock has not moved on."""
    previous = as_utc(previous)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def generate_release_token() -> str:
    return secrets.token_hex(settings.RELEASE_TOKEN_BYTES)


def release_token_expiry(now: datetime) -> datetime:
    return now + timedelta(hours=settings.RELEASE_TOKEN_EXPIRY_HOURS)


def release_url(token: str) -> str:
    return f"{settings.PUBLIC_APP_BASE_URL.rstrip('/')}/hp-release/{token}"


def assert_token_usable(release_token: Any, now: datetime) -> None:
    """Reject unknown, used or expired tokens (read-time check only)."""
    if release_token is None:
        raise DomainError(
            code="RELEASE_TOKEN_NOT_FOUND",
            http_status=404,
            message="Invalid or unknown release link",
        )
    if release_token.used_at is not None:
        raise DomainError(
            code="RELEASE_TOKEN_USED",
            http_status=410,
            message="This release link has already been used",
            details={"usedAt": as_utc(release_token.used_at).isoformat()},
        )
    if as_utc(release_token.expires_at) <= now:
        raise DomainError(
            code="RELEASE_TOKEN_EXPIRED",
            http_status=410,
            message="This release link has expired",
            details={"expiredAt": as_utc(release_token.expires_at).isoformat()},
        )


def combine_date_and_time(day: datetime, hhmm: str | None) -> datetime:
    if not hhmm:
        return day
    hours, minutes = hhmm.split(":")
    return datetime.combine(day.date(), time(int(hours), int(minutes)), tzinfo=day.tzinfo)
