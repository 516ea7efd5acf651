from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

from app.models import HoldPoint, ItpCompletion, Notification, NotificationOutbox
from app.use_cases.alert_scan import scan_quality_alerts_use_case
from session_stubs import SessionStub

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)


def _lot():
    return SimpleNamespace(id=uuid4(), project_id=uuid4(), lot_number="EW-003")


def _stale_hold_point(hours_overdue, *, status="requested"):
    return SimpleNamespace(
        id=uuid4(),
        lot=_lot(),
        description="Subgrade release",
        status=status,
        scheduled_date=NOW - timedelta(hours=hours_overdue),
        scheduled_time=None,
    )


def _pending_completion(hours_waiting):
    return SimpleNamespace(
        id=uuid4(),
        instance=SimpleNamespace(lot=_lot()),
        checklist_item_id=uuid4(),
        verification_status="pending_verification",
        completed_at=NOW - timedelta(hours=hours_waiting),
    )


def test_stale_hold_points_alert_each_manager_with_severity() -> None:
    pm_id, qm_id = uuid4(), uuid4()
    db = SessionStub(
        results={
            HoldPoint: [_stale_hold_point(6), _stale_hold_point(30), _stale_hold_point(72)],
            "ProjectUser.user_id": [(pm_id,), (qm_id,)],
        }
    )

    result = scan_quality_alerts_use_case(db=db, now=NOW)

    assert result.stale_hold_points == 3
    assert [alert["severity"] for alert in result.alerts] == ["medium", "high", "critical"]
    assert result.notifications_created == 6
    assert {n.type for n in db.added_of(Notification)} == {"hold_point_stale"}
    assert len(db.added_of(NotificationOutbox)) == 6
    assert db.commit_calls == 1


def test_managers_already_alerted_are_skipped() -> None:
    db = SessionStub(
        results={
            HoldPoint: [_stale_hold_point(30)],
            "ProjectUser.user_id": [(uuid4(),)],
            Notification: [SimpleNamespace(id=uuid4())],
        }
    )

    result = scan_quality_alerts_use_case(db=db, now=NOW)

    assert result.stale_hold_points == 1
    assert result.notifications_created == 0
    assert result.alerts[0]["notifications_created"] == 0
    assert db.added == []


def test_future_due_time_is_not_stale() -> None:
    hold_point = _stale_hold_point(1)
    hold_point.scheduled_date = NOW.replace(hour=0)
    hold_point.scheduled_time = "18:00"
    db = SessionStub(results={HoldPoint: [hold_point], "ProjectUser.user_id": [(uuid4(),)]})

    result = scan_quality_alerts_use_case(db=db, now=NOW)

    assert result.stale_hold_points == 0
    assert result.alerts == []


def test_overdue_verifications_are_reported() -> None:
    db = SessionStub(
        results={
            ItpCompletion: [_pending_completion(50), _pending_completion(120)],
            "ProjectUser.user_id": [(uuid4(),)],
        }
    )

    result = scan_quality_alerts_use_case(db=db, now=NOW)

    assert result.pending_verifications == 2
    assert [alert["entity_type"] for alert in result.alerts] == ["itp_completion", "itp_completion"]
    assert [alert["severity"] for alert in result.alerts] == ["medium", "critical"]
    assert result.alerts[0]["hours_overdue"] == 2.0
    assert {n.type for n in db.added_of(Notification)} == {"itp_verification_overdue"}


def test_escalated_severity_alerts_again() -> None:
    hold_point = _stale_hold_point(30)

    def earlier_alerts(criteria):
        # Managers were alerted while the hold point was still medium.
        rendered = " ".join(criteria)
        return [SimpleNamespace(id=uuid4())] if str(hold_point.id) in rendered and "(medium)" in rendered else []

    db = SessionStub(
        results={
            HoldPoint: [hold_point],
            "ProjectUser.user_id": [(uuid4(),)],
            Notification: earlier_alerts,
        }
    )

    result = scan_quality_alerts_use_case(db=db, now=NOW)

    assert result.alerts[0]["severity"] == "high"
    assert result.notifications_created == 1
    [notice] = db.added_of(Notification)
    assert notice.title.startswith("Stale hold point (high)")


def test_same_severity_is_not_repeated() -> None:
    hold_point = _stale_hold_point(30)
    db = SessionStub(
        results={
            HoldPoint: [hold_point],
            "ProjectUser.user_id": [(uuid4(),)],
            Notification: lambda criteria: (
                [SimpleNamespace(id=uuid4())] if "(high)" in " ".join(criteria) else []
            ),
        }
    )

    result = scan_quality_alerts_use_case(db=db, now=NOW)

    assert result.notifications_created == 0
    assert db.added == []
