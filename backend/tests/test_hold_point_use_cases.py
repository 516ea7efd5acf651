from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.domain_errors import DomainError
from app.models import (
    AuditEvent,
    HoldPoint,
    HoldPointReleaseToken,
    ItpCompletion,
    ItpInstance,
    Lot,
    Notification,
    NotificationOutbox,
    ProjectUser,
)
from app.schemas import HoldPointEscalateRequest, HoldPointInternalReleaseRequest, HoldPointReleaseRequest
from app.use_cases.hold_points import (
    chase_hold_point_use_case,
    escalate_hold_point_use_case,
    get_hold_point_detail_use_case,
    release_hold_point_use_case,
    request_release_use_case,
)
from session_stubs import SessionStub

UPDATED_AT = datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc)


def _user(name="Pat Manager"):
    return SimpleNamespace(id=uuid4(), display_name=name)


def _lot_with_itp():
    project = SimpleNamespace(
        id=uuid4(),
        working_hours_start="07:00",
        working_hours_end="17:00",
        working_days="1,2,3,4,5",
        settings={"hpRecipients": [{"email": "super@client.example", "name": "Client Super"}]},
    )
    lot = SimpleNamespace(id=uuid4(), project_id=project.id, project=project, lot_number="EW-001")
    standard_id, test_id, hold_id = str(uuid4()), str(uuid4()), str(uuid4())
    instance = SimpleNamespace(
        id=uuid4(),
        lot=lot,
        template=None,
        template_snapshot={
            "checklistItems": [
                {"id": standard_id, "description": "Set out", "sequenceNumber": 1, "pointType": "standard"},
                {"id": test_id, "description": "Compaction", "sequenceNumber": 2, "evidenceRequired": "test"},
                {"id": hold_id, "description": "Subgrade release", "sequenceNumber": 3, "pointType": "hold_point"},
            ]
        },
    )
    return lot, instance, (standard_id, test_id, hold_id)


def _completion(item_id, status="completed"):
    return SimpleNamespace(checklist_item_id=item_id, status=status, verification_status="none")


def _hold_point(lot, item_id, *, status="requested", chase_count=0):
    return SimpleNamespace(
        id=uuid4(),
        lot=lot,
        lot_id=lot.id,
        checklist_item_id=item_id,
        description="Subgrade release",
        status=status,
        chase_count=chase_count,
        last_chased_at=None,
        updated_at=UPDATED_AT,
        is_escalated=False,
        escalation_reason=None,
    )


def test_detail_lists_preceding_items_and_blocks_request_until_complete() -> None:
    lot, instance, (standard_id, test_id, hold_id) = _lot_with_itp()
    db = SessionStub(
        results={
            Lot: [lot],
            ProjectUser: [SimpleNamespace(role="foreman")],
            ItpInstance: [instance],
            ItpCompletion: [_completion(standard_id), _completion(test_id, "not_applicable")],
        }
    )

    detail = get_hold_point_detail_use_case(db=db, lot_id=lot.id, item_id=hold_id, current_user=_user())

    assert [entry["sequence_number"] for entry in detail.preceding_items] == [1, 2]
    assert [entry["id"] for entry in detail.incomplete_items] == [test_id]
    assert detail.can_request_release is False
    assert detail.hold_point is None
    assert detail.status == "pending"
    assert detail.working_hours.start == "07:00"


def test_detail_rejects_items_that_are_not_hold_or_witness_points() -> None:
    lot, instance, (standard_id, _, _) = _lot_with_itp()
    db = SessionStub(results={Lot: [lot], ProjectUser: [SimpleNamespace(role="foreman")], ItpInstance: [instance]})

    with pytest.raises(DomainError) as exc:
        get_hold_point_detail_use_case(db=db, lot_id=lot.id, item_id=standard_id, current_user=_user())

    assert exc.value.code == "HOLD_POINT_ITEM_INVALID"
    assert exc.value.http_status == 400


def test_release_request_with_incomplete_predecessors_is_refused() -> None:
    lot, instance, (standard_id, _, hold_id) = _lot_with_itp()
    db = SessionStub(
        results={
            Lot: [lot],
            ProjectUser: [SimpleNamespace(role="project_manager")],
            ItpInstance: [instance],
            ItpCompletion: [_completion(standard_id)],
        }
    )

    with pytest.raises(DomainError) as exc:
        request_release_use_case(
            db=db,
            data=HoldPointReleaseRequest(lot_id=lot.id, checklist_item_id=hold_id),
            current_user=_user(),
        )

    assert exc.value.http_status == 400
    assert exc.value.code == "HOLD_POINT_PREREQUISITES_INCOMPLETE"
    assert [entry["description"] for entry in exc.value.details["incomplete_items"]] == ["Compaction"]
    assert db.added == []


def test_release_request_issues_one_token_per_recipient() -> None:
    lot, instance, (standard_id, test_id, hold_id) = _lot_with_itp()
    super_id = uuid4()
    db = SessionStub(
        results={
            Lot: [lot],
            ProjectUser: [SimpleNamespace(role="project_manager")],
            "ProjectUser.user_id": [(super_id,)],
            ItpInstance: [instance],
            ItpCompletion: [_completion(standard_id), _completion(test_id)],
        }
    )
    requester = _user()

    result = request_release_use_case(
        db=db,
        data=HoldPointReleaseRequest(
            lot_id=lot.id,
            checklist_item_id=hold_id,
            recipients=[
                {"email": "a@client.example", "name": "A"},
                {"email": "b@client.example"},
            ],
        ),
        current_user=requester,
    )

    hold_point = db.added_of(HoldPoint)[0]
    assert result.hold_point is hold_point
    assert hold_point.status == "requested"
    assert hold_point.requested_by_id == requester.id
    assert hold_point.notification_sent_to == "a@client.example, b@client.example"

    tokens = db.added_of(HoldPointReleaseToken)
    assert [token.recipient_email for token in tokens] == ["a@client.example", "b@client.example"]
    assert len({token.token for token in tokens}) == 2
    assert all(len(token.token) == 64 for token in tokens)
    assert [link.release_url.rsplit("/", 1)[1] for link in result.release_links] == [t.token for t in tokens]

    external = [row for row in db.added_of(NotificationOutbox) if row.recipient_email]
    assert len(external) == 2
    assert [n.user_id for n in db.added_of(Notification)] == [super_id]
    assert db.added_of(AuditEvent)[0].action == "hold_point_release_requested"
    assert result.advisories[0].ok is True


def test_release_request_uses_project_recipients_and_schedules() -> None:
    lot, instance, (standard_id, test_id, hold_id) = _lot_with_itp()
    db = SessionStub(
        results={
            Lot: [lot],
            ProjectUser: [SimpleNamespace(role="site_engineer")],
            ItpInstance: [instance],
            ItpCompletion: [_completion(standard_id), _completion(test_id)],
        }
    )

    result = request_release_use_case(
        db=db,
        data=HoldPointReleaseRequest(
            lot_id=lot.id,
            checklist_item_id=hold_id,
            scheduled_date=datetime(2024, 6, 1, tzinfo=timezone.utc),
            scheduled_time="10:00",
        ),
        current_user=_user(),
    )

    assert result.hold_point.status == "scheduled"
    assert [link.recipient_email for link in result.release_links] == ["super@client.example"]
    assert result.schedule.adjusted is True
    assert result.schedule.scheduled_time == datetime(2024, 6, 3, 7, 0, tzinfo=timezone.utc)


def test_release_request_without_external_recipients_only_notifies_site_staff() -> None:
    lot, instance, (standard_id, test_id, hold_id) = _lot_with_itp()
    lot.project.settings = {}
    super_id = uuid4()
    db = SessionStub(
        results={
            Lot: [lot],
            ProjectUser: [SimpleNamespace(role="project_manager")],
            "ProjectUser.user_id": [(super_id,)],
            ItpInstance: [instance],
            ItpCompletion: [_completion(standard_id), _completion(test_id)],
        }
    )

    result = request_release_use_case(
        db=db,
        data=HoldPointReleaseRequest(
            lot_id=lot.id,
            checklist_item_id=hold_id,
            scheduled_date=datetime(2024, 6, 4, tzinfo=timezone.utc),
        ),
        current_user=_user(),
    )

    assert result.hold_point.status == "notified"
    assert result.release_links == []
    assert db.added_of(HoldPointReleaseToken) == []
    assert [n.user_id for n in db.added_of(Notification)] == [super_id]


def test_release_request_on_released_hold_point_conflicts() -> None:
    lot, instance, (standard_id, test_id, hold_id) = _lot_with_itp()
    db = SessionStub(
        results={
            Lot: [lot],
            ProjectUser: [SimpleNamespace(role="project_manager")],
            ItpInstance: [instance],
            ItpCompletion: [_completion(standard_id), _completion(test_id)],
            HoldPoint: [_hold_point(lot, hold_id, status="released")],
        }
    )

    with pytest.raises(DomainError) as exc:
        request_release_use_case(
            db=db,
            data=HoldPointReleaseRequest(lot_id=lot.id, checklist_item_id=hold_id),
            current_user=_user(),
        )

    assert exc.value.code == "HOLD_POINT_ALREADY_RELEASED"
    assert exc.value.http_status == 409


def test_subcontractor_cannot_request_release() -> None:
    lot, _, (_, _, hold_id) = _lot_with_itp()
    db = SessionStub(results={Lot: [lot], ProjectUser: [SimpleNamespace(role="subcontractor")]})

    with pytest.raises(DomainError) as exc:
        request_release_use_case(
            db=db,
            data=HoldPointReleaseRequest(lot_id=lot.id, checklist_item_id=hold_id),
            current_user=_user(),
        )

    assert exc.value.code == "PERMISSION_DENIED"


def test_chasing_twice_counts_twice_with_increasing_timestamps() -> None:
    lot, _, (_, _, hold_id) = _lot_with_itp()
    hold_point = _hold_point(lot, hold_id)
    db = SessionStub(results={HoldPoint: [hold_point], ProjectUser: [SimpleNamespace(role="foreman")]})

    chase_hold_point_use_case(db=db, hold_point_id=hold_point.id, current_user=_user())
    first_chased_at = hold_point.last_chased_at
    chase_hold_point_use_case(db=db, hold_point_id=hold_point.id, current_user=_user())

    assert hold_point.chase_count == 2
    assert hold_point.last_chased_at > first_chased_at
    assert hold_point.updated_at > UPDATED_AT
    assert [event.details["chaseCount"] for event in db.added_of(AuditEvent)] == [1, 2]
    assert db.refreshed == [hold_point, hold_point]


def test_chase_queues_reminders_for_open_tokens() -> None:
    lot, _, (_, _, hold_id) = _lot_with_itp()
    hold_point = _hold_point(lot, hold_id, chase_count=1)
    token = SimpleNamespace(id=uuid4(), recipient_email="super@client.example", token="ab" * 32)
    db = SessionStub(
        results={
            HoldPoint: [hold_point],
            ProjectUser: [SimpleNamespace(role="project_manager")],
            HoldPointReleaseToken: [token],
        }
    )

    chase_hold_point_use_case(db=db, hold_point_id=hold_point.id, current_user=_user())

    reminder = db.added_of(NotificationOutbox)[0]
    assert reminder.recipient_email == "super@client.example"
    assert reminder.idempotency_key == f"hold_point_chase:{hold_point.id}:2:{token.id}"


def test_stale_chase_is_a_conflict() -> None:
    lot, _, (_, _, hold_id) = _lot_with_itp()
    hold_point = _hold_point(lot, hold_id)
    db = SessionStub(
        results={HoldPoint: [hold_point], ProjectUser: [SimpleNamespace(role="foreman")]},
        update_rowcounts={HoldPoint: 0},
    )

    with pytest.raises(DomainError) as exc:
        chase_hold_point_use_case(
            db=db,
            hold_point_id=hold_point.id,
            current_user=_user(),
            expected_updated_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
        )

    assert exc.value.code == "HOLD_POINT_CONCURRENT_MODIFICATION"
    assert hold_point.chase_count == 0
    assert db.commit_calls == 0


def test_released_hold_point_cannot_be_chased_or_escalated() -> None:
    lot, _, (_, _, hold_id) = _lot_with_itp()
    hold_point = _hold_point(lot, hold_id, status="released")
    db = SessionStub(results={HoldPoint: [hold_point], ProjectUser: [SimpleNamespace(role="project_manager")]})

    with pytest.raises(DomainError) as chase_exc:
        chase_hold_point_use_case(db=db, hold_point_id=hold_point.id, current_user=_user())
    with pytest.raises(DomainError) as escalate_exc:
        escalate_hold_point_use_case(
            db=db,
            hold_point_id=hold_point.id,
            data=HoldPointEscalateRequest(reason="No response"),
            current_user=_user(),
        )

    assert chase_exc.value.code == "HOLD_POINT_ALREADY_RELEASED"
    assert escalate_exc.value.code == "HOLD_POINT_ALREADY_RELEASED"


def test_escalation_records_reason_and_notifies_managers() -> None:
    lot, _, (_, _, hold_id) = _lot_with_itp()
    hold_point = _hold_point(lot, hold_id)
    qm_id = uuid4()
    db = SessionStub(
        results={
            HoldPoint: [hold_point],
            ProjectUser: [SimpleNamespace(role="site_engineer")],
            "ProjectUser.user_id": [(qm_id,)],
        }
    )
    actor = _user("Sid Engineer")

    escalate_hold_point_use_case(
        db=db,
        hold_point_id=hold_point.id,
        data=HoldPointEscalateRequest(reason="Inspector unreachable", escalated_to="Client PM"),
        current_user=actor,
    )

    assert hold_point.is_escalated is True
    assert hold_point.escalated_by_id == actor.id
    assert hold_point.escalation_reason == "Inspector unreachable"
    notification = db.added_of(Notification)[0]
    assert notification.user_id == qm_id
    assert "Inspector unreachable" in notification.message


def test_internal_release_marks_hold_point_and_completion() -> None:
    lot, instance, (_, _, hold_id) = _lot_with_itp()
    hold_point = _hold_point(lot, hold_id)
    completion = _completion(hold_id)
    db = SessionStub(
        results={
            HoldPoint: [hold_point],
            ProjectUser: [SimpleNamespace(role="superintendent")],
            ItpInstance: [instance],
            ItpCompletion: [completion],
        }
    )
    releaser = _user("Sandy Superintendent")

    release_hold_point_use_case(
        db=db,
        hold_point_id=hold_point.id,
        data=HoldPointInternalReleaseRequest(release_notes="Inspected"),
        current_user=releaser,
    )

    assert hold_point.status == "released"
    assert hold_point.release_method == "internal"
    assert hold_point.released_by_name == "Sandy Superintendent"
    assert completion.verification_status == "verified"
    assert completion.verified_by_id == releaser.id

    with pytest.raises(DomainError) as exc:
        release_hold_point_use_case(
            db=db,
            hold_point_id=hold_point.id,
            data=HoldPointInternalReleaseRequest(),
            current_user=releaser,
        )
    assert exc.value.http_status == 409
