from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

from app.models import ItpCompletion, Notification
from app.services.witness_points import check_and_notify_witness_point
from session_stubs import SessionStub


def _instance(settings=None):
    project = SimpleNamespace(id=uuid4(), settings=settings or {})
    lot = SimpleNamespace(id=uuid4(), project=project, lot_number="EW-004")
    ids = [str(uuid4()) for _ in range(3)]
    instance = SimpleNamespace(
        id=uuid4(),
        lot=lot,
        template=None,
        template_snapshot={
            "checklistItems": [
                {"id": ids[0], "description": "Set out", "sequenceNumber": 1},
                {"id": ids[1], "description": "Trim subgrade", "sequenceNumber": 2},
                {"id": ids[2], "description": "Proof roll", "sequenceNumber": 3, "pointType": "witness_point"},
            ]
        },
    )
    return instance, ids


def _actor():
    return SimpleNamespace(id=uuid4(), display_name="Frankie Foreman")


def test_previous_item_trigger_notifies_before_the_witness_point() -> None:
    instance, ids = _instance({"witnessPointClientEmail": "client@example.com"})
    pm_id, super_id = uuid4(), uuid4()
    db = SessionStub(results={"ProjectUser.user_id": [(pm_id,), (super_id,), (pm_id,)]})

    summary = check_and_notify_witness_point(db, instance=instance, completed_item_id=ids[1], actor=_actor())

    assert summary["witness_point"]["id"] == ids[2]
    assert summary["notifications_sent"] == 2
    assert summary["client_email"] == "client@example.com"
    assert summary["client_name"] == "Client Representative"
    notifications = db.added_of(Notification)
    assert {n.user_id for n in notifications} == {pm_id, super_id}
    assert all(ids[2] in n.link_url for n in notifications)


def test_non_adjacent_item_does_not_notify() -> None:
    instance, ids = _instance()
    db = SessionStub(results={"ProjectUser.user_id": [(uuid4(),)]})

    assert check_and_notify_witness_point(db, instance=instance, completed_item_id=ids[0], actor=_actor()) is None
    assert db.added == []


def test_two_items_before_trigger() -> None:
    instance, ids = _instance({"witnessPointNotificationTrigger": "2_items_before"})
    db = SessionStub(results={"ProjectUser.user_id": [(uuid4(),)]})

    summary = check_and_notify_witness_point(db, instance=instance, completed_item_id=ids[0], actor=_actor())

    assert summary["witness_point"]["sequence_number"] == 3


def test_disabled_notifications_send_nothing() -> None:
    instance, ids = _instance({"witnessPointNotificationEnabled": False})
    db = SessionStub(results={"ProjectUser.user_id": [(uuid4(),)]})

    assert check_and_notify_witness_point(db, instance=instance, completed_item_id=ids[1], actor=_actor()) is None


def test_existing_notification_or_finished_witness_point_is_not_repeated() -> None:
    instance, ids = _instance()
    notified = SessionStub(
        results={"ProjectUser.user_id": [(uuid4(),)], Notification: [SimpleNamespace(id=uuid4())]}
    )
    finished = SessionStub(
        results={
            "ProjectUser.user_id": [(uuid4(),)],
            ItpCompletion: [SimpleNamespace(checklist_item_id=ids[2], status="completed")],
        }
    )

    assert check_and_notify_witness_point(notified, instance=instance, completed_item_id=ids[1], actor=_actor()) is None
    assert check_and_notify_witness_point(finished, instance=instance, completed_item_id=ids[1], actor=_actor()) is None
    assert notified.added == [] and finished.added == []


def test_lookahead_follows_checklist_order_not_sequence_arithmetic() -> None:
    instance, ids = _instance()
    for item, sequence in zip(instance.template_snapshot["checklistItems"], (10, 20, 30)):
        item["sequenceNumber"] = sequence
    db = SessionStub(results={"ProjectUser.user_id": [(uuid4(),)]})

    summary = check_and_notify_witness_point(db, instance=instance, completed_item_id=ids[1], actor=_actor())

    assert summary["witness_point"]["id"] == ids[2]
    assert summary["witness_point"]["sequence_number"] == 30
    assert check_and_notify_witness_point(db, instance=instance, completed_item_id=ids[2], actor=_actor()) is None


def test_lots_sharing_a_template_are_notified_independently() -> None:
    instance_a, ids = _instance()
    project = instance_a.lot.project
    lot_b = SimpleNamespace(id=uuid4(), project=project, lot_number="EW-005")
    instance_b = SimpleNamespace(
        id=uuid4(), lot=lot_b, template=None, template_snapshot=instance_a.template_snapshot
    )
    lot_a_id = str(instance_a.lot.id)

    def notifications(criteria):
        # Lot A already carries a notice for the shared witness item.
        rendered = " ".join(criteria)
        return [SimpleNamespace(id=uuid4())] if lot_a_id in rendered and ids[2] in rendered else []

    db = SessionStub(results={"ProjectUser.user_id": [(uuid4(),)], Notification: notifications})

    assert check_and_notify_witness_point(db, instance=instance_a, completed_item_id=ids[1], actor=_actor()) is None
    summary = check_and_notify_witness_point(db, instance=instance_b, completed_item_id=ids[1], actor=_actor())

    assert summary["notifications_sent"] == 1
    [notice] = db.added_of(Notification)
    assert f"/lots/{lot_b.id}?" in notice.link_url
