"""Seed database with a demo project, ITP template and lots."""
from app.database import SessionLocal
from app.models import (
    User, Project, ProjectUser, ItpTemplate, ItpChecklistItem, Lot, TestResult
)
import uuid


def seed():
    """Seed database with demo data."""
    db = SessionLocal()

    try:
        project = Project(
            id=uuid.UUID('00000000-0000-0000-0000-000000000001'),
            name="Demo Highway Upgrade",
            project_number="DEMO-001",
            working_hours_start="07:00",
            working_hours_end="17:00",
            working_days="1,2,3,4,5",
            settings={
                "witnessPointNotificationEnabled": True,
                "witnessPointNotificationTrigger": "previous_item",
                "witnessPointClientName": "Client Representative",
                "requireSubcontractorVerification": True,
                "hpRecipients": [{"email": "superintendent@client.example", "name": "Client Superintendent"}],
            },
        )
        db.add(project)
        db.flush()

        users_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000101'),
                'email': 'pm@siteqa.example',
                'full_name': 'Pat Manager',
                'role': 'project_manager',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000102'),
                'email': 'qm@siteqa.example',
                'full_name': 'Quinn Quality',
                'role': 'quality_manager',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000103'),
                'email': 'foreman@siteqa.example',
                'full_name': 'Frankie Foreman',
                'role': 'foreman',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000104'),
                'email': 'subbie@siteqa.example',
                'full_name': 'Sam Subcontractor',
                'role': 'subcontractor',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000105'),
                'email': 'super@siteqa.example',
                'full_name': 'Sandy Superintendent',
                'role': 'superintendent',
            },
        ]

        for user_data in users_data:
            role = user_data.pop('role')
            user = User(is_active=True, **user_data)
            db.add(user)
            db.add(ProjectUser(project_id=project.id, user_id=user.id, role=role, status='active'))

        db.flush()

        template = ItpTemplate(
            id=uuid.UUID('00000000-0000-0000-0000-000000000201'),
            project_id=project.id,
            name="Earthworks - Subgrade Preparation",
            activity_type="earthworks",
        )
        db.add(template)

        items_data = [
            ('Survey set-out checked', 'standard', 'contractor', None, None),
            ('Topsoil stripped and stockpiled', 'standard', 'subcontractor', None, None),
            ('Proof roll witnessed by client', 'witness', 'contractor', None, None),
            ('Compaction testing', 'standard', 'contractor', 'test', 'compaction'),
            ('Subgrade release before pavement', 'hold', 'superintendent', None, None),
        ]
        for index, (description, point_type, party, evidence, test_type) in enumerate(items_data, start=1):
            db.add(
                ItpChecklistItem(
                    template_id=template.id,
                    sequence_number=index,
                    description=description,
                    point_type=point_type,
                    responsible_party=party,
                    evidence_required=evidence,
                    test_type=test_type,
                )
            )

        lots = []
        for number in range(1, 4):
            lot = Lot(
                project_id=project.id,
                lot_number=f"EW-{number:03d}",
                description=f"Subgrade CH{(number - 1) * 200}-{number * 200}",
                activity_type="earthworks",
                chainage_start=(number - 1) * 200,
                chainage_end=number * 200,
                status="not_started",
            )
            db.add(lot)
            lots.append(lot)

        db.flush()

        db.add(
            TestResult(
                project_id=project.id,
                lot_id=lots[0].id,
                test_type="compaction",
                test_request_number="TR-0001",
                laboratory_name="Demo Labs",
                pass_fail="pass",
                status="verified",
            )
        )

        db.commit()
        print("Database seeded successfully!")
        print("\nDemo project members:")
        for user_data in users_data:
            print(f"  {user_data['email']}")

    except Exception as e:
        db.rollback()
        print(f"Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
