"""quality workflow schema (projects, ITPs, hold points, conformance)

Revision ID: 001_quality_workflow_schema
Revises:
Create Date: 2026-10-18
"""

from alembic import op

from app.database import Base
from app import models  # noqa: F401  (registers tables on Base.metadata)


# revision identifiers, used by Alembic.
revision = "001_quality_workflow_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Tables, CHECK constraints and partial indexes come straight from the models.
    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
