"""create survey completion records table

Revision ID: 3c1f0e7a9b21
Revises:
Create Date: 2025-11-12 10:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from rewards_backend.migrations.util import get_json_type, get_utc_now_default


# revision identifiers, used by Alembic.
revision: str = '3c1f0e7a9b21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create survey_completion_records keyed by namespaced identity."""

    op.create_table(
        'survey_completion_records',
        sa.Column('storage_key', sa.String(length=128), nullable=False),
        sa.Column('survey_ids', get_json_type(), nullable=False),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=get_utc_now_default(),
        ),
        sa.PrimaryKeyConstraint('storage_key'),
    )


def downgrade() -> None:
    """Drop survey_completion_records."""

    op.drop_table('survey_completion_records')
