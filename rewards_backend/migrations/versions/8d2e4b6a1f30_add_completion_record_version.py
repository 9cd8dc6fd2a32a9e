"""add_completion_record_version

Revision ID: 8d2e4b6a1f30
Revises: 3c1f0e7a9b21
Create Date: 2025-11-20 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8d2e4b6a1f30'
down_revision: Union[str, None] = '3c1f0e7a9b21'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Row version for compare-and-swap writes; existing rows start at 1
    op.add_column(
        'survey_completion_records',
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text('1')),
    )


def downgrade() -> None:
    with op.batch_alter_table('survey_completion_records') as batch_op:
        batch_op.drop_column('version')
