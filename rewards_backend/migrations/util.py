"""Utility functions for Alembic migrations."""
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from alembic import op


def get_json_type():
    """Get the appropriate JSON column type for the current database dialect.

    Returns:
        Column type compatible with the current database dialect:
        - PostgreSQL: JSONB
        - SQLite/other: generic JSON
    """
    bind = op.get_bind()
    dialect_name = bind.dialect.name if bind else "postgresql"
    if dialect_name == "postgresql":
        return JSONB(astext_type=sa.Text())
    return sa.JSON()


def get_utc_now_default():
    """Get the server default for UTC timestamps on the current dialect."""
    bind = op.get_bind()
    dialect_name = bind.dialect.name if bind else "postgresql"
    if dialect_name == "postgresql":
        return sa.text("timezone('utc', now())")
    return sa.func.now()
