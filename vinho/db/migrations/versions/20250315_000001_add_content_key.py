"""Add content key to queue jobs.

Revision ID: 0002
Revises: 0001
Create Date: 2025-03-15

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("wine_queue_jobs") as batch_op:
        batch_op.add_column(sa.Column("content_key", sa.String(64), nullable=True))
        batch_op.create_index("ix_wine_queue_jobs_content_key", ["content_key"])


def downgrade() -> None:
    with op.batch_alter_table("wine_queue_jobs") as batch_op:
        batch_op.drop_index("ix_wine_queue_jobs_content_key")
        batch_op.drop_column("content_key")
