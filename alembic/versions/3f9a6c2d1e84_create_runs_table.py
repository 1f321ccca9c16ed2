"""Create runs table

Revision ID: 3f9a6c2d1e84
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a6c2d1e84'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_STATUSES = "status IN ('enqueued', 'running', 'pausing', 'paused', 'interrupted', 'cancelling')"


def upgrade() -> None:
    op.create_table(
        'runs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('task_name', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='enqueued'),
        sa.Column('cursor', sa.Text(), nullable=True),
        sa.Column('tick_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tick_total', sa.Integer(), nullable=True),
        sa.Column('error_class', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('backtrace', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('job_id', sa.Text(), nullable=True),
        sa.Column('params', sa.JSON(), nullable=True),
        sa.Column('time_running', sa.Float(), nullable=False, server_default='0'),
        sa.Column('lock_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_runs_task_name_created_at', 'runs', ['task_name', 'created_at'])

    # -- One active run per task (partial indexes: SQLite + Postgres only) --
    dialect = op.get_bind().dialect.name
    if dialect in ('sqlite', 'postgresql'):
        op.create_index(
            'uq_runs_active_task_name', 'runs', ['task_name'], unique=True,
            sqlite_where=sa.text(ACTIVE_STATUSES),
            postgresql_where=sa.text(ACTIVE_STATUSES),
        )


def downgrade() -> None:
    dialect = op.get_bind().dialect.name
    if dialect in ('sqlite', 'postgresql'):
        op.drop_index('uq_runs_active_task_name', 'runs')
    op.drop_index('ix_runs_task_name_created_at', 'runs')
    op.drop_table('runs')
