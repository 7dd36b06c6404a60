"""Add report_tasks outbox table

Revision ID: 002_report_tasks
Revises: 001_initial
Create Date: 2024-12-09

Background upgrades are recorded as outbox rows in the same transaction as
the partial report, so a crash between the request and the worker can no
longer drop the upgrade:
- status: pending -> dispatched -> running -> done/failed
- attempts / last_error: retry bookkeeping
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_report_tasks'
down_revision = '001_initial'
branch_labels = None
depends_on = None


TASK_STATUS = sa.Enum('pending', 'dispatched', 'running', 'done', 'failed', name='taskstatus')


def upgrade() -> None:
    op.create_table(
        'report_tasks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('report_id', sa.Integer(), sa.ForeignKey('reports.id'), nullable=False),
        sa.Column('kind', sa.String(50), nullable=False, server_default='upgrade'),
        sa.Column('status', TASK_STATUS, nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('dispatched_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_report_tasks_id', 'report_tasks', ['id'])
    op.create_index('ix_report_tasks_report_id', 'report_tasks', ['report_id'])
    op.create_index('ix_report_tasks_status_dispatched', 'report_tasks', ['status', 'dispatched_at'])

    # Reports left partial by the old fire-and-forget trigger get a task to pick them up
    op.execute("""
        INSERT INTO report_tasks (report_id, kind, status, attempts)
        SELECT id, 'upgrade', 'pending', 0 FROM reports WHERE status = 'partial'
    """)


def downgrade() -> None:
    op.drop_index('ix_report_tasks_status_dispatched', table_name='report_tasks')
    op.drop_table('report_tasks')
    TASK_STATUS.drop(op.get_bind(), checkfirst=True)
