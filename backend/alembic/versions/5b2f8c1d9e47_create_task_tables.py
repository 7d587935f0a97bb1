"""create task tables

Revision ID: 5b2f8c1d9e47
Revises:
Create Date: 2025-01-06 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b2f8c1d9e47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column(
            'priority',
            sa.Enum('low', 'medium', 'high', name='taskpriority'),
            nullable=False,
        ),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        # Subtasks block deletion of their parent
        sa.Column('parent_task_id', sa.Integer(), nullable=True),
        # Recurring task fields; weekdays are 0=Sunday .. 6=Saturday
        sa.Column('recurrence_type', sa.String(length=20), nullable=False),
        sa.Column('recurrence_interval', sa.Integer(), nullable=True),
        sa.Column('recurrence_end_date', sa.DateTime(), nullable=True),
        sa.Column('recurrence_weekday', sa.Integer(), nullable=True),
        sa.Column('recurrence_weekdays', sa.JSON(), nullable=True),
        sa.Column('recurrence_month_day', sa.Integer(), nullable=True),
        sa.Column('recurrence_week_of_month', sa.Integer(), nullable=True),
        sa.Column('completion_based', sa.Boolean(), nullable=False),
        sa.Column('recurring_parent_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['parent_task_id'], ['tasks.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['recurring_parent_id'], ['tasks.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_tasks_id'), 'tasks', ['id'], unique=False)
    op.create_index(op.f('ix_tasks_project_id'), 'tasks', ['project_id'], unique=False)
    op.create_index(op.f('ix_tasks_recurring_parent_id'), 'tasks', ['recurring_parent_id'], unique=False)

    op.create_table(
        'recurring_completions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('task_id', sa.Integer(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=False),
        sa.Column('original_due_date', sa.DateTime(), nullable=False),
        sa.Column('skipped', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['task_id'], ['tasks.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_recurring_completions_id'), 'recurring_completions', ['id'], unique=False)
    op.create_index(op.f('ix_recurring_completions_task_id'), 'recurring_completions', ['task_id'], unique=False)

    op.create_table(
        'task_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('task_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('field_name', sa.String(length=64), nullable=True),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['task_id'], ['tasks.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_task_events_id'), 'task_events', ['id'], unique=False)
    op.create_index(op.f('ix_task_events_task_id'), 'task_events', ['task_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_task_events_task_id'), table_name='task_events')
    op.drop_index(op.f('ix_task_events_id'), table_name='task_events')
    op.drop_table('task_events')
    op.drop_index(op.f('ix_recurring_completions_task_id'), table_name='recurring_completions')
    op.drop_index(op.f('ix_recurring_completions_id'), table_name='recurring_completions')
    op.drop_table('recurring_completions')
    op.drop_index(op.f('ix_tasks_recurring_parent_id'), table_name='tasks')
    op.drop_index(op.f('ix_tasks_project_id'), table_name='tasks')
    op.drop_index(op.f('ix_tasks_id'), table_name='tasks')
    op.drop_table('tasks')
