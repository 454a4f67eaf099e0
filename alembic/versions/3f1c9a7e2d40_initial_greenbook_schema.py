"""Initial Greenbook schema: staff, reference tables, sync schedules, sync logs

Revision ID: 3f1c9a7e2d40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7e2d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _reference_table(name):
    op.create_table(name,
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name=f'uq_{name}_name'),
    )


def upgrade() -> None:
    """Upgrade schema."""
    _reference_table('departments')
    _reference_table('job_titles')
    _reference_table('offices')

    op.create_table('staff',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('external_id', sa.Text(), nullable=False),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('given_name', sa.Text(), nullable=True),
        sa.Column('surname', sa.Text(), nullable=True),
        sa.Column('user_principal_name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('job_title', sa.Text(), nullable=True),
        sa.Column('department', sa.Text(), nullable=True),
        sa.Column('office_location', sa.Text(), nullable=True),
        sa.Column('mobile_phone', sa.Text(), nullable=True),
        sa.Column('business_phones', sa.JSON(), nullable=True),
        sa.Column('preferred_language', sa.Text(), nullable=True),
        sa.Column('employee_id', sa.Text(), nullable=True),
        sa.Column('employee_type', sa.Text(), nullable=True),
        sa.Column('usage_location', sa.Text(), nullable=True),
        sa.Column('account_enabled', sa.Boolean(), nullable=True),
        sa.Column('employee_hire_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_date_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_password_change_date_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('manager_id', sa.Text(), nullable=True),
        sa.Column('department_id', sa.Text(), nullable=True),
        sa.Column('job_title_id', sa.Text(), nullable=True),
        sa.Column('office_id', sa.Text(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['manager_id'], ['staff.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['job_title_id'], ['job_titles.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['office_id'], ['offices.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id', name='uq_staff_external_id'),
    )
    op.create_index('ix_staff_email', 'staff', ['email'])
    op.create_index('ix_staff_manager_id', 'staff', ['manager_id'])
    op.create_index('ix_staff_account_enabled', 'staff', ['account_enabled'])

    op.create_table('sync_schedules',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sync_type', sa.Text(), nullable=False),
        sa.Column('cron_expression', sa.Text(), nullable=False),
        sa.Column('sync_options', sa.JSON(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('last_run', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_run', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_sync_schedules_name'),
    )

    op.create_table('sync_logs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('kind', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('parent_run_id', sa.Text(), nullable=True),
        sa.Column('schedule_id', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['parent_run_id'], ['sync_logs.id']),
        sa.ForeignKeyConstraint(['schedule_id'], ['sync_schedules.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_logs_parent_run_id', 'sync_logs', ['parent_run_id'])
    op.create_index('ix_sync_logs_status', 'sync_logs', ['status'])
    op.create_index('ix_sync_logs_kind', 'sync_logs', ['kind'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_sync_logs_kind', table_name='sync_logs')
    op.drop_index('ix_sync_logs_status', table_name='sync_logs')
    op.drop_index('ix_sync_logs_parent_run_id', table_name='sync_logs')
    op.drop_table('sync_logs')
    op.drop_table('sync_schedules')
    op.drop_index('ix_staff_account_enabled', table_name='staff')
    op.drop_index('ix_staff_manager_id', table_name='staff')
    op.drop_index('ix_staff_email', table_name='staff')
    op.drop_table('staff')
    op.drop_table('offices')
    op.drop_table('job_titles')
    op.drop_table('departments')
