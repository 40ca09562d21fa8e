"""create release orchestrator tables

Revision ID: 3a9d5c7e1b42
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3a9d5c7e1b42'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy 的 Enum 列存储的是成员名
job_status = postgresql.ENUM(
    'SCHEDULED', 'IN_PROGRESS', 'COMPLETED', 'PARTIALLY_COMPLETED', 'FAILED', 'CANCELLED',
    name='jobstatus', create_type=False
)
proposal_status = postgresql.ENUM('PENDING', 'APPROVED', 'REJECTED', name='proposalstatus', create_type=False)
risk_level = postgresql.ENUM('LOW', 'MEDIUM', 'HIGH', 'CRITICAL', name='risklevel', create_type=False)
job_type = postgresql.ENUM('DEPLOYMENT', 'ROLLBACK', name='jobtype', create_type=False)

ENUMS = (job_status, proposal_status, risk_level, job_type)


def _fanout_job_columns():
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=100), nullable=True),
        sa.Column('status', job_status, nullable=False),
        sa.Column('scheduled_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('scheduled_by', sa.String(length=255), nullable=False),
        sa.Column('executed_by', sa.String(length=255), nullable=True),
        sa.Column('cancelled_by', sa.String(length=255), nullable=True),
        sa.Column('total_tenants', sa.Integer(), nullable=False),
        sa.Column('completed_tenants', sa.Integer(), nullable=False),
        sa.Column('failed_tenants', sa.JSON(), nullable=False),
        sa.Column('job_metadata', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('stop_requested_at', sa.DateTime(), nullable=True),
        sa.Column('stop_requested_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    ]


def _proposal_review_columns():
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('status', proposal_status, nullable=False),
        sa.Column('reviewed_by', sa.String(length=255), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('risk_level', risk_level, nullable=False),
        sa.Column('affected_tenants', sa.JSON(), nullable=False),
        sa.Column('scheduled_time', sa.DateTime(), nullable=True),
        sa.Column('approved_job_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    ]


def _job_indexes(table: str) -> None:
    op.create_index(op.f(f'ix_{table}_uuid'), table, ['uuid'], unique=True)
    op.create_index(op.f(f'ix_{table}_tenant_id'), table, ['tenant_id'], unique=False)
    op.create_index(op.f(f'ix_{table}_status'), table, ['status'], unique=False)
    op.create_index(op.f(f'ix_{table}_completed_at'), table, ['completed_at'], unique=False)
    op.create_index(op.f(f'ix_{table}_created_at'), table, ['created_at'], unique=False)
    op.create_index(op.f(f'ix_{table}_proposal_id'), table, ['proposal_id'], unique=False)


def _proposal_indexes(table: str) -> None:
    op.create_index(op.f(f'ix_{table}_uuid'), table, ['uuid'], unique=True)
    op.create_index(op.f(f'ix_{table}_status'), table, ['status'], unique=False)


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table('rel_tenants',
        sa.Column('id', sa.Integer(), nullable=False, comment='租户记录主键ID'),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('auto_deploy_enabled', sa.Boolean(), nullable=False),
        sa.Column('auto_sync_enabled', sa.Boolean(), nullable=False),
        sa.Column('current_version', sa.String(length=50), nullable=True),
        sa.Column('current_template_version', sa.String(length=50), nullable=True),
        sa.Column('last_deployment_at', sa.DateTime(), nullable=True),
        sa.Column('last_template_sync_at', sa.DateTime(), nullable=True),
        sa.Column('connection_descriptor', sa.Text(), nullable=True),
        sa.Column('maintenance_window', sa.String(length=100), nullable=True),
        sa.Column('tenant_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_rel_tenants'))
    )
    op.create_index(op.f('ix_rel_tenants_uuid'), 'rel_tenants', ['uuid'], unique=True)
    op.create_index(op.f('ix_rel_tenants_tenant_id'), 'rel_tenants', ['tenant_id'], unique=True)

    op.create_table('rel_deployment_proposals',
        *_proposal_review_columns(),
        sa.Column('version', sa.String(length=50), nullable=False),
        sa.Column('release_notes', sa.Text(), nullable=True),
        sa.Column('migration_payload', sa.JSON(), nullable=False),
        sa.Column('proposed_by', sa.String(length=255), nullable=False),
        sa.Column('proposed_at', sa.DateTime(), nullable=False),
        sa.Column('target_tenant_id', sa.String(length=100), nullable=True),
        sa.Column('rollback_plan', sa.JSON(), nullable=True),
        sa.Column('has_breaking_changes', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_rel_deployment_proposals'))
    )
    _proposal_indexes('rel_deployment_proposals')
    op.create_index(op.f('ix_rel_deployment_proposals_proposed_at'), 'rel_deployment_proposals', ['proposed_at'], unique=False)

    op.create_table('rel_deployment_jobs',
        *_fanout_job_columns(),
        sa.Column('job_type', job_type, nullable=False),
        sa.Column('version', sa.String(length=100), nullable=False),
        sa.Column('release_notes', sa.Text(), nullable=True),
        sa.Column('migration_payload', sa.JSON(), nullable=True),
        sa.Column('proposal_id', sa.String(length=36), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_rel_deployment_jobs'))
    )
    _job_indexes('rel_deployment_jobs')

    op.create_table('rel_master_template_versions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('version', sa.String(length=50), nullable=False),
        sa.Column('release_notes', sa.Text(), nullable=True),
        sa.Column('breaking_changes', sa.JSON(), nullable=False),
        sa.Column('released_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_rel_master_template_versions'))
    )
    op.create_index(op.f('ix_rel_master_template_versions_uuid'), 'rel_master_template_versions', ['uuid'], unique=True)
    op.create_index(op.f('ix_rel_master_template_versions_version'), 'rel_master_template_versions', ['version'], unique=True)
    op.create_index(op.f('ix_rel_master_template_versions_released_at'), 'rel_master_template_versions', ['released_at'], unique=False)

    op.create_table('rel_master_template_files',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('path', sa.String(length=512), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('checksum', sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(['version_id'], ['rel_master_template_versions.id'], name=op.f('fk_rel_master_template_files_version_id_rel_master_template_versions'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_rel_master_template_files')),
        sa.UniqueConstraint('version_id', 'path', name=op.f('uq_rel_master_template_files_version_id'))
    )
    op.create_index(op.f('ix_rel_master_template_files_version_id'), 'rel_master_template_files', ['version_id'], unique=False)

    op.create_table('rel_template_update_proposals',
        *_proposal_review_columns(),
        sa.Column('master_template_version', sa.String(length=50), nullable=False),
        sa.Column('previous_version', sa.String(length=50), nullable=True),
        sa.Column('detected_by', sa.String(length=255), nullable=False),
        sa.Column('detected_at', sa.DateTime(), nullable=False),
        sa.Column('changed_files', sa.JSON(), nullable=False),
        sa.Column('added_files', sa.JSON(), nullable=False),
        sa.Column('deleted_files', sa.JSON(), nullable=False),
        sa.Column('breaking_changes', sa.JSON(), nullable=False),
        sa.Column('requires_manual_review', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_rel_template_update_proposals'))
    )
    _proposal_indexes('rel_template_update_proposals')
    op.create_index(op.f('ix_rel_template_update_proposals_detected_at'), 'rel_template_update_proposals', ['detected_at'], unique=False)

    op.create_table('rel_template_sync_jobs',
        *_fanout_job_columns(),
        sa.Column('master_template_version', sa.String(length=50), nullable=False),
        sa.Column('previous_version', sa.String(length=50), nullable=True),
        sa.Column('requires_manual_review', sa.Boolean(), nullable=False),
        sa.Column('conflict_resolutions', sa.JSON(), nullable=True),
        sa.Column('proposal_id', sa.String(length=36), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_rel_template_sync_jobs'))
    )
    _job_indexes('rel_template_sync_jobs')


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('rel_template_sync_jobs')
    op.drop_table('rel_template_update_proposals')
    op.drop_table('rel_master_template_files')
    op.drop_table('rel_master_template_versions')
    op.drop_table('rel_deployment_jobs')
    op.drop_table('rel_deployment_proposals')
    op.drop_table('rel_tenants')
    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
