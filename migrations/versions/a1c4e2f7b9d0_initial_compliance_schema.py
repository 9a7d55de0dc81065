"""initial compliance schema (users, projects, submissions, annual documents)

Revision ID: a1c4e2f7b9d0
Revises:
Create Date: 2025-11-03 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e2f7b9d0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

METRIC_COLUMNS = (
    'lost_time_injuries', 'medical_aid_injuries', 'first_aid_injuries',
    'property_damage', 'environmental_incidents', 'near_misses',
    'total_worker_hours', 'hazard_identifications', 'safety_inspections',
    'toolbox_talks', 'workers_site_oriented',
)


def _document_columns():
    return [
        sa.Column('doc_type', sa.String(length=255), nullable=False),
        sa.Column('storage_path', sa.String(length=512), nullable=False),
        sa.Column('original_file_name', sa.String(length=255), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'], unique=False)

    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('assigned_advisor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_projects_assigned_advisor_id', 'projects', ['assigned_advisor_id'], unique=False)

    op.create_table(
        'project_subcontractors',
        sa.Column('project_id', sa.Integer(), sa.ForeignKey('projects.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('subcontractor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
    )

    op.create_table(
        'submissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('project_id', sa.Integer(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subcontractor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='Not Submitted'),
        *[sa.Column(name, sa.Integer(), nullable=True) for name in METRIC_COLUMNS],
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('project_id', 'subcontractor_id', 'month', 'year', name='uq_submission_period'),
        sa.CheckConstraint('month BETWEEN 1 AND 12', name='ck_submission_month'),
    )
    op.create_index('ix_submissions_project_id', 'submissions', ['project_id'], unique=False)
    op.create_index('ix_submissions_subcontractor_id', 'submissions', ['subcontractor_id'], unique=False)

    op.create_table(
        'submission_documents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('submission_id', sa.Integer(), sa.ForeignKey('submissions.id', ondelete='CASCADE'), nullable=False),
        *_document_columns(),
        sa.UniqueConstraint('submission_id', 'doc_type', name='uq_submission_doc_type'),
    )
    op.create_index('ix_submission_documents_submission_id', 'submission_documents', ['submission_id'], unique=False)

    op.create_table(
        'annual_document_sets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('subcontractor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('subcontractor_id', 'year', name='uq_annual_set_year'),
    )
    op.create_index('ix_annual_document_sets_subcontractor_id', 'annual_document_sets', ['subcontractor_id'], unique=False)

    op.create_table(
        'annual_documents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('document_set_id', sa.Integer(), sa.ForeignKey('annual_document_sets.id', ondelete='CASCADE'), nullable=False),
        *_document_columns(),
        sa.UniqueConstraint('document_set_id', 'doc_type', name='uq_annual_doc_type'),
    )
    op.create_index('ix_annual_documents_document_set_id', 'annual_documents', ['document_set_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_annual_documents_document_set_id', table_name='annual_documents')
    op.drop_table('annual_documents')
    op.drop_index('ix_annual_document_sets_subcontractor_id', table_name='annual_document_sets')
    op.drop_table('annual_document_sets')
    op.drop_index('ix_submission_documents_submission_id', table_name='submission_documents')
    op.drop_table('submission_documents')
    op.drop_index('ix_submissions_subcontractor_id', table_name='submissions')
    op.drop_index('ix_submissions_project_id', table_name='submissions')
    op.drop_table('submissions')
    op.drop_table('project_subcontractors')
    op.drop_index('ix_projects_assigned_advisor_id', table_name='projects')
    op.drop_table('projects')
    op.drop_index('ix_users_role', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
