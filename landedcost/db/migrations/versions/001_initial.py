"""Initial schema: reports, sourcing jobs, suppliers, quotes, audit logs

Revision ID: 001_initial
Revises:
Create Date: 2024-11-04
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


REPORT_STATUS = sa.Enum('partial', 'complete', 'failed', name='reportstatus')
LABEL_STATUS = sa.Enum('success', 'failed', 'not_provided', 'manual', name='labelextractionstatus')
JOB_STATUS = sa.Enum(
    'pending', 'outreach_sent', 'replies_received', 'quotes_confirmed', 'closed',
    name='sourcingjobstatus',
)
SUPPLIER_STATUS = sa.Enum(
    'pending', 'outreach_sent', 'replied', 'no_reply', 'quote_received', 'confirmed',
    name='jobsupplierstatus',
)
QUOTE_STATUS = sa.Enum('pending', 'valid', 'needs_review', 'rejected', name='quotevalidationstatus')


def upgrade() -> None:
    op.create_table(
        'reports',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('input_key', sa.String(64), nullable=False),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('status', REPORT_STATUS, nullable=False, server_default='partial'),
        sa.Column('schema_version', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('request_params', sa.JSON()),
        sa.Column('upload_audit', sa.JSON()),
        sa.Column('fast_facts', sa.JSON()),
        sa.Column('pipeline_result', sa.JSON()),
        sa.Column('category_key', sa.String(50)),
        sa.Column('classification_candidates', sa.JSON()),
        sa.Column('baseline', sa.JSON()),
        sa.Column('evidence', sa.JSON()),
        sa.Column('signals', sa.JSON()),
        sa.Column('evidence_items', sa.JSON()),
        sa.Column('verification', sa.JSON()),
        sa.Column('label_extraction_status', LABEL_STATUS, server_default='not_provided'),
        sa.Column('label_confirmed_fields', sa.JSON()),
        sa.Column('error_code', sa.String(100)),
        sa.Column('error_step', sa.String(100)),
        sa.Column('evidence_last_attempt_at', sa.DateTime(timezone=True)),
        sa.Column('evidence_last_success_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('input_key', name='uq_reports_input_key'),
    )
    op.create_index('ix_reports_id', 'reports', ['id'])
    op.create_index('ix_reports_owner_id', 'reports', ['owner_id'])
    op.create_index('ix_reports_category_key', 'reports', ['category_key'])

    op.create_table(
        'sourcing_jobs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('report_id', sa.Integer(), sa.ForeignKey('reports.id'), nullable=False),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('status', JOB_STATUS, nullable=False, server_default='pending'),
        sa.Column('supplier_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('closed_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_sourcing_jobs_id', 'sourcing_jobs', ['id'])
    op.create_index('ix_sourcing_jobs_report_id', 'sourcing_jobs', ['report_id'])

    op.create_table(
        'sourcing_job_suppliers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('job_id', sa.Integer(), sa.ForeignKey('sourcing_jobs.id'), nullable=False),
        sa.Column('supplier_id', sa.String(100), nullable=False),
        sa.Column('supplier_name', sa.String(255)),
        sa.Column('status', SUPPLIER_STATUS, nullable=False, server_default='pending'),
        sa.Column('outreach_pack', sa.JSON()),
        sa.Column('dispatch_error', sa.Text()),
        sa.Column('dispatched_at', sa.DateTime(timezone=True)),
        sa.Column('replied_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('job_id', 'supplier_id', name='uq_job_supplier'),
    )
    op.create_index('ix_sourcing_job_suppliers_id', 'sourcing_job_suppliers', ['id'])
    op.create_index('ix_sourcing_job_suppliers_job_id', 'sourcing_job_suppliers', ['job_id'])

    op.create_table(
        'supplier_quotes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('job_supplier_id', sa.Integer(), sa.ForeignKey('sourcing_job_suppliers.id'), nullable=False),
        sa.Column('price_per_unit', sa.Float()),
        sa.Column('currency', sa.String(10), server_default='USD'),
        sa.Column('moq', sa.Integer()),
        sa.Column('lead_time_days', sa.Integer()),
        sa.Column('incoterm', sa.String(20)),
        sa.Column('payment_terms', sa.String(100)),
        sa.Column('confirmed_in_writing', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('validation_status', QUOTE_STATUS, nullable=False, server_default='pending'),
        sa.Column('missing_fields', sa.JSON()),
        sa.Column('notes', sa.Text()),
        sa.Column('raw_reply', sa.Text()),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('job_supplier_id', name='uq_supplier_quotes_job_supplier_id'),
    )
    op.create_index('ix_supplier_quotes_id', 'supplier_quotes', ['id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('user_id', sa.String(64)),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100)),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('details', sa.JSON()),
        sa.Column('ip_address', sa.String(50)),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('supplier_quotes')
    op.drop_table('sourcing_job_suppliers')
    op.drop_table('sourcing_jobs')
    op.drop_table('reports')
    for enum_type in (QUOTE_STATUS, SUPPLIER_STATUS, JOB_STATUS, LABEL_STATUS, REPORT_STATUS):
        enum_type.drop(op.get_bind(), checkfirst=True)
