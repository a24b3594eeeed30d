"""Initial database migration - Create patients, patient_edit_requests and reports tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'patients',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True, unique=True),
        sa.Column('age', sa.Integer, nullable=False),
        sa.Column('gender', sa.String(10), nullable=False),
        sa.Column('blood_group', sa.String(3), nullable=False),
        sa.Column('allergies', sa.JSON, nullable=False),
        sa.Column('medical_conditions', sa.JSON, nullable=False),
        sa.Column('medications', sa.JSON, nullable=False),
        sa.Column('emergency_contact', sa.JSON, nullable=True),
        sa.Column('risk_level', sa.String(10), nullable=False, server_default='Low'),
        sa.Column('has_ai_analysis', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('ai_summary', sa.Text, nullable=True),
        sa.Column('ai_risk_level', sa.String(10), nullable=False, server_default='Low'),
        sa.Column('ai_key_issues', sa.JSON, nullable=False),
        sa.Column('ai_lifestyle_advice', sa.JSON, nullable=False),
        sa.Column('ai_analysis', sa.JSON, nullable=True),
        sa.Column('ai_updated_at', sa.DateTime, nullable=True),
        sa.Column('ai_last_updated_at', sa.DateTime, nullable=True),
        sa.Column('ai_gen_status', sa.String(10), nullable=False, server_default='PENDING'),
        sa.Column('ai_retry_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('ai_next_retry_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_patients_id', 'patients', ['id'])
    op.create_index('ix_patients_ai_retry', 'patients', ['ai_gen_status', 'ai_next_retry_at'])

    op.create_table(
        'patient_edit_requests',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'patient_id', sa.String(36),
            sa.ForeignKey('patients.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('requested_changes', sa.JSON, nullable=False),
        sa.Column('status', sa.String(10), nullable=False, server_default='PENDING'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('reviewed_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_patient_edit_requests_patient_id', 'patient_edit_requests', ['patient_id'])
    op.create_index('ix_patient_edit_requests_status', 'patient_edit_requests', ['status'])

    op.create_table(
        'reports',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'patient_id', sa.String(36),
            sa.ForeignKey('patients.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('report_type', sa.String(20), nullable=False, server_default='Other'),
        sa.Column('report_date', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('report_file_url', sa.String(512), nullable=False, server_default=''),
        sa.Column('ai_category', sa.String(100), nullable=True),
        sa.Column('parameters', sa.JSON, nullable=False),
        sa.Column('ai_summary', sa.Text, nullable=True),
        sa.Column('risk_level', sa.String(10), nullable=True),
        sa.Column('ai_health_suggestions', sa.JSON, nullable=False),
        sa.Column('ai_raw', sa.JSON, nullable=True),
        sa.Column('ai_updated_at', sa.DateTime, nullable=True),
        sa.Column('status', sa.String(10), nullable=False, server_default='PENDING'),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_reports_id', 'reports', ['id'])
    op.create_index('ix_reports_patient_date', 'reports', ['patient_id', 'report_date'])


def downgrade() -> None:
    op.drop_index('ix_reports_patient_date')
    op.drop_index('ix_reports_id')
    op.drop_table('reports')
    op.drop_index('ix_patient_edit_requests_status')
    op.drop_index('ix_patient_edit_requests_patient_id')
    op.drop_table('patient_edit_requests')
    op.drop_index('ix_patients_ai_retry')
    op.drop_index('ix_patients_id')
    op.drop_table('patients')
