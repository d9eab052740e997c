"""create_leads_and_lead_labels

Revision ID: a3c91f07d2b4
Revises:
Create Date: 2026-10-16 09:12:44.301877

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a3c91f07d2b4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'lead_labels',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('color', sa.String(length=20), nullable=True),
        sa.Column('form_status', sa.String(length=50), nullable=True),
        sa.Column('qualification_status', sa.String(length=50), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_lead_labels_id'), 'lead_labels', ['id'], unique=False)
    op.create_index(op.f('ix_lead_labels_form_status'), 'lead_labels', ['form_status'], unique=False)

    op.create_table(
        'leads',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('phone_normalized', sa.String(length=20), nullable=True),
        sa.Column('cpf_normalized', sa.String(length=20), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('form_status', sa.String(length=50), nullable=True),
        sa.Column('cpf_status', sa.String(length=50), nullable=True),
        sa.Column('cpf_check_id', sa.String(length=100), nullable=True),
        sa.Column('cpf_checked_at', sa.DateTime(), nullable=True),
        sa.Column('pipeline_status', sa.String(length=50), nullable=True),
        sa.Column('label_id', sa.Integer(), nullable=True),
        sa.Column('submission_id', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['label_id'], ['lead_labels.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_leads_tenant_id'), 'leads', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_leads_phone_normalized'), 'leads', ['phone_normalized'], unique=False)
    op.create_index(op.f('ix_leads_cpf_normalized'), 'leads', ['cpf_normalized'], unique=False)
    op.create_index(op.f('ix_leads_form_status'), 'leads', ['form_status'], unique=False)
    op.create_index(op.f('ix_leads_pipeline_status'), 'leads', ['pipeline_status'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_leads_pipeline_status'), table_name='leads')
    op.drop_index(op.f('ix_leads_form_status'), table_name='leads')
    op.drop_index(op.f('ix_leads_cpf_normalized'), table_name='leads')
    op.drop_index(op.f('ix_leads_phone_normalized'), table_name='leads')
    op.drop_index(op.f('ix_leads_tenant_id'), table_name='leads')
    op.drop_table('leads')
    op.drop_index(op.f('ix_lead_labels_form_status'), table_name='lead_labels')
    op.drop_index(op.f('ix_lead_labels_id'), table_name='lead_labels')
    op.drop_table('lead_labels')
