"""create credit, payment and error log tables

Revision ID: 20241001
Revises:
Create Date: 2024-10-01 00:00:00
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20241001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'credit_balance',
        sa.Column('user_id', sa.String(64), primary_key=True),
        sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.CheckConstraint('balance >= 0', name='ck_credit_balance_non_negative'),
    )

    op.create_table(
        'credit_entry',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('entry_type', sa.String(16), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(160)),
        sa.Column('reference_type', sa.String(32)),
        sa.Column('reference_id', sa.String(64)),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('reference_type', 'reference_id', name='uq_credit_entry_reference'),
    )
    op.create_index('ix_credit_entry_user_id', 'credit_entry', ['user_id'])
    op.create_index('ix_credit_entry_created_at', 'credit_entry', ['created_at'])

    op.create_table(
        'payment_request',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('checkout_id', sa.String(64)),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('phone_number', sa.String(16), nullable=False),
        sa.Column('amount_requested', sa.Integer(), nullable=False),
        sa.Column('credits_to_grant', sa.Integer(), nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(16), nullable=False, server_default='initiated'),
        sa.Column('result_code', sa.String(32)),
        sa.Column('result_desc', sa.String(255)),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('ix_payment_request_checkout_id', 'payment_request', ['checkout_id'], unique=True)
    op.create_index('ix_payment_request_user_id', 'payment_request', ['user_id'])
    op.create_index('ix_payment_request_status', 'payment_request', ['status'])

    op.create_table(
        'error_log_entry',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('message', sa.String(500), nullable=False),
        sa.Column('context', sa.String(120), server_default=''),
        sa.Column('severity', sa.String(8), nullable=False, server_default='error'),
    )
    op.create_index('ix_error_log_entry_user_id', 'error_log_entry', ['user_id'])


def downgrade():
    op.drop_index('ix_error_log_entry_user_id', table_name='error_log_entry')
    op.drop_table('error_log_entry')
    op.drop_index('ix_payment_request_status', table_name='payment_request')
    op.drop_index('ix_payment_request_user_id', table_name='payment_request')
    op.drop_index('ix_payment_request_checkout_id', table_name='payment_request')
    op.drop_table('payment_request')
    op.drop_index('ix_credit_entry_created_at', table_name='credit_entry')
    op.drop_index('ix_credit_entry_user_id', table_name='credit_entry')
    op.drop_table('credit_entry')
    op.drop_table('credit_balance')
