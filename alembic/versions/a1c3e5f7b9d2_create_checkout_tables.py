"""create checkout tables

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-19 10:12:31.402118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b9d2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='user'),
        sa.Column('can_login', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'content',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('content_type', sa.String(), nullable=False),
        sa.Column('content_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=True),
        sa.Column('price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(), nullable=False, server_default='MZN'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('content_type', 'content_id', name='uq_content_type_id'),
    )
    op.create_index('ix_content_content_type', 'content', ['content_type'])
    op.create_index('ix_content_content_id', 'content', ['content_id'])

    op.create_table(
        'checkout_session',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('content_type', sa.String(), nullable=False),
        sa.Column('content_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('payment_method_kind', sa.String(), nullable=True),
        sa.Column('gateway', sa.String(), nullable=True),
        sa.Column('method_details', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='created'),
        sa.Column('failure_reason', sa.String(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('awaiting_since', sa.DateTime(), nullable=True),
        sa.Column('is_overdue', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_checkout_session_user_id', 'checkout_session', ['user_id'])
    op.create_index('ix_checkout_session_content_type', 'checkout_session', ['content_type'])
    op.create_index('ix_checkout_session_content_id', 'checkout_session', ['content_id'])
    op.create_index('ix_checkout_session_status', 'checkout_session', ['status'])

    op.create_table(
        'payment_transaction',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('invoice_id', sa.String(), nullable=False),
        sa.Column('session_id', sa.String(), sa.ForeignKey('checkout_session.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=False),
        sa.Column('content_id', sa.String(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('gateway', sa.String(), nullable=False),
        sa.Column('payment_method_kind', sa.String(), nullable=False),
        sa.Column('gateway_reference', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('failure_reason', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_payment_transaction_invoice_id', 'payment_transaction', ['invoice_id'], unique=True)
    op.create_index('ix_payment_transaction_gateway_reference', 'payment_transaction', ['gateway_reference'], unique=True)
    op.create_index('ix_payment_transaction_session_id', 'payment_transaction', ['session_id'])
    op.create_index('ix_payment_transaction_user_id', 'payment_transaction', ['user_id'])
    op.create_index('ix_payment_transaction_status', 'payment_transaction', ['status'])

    op.create_table(
        'access_grant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('content_type', sa.String(), nullable=False),
        sa.Column('content_id', sa.String(), nullable=False),
        sa.Column('source', sa.String(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), sa.ForeignKey('payment_transaction.id'), nullable=True),
        sa.Column('granted_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'content_type', 'content_id', name='uq_access_grant_user_content'),
    )
    op.create_index('ix_access_grant_user_id', 'access_grant', ['user_id'])

    op.create_table(
        'saved_payment_method',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('kind', sa.String(), nullable=False),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('brand', sa.String(), nullable=True),
        sa.Column('last4', sa.String(), nullable=True),
        sa.Column('exp_month', sa.Integer(), nullable=True),
        sa.Column('exp_year', sa.Integer(), nullable=True),
        sa.Column('gateway_token', sa.String(), nullable=True),
        sa.Column('provider', sa.String(), nullable=True),
        sa.Column('bank', sa.String(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_saved_payment_method_user_id', 'saved_payment_method', ['user_id'])

    op.create_table(
        'checkout_event',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), sa.ForeignKey('checkout_session.id'), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.String(), nullable=False, server_default='system'),
    )
    op.create_index('ix_checkout_event_session_id', 'checkout_event', ['session_id'])
    op.create_index('ix_checkout_event_event_type', 'checkout_event', ['event_type'])


def downgrade():
    op.drop_table('checkout_event')
    op.drop_table('saved_payment_method')
    op.drop_table('access_grant')
    op.drop_table('payment_transaction')
    op.drop_table('checkout_session')
    op.drop_table('content')
    op.drop_table('user')
