"""add transaction alias reference

Revision ID: c4e6a8b0d2f3
Revises: a1c3e5f7b9d2
Create Date: 2026-10-19 16:40:05.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'c4e6a8b0d2f3'
down_revision: Union[str, Sequence[str], None] = 'a1c3e5f7b9d2'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.add_column(
        'payment_transaction',
        sa.Column('alias_reference', sa.String(), nullable=True),
    )
    op.create_index(
        'ix_payment_transaction_alias_reference',
        'payment_transaction',
        ['alias_reference'],
        unique=True,
    )


def downgrade():
    op.drop_index('ix_payment_transaction_alias_reference', table_name='payment_transaction')
    op.drop_column('payment_transaction', 'alias_reference')
