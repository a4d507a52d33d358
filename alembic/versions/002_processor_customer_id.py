"""Add processor_customer_id to payment_records

Revision ID: 002_processor_customer_id
Revises: 001_initial
Create Date: 2026-10-14

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002_processor_customer_id'
down_revision: Union[str, None] = '001_initial'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Subscription events without a subscription id are matched by customer
    op.add_column(
        'payment_records',
        sa.Column('processor_customer_id', sa.String(255), nullable=True)
    )
    op.create_index(
        'ix_payment_records_processor_customer_id',
        'payment_records',
        ['processor_customer_id'],
    )


def downgrade() -> None:
    op.drop_index('ix_payment_records_processor_customer_id', table_name='payment_records')
    op.drop_column('payment_records', 'processor_customer_id')
