"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-12

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('subject', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('email', sa.String(320), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create models table
    op.create_table(
        'models',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('training_ref', sa.String(100), nullable=False, index=True),
        sa.Column('version_ref', sa.String(255), nullable=True),
        sa.Column('trigger_word', sa.String(100), nullable=False),
        sa.Column('status', sa.Enum('Processing', 'Ready', 'Failed', name='modelstatus'), nullable=False),
        sa.Column('parameters', sa.JSON(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create generations table
    op.create_table(
        'generations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('model_id', sa.Integer(), sa.ForeignKey('models.id'), nullable=False, index=True),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('enhanced_prompt', sa.Text(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )

    # Create payment_records table
    op.create_table(
        'payment_records',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('charge_ref', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('processor_subscription_id', sa.String(255), nullable=True, index=True),
        sa.Column('status', sa.String(50), nullable=False, index=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(10), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True, index=True),
        sa.Column('action', sa.String(50), nullable=False, index=True),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Quota counts filter by owner and creation time
    op.create_index('ix_generations_user_created', 'generations', ['user_id', 'created_at'])
    op.create_index('ix_models_status', 'models', ['status'])


def downgrade() -> None:
    op.drop_index('ix_models_status')
    op.drop_index('ix_generations_user_created')
    op.drop_table('audit_logs')
    op.drop_table('payment_records')
    op.drop_table('generations')
    op.drop_table('models')
    op.drop_table('users')
    op.execute('DROP TYPE IF EXISTS modelstatus')
