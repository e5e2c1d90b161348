"""Add payment_transactions, notification_queue and subscription_sync_log

Revision ID: e41d05b7c9a2
Revises: 7c2e9a41b0d3
Create Date: 2026-09-21 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e41d05b7c9a2'
down_revision = '7c2e9a41b0d3'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('payment_transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('provider_transaction_id', sa.String(length=255), nullable=True),
        sa.Column('provider_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('payer_id', sa.String(length=255), nullable=True),
        sa.Column('transaction_type', sa.String(length=50), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('plan_id', sa.String(length=50), nullable=True),
        sa.Column('payment_method', sa.String(length=50), nullable=False, server_default='paypal'),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('dispute_reason', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('payment_transactions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_transactions_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_transactions_provider_transaction_id'), ['provider_transaction_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_transactions_provider_subscription_id'), ['provider_subscription_id'], unique=False)

    op.create_table('notification_queue',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('notification_type', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('sent', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('notification_queue', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_notification_queue_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_notification_queue_sent'), ['sent'], unique=False)

    op.create_table('subscription_sync_log',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('provider_subscription_id', sa.String(length=255), nullable=False),
        sa.Column('operation_type', sa.String(length=50), nullable=False),
        sa.Column('result', sa.String(length=50), nullable=False),
        sa.Column('provider_data', sa.JSON(), nullable=True),
        sa.Column('local_updates', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('subscription_sync_log', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_subscription_sync_log_provider_subscription_id'), ['provider_subscription_id'], unique=False)


def downgrade():
    with op.batch_alter_table('subscription_sync_log', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_subscription_sync_log_provider_subscription_id'))
    op.drop_table('subscription_sync_log')
    with op.batch_alter_table('notification_queue', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_notification_queue_sent'))
        batch_op.drop_index(batch_op.f('ix_notification_queue_user_id'))
    op.drop_table('notification_queue')
    with op.batch_alter_table('payment_transactions', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_payment_transactions_provider_subscription_id'))
        batch_op.drop_index(batch_op.f('ix_payment_transactions_provider_transaction_id'))
        batch_op.drop_index(batch_op.f('ix_payment_transactions_user_id'))
    op.drop_table('payment_transactions')
