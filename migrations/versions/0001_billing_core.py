"""0001 billing core schema

Revision ID: 0001_billing_core
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_billing_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'tenant',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tenant_slug', 'tenant', ['slug'], unique=True)

    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_user_tenant_id', 'user', ['tenant_id'])

    op.create_table(
        'subscription_plan',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('interval', sa.String(length=16), nullable=False),
        sa.Column('max_users', sa.Integer(), nullable=True),
        sa.Column('max_ingredients', sa.Integer(), nullable=True),
        sa.Column('max_batches', sa.Integer(), nullable=True),
        sa.Column('max_recipes', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subscription_plan_key', 'subscription_plan', ['key'], unique=True)

    op.create_table(
        'subscription',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('intended_plan_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('current_period_end > current_period_start', name='ck_subscription_period_order'),
        sa.ForeignKeyConstraint(['plan_id'], ['subscription_plan.id']),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subscription_tenant_id', 'subscription', ['tenant_id'], unique=True)
    op.create_index('ix_subscription_status', 'subscription', ['status'])
    op.create_index('ix_subscription_current_period_end', 'subscription', ['current_period_end'])
    op.create_index('ix_subscription_intended_plan_id', 'subscription', ['intended_plan_id'])

    op.create_table(
        'billing_transaction',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('gateway_reference', sa.String(length=128), nullable=True),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('billing_cycle', sa.String(length=16), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('gateway_payload', sa.JSON(), nullable=True),
        sa.Column('related_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['plan_id'], ['subscription_plan.id']),
        sa.ForeignKeyConstraint(['related_transaction_id'], ['billing_transaction.id']),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_billing_transaction_order_id', 'billing_transaction', ['order_id'], unique=True)
    op.create_index('ix_billing_transaction_tenant_id', 'billing_transaction', ['tenant_id'])
    op.create_index('ix_billing_transaction_plan_id', 'billing_transaction', ['plan_id'])
    op.create_index('ix_billing_transaction_status', 'billing_transaction', ['status'])

    op.create_table(
        'account_credit',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('reason', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('source_transaction_id', sa.Integer(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['source_transaction_id'], ['billing_transaction.id']),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_account_credit_tenant_id', 'account_credit', ['tenant_id'])
    op.create_index('ix_account_credit_status', 'account_credit', ['status'])

    op.create_table(
        'activity_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=128), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_activity_log_tenant_id', 'activity_log', ['tenant_id'])
    op.create_index('ix_activity_log_event_type', 'activity_log', ['event_type'])
    op.create_index('ix_activity_log_occurred_at', 'activity_log', ['occurred_at'])

    op.create_table(
        'payment_webhook_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=True),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('gateway_status', sa.String(length=32), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_webhook_event_event_id', 'payment_webhook_event', ['event_id'])
    op.create_index('ix_payment_webhook_event_order_id', 'payment_webhook_event', ['order_id'])


def downgrade():
    op.drop_table('payment_webhook_event')
    op.drop_table('activity_log')
    op.drop_table('account_credit')
    op.drop_table('billing_transaction')
    op.drop_table('subscription')
    op.drop_table('subscription_plan')
    op.drop_table('user')
    op.drop_table('tenant')
