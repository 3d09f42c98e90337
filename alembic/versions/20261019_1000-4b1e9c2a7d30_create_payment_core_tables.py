"""create_payment_core_tables

Revision ID: 4b1e9c2a7d30
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4b1e9c2a7d30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create payment_transactions table
    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.String(length=36), nullable=False, comment='主键ID'),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='发起用户ID'),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='金额（最小货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='TZS', comment='货币代码 ISO-4217'),
        sa.Column('purpose', sa.String(length=32), nullable=False, comment='用途: order_payment/subscription_upgrade/test_payment/withdrawal'),
        sa.Column('provider_kind', sa.String(length=16), nullable=False, comment='提供商类型: push/hosted'),
        sa.Column('idempotency_reference', sa.String(length=128), nullable=False, comment='幂等引用（全局唯一）'),
        sa.Column('provider_reference', sa.String(length=128), nullable=True, comment='提供商引用'),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='pending', comment='账本状态: pending/processing/completed/failed/cancelled'),
        sa.Column('description', sa.Text(), nullable=False, server_default='', comment='描述'),
        sa.Column('linked_entity_id', sa.String(length=64), nullable=True, comment='关联实体ID'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('checkout_url', sa.String(length=500), nullable=True, comment='托管收银台地址'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_reference', name='uq_payment_transactions_idempotency_reference'),
        comment='交易账本，每次资金流动一行'
    )
    op.create_index('ix_payment_transactions_user_id', 'payment_transactions', ['user_id'], unique=False)
    op.create_index('ix_payment_transactions_provider_reference', 'payment_transactions', ['provider_reference'], unique=False)
    op.create_index('ix_payment_transactions_state', 'payment_transactions', ['state'], unique=False)
    op.create_index('ix_payment_transactions_linked_entity_id', 'payment_transactions', ['linked_entity_id'], unique=False)
    op.create_index('ix_payment_transactions_state_updated', 'payment_transactions', ['state', 'updated_at'], unique=False)

    # Create orders / order_items tables
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('buyer_id', sa.String(length=64), nullable=False, comment='买家ID'),
        sa.Column('total_amount', sa.BigInteger(), nullable=False, comment='订单总额（最小货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='TZS'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending', comment='订单状态'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)

    op.create_table(
        'order_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('seller_id', sa.String(length=64), nullable=False, comment='卖家ID'),
        sa.Column('unit_price', sa.BigInteger(), nullable=False, comment='成交单价'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)
    op.create_index('ix_order_items_seller_id', 'order_items', ['seller_id'], unique=False)

    # Create seller_subscriptions table
    op.create_table(
        'seller_subscriptions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('seller_id', sa.String(length=64), nullable=False, comment='卖家ID（每个卖家一条）'),
        sa.Column('plan', sa.String(length=64), nullable=False, comment='计划标识 <pricing_model>_<tier>'),
        sa.Column('price_monthly', sa.BigInteger(), nullable=False, server_default='0', comment='月费（最小货币单位）'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active', comment='状态: active/pending/cancelled'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True, comment='当前周期到期时间'),
        sa.Column('pending_plan', sa.String(length=64), nullable=True),
        sa.Column('pending_price', sa.BigInteger(), nullable=True),
        sa.Column('pending_reference', sa.String(length=128), nullable=True, comment='付款账本行的幂等引用'),
        sa.Column('scheduled_plan', sa.String(length=64), nullable=True),
        sa.Column('scheduled_price', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('seller_id', name='uq_seller_subscriptions_seller_id'),
    )
    op.create_index('ix_seller_subscriptions_rollover', 'seller_subscriptions', ['scheduled_plan', 'expires_at'], unique=False)

    # Create seller_earnings / withdrawal_requests tables
    op.create_table(
        'seller_earnings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('seller_id', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('order_item_id', sa.String(length=36), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='毛收入'),
        sa.Column('platform_fee', sa.BigInteger(), nullable=False, comment='平台佣金'),
        sa.Column('net_amount', sa.BigInteger(), nullable=False, comment='净收入'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='TZS'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_item_id', name='uq_seller_earnings_order_item_id'),
    )
    op.create_index('ix_seller_earnings_seller_id', 'seller_earnings', ['seller_id'], unique=False)
    op.create_index('ix_seller_earnings_order_id', 'seller_earnings', ['order_id'], unique=False)
    op.create_index('ix_seller_earnings_seller_status', 'seller_earnings', ['seller_id', 'status'], unique=False)

    op.create_table(
        'withdrawal_requests',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('seller_id', sa.String(length=64), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='申请金额'),
        sa.Column('fee', sa.BigInteger(), nullable=False, comment='手续费'),
        sa.Column('net_amount', sa.BigInteger(), nullable=False, comment='实际到账'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='TZS'),
        sa.Column('destination_kind', sa.String(length=16), nullable=False, comment='提供商类型'),
        sa.Column('destination_network', sa.String(length=32), nullable=False, comment='移动网络'),
        sa.Column('destination_account', sa.String(length=32), nullable=False, comment='收款账户（手机号）'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('transaction_id', sa.String(length=36), nullable=True, comment='关联账本行'),
        sa.Column('provider_reference', sa.String(length=128), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', name='uq_withdrawal_requests_transaction_id'),
    )
    op.create_index('ix_withdrawal_requests_seller_id', 'withdrawal_requests', ['seller_id'], unique=False)
    op.create_index('ix_withdrawal_requests_status', 'withdrawal_requests', ['status'], unique=False)
    op.create_index('ix_withdrawal_requests_seller_status', 'withdrawal_requests', ['seller_id', 'status'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_withdrawal_requests_seller_status', table_name='withdrawal_requests')
    op.drop_index('ix_withdrawal_requests_status', table_name='withdrawal_requests')
    op.drop_index('ix_withdrawal_requests_seller_id', table_name='withdrawal_requests')
    op.drop_table('withdrawal_requests')

    op.drop_index('ix_seller_earnings_seller_status', table_name='seller_earnings')
    op.drop_index('ix_seller_earnings_order_id', table_name='seller_earnings')
    op.drop_index('ix_seller_earnings_seller_id', table_name='seller_earnings')
    op.drop_table('seller_earnings')

    op.drop_index('ix_seller_subscriptions_rollover', table_name='seller_subscriptions')
    op.drop_table('seller_subscriptions')

    op.drop_index('ix_order_items_seller_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_buyer_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_payment_transactions_state_updated', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_linked_entity_id', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_state', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_provider_reference', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_user_id', table_name='payment_transactions')
    op.drop_table('payment_transactions')
