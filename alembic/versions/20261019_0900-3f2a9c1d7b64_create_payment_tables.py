"""create_payment_tables

Revision ID: 3f2a9c1d7b64
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7b64'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Catalog
    op.create_table(
        'services',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('base_price', sa.Numeric(precision=15, scale=2), nullable=False, comment='基础价格'),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_services_id', 'services', ['id'])

    op.create_table(
        'packages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('total_sessions', sa.Integer(), nullable=False, comment='总次数'),
        sa.Column('validity_days', sa.Integer(), nullable=False, comment='有效天数'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_packages_id', 'packages', ['id'])

    op.create_table(
        'package_services',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('package_id', sa.Integer(), nullable=False),
        sa.Column('service_id', sa.Integer(), nullable=False),
        sa.Column('sessions_included', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('package_id', 'service_id', name='uq_package_services_package_service'),
    )
    op.create_index('ix_package_services_package_id', 'package_services', ['package_id'])

    # Purchases and gateway transactions
    op.create_table(
        'purchases',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='付款用户ID'),
        sa.Column('package_id', sa.Integer(), nullable=True, comment='套餐ID'),
        sa.Column('service_id', sa.Integer(), nullable=True, comment='服务ID'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='金额（主货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='COP', comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending',
                  comment='状态: pending/completed/failed/cancelled/refunded'),
        sa.Column('reference', sa.String(length=100), nullable=True, comment='最近一次网关引用'),
        sa.Column('payment_method', sa.String(length=50), nullable=True, comment='支付方式'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True, comment='权益到期时间'),
        sa.Column('payment_details', sa.JSON(), nullable=True, comment='支付明细'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id']),
        sa.ForeignKeyConstraint(['service_id'], ['services.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('(package_id IS NULL) <> (service_id IS NULL)', name='ck_purchases_single_target'),
    )
    op.create_index('ix_purchases_id', 'purchases', ['id'])
    op.create_index('ix_purchases_user_id', 'purchases', ['user_id'])
    op.create_index('ix_purchases_package_id', 'purchases', ['package_id'])
    op.create_index('ix_purchases_service_id', 'purchases', ['service_id'])
    op.create_index('ix_purchases_status', 'purchases', ['status'])
    op.create_index('ix_purchases_reference', 'purchases', ['reference'])

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('purchase_id', sa.Integer(), nullable=False, comment='购买单ID'),
        sa.Column('provider', sa.String(length=50), nullable=False, server_default='wompi', comment='网关提供商'),
        sa.Column('external_id', sa.String(length=100), nullable=True, comment='网关交易ID'),
        sa.Column('payment_link_id', sa.String(length=100), nullable=True, comment='支付链接ID'),
        sa.Column('reference', sa.String(length=100), nullable=False, comment='幂等引用'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='金额（主货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending',
                  comment='状态: pending/processing/completed/failed/cancelled/refunded'),
        sa.Column('gateway_response', sa.JSON(), nullable=True, comment='网关响应快照'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='完成时间'),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id'),
    )
    op.create_index('ix_payment_transactions_id', 'payment_transactions', ['id'])
    op.create_index('ix_payment_transactions_purchase_id', 'payment_transactions', ['purchase_id'])
    op.create_index('ix_payment_transactions_payment_link_id', 'payment_transactions', ['payment_link_id'])
    op.create_index('ix_payment_transactions_reference', 'payment_transactions', ['reference'])
    op.create_index('ix_payment_transactions_status', 'payment_transactions', ['status'])
    op.create_index('ix_payment_transactions_created_at', 'payment_transactions', ['created_at'])
    op.create_index('ix_payment_transactions_status_created', 'payment_transactions', ['status', 'created_at'])

    # Webhook events, one row per delivery
    op.create_table(
        'payment_webhooks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=True, comment='关联交易ID，为空表示孤儿事件'),
        sa.Column('provider', sa.String(length=50), nullable=False, comment='网关提供商'),
        sa.Column('event_type', sa.String(length=100), nullable=False, comment='事件类型'),
        sa.Column('external_transaction_id', sa.String(length=100), nullable=True, comment='载荷中的网关交易ID'),
        sa.Column('payment_link_id', sa.String(length=100), nullable=True, comment='载荷中的支付链接ID'),
        sa.Column('payload', sa.JSON(), nullable=False, comment='原始载荷'),
        sa.Column('signature', sa.String(length=255), nullable=True, comment='校验和'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='received',
                  comment='状态: received/processing/processed/failed'),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['transaction_id'], ['payment_transactions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_webhooks_id', 'payment_webhooks', ['id'])
    op.create_index('ix_payment_webhooks_transaction_id', 'payment_webhooks', ['transaction_id'])
    op.create_index('ix_payment_webhooks_status', 'payment_webhooks', ['status'])
    op.create_index('ix_payment_webhooks_orphan_lookup', 'payment_webhooks', ['external_transaction_id', 'transaction_id'])
    op.create_index('ix_payment_webhooks_link_orphan_lookup', 'payment_webhooks', ['payment_link_id', 'transaction_id'])
    op.create_index('ix_payment_webhooks_received_at', 'payment_webhooks', ['received_at'])

    # Session entitlements
    op.create_table(
        'user_sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('purchase_id', sa.Integer(), nullable=False, comment='购买单ID'),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='用户ID'),
        sa.Column('service_id', sa.Integer(), nullable=False, comment='服务ID'),
        sa.Column('sessions_purchased', sa.Integer(), nullable=False, comment='购买次数'),
        sa.Column('sessions_remaining', sa.Integer(), nullable=False, comment='剩余次数'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True, comment='到期时间'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('purchase_id', 'service_id', name='uq_user_sessions_purchase_service'),
    )
    op.create_index('ix_user_sessions_id', 'user_sessions', ['id'])
    op.create_index('ix_user_sessions_purchase_id', 'user_sessions', ['purchase_id'])
    op.create_index('ix_user_sessions_user_id', 'user_sessions', ['user_id'])


def downgrade() -> None:
    op.drop_table('user_sessions')
    op.drop_table('payment_webhooks')
    op.drop_table('payment_transactions')
    op.drop_table('purchases')
    op.drop_table('package_services')
    op.drop_table('packages')
    op.drop_table('services')
