"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PurchaseModel(Base):
    """
    购买单数据库模型

    所有业务规则都在 domain.payment.entity.Purchase 中
    """
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True, comment="付款用户ID")
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=True, index=True, comment="套餐ID")
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True, index=True, comment="服务ID")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="金额（主货币单位）")
    currency = Column(String(3), nullable=False, default="COP", comment="货币代码 ISO-4217")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="状态: pending/completed/failed/cancelled/refunded"
    )
    reference = Column(String(100), nullable=True, index=True, comment="最近一次网关引用")
    payment_method = Column(String(50), nullable=True, comment="支付方式")
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="权益到期时间")
    payment_details = Column(JSON, nullable=True, comment="支付明细")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
        comment="更新时间"
    )

    transactions = relationship("PaymentTransactionModel", back_populates="purchase", lazy="noload")

    __table_args__ = (
        CheckConstraint(
            "(package_id IS NULL) <> (service_id IS NULL)",
            name="ck_purchases_single_target",
        ),
    )

    def __repr__(self):
        return f"<Purchase(id={self.id}, user_id={self.user_id}, status={self.status})>"


class PaymentTransactionModel(Base):
    """网关交易数据库模型"""
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    purchase_id = Column(
        Integer,
        ForeignKey("purchases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="购买单ID"
    )
    provider = Column(String(50), nullable=False, default="wompi", comment="网关提供商")
    external_id = Column(String(100), nullable=True, unique=True, comment="网关交易ID")
    payment_link_id = Column(String(100), nullable=True, index=True, comment="支付链接ID")
    reference = Column(String(100), nullable=False, index=True, comment="幂等引用")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="金额（主货币单位）")
    currency = Column(String(3), nullable=False, comment="货币代码")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="状态: pending/processing/completed/failed/cancelled/refunded"
    )
    gateway_response = Column(JSON, nullable=True, comment="网关响应快照")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="完成时间")

    purchase = relationship("PurchaseModel", back_populates="transactions", lazy="noload")

    __table_args__ = (
        Index("ix_payment_transactions_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<PaymentTransaction(id={self.id}, external_id={self.external_id}, status={self.status})>"


class PaymentWebhookModel(Base):
    """Webhook 事件数据库模型（每次推送一行，含重复推送）"""
    __tablename__ = "payment_webhooks"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(
        Integer,
        ForeignKey("payment_transactions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="关联交易ID，为空表示孤儿事件"
    )
    provider = Column(String(50), nullable=False, comment="网关提供商")
    event_type = Column(String(100), nullable=False, comment="事件类型")
    external_transaction_id = Column(String(100), nullable=True, comment="载荷中的网关交易ID")
    payment_link_id = Column(String(100), nullable=True, comment="载荷中的支付链接ID")
    payload = Column(JSON, nullable=False, comment="原始载荷")
    signature = Column(String(255), nullable=True, comment="校验和")
    status = Column(
        String(20),
        nullable=False,
        default="received",
        index=True,
        comment="状态: received/processing/processed/failed"
    )
    received_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="接收时间")
    processed_at = Column(DateTime(timezone=True), nullable=True, comment="处理时间")
    error_message = Column(Text, nullable=True, comment="错误信息")

    __table_args__ = (
        Index("ix_payment_webhooks_orphan_lookup", "external_transaction_id", "transaction_id"),
        Index("ix_payment_webhooks_link_orphan_lookup", "payment_link_id", "transaction_id"),
        Index("ix_payment_webhooks_received_at", "received_at"),
    )

    def __repr__(self):
        return f"<PaymentWebhook(id={self.id}, event_type={self.event_type}, status={self.status})>"


class UserSessionModel(Base):
    """会话权益数据库模型"""
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, index=True)
    purchase_id = Column(
        Integer,
        ForeignKey("purchases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="购买单ID"
    )
    user_id = Column(Integer, nullable=False, index=True, comment="用户ID")
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, comment="服务ID")
    sessions_purchased = Column(Integer, nullable=False, comment="购买次数")
    sessions_remaining = Column(Integer, nullable=False, comment="剩余次数")
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="到期时间")
    status = Column(
        String(20),
        nullable=False,
        default="active",
        comment="状态: active/expired/exhausted/cancelled"
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("purchase_id", "service_id", name="uq_user_sessions_purchase_service"),
    )

    def __repr__(self):
        return f"<UserSession(id={self.id}, purchase_id={self.purchase_id}, service_id={self.service_id})>"
