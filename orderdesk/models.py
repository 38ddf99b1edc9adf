import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import relationship

from orderdesk.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


TERMINAL_REFUND_STATUSES = frozenset({RefundStatus.COMPLETED.value, RefundStatus.REJECTED.value})


class NotificationChannel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AdminUser(Base):
    __tablename__ = "admin_users"

    id = Column(String(36), primary_key=True, default=_uuid)
    auth_user_id = Column(String(36), unique=True, index=True, nullable=False)
    name = Column(String)
    email = Column(String)
    role = Column(String, default="admin")
    status = Column(String, default="active")       # active | inactive


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_number = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="inr")
    status = Column(String, nullable=False, default=OrderStatus.PENDING.value)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)
    payment_method = Column(String)
    gateway_order_id = Column(String, index=True)      # Stripe PaymentIntent ID
    gateway_payment_id = Column(String)                # Stripe charge / intent confirmed
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    refunds = relationship("Refund", back_populates="order")
    timeline = relationship("OrderTimeline", order_by="OrderTimeline.created_at")
    transactions = relationship("PaymentTransaction")

    __mapper_args__ = {"version_id_col": version}


class Refund(Base):
    __tablename__ = "refunds"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String, nullable=False)
    payment_id = Column(String)
    reason = Column(Text)
    status = Column(String, index=True, nullable=False, default=RefundStatus.PENDING.value)
    admin_notes = Column(Text)
    processed_by = Column(String(36), ForeignKey("admin_users.id"))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True))
    version = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="refunds")
    history = relationship("RefundStatusHistory", order_by="RefundStatusHistory.created_at")
    notifications = relationship("RefundNotification", order_by="RefundNotification.created_at")

    __mapper_args__ = {"version_id_col": version}


class RefundStatusHistory(Base):
    __tablename__ = "refund_status_history"

    id = Column(String(36), primary_key=True, default=_uuid)
    refund_id = Column(String(36), ForeignKey("refunds.id"), index=True, nullable=False)
    previous_status = Column(String)                    # NULL for the request entry
    new_status = Column(String, nullable=False)
    notes = Column(Text)
    changed_by = Column(String(36), ForeignKey("admin_users.id"))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class OrderTimeline(Base):
    __tablename__ = "order_timeline"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), index=True, nullable=False)
    previous_status = Column(String)
    status = Column(String, nullable=False)
    notes = Column(Text)
    created_by = Column(String(36), ForeignKey("admin_users.id"))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class RefundNotification(Base):
    __tablename__ = "refund_notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    refund_id = Column(String(36), ForeignKey("refunds.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    type = Column(String, nullable=False, default=NotificationChannel.IN_APP.value)
    status = Column(String, nullable=False, default=NotificationStatus.PENDING.value)
    content = Column(Text, nullable=False)
    sent_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), index=True, nullable=False)
    gateway_payment_id = Column(String)
    gateway_order_id = Column(String)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3))
    status = Column(String)                             # completed | refunded
    payment_method = Column(String)
    gateway_response = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
