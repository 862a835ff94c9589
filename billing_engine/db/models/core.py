"""SQLAlchemy models for the billing ledger schema."""

from __future__ import annotations

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.db.base import Base
from billing_engine.domain.models import SubscriptionStatus, TransactionStatus
from billing_engine.utils.datetime import utc_now


# MySQL DATETIME defaults to whole seconds; stale-event ordering needs microseconds.
Timestamp = DateTime(timezone=True).with_variant(mysql.DATETIME(fsp=6), "mysql", "mariadb")


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("external_customer_id", name="uq_users_external_customer_id"),
    )

    plan_id: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        _enum(SubscriptionStatus, "user_subscription_status"),
        default=SubscriptionStatus.TRIALING,
        nullable=False,
    )
    trial_ends_at: Mapped[datetime | None] = mapped_column(Timestamp)
    external_customer_id: Mapped[str | None] = mapped_column(String(191))
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utc_now)


class Subscription(Base):
    """One row per user; a fresh provider subscription re-uses the row."""

    __tablename__ = "subscriptions"
    __table_args__ = (UniqueConstraint("user_id", name="uq_subscriptions_user_id"),)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    provider_subscription_id: Mapped[str] = mapped_column(String(191), nullable=False)
    plan_id: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        _enum(SubscriptionStatus, "subscription_status"), nullable=False
    )
    current_period_start: Mapped[datetime | None] = mapped_column(Timestamp)
    current_period_end: Mapped[datetime | None] = mapped_column(Timestamp)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Provider time of the last applied change, not local write time.
    updated_at: Mapped[datetime] = mapped_column(Timestamp, nullable=False)


class UsageCounter(Base):
    __tablename__ = "usage_counters"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "period_key", "resource_kind", name="uq_usage_counters_user_period_kind"
        ),
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    resource_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        Timestamp, default=utc_now, onupdate=utc_now
    )


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (UniqueConstraint("event_id", name="uq_webhook_events_event_id"),)

    event_id: Mapped[str] = mapped_column(String(191), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload_timestamp: Mapped[datetime] = mapped_column(Timestamp, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    received_at: Mapped[datetime] = mapped_column(Timestamp, default=utc_now)
    processed_at: Mapped[datetime | None] = mapped_column(Timestamp)


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint("provider_event_id", name="uq_payment_transactions_provider_event_id"),
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_event_id: Mapped[str] = mapped_column(String(191), nullable=False)
    provider_payment_id: Mapped[str | None] = mapped_column(String(191))
    amount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        _enum(TransactionStatus, "payment_transaction_status"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(Timestamp, default=utc_now)


__all__ = [
    "PaymentTransaction",
    "Subscription",
    "UsageCounter",
    "User",
    "WebhookEvent",
]
