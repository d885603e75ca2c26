"""SQLAlchemy models for subscriptions, usage counters and the payment ledger."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lexplan.db.base import Base
from lexplan.domain.models import BillingCycle, PlanId, SubscriptionStatus
from lexplan.utils.datetime import utc_now


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


PlanIdColumn = Enum(PlanId, name="plan_id", values_callable=_values)
BillingCycleColumn = Enum(BillingCycle, name="billing_cycle", values_callable=_values)


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (UniqueConstraint("user_id", name="uq_subscriptions_user_id"),)

    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    plan_id: Mapped[PlanId] = mapped_column(PlanIdColumn, default=PlanId.FREE, nullable=False)
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        BillingCycleColumn, default=BillingCycle.MONTHLY, nullable=False
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, name="subscription_status", values_callable=_values),
        default=SubscriptionStatus.ACTIVE,
        nullable=False,
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_payment_session_id: Mapped[str | None] = mapped_column(String(191))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class UsageRecord(Base):
    __tablename__ = "usage_records"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "feature", "period_key", name="uq_usage_records_user_feature_period"
        ),
    )

    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    feature: Mapped[str] = mapped_column(String(64), nullable=False)
    period_key: Mapped[str] = mapped_column(String(10), nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class ProcessedPayment(Base):
    __tablename__ = "processed_payments"
    __table_args__ = (UniqueConstraint("session_id", name="uq_processed_payments_session_id"),)

    session_id: Mapped[str] = mapped_column(String(191), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    plan_id: Mapped[PlanId] = mapped_column(PlanIdColumn, nullable=False)
    billing_cycle: Mapped[BillingCycle] = mapped_column(BillingCycleColumn, nullable=False)
    status: Mapped[str] = mapped_column(
        Enum("applied", "reconciliation_required", name="payment_status"),
        default="applied",
        nullable=False,
    )
    catalog_version: Mapped[str] = mapped_column(String(32), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class SubscriptionEvent(Base):
    __tablename__ = "subscription_events"

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(
        Enum("opened", "subscribed", "cancelled", "expired", name="subscription_event_kind"),
        nullable=False,
    )
    from_plan: Mapped[PlanId | None] = mapped_column(PlanIdColumn)
    to_plan: Mapped[PlanId] = mapped_column(PlanIdColumn, nullable=False)
    billing_cycle: Mapped[BillingCycle] = mapped_column(BillingCycleColumn, nullable=False)
    payment_session_id: Mapped[str | None] = mapped_column(String(191))
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    details: Mapped[dict | None] = mapped_column(JSON)


__all__ = [
    "ProcessedPayment",
    "Subscription",
    "SubscriptionEvent",
    "UsageRecord",
]
