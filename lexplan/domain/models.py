"""Pydantic models shared across logic/application layers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lexplan.utils.datetime import ensure_utc


class PlanId(str, Enum):
    FREE = "free"
    MID = "mid"
    TOP = "top"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class ResetPeriod(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


UNLIMITED = -1
DISABLED = 0


class FeatureLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    quota: int = Field(ge=UNLIMITED)
    reset_period: ResetPeriod = ResetPeriod.MONTHLY
    description: str = ""

    @property
    def unlimited(self) -> bool:
        return self.quota == UNLIMITED

    @property
    def enabled(self) -> bool:
        return self.quota != DISABLED


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: PlanId
    display_name: str
    description: str = ""
    monthly_price: Decimal = Field(ge=0)
    annual_price: Decimal = Field(ge=0, description="Per-month rate when billed annually.")
    currency: str = "INR"
    rank: int
    limits: dict[str, FeatureLimit] = Field(default_factory=dict)


class SubscriptionModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    plan_id: PlanId
    billing_cycle: BillingCycle
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime | None = None
    last_payment_session_id: str | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_window(self) -> "SubscriptionModel":
        if self.plan_id is not PlanId.FREE and self.end_date is None:
            raise ValueError("Paid subscriptions require an end date.")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date.")
        return self


class ProrationQuote(BaseModel):
    current_plan_id: PlanId
    target_plan_id: PlanId
    billing_cycle: BillingCycle
    currency: str
    full_amount: Decimal
    unused_credit: Decimal
    prorated_amount: Decimal
    days_remaining: int
    is_prorated: bool
    is_upgrade: bool


class UsageDecision(BaseModel):
    feature: str
    allowed: bool
    remaining: int | None = Field(default=None, description="None means unlimited.")
    limit: int
    period_key: str | None = None
    reset_period: ResetPeriod
    reason: str | None = None

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED


class FeatureUsage(BaseModel):
    feature: str
    used: int
    limit: int
    remaining: int | None = None
    period_key: str
    reset_period: ResetPeriod


class PaymentConfirmation(BaseModel):
    subscription: SubscriptionModel
    already_processed: bool = False


class SubscriptionEventModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    from_plan: PlanId | None = None
    to_plan: PlanId
    billing_cycle: BillingCycle
    payment_session_id: str | None = None
    start_date: datetime
    end_date: datetime | None = None
    occurred_at: datetime


__all__ = [
    "BillingCycle",
    "DISABLED",
    "FeatureLimit",
    "FeatureUsage",
    "PaymentConfirmation",
    "Plan",
    "PlanId",
    "ProrationQuote",
    "ResetPeriod",
    "SubscriptionEventModel",
    "SubscriptionModel",
    "SubscriptionStatus",
    "UNLIMITED",
    "UsageDecision",
]
