"""Billing API routes.

- GET    /api/plans: plan catalog, ascending by rank
- POST   /api/subscription: open the free subscription at signup
- GET    /api/subscription: current subscription (expiry resolved)
- DELETE /api/subscription: cancel back to free
- GET    /api/subscription/history: transition log
- POST   /api/subscription/quote: proration quote for a plan change
- POST   /api/payments/confirm: apply a confirmed payment session
- GET    /api/usage: usage against limits for every feature
- POST   /api/usage/{feature}: consume one unit of a feature
- POST   /api/usage/{feature}/require: consume one unit or answer 429
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from lexplan.api.dependencies import get_engine, get_user_id
from lexplan.domain.models import (
    FeatureUsage,
    PaymentConfirmation,
    Plan,
    ProrationQuote,
    SubscriptionEventModel,
    SubscriptionModel,
    UsageDecision,
)
from lexplan.services.engine import BillingEngine

router = APIRouter(tags=["billing"])


class QuoteRequest(BaseModel):
    plan_id: str = Field(min_length=1)
    billing_cycle: str = Field(min_length=1)


class ConfirmPaymentRequest(BaseModel):
    """Payment session already verified as paid by the gateway integration."""

    session_id: str = Field(min_length=1, max_length=191)
    plan_id: str = Field(min_length=1)
    billing_cycle: str = Field(min_length=1)


@router.get("/plans", response_model=list[Plan])
async def list_plans(engine: BillingEngine = Depends(get_engine)):
    return engine.list_plans()


@router.post(
    "/subscription",
    response_model=SubscriptionModel,
    status_code=status.HTTP_201_CREATED,
)
async def open_subscription(
    user_id: str = Depends(get_user_id),
    engine: BillingEngine = Depends(get_engine),
):
    return await engine.open_subscription(user_id)


@router.get("/subscription", response_model=SubscriptionModel)
async def get_subscription(
    user_id: str = Depends(get_user_id),
    engine: BillingEngine = Depends(get_engine),
):
    return await engine.get_subscription(user_id)


@router.delete("/subscription", response_model=SubscriptionModel)
async def cancel_subscription(
    user_id: str = Depends(get_user_id),
    engine: BillingEngine = Depends(get_engine),
):
    return await engine.cancel_subscription(user_id)


@router.get("/subscription/history", response_model=list[SubscriptionEventModel])
async def subscription_history(
    user_id: str = Depends(get_user_id),
    engine: BillingEngine = Depends(get_engine),
):
    return await engine.subscription_history(user_id)


@router.post("/subscription/quote", response_model=ProrationQuote)
async def proration_quote(
    payload: QuoteRequest,
    user_id: str = Depends(get_user_id),
    engine: BillingEngine = Depends(get_engine),
):
    return await engine.get_proration_quote(user_id, payload.plan_id, payload.billing_cycle)


@router.post("/payments/confirm", response_model=PaymentConfirmation)
async def confirm_payment(
    payload: ConfirmPaymentRequest,
    user_id: str = Depends(get_user_id),
    engine: BillingEngine = Depends(get_engine),
):
    return await engine.confirm_payment(
        user_id, payload.session_id, payload.plan_id, payload.billing_cycle
    )


@router.get("/usage", response_model=list[FeatureUsage])
async def usage_summary(
    user_id: str = Depends(get_user_id),
    engine: BillingEngine = Depends(get_engine),
):
    return await engine.usage_summary(user_id)


@router.post("/usage/{feature}", response_model=UsageDecision)
async def check_usage(
    feature: str,
    user_id: str = Depends(get_user_id),
    engine: BillingEngine = Depends(get_engine),
):
    return await engine.check_usage(user_id, feature)


@router.post("/usage/{feature}/require", response_model=UsageDecision)
async def require_usage(
    feature: str,
    user_id: str = Depends(get_user_id),
    engine: BillingEngine = Depends(get_engine),
):
    return await engine.require_usage(user_id, feature)
