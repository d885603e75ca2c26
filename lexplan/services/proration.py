"""Mid-cycle plan change pricing.

Quotes never touch storage beyond a plain read of the subscription, so the
same inputs always produce the same quote until a payment is applied.

Conventions:

* ``full_amount`` is what the target plan costs today: the monthly price, or
  the per-month annual rate times ``annual_billing_months``.
* Unused time on the current plan is credited at that plan's per-month rate
  for its current cycle divided by a fixed ``proration_month_days`` month.
* Amounts are rounded half-up to ``amount_quantum`` and the charge is derived
  from the rounded credit, so ``prorated = max(0, full - credit)`` is exact.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from lexplan.config import BillingSettings, EngineSettings, get_settings
from lexplan.db.models.core import Subscription
from lexplan.domain.models import BillingCycle, Plan, PlanId, ProrationQuote
from lexplan.services.catalog import PlanCatalog, catalog, parse_cycle, price_for_cycle
from lexplan.services.subscriptions import SubscriptionStore, is_free, is_overdue
from lexplan.utils.datetime import days_until

ZERO = Decimal("0")


def round_amount(amount: Decimal, quantum: Decimal) -> Decimal:
    steps = (amount / quantum).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return steps * quantum


def full_amount(plan: Plan, cycle: BillingCycle, billing: BillingSettings) -> Decimal:
    rate = price_for_cycle(plan, cycle)
    if cycle is BillingCycle.ANNUAL:
        return rate * billing.annual_billing_months
    return rate


def quote(
    subscription: Subscription,
    target: Plan,
    cycle: BillingCycle,
    now: datetime,
    billing: BillingSettings,
    plans: PlanCatalog = catalog,
) -> ProrationQuote:
    # A lapsed paid plan is quoted as free without demoting it here.
    lapsed = is_free(subscription) or is_overdue(subscription, now)
    current = plans.get_plan(PlanId.FREE if lapsed else subscription.plan_id)

    full = round_amount(full_amount(target, cycle, billing), billing.amount_quantum)
    credit = ZERO
    days_remaining = 0
    if not lapsed and current.rank < target.rank:
        days_remaining = days_until(subscription.end_date, now)
        daily_rate = price_for_cycle(current, subscription.billing_cycle) / billing.proration_month_days
        credit = min(full, round_amount(daily_rate * days_remaining, billing.amount_quantum))

    return ProrationQuote(
        current_plan_id=current.id,
        target_plan_id=target.id,
        billing_cycle=cycle,
        currency=target.currency,
        full_amount=full,
        unused_credit=credit,
        prorated_amount=max(ZERO, full - credit),
        days_remaining=days_remaining,
        is_prorated=credit > ZERO,
        is_upgrade=target.rank > current.rank,
    )


class ProrationCalculator:
    def __init__(
        self,
        session: AsyncSession,
        settings: EngineSettings | None = None,
        plans: PlanCatalog | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.catalog = plans or catalog
        self.store = SubscriptionStore(session, self.settings, self.catalog)

    async def quote(
        self,
        user_id: str,
        plan_id: PlanId | str,
        cycle: BillingCycle | str,
        now: datetime,
    ) -> ProrationQuote:
        target = self.catalog.get_plan(plan_id)
        cycle = parse_cycle(cycle)
        subscription = await self.store.get(user_id)
        return quote(subscription, target, cycle, now, self.settings.billing, self.catalog)


__all__ = ["ProrationCalculator", "full_amount", "quote", "round_amount"]
