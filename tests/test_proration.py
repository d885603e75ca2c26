"""Proration quotes for plan changes."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from lexplan.config import BillingSettings
from lexplan.db.models.core import Subscription
from lexplan.domain.models import BillingCycle, PlanId, SubscriptionStatus
from lexplan.services.catalog import catalog
from lexplan.services.exceptions import SubscriptionNotFound, UnknownPlan
from lexplan.services.proration import ProrationCalculator, full_amount, quote, round_amount
from lexplan.services.subscriptions import SubscriptionStore

NOW = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


def _subscription(plan_id: PlanId, cycle: BillingCycle, days_left: float | None) -> Subscription:
    return Subscription(
        user_id="user-1",
        plan_id=plan_id,
        billing_cycle=cycle,
        status=SubscriptionStatus.ACTIVE,
        start_date=NOW - timedelta(days=10),
        end_date=None if days_left is None else NOW + timedelta(days=days_left),
    )


def test_round_amount_is_half_up():
    assert round_amount(Decimal("1663.5"), Decimal("1")) == Decimal("1664")
    assert round_amount(Decimal("1663.49"), Decimal("1")) == Decimal("1663")
    assert round_amount(Decimal("16.635"), Decimal("0.01")) == Decimal("16.64")


def test_full_amount_for_annual_cycle_multiplies_monthly_rate():
    top = catalog.get_plan(PlanId.TOP)
    assert full_amount(top, BillingCycle.MONTHLY, BillingSettings()) == Decimal("2999")
    assert full_amount(top, BillingCycle.ANNUAL, BillingSettings()) == Decimal("29988")
    assert full_amount(top, BillingCycle.ANNUAL, BillingSettings(annual_billing_months=1)) == Decimal("2499")


def test_free_to_mid_monthly_charges_full_price():
    result = quote(
        _subscription(PlanId.FREE, BillingCycle.MONTHLY, None),
        catalog.get_plan(PlanId.MID),
        BillingCycle.MONTHLY,
        NOW,
        BillingSettings(),
    )

    assert result.current_plan_id is PlanId.FREE
    assert result.full_amount == Decimal("699")
    assert result.unused_credit == Decimal("0")
    assert result.prorated_amount == Decimal("699")
    assert result.days_remaining == 0
    assert result.is_prorated is False
    assert result.is_upgrade is True


def test_annual_upgrade_with_single_month_billing():
    result = quote(
        _subscription(PlanId.MID, BillingCycle.ANNUAL, 100),
        catalog.get_plan(PlanId.TOP),
        BillingCycle.ANNUAL,
        NOW,
        BillingSettings(annual_billing_months=1),
    )

    assert result.full_amount == Decimal("2499")
    assert result.unused_credit == Decimal("1663")
    assert result.prorated_amount == Decimal("836")
    assert result.days_remaining == 100
    assert result.is_prorated is True
    assert result.is_upgrade is True


def test_annual_upgrade_with_default_billing():
    result = quote(
        _subscription(PlanId.MID, BillingCycle.ANNUAL, 100),
        catalog.get_plan(PlanId.TOP),
        BillingCycle.ANNUAL,
        NOW,
        BillingSettings(),
    )

    assert result.full_amount == Decimal("29988")
    assert result.unused_credit == Decimal("1663")
    assert result.prorated_amount == Decimal("28325")


def test_partial_days_round_up():
    result = quote(
        _subscription(PlanId.MID, BillingCycle.MONTHLY, 9.25),
        catalog.get_plan(PlanId.TOP),
        BillingCycle.MONTHLY,
        NOW,
        BillingSettings(),
    )

    assert result.days_remaining == 10
    # 699 / 30 * 10 = 233.0
    assert result.unused_credit == Decimal("233")
    assert result.prorated_amount == Decimal("2766")


def test_credit_never_exceeds_full_amount():
    result = quote(
        _subscription(PlanId.MID, BillingCycle.ANNUAL, 200),
        catalog.get_plan(PlanId.TOP),
        BillingCycle.MONTHLY,
        NOW,
        BillingSettings(),
    )

    assert result.unused_credit == result.full_amount == Decimal("2999")
    assert result.prorated_amount == Decimal("0")
    assert result.is_prorated is True


def test_downgrade_quote_is_full_price_without_credit():
    result = quote(
        _subscription(PlanId.TOP, BillingCycle.MONTHLY, 20),
        catalog.get_plan(PlanId.MID),
        BillingCycle.MONTHLY,
        NOW,
        BillingSettings(),
    )

    assert result.prorated_amount == result.full_amount == Decimal("699")
    assert result.unused_credit == Decimal("0")
    assert result.is_upgrade is False
    assert result.is_prorated is False


def test_cycle_switch_on_same_plan_gets_no_credit():
    result = quote(
        _subscription(PlanId.MID, BillingCycle.MONTHLY, 20),
        catalog.get_plan(PlanId.MID),
        BillingCycle.ANNUAL,
        NOW,
        BillingSettings(),
    )

    assert result.full_amount == Decimal("5988")
    assert result.prorated_amount == Decimal("5988")
    assert result.is_upgrade is False


def test_lapsed_paid_plan_is_quoted_as_free():
    subscription = _subscription(PlanId.TOP, BillingCycle.MONTHLY, -1)
    result = quote(
        subscription,
        catalog.get_plan(PlanId.MID),
        BillingCycle.MONTHLY,
        NOW,
        BillingSettings(),
    )

    assert result.current_plan_id is PlanId.FREE
    assert result.prorated_amount == Decimal("699")
    assert result.is_upgrade is True
    assert subscription.plan_id is PlanId.TOP


def test_fractional_quantum():
    result = quote(
        _subscription(PlanId.MID, BillingCycle.MONTHLY, 7),
        catalog.get_plan(PlanId.TOP),
        BillingCycle.MONTHLY,
        NOW,
        BillingSettings(amount_quantum=Decimal("0.01")),
    )

    # 699 / 30 * 7 = 163.1
    assert result.unused_credit == Decimal("163.10")
    assert result.prorated_amount == Decimal("2835.90")
    assert result.full_amount - result.unused_credit == result.prorated_amount


@pytest.mark.asyncio
async def test_calculator_quotes_are_repeatable_and_read_only(session, settings):
    store = SubscriptionStore(session, settings)
    await store.open("user-1", NOW)
    await store.subscribe("user-1", PlanId.MID, BillingCycle.MONTHLY, NOW)
    calculator = ProrationCalculator(session, settings)

    later = NOW + timedelta(days=10)
    first = await calculator.quote("user-1", "top", "monthly", later)
    second = await calculator.quote("user-1", "top", "monthly", later)

    assert first == second
    assert first.days_remaining == 20
    assert first.unused_credit == Decimal("466")
    assert first.prorated_amount == Decimal("2533")
    assert (await store.get("user-1")).plan_id is PlanId.MID


@pytest.mark.asyncio
async def test_calculator_rejects_unknown_plan_and_user(session, settings):
    calculator = ProrationCalculator(session, settings)
    with pytest.raises(UnknownPlan):
        await calculator.quote("user-1", "platinum", "monthly", NOW)
    with pytest.raises(SubscriptionNotFound):
        await calculator.quote("ghost", "mid", "monthly", NOW)
