"""Plan catalog lookups and ordering."""

from __future__ import annotations

from decimal import Decimal

import pytest

from lexplan.domain.models import BillingCycle, PlanId, ResetPeriod
from lexplan.services.catalog import (
    CATALOG_VERSION,
    catalog,
    parse_cycle,
    parse_plan_id,
    price_for_cycle,
)
from lexplan.services.exceptions import InvalidBillingCycle, UnknownFeature, UnknownPlan


def test_ranks_are_strictly_ordered():
    assert catalog.rank(PlanId.FREE) < catalog.rank(PlanId.MID) < catalog.rank(PlanId.TOP)


def test_list_plans_ascending_by_rank():
    plans = catalog.list_plans()
    assert [plan.id for plan in plans] == [PlanId.FREE, PlanId.MID, PlanId.TOP]
    assert [plan.rank for plan in plans] == sorted(plan.rank for plan in plans)


def test_get_plan_accepts_strings():
    plan = catalog.get_plan(" Mid ")
    assert plan.id is PlanId.MID
    assert plan.monthly_price == Decimal("699")
    assert plan.annual_price == Decimal("499")


def test_unknown_plan_is_rejected():
    with pytest.raises(UnknownPlan):
        catalog.get_plan("platinum")
    with pytest.raises(UnknownPlan):
        parse_plan_id("")


def test_parse_cycle():
    assert parse_cycle("ANNUAL") is BillingCycle.ANNUAL
    with pytest.raises(InvalidBillingCycle):
        parse_cycle("weekly")


def test_feature_limits_follow_plan_tier():
    free_queries = catalog.feature_limit(PlanId.FREE, "ai_legal_queries")
    assert free_queries.quota == 5
    assert free_queries.reset_period is ResetPeriod.DAILY

    assert catalog.feature_limit(PlanId.MID, "ai_legal_queries").unlimited
    assert catalog.feature_limit(PlanId.MID, "pdf_reports").quota == 20
    assert not catalog.has_feature(PlanId.FREE, "pdf_reports")
    assert catalog.has_feature(PlanId.TOP, "advanced_analytics")


def test_unknown_feature_is_rejected():
    with pytest.raises(UnknownFeature):
        catalog.feature_limit(PlanId.TOP, "teleportation")


def test_enabled_features_grow_with_rank():
    free = set(catalog.enabled_features(PlanId.FREE))
    mid = set(catalog.enabled_features(PlanId.MID))
    top = set(catalog.enabled_features(PlanId.TOP))
    assert free < mid < top
    assert "chrome_extension" not in free


def test_every_plan_defines_the_same_features():
    names = set(catalog.features())
    for plan in catalog.list_plans():
        assert set(plan.limits) == names


def test_price_for_cycle_is_per_month_rate():
    top = catalog.get_plan(PlanId.TOP)
    assert price_for_cycle(top, BillingCycle.MONTHLY) == Decimal("2999")
    assert price_for_cycle(top, BillingCycle.ANNUAL) == Decimal("2499")
    assert catalog.version == CATALOG_VERSION
