"""Static plan catalog: tiers, prices and per-feature quotas."""

from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from lexplan.domain.models import (
    DISABLED,
    UNLIMITED,
    BillingCycle,
    FeatureLimit,
    Plan,
    PlanId,
    ResetPeriod,
)
from lexplan.services.exceptions import InvalidBillingCycle, UnknownFeature, UnknownPlan

CATALOG_VERSION = "2025.06"

DAILY = ResetPeriod.DAILY
MONTHLY = ResetPeriod.MONTHLY


def _limit(quota: int, period: ResetPeriod = MONTHLY, description: str = "") -> FeatureLimit:
    return FeatureLimit(quota=quota, reset_period=period, description=description)


_PLANS: tuple[Plan, ...] = (
    Plan(
        id=PlanId.FREE,
        display_name="Basic",
        description="Essential legal guidance for individuals",
        monthly_price=Decimal("0"),
        annual_price=Decimal("0"),
        rank=0,
        limits={
            "ai_legal_queries": _limit(5, DAILY, "5 AI legal queries / day"),
            "contract_comparisons": _limit(1, DAILY, "1 contract comparison / day"),
            "glossary_lookups": _limit(10, DAILY, "10 glossary lookups / day"),
            "document_analyses": _limit(DISABLED, MONTHLY, "Document analysis"),
            "pdf_reports": _limit(DISABLED, MONTHLY, "PDF reports"),
            "document_upload_ocr": _limit(DISABLED),
            "voice_queries": _limit(DISABLED),
            "chrome_extension": _limit(DISABLED),
            "chat_sharing": _limit(DISABLED),
            "priority_support": _limit(DISABLED),
            "advanced_analytics": _limit(DISABLED),
        },
    ),
    Plan(
        id=PlanId.MID,
        display_name="Pro Advisor",
        description="For freelancers and proactive professionals",
        monthly_price=Decimal("699"),
        annual_price=Decimal("499"),
        rank=1,
        limits={
            "ai_legal_queries": _limit(UNLIMITED, DAILY, "Unlimited AI legal chat"),
            "contract_comparisons": _limit(UNLIMITED, DAILY, "Unlimited contract comparisons"),
            "glossary_lookups": _limit(UNLIMITED, DAILY, "Unlimited glossary lookups"),
            "document_analyses": _limit(50, MONTHLY, "50 document analyses / month"),
            "pdf_reports": _limit(20, MONTHLY, "20 PDF reports / month"),
            "document_upload_ocr": _limit(UNLIMITED, description="Document upload & OCR"),
            "voice_queries": _limit(UNLIMITED, description="Voice-to-text queries"),
            "chrome_extension": _limit(UNLIMITED, description="Chrome extension access"),
            "chat_sharing": _limit(UNLIMITED, description="Chat sharing with public URLs"),
            "priority_support": _limit(UNLIMITED, description="Priority email support"),
            "advanced_analytics": _limit(DISABLED),
        },
    ),
    Plan(
        id=PlanId.TOP,
        display_name="Enterprise",
        description="For small firms and legal teams",
        monthly_price=Decimal("2999"),
        annual_price=Decimal("2499"),
        rank=2,
        limits={
            "ai_legal_queries": _limit(UNLIMITED, DAILY, "Unlimited AI legal chat"),
            "contract_comparisons": _limit(UNLIMITED, DAILY, "Unlimited contract comparisons"),
            "glossary_lookups": _limit(UNLIMITED, DAILY, "Unlimited glossary lookups"),
            "document_analyses": _limit(UNLIMITED, MONTHLY, "Unlimited document analysis"),
            "pdf_reports": _limit(UNLIMITED, MONTHLY, "Unlimited PDF reports"),
            "document_upload_ocr": _limit(UNLIMITED, description="Document upload & OCR"),
            "voice_queries": _limit(UNLIMITED, description="Voice-to-text queries"),
            "chrome_extension": _limit(UNLIMITED, description="Chrome extension access"),
            "chat_sharing": _limit(UNLIMITED, description="Chat sharing with public URLs"),
            "priority_support": _limit(UNLIMITED, description="Priority email support"),
            "advanced_analytics": _limit(UNLIMITED, description="Advanced analytics dashboard"),
        },
    ),
)


class PlanCatalog:
    """Read-only lookup over a fixed set of plans."""

    def __init__(self, plans: tuple[Plan, ...] = _PLANS, version: str = CATALOG_VERSION) -> None:
        self.version = version
        ordered = sorted(plans, key=lambda plan: plan.rank)
        self._plans: Mapping[PlanId, Plan] = MappingProxyType({plan.id: plan for plan in ordered})

    def get_plan(self, plan_id: PlanId | str) -> Plan:
        key = parse_plan_id(plan_id)
        try:
            return self._plans[key]
        except KeyError:
            raise UnknownPlan(f"Unknown plan: {plan_id}") from None

    def rank(self, plan_id: PlanId | str) -> int:
        return self.get_plan(plan_id).rank

    def list_plans(self) -> list[Plan]:
        return list(self._plans.values())

    def feature_limit(self, plan_id: PlanId | str, feature: str) -> FeatureLimit:
        plan = self.get_plan(plan_id)
        try:
            return plan.limits[feature]
        except KeyError:
            raise UnknownFeature(f"Unknown feature: {feature}") from None

    def has_feature(self, plan_id: PlanId | str, feature: str) -> bool:
        return self.feature_limit(plan_id, feature).enabled

    def enabled_features(self, plan_id: PlanId | str) -> list[str]:
        plan = self.get_plan(plan_id)
        return [name for name, limit in plan.limits.items() if limit.enabled]

    def features(self) -> list[str]:
        names: dict[str, None] = {}
        for plan in self._plans.values():
            names.update(dict.fromkeys(plan.limits))
        return list(names)


def parse_plan_id(value: PlanId | str) -> PlanId:
    if isinstance(value, PlanId):
        return value
    try:
        return PlanId(str(value).strip().lower())
    except ValueError:
        raise UnknownPlan(f"Unknown plan: {value}") from None


def parse_cycle(value: BillingCycle | str) -> BillingCycle:
    if isinstance(value, BillingCycle):
        return value
    try:
        return BillingCycle(str(value).strip().lower())
    except ValueError:
        raise InvalidBillingCycle(f"Unknown billing cycle: {value}") from None


def price_for_cycle(plan: Plan, cycle: BillingCycle) -> Decimal:
    """Per-month rate the plan charges on ``cycle``."""

    if cycle is BillingCycle.ANNUAL:
        return plan.annual_price
    return plan.monthly_price


catalog = PlanCatalog()

__all__ = [
    "CATALOG_VERSION",
    "PlanCatalog",
    "catalog",
    "parse_cycle",
    "parse_plan_id",
    "price_for_cycle",
]
