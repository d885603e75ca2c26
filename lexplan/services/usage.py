"""Per-feature usage metering against plan quotas."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lexplan.config import EngineSettings, get_settings
from lexplan.db.models.core import UsageRecord
from lexplan.domain.models import FeatureLimit, FeatureUsage, ResetPeriod, UsageDecision
from lexplan.logging import logger
from lexplan.services.catalog import PlanCatalog, catalog
from lexplan.services.exceptions import ConcurrencyConflict
from lexplan.services.expiry import ExpiryResolver
from lexplan.utils.datetime import ensure_utc

FEATURE_DISABLED = "Feature not available on this plan."
QUOTA_REACHED = "Usage limit reached for this period."


def period_key(now: datetime, period: ResetPeriod, tz: str = "UTC") -> str:
    local = ensure_utc(now).astimezone(ZoneInfo(tz))
    if period is ResetPeriod.DAILY:
        return local.strftime("%Y-%m-%d")
    return local.strftime("%Y-%m")


class UsageMeter:
    def __init__(
        self,
        session: AsyncSession,
        settings: EngineSettings | None = None,
        plans: PlanCatalog | None = None,
        resolver: ExpiryResolver | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.catalog = plans or catalog
        self.resolver = resolver or ExpiryResolver(session, self.settings, self.catalog)

    async def check_and_consume(self, user_id: str, feature: str, now: datetime) -> UsageDecision:
        limit = await self._resolve_limit(user_id, feature, now)
        key = period_key(now, limit.reset_period, self.settings.usage.timezone)

        if limit.unlimited:
            return self._decision(feature, limit, True, None, None)
        if not limit.enabled:
            logger.info("usage_denied", user_id=user_id, feature=feature, reason="disabled")
            return self._decision(feature, limit, False, 0, key, FEATURE_DISABLED)

        count = await self._increment(user_id, feature, key, limit.quota, now)
        if count is None:
            current = await self._count(user_id, feature, key)
            if current is not None:
                logger.info(
                    "usage_denied",
                    user_id=user_id,
                    feature=feature,
                    period_key=key,
                    used=current,
                    limit=limit.quota,
                )
                return self._decision(
                    feature, limit, False, max(0, limit.quota - current), key, QUOTA_REACHED
                )
            count = await self._insert_first(user_id, feature, key, now)

        return self._decision(feature, limit, True, limit.quota - count, key)

    async def peek(self, user_id: str, feature: str, now: datetime) -> UsageDecision:
        """Report whether one more use would be admitted, without consuming it."""

        limit = await self._resolve_limit(user_id, feature, now)
        key = period_key(now, limit.reset_period, self.settings.usage.timezone)
        if limit.unlimited:
            return self._decision(feature, limit, True, None, None)
        if not limit.enabled:
            return self._decision(feature, limit, False, 0, key, FEATURE_DISABLED)

        used = await self._count(user_id, feature, key) or 0
        remaining = max(0, limit.quota - used)
        return self._decision(
            feature, limit, remaining > 0, remaining, key, None if remaining else QUOTA_REACHED
        )

    async def summary(self, user_id: str, now: datetime) -> list[FeatureUsage]:
        subscription = await self.resolver.resolve(user_id, now)
        plan = self.catalog.get_plan(subscription.plan_id)
        tz = self.settings.usage.timezone

        items: list[FeatureUsage] = []
        for feature, limit in plan.limits.items():
            key = period_key(now, limit.reset_period, tz)
            used = await self._count(user_id, feature, key) or 0
            remaining = None if limit.unlimited else max(0, limit.quota - used)
            items.append(
                FeatureUsage(
                    feature=feature,
                    used=used,
                    limit=limit.quota,
                    remaining=remaining,
                    period_key=key,
                    reset_period=limit.reset_period,
                )
            )
        return items

    # Internal helpers -------------------------------------------------

    async def _resolve_limit(self, user_id: str, feature: str, now: datetime) -> FeatureLimit:
        subscription = await self.resolver.resolve(user_id, now)
        return self.catalog.feature_limit(subscription.plan_id, feature)

    async def _increment(
        self, user_id: str, feature: str, key: str, quota: int, now: datetime
    ) -> int | None:
        """Atomically bump the counter while it is below ``quota``.

        Returns the new count, or ``None`` when no row was updated because the
        row is missing or already at the cap.
        """

        stmt = (
            update(UsageRecord)
            .where(
                UsageRecord.user_id == user_id,
                UsageRecord.feature == feature,
                UsageRecord.period_key == key,
                UsageRecord.count < quota,
            )
            .values(count=UsageRecord.count + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self._count(user_id, feature, key)

    async def _insert_first(self, user_id: str, feature: str, key: str, now: datetime) -> int:
        self.session.add(
            UsageRecord(
                user_id=user_id,
                feature=feature,
                period_key=key,
                count=1,
                created_at=now,
                updated_at=now,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflict(
                f"Usage row {feature}/{key} for {user_id} was created concurrently."
            ) from exc
        return 1

    async def _count(self, user_id: str, feature: str, key: str) -> int | None:
        stmt = select(UsageRecord.count).where(
            UsageRecord.user_id == user_id,
            UsageRecord.feature == feature,
            UsageRecord.period_key == key,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _decision(
        feature: str,
        limit: FeatureLimit,
        allowed: bool,
        remaining: int | None,
        key: str | None,
        reason: str | None = None,
    ) -> UsageDecision:
        return UsageDecision(
            feature=feature,
            allowed=allowed,
            remaining=remaining,
            limit=limit.quota,
            period_key=key,
            reset_period=limit.reset_period,
            reason=reason,
        )


__all__ = ["UsageMeter", "period_key"]
