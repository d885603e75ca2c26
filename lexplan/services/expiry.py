"""Lazy expiry of paid plans, resolved whenever a subscription is read."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from lexplan.config import EngineSettings
from lexplan.db.models.core import Subscription
from lexplan.logging import logger
from lexplan.services.catalog import PlanCatalog
from lexplan.services.subscriptions import SubscriptionStore


class ExpiryResolver:
    def __init__(
        self,
        session: AsyncSession,
        settings: EngineSettings | None = None,
        plans: PlanCatalog | None = None,
        store: SubscriptionStore | None = None,
    ) -> None:
        self.session = session
        self.store = store or SubscriptionStore(session, settings, plans)

    async def resolve(self, user_id: str, now: datetime) -> Subscription:
        """Return the current subscription, demoted to free when it ran out."""

        return await self.store.expire_if_due(user_id, now)

    async def sweep(self, now: datetime, limit: int = 500) -> list[str]:
        """Demote up to ``limit`` overdue subscriptions in one pass.

        Reads never depend on this; it only lets operators settle stale rows
        without waiting for the owners to come back.
        """

        demoted: list[str] = []
        for subscription in await self.store.overdue(now, limit):
            if self.store.demote_if_overdue(subscription, now):
                demoted.append(subscription.user_id)
        if demoted:
            await self.session.flush()
        logger.info("expiry_sweep_completed", demoted=len(demoted), limit=limit)
        return demoted


__all__ = ["ExpiryResolver"]
