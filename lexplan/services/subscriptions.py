"""Subscription store: the per-user plan record and its state machine."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lexplan.config import EngineSettings, get_settings
from lexplan.db.models.core import Subscription, SubscriptionEvent
from lexplan.domain.models import BillingCycle, Plan, PlanId, SubscriptionStatus
from lexplan.logging import logger
from lexplan.services.catalog import PlanCatalog, catalog, parse_cycle
from lexplan.services.exceptions import (
    AlreadyOnPlan,
    ConcurrencyConflict,
    PlanDowngradeBlocked,
    SubscriptionNotFound,
)
from lexplan.utils.datetime import ensure_utc


def is_free(subscription: Subscription) -> bool:
    return subscription.plan_id == PlanId.FREE


def is_overdue(subscription: Subscription, now: datetime) -> bool:
    if is_free(subscription) or subscription.end_date is None:
        return False
    return ensure_utc(subscription.end_date) < ensure_utc(now)


class SubscriptionStore:
    def __init__(
        self,
        session: AsyncSession,
        settings: EngineSettings | None = None,
        plans: PlanCatalog | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.catalog = plans or catalog

    async def open(self, user_id: str, now: datetime) -> Subscription:
        """Create the free record at signup; existing records are returned as-is."""

        existing = await self._find(user_id)
        if existing is not None:
            return existing

        subscription = Subscription(
            user_id=user_id,
            plan_id=PlanId.FREE,
            billing_cycle=BillingCycle.MONTHLY,
            status=SubscriptionStatus.ACTIVE,
            start_date=now,
            end_date=None,
        )
        self.session.add(subscription)
        self._record(subscription, "opened", previous=None, occurred_at=now)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflict(f"Subscription for {user_id} was opened concurrently.") from exc
        logger.info("subscription_opened", user_id=user_id)
        return subscription

    async def get(self, user_id: str) -> Subscription:
        """Plain read; does not resolve expiry and takes no lock."""

        subscription = await self._find(user_id)
        if subscription is None:
            raise SubscriptionNotFound(f"No subscription for user {user_id}.")
        return subscription

    async def lock(self, user_id: str) -> Subscription:
        """Load the record for writing, serialising writers of the same user."""

        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        subscription = result.scalar_one_or_none()
        if subscription is None:
            raise SubscriptionNotFound(f"No subscription for user {user_id}.")
        return subscription

    async def subscribe(
        self,
        user_id: str,
        plan_id: PlanId | str,
        cycle: BillingCycle | str,
        now: datetime,
        *,
        payment_session_id: str | None = None,
    ) -> Subscription:
        target = self.catalog.get_plan(plan_id)
        cycle = parse_cycle(cycle)
        subscription = await self.lock(user_id)
        # An overdue paid plan counts as free; settle it under the same lock.
        self.demote_if_overdue(subscription, now)
        self.check_transition(subscription, target, cycle)

        previous = subscription.plan_id
        previous_cycle = subscription.billing_cycle
        start = self._next_start(subscription, now)
        subscription.plan_id = target.id
        subscription.billing_cycle = cycle
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.start_date = start
        subscription.end_date = start + self.cycle_length(cycle)
        if payment_session_id is not None:
            subscription.last_payment_session_id = payment_session_id
        self._record(
            subscription,
            "subscribed",
            previous=previous,
            occurred_at=now,
            payment_session_id=payment_session_id,
        )
        await self.session.flush()

        if previous == target.id:
            event = "subscription_cycle_switched"
        elif previous == PlanId.FREE:
            event = "subscription_started"
        else:
            event = "subscription_upgraded"
        logger.info(
            event,
            user_id=user_id,
            from_plan=previous.value,
            to_plan=target.id.value,
            from_cycle=previous_cycle.value,
            billing_cycle=cycle.value,
            end_date=subscription.end_date.isoformat(),
            payment_session_id=payment_session_id,
        )
        return subscription

    def check_transition(self, subscription: Subscription, target: Plan, cycle: BillingCycle) -> None:
        """Raise unless moving ``subscription`` to ``target``/``cycle`` is allowed."""

        current = subscription.plan_id
        if is_free(subscription):
            if target.id == PlanId.FREE:
                raise AlreadyOnPlan("Already on the free plan.")
            return

        if target.id == current:
            if cycle == subscription.billing_cycle:
                raise AlreadyOnPlan(
                    f"Already on the {target.display_name} plan ({cycle.value} billing)."
                )
            return

        if target.rank < self.catalog.rank(current):
            raise PlanDowngradeBlocked(
                f"Cannot move from {self.catalog.get_plan(current).display_name} to "
                f"{target.display_name} while subscribed. Cancel first, then subscribe again."
            )

    async def cancel(self, user_id: str, now: datetime) -> Subscription:
        subscription = await self.lock(user_id)
        if self.demote_if_overdue(subscription, now):
            # A lapsed plan is recorded as expired, not cancelled.
            await self.session.flush()
            return subscription
        if is_free(subscription):
            logger.info("subscription_cancel_noop", user_id=user_id)
            return subscription

        self._demote(subscription, now, kind="cancelled", status=SubscriptionStatus.CANCELLED)
        await self.session.flush()
        return subscription

    async def expire_if_due(self, user_id: str, now: datetime) -> Subscription:
        subscription = await self.lock(user_id)
        if self.demote_if_overdue(subscription, now):
            await self.session.flush()
        return subscription

    def demote_if_overdue(self, subscription: Subscription, now: datetime) -> bool:
        if not is_overdue(subscription, now):
            return False
        self._demote(subscription, now, kind="expired", status=SubscriptionStatus.EXPIRED)
        return True

    async def overdue(self, now: datetime, limit: int) -> Sequence[Subscription]:
        stmt = (
            select(Subscription)
            .where(
                Subscription.plan_id != PlanId.FREE,
                Subscription.end_date.is_not(None),
                Subscription.end_date < now,
            )
            .order_by(Subscription.end_date)
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def history(self, user_id: str) -> list[SubscriptionEvent]:
        await self.get(user_id)
        stmt = (
            select(SubscriptionEvent)
            .where(SubscriptionEvent.user_id == user_id)
            .order_by(SubscriptionEvent.occurred_at, SubscriptionEvent.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars())

    def cycle_length(self, cycle: BillingCycle) -> timedelta:
        billing = self.settings.billing
        if cycle is BillingCycle.ANNUAL:
            return timedelta(days=billing.annual_cycle_days)
        return timedelta(days=billing.monthly_cycle_days)

    # Internal helpers -------------------------------------------------

    async def _find(self, user_id: str) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _demote(
        self,
        subscription: Subscription,
        now: datetime,
        *,
        kind: str,
        status: SubscriptionStatus,
    ) -> None:
        previous = subscription.plan_id
        ended_at = subscription.end_date
        subscription.start_date = self._next_start(subscription, now)
        subscription.plan_id = PlanId.FREE
        subscription.billing_cycle = BillingCycle.MONTHLY
        subscription.status = status
        subscription.end_date = None
        self._record(subscription, kind, previous=previous, occurred_at=now)
        logger.info(
            f"subscription_{kind}",
            user_id=subscription.user_id,
            from_plan=previous.value,
            ended_at=ensure_utc(ended_at).isoformat() if ended_at else None,
        )

    @staticmethod
    def _next_start(subscription: Subscription, now: datetime) -> datetime:
        now = ensure_utc(now)
        if subscription.start_date is None:
            return now
        return max(now, ensure_utc(subscription.start_date))

    def _record(
        self,
        subscription: Subscription,
        kind: str,
        *,
        previous: PlanId | None,
        occurred_at: datetime,
        payment_session_id: str | None = None,
    ) -> None:
        self.session.add(
            SubscriptionEvent(
                user_id=subscription.user_id,
                kind=kind,
                from_plan=previous,
                to_plan=subscription.plan_id,
                billing_cycle=subscription.billing_cycle,
                payment_session_id=payment_session_id,
                start_date=subscription.start_date,
                end_date=subscription.end_date,
                occurred_at=occurred_at,
                details={"catalog_version": self.catalog.version},
            )
        )


__all__ = ["SubscriptionStore", "is_free", "is_overdue"]
