"""Unit-of-work facade exposing the billing contracts to transports."""

from __future__ import annotations

from datetime import datetime
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession

from lexplan.config import EngineSettings, get_settings
from lexplan.db.session import Database
from lexplan.domain.models import (
    BillingCycle,
    FeatureUsage,
    PaymentConfirmation,
    Plan,
    PlanId,
    ProrationQuote,
    SubscriptionEventModel,
    SubscriptionModel,
    UsageDecision,
)
from lexplan.logging import logger
from lexplan.services.catalog import PlanCatalog, catalog
from lexplan.services.exceptions import (
    ConcurrencyConflict,
    InvalidRequest,
    QuotaExceeded,
    ReconciliationRequired,
    StorageUnavailable,
)
from lexplan.services.expiry import ExpiryResolver
from lexplan.services.payments import PaymentConfirmationGate
from lexplan.services.proration import ProrationCalculator
from lexplan.services.subscriptions import SubscriptionStore
from lexplan.services.usage import UsageMeter
from lexplan.utils.datetime import utc_now
from lexplan.utils.retry import retry_async

T = TypeVar("T")
Work = Callable[[AsyncSession, datetime], Awaitable[T]]

# One fresh attempt after a lost race, then give up.
MAX_ATTEMPTS = 2
TRANSIENT_ERRORS = (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError)


class BillingEngine:
    def __init__(
        self,
        database: Database,
        settings: EngineSettings | None = None,
        plans: PlanCatalog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.database = database
        self.settings = settings or get_settings()
        self.catalog = plans or catalog
        self.clock = clock

    def list_plans(self) -> list[Plan]:
        return self.catalog.list_plans()

    async def open_subscription(self, user_id: str) -> SubscriptionModel:
        user_id = _require_user(user_id)

        async def work(session: AsyncSession, now: datetime) -> SubscriptionModel:
            store = SubscriptionStore(session, self.settings, self.catalog)
            return SubscriptionModel.model_validate(await store.open(user_id, now))

        return await self._run("open_subscription", work)

    async def get_subscription(self, user_id: str) -> SubscriptionModel:
        user_id = _require_user(user_id)

        async def work(session: AsyncSession, now: datetime) -> SubscriptionModel:
            resolver = ExpiryResolver(session, self.settings, self.catalog)
            return SubscriptionModel.model_validate(await resolver.resolve(user_id, now))

        return await self._run("get_subscription", work)

    async def get_proration_quote(
        self, user_id: str, plan_id: PlanId | str, cycle: BillingCycle | str
    ) -> ProrationQuote:
        user_id = _require_user(user_id)

        async def work(session: AsyncSession, now: datetime) -> ProrationQuote:
            calculator = ProrationCalculator(session, self.settings, self.catalog)
            return await calculator.quote(user_id, plan_id, cycle, now)

        return await self._run("get_proration_quote", work)

    async def confirm_payment(
        self,
        user_id: str,
        session_id: str,
        plan_id: PlanId | str,
        cycle: BillingCycle | str,
    ) -> PaymentConfirmation:
        user_id = _require_user(user_id)

        async def work(session: AsyncSession, now: datetime) -> PaymentConfirmation:
            gate = PaymentConfirmationGate(session, self.settings, self.catalog)
            return await gate.confirm(user_id, session_id, plan_id, cycle, now)

        try:
            return await self._run("confirm_payment", work)
        except ConcurrencyConflict as exc:
            logger.error(
                "payment_reconciliation_required",
                user_id=user_id,
                session_id=session_id,
                reason=exc.code,
                error=str(exc),
            )
            raise ReconciliationRequired(
                f"Payment {session_id} kept conflicting with concurrent updates."
            ) from exc

    async def cancel_subscription(self, user_id: str) -> SubscriptionModel:
        user_id = _require_user(user_id)

        async def work(session: AsyncSession, now: datetime) -> SubscriptionModel:
            store = SubscriptionStore(session, self.settings, self.catalog)
            return SubscriptionModel.model_validate(await store.cancel(user_id, now))

        return await self._run("cancel_subscription", work)

    async def check_usage(self, user_id: str, feature: str) -> UsageDecision:
        user_id = _require_user(user_id)

        async def work(session: AsyncSession, now: datetime) -> UsageDecision:
            meter = UsageMeter(session, self.settings, self.catalog)
            return await meter.check_and_consume(user_id, feature, now)

        return await self._run("check_usage", work)

    async def require_usage(self, user_id: str, feature: str) -> UsageDecision:
        """Consume one unit or raise ``QuotaExceeded``."""

        decision = await self.check_usage(user_id, feature)
        if not decision.allowed:
            raise QuotaExceeded(decision.reason or f"Usage limit reached for {feature}.")
        return decision

    async def usage_summary(self, user_id: str) -> list[FeatureUsage]:
        user_id = _require_user(user_id)

        async def work(session: AsyncSession, now: datetime) -> list[FeatureUsage]:
            meter = UsageMeter(session, self.settings, self.catalog)
            return await meter.summary(user_id, now)

        return await self._run("usage_summary", work)

    async def subscription_history(self, user_id: str) -> list[SubscriptionEventModel]:
        user_id = _require_user(user_id)

        async def work(session: AsyncSession, now: datetime) -> list[SubscriptionEventModel]:
            store = SubscriptionStore(session, self.settings, self.catalog)
            events = await store.history(user_id)
            return [SubscriptionEventModel.model_validate(event) for event in events]

        return await self._run("subscription_history", work)

    async def sweep_expired(self, limit: int = 500) -> list[str]:
        async def work(session: AsyncSession, now: datetime) -> list[str]:
            resolver = ExpiryResolver(session, self.settings, self.catalog)
            return await resolver.sweep(now, limit)

        return await self._run("sweep_expired", work)

    async def _run(self, name: str, work: Work[T]) -> T:
        async def attempt() -> T:
            now = self.clock()
            try:
                async with self.database.session() as session:
                    try:
                        result = await work(session, now)
                    except ReconciliationRequired:
                        # The ledger claim must survive the failure.
                        await session.commit()
                        raise
                    try:
                        await session.commit()
                    except sa_exc.IntegrityError as exc:
                        raise ConcurrencyConflict(f"{name} lost a race on commit.") from exc
                    return result
            except TRANSIENT_ERRORS as exc:
                logger.warning("storage_unavailable", operation=name, error=str(exc))
                raise StorageUnavailable(f"Storage unavailable during {name}.") from exc

        return await retry_async(
            attempt,
            max_attempts=MAX_ATTEMPTS,
            base_delay=0,
            retry_on=(ConcurrencyConflict,),
            logger=logger,
            operation_name=name,
        )


def _require_user(user_id: str) -> str:
    user_id = (user_id or "").strip()
    if not user_id:
        raise InvalidRequest("A user id is required.")
    return user_id


__all__ = ["BillingEngine"]
