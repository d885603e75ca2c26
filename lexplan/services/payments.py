"""Exactly-once application of confirmed external payments."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lexplan.config import EngineSettings, get_settings
from lexplan.db.models.core import ProcessedPayment, Subscription
from lexplan.domain.models import BillingCycle, PaymentConfirmation, PlanId, SubscriptionModel
from lexplan.logging import logger
from lexplan.services.catalog import PlanCatalog, catalog, parse_cycle
from lexplan.services.exceptions import (
    ConcurrencyConflict,
    InvalidRequest,
    PolicyError,
    ReconciliationRequired,
)
from lexplan.services.subscriptions import SubscriptionStore

APPLIED = "applied"
NEEDS_RECONCILIATION = "reconciliation_required"


class PaymentConfirmationGate:
    """Claims a payment session in the ledger, then upgrades the subscription.

    The ledger row is the idempotency key: whoever inserts it first applies
    the payment, everyone after that replays the stored outcome.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: EngineSettings | None = None,
        plans: PlanCatalog | None = None,
        store: SubscriptionStore | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.catalog = plans or catalog
        self.store = store or SubscriptionStore(session, self.settings, self.catalog)

    async def confirm(
        self,
        user_id: str,
        session_id: str,
        plan_id: PlanId | str,
        cycle: BillingCycle | str,
        now: datetime,
    ) -> PaymentConfirmation:
        session_id = (session_id or "").strip()
        if not session_id:
            raise InvalidRequest("A payment session id is required.")
        target = self.catalog.get_plan(plan_id)
        cycle = parse_cycle(cycle)

        subscription = await self.store.lock(user_id)
        # Settle a lapsed plan before replaying or applying.
        if self.store.demote_if_overdue(subscription, now):
            await self.session.flush()
        payment = await self._find(session_id)
        if payment is not None:
            return self._replay(payment, subscription, user_id, target.id, cycle)

        payment = ProcessedPayment(
            session_id=session_id,
            user_id=user_id,
            plan_id=target.id,
            billing_cycle=cycle,
            status=APPLIED,
            catalog_version=self.catalog.version,
            applied_at=now,
        )
        self.session.add(payment)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflict(f"Payment session {session_id} was claimed concurrently.") from exc

        try:
            subscription = await self.store.subscribe(
                user_id, target.id, cycle, now, payment_session_id=session_id
            )
        except PolicyError as exc:
            payment.status = NEEDS_RECONCILIATION
            payment.error_message = str(exc)
            await self.session.flush()
            logger.error(
                "payment_reconciliation_required",
                user_id=user_id,
                session_id=session_id,
                plan_id=target.id.value,
                billing_cycle=cycle.value,
                reason=exc.code,
                error=str(exc),
            )
            raise ReconciliationRequired(
                f"Payment {session_id} was captured but could not be applied: {exc}"
            ) from exc

        logger.info(
            "payment_applied",
            user_id=user_id,
            session_id=session_id,
            plan_id=target.id.value,
            billing_cycle=cycle.value,
        )
        return PaymentConfirmation(
            subscription=SubscriptionModel.model_validate(subscription),
            already_processed=False,
        )

    async def _find(self, session_id: str) -> ProcessedPayment | None:
        stmt = select(ProcessedPayment).where(ProcessedPayment.session_id == session_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _replay(
        self,
        payment: ProcessedPayment,
        subscription: Subscription,
        user_id: str,
        plan_id: PlanId,
        cycle: BillingCycle,
    ) -> PaymentConfirmation:
        if payment.user_id != user_id:
            logger.error(
                "payment_session_owner_mismatch",
                session_id=payment.session_id,
                owner_id=payment.user_id,
                user_id=user_id,
            )
            raise ReconciliationRequired(
                f"Payment {payment.session_id} belongs to a different user."
            )
        if payment.status == NEEDS_RECONCILIATION:
            raise ReconciliationRequired(
                f"Payment {payment.session_id} is awaiting reconciliation: {payment.error_message}"
            )
        if payment.plan_id != plan_id or payment.billing_cycle != cycle:
            logger.warning(
                "payment_replay_mismatch",
                session_id=payment.session_id,
                recorded_plan=payment.plan_id.value,
                recorded_cycle=payment.billing_cycle.value,
                requested_plan=plan_id.value,
                requested_cycle=cycle.value,
            )
        logger.info("payment_replayed", user_id=user_id, session_id=payment.session_id)
        return PaymentConfirmation(
            subscription=SubscriptionModel.model_validate(subscription),
            already_processed=True,
        )


__all__ = ["APPLIED", "NEEDS_RECONCILIATION", "PaymentConfirmationGate"]
