"""Subscription state machine driven by provider events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.db.models.core import PaymentTransaction, Subscription, User
from billing_engine.db.statements import insert_if_absent
from billing_engine.domain.models import (
    PAYMENT_EVENTS,
    TERMINAL_STATUSES,
    EventPayload,
    EventType,
    IngestOutcome,
    SubscriptionPayload,
    SubscriptionStatus,
    TransactionStatus,
)
from billing_engine.logging import logger
from billing_engine.services.accounts import find_user_by_customer
from billing_engine.services.exceptions import ReconciliationValidationError
from billing_engine.services.plans import DEFAULT_CATALOG, FREE_PLAN_ID, PlanCatalog
from billing_engine.utils.datetime import as_utc

# Provider-specific names mapped onto the normalised event vocabulary.
EVENT_ALIASES: dict[str, EventType] = {
    "subscription.created": EventType.SUBSCRIPTION_CREATED,
    "subscription.activated": EventType.SUBSCRIPTION_CREATED,
    "subscription.updated": EventType.SUBSCRIPTION_UPDATED,
    "subscription.canceled": EventType.SUBSCRIPTION_CANCELED,
    "subscription.cancelled": EventType.SUBSCRIPTION_CANCELED,
    "subscription.deleted": EventType.SUBSCRIPTION_CANCELED,
    "payment.succeeded": EventType.PAYMENT_SUCCEEDED,
    "payment.captured": EventType.PAYMENT_SUCCEEDED,
    "subscription.charged": EventType.PAYMENT_SUCCEEDED,
    "invoice.paid": EventType.PAYMENT_SUCCEEDED,
    "payment.failed": EventType.PAYMENT_FAILED,
    "invoice.payment_failed": EventType.PAYMENT_FAILED,
}

STATUS_ALIASES = {"cancelled": SubscriptionStatus.CANCELED}

_NON_TERMINAL = frozenset(SubscriptionStatus) - TERMINAL_STATUSES

# None stands for "no subscription on record yet".
VALID_SOURCES: dict[EventType, frozenset[SubscriptionStatus | None]] = {
    EventType.SUBSCRIPTION_CREATED: frozenset({SubscriptionStatus.TRIALING, None}),
    EventType.PAYMENT_SUCCEEDED: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE, SubscriptionStatus.UNPAID}
    ),
    EventType.PAYMENT_FAILED: frozenset({SubscriptionStatus.ACTIVE}),
    EventType.SUBSCRIPTION_CANCELED: _NON_TERMINAL,
    EventType.SUBSCRIPTION_UPDATED: _NON_TERMINAL,
}

FIXED_TARGETS: dict[EventType, SubscriptionStatus] = {
    EventType.SUBSCRIPTION_CREATED: SubscriptionStatus.ACTIVE,
    EventType.PAYMENT_SUCCEEDED: SubscriptionStatus.ACTIVE,
    EventType.PAYMENT_FAILED: SubscriptionStatus.PAST_DUE,
    EventType.SUBSCRIPTION_CANCELED: SubscriptionStatus.CANCELED,
}


def normalize_event_type(raw: str) -> EventType:
    event_type = EVENT_ALIASES.get(raw.strip().lower())
    if event_type is None:
        raise ReconciliationValidationError(f"Unrecognised event type: {raw!r}")
    return event_type


def parse_status(raw: str | None) -> SubscriptionStatus:
    if raw is None:
        raise ReconciliationValidationError("subscription.updated requires subscription.status")
    value = raw.strip().lower()
    if value in STATUS_ALIASES:
        return STATUS_ALIASES[value]
    try:
        return SubscriptionStatus(value)
    except ValueError:
        raise ReconciliationValidationError(f"Unknown subscription status: {raw!r}") from None


@dataclass(frozen=True)
class ReconcileResult:
    outcome: IngestOutcome
    status: SubscriptionStatus | None = None
    reason: str | None = None


class SubscriptionReconciler:
    """Apply one provider event to the user's subscription.

    Events older than (or as old as) the last applied change are ignored,
    which makes re-application of the same event a no-op.
    """

    def __init__(self, session: AsyncSession, catalog: PlanCatalog | None = None) -> None:
        self.session = session
        self.catalog = catalog or DEFAULT_CATALOG

    async def apply(
        self,
        *,
        event_id: str,
        event_type: str,
        payload_timestamp: datetime,
        payload: dict[str, Any],
    ) -> ReconcileResult:
        kind = normalize_event_type(event_type)
        occurred_at = as_utc(payload_timestamp)
        try:
            data = EventPayload.model_validate(payload)
        except ValidationError as exc:
            raise ReconciliationValidationError(f"Malformed payload: {exc.error_count()} error(s)") from exc

        user = await self._resolve_user(data)
        subscription = await self._load_subscription(user.id)
        incoming = data.subscription
        current = SubscriptionStatus(subscription.status) if subscription is not None else None

        new_lifecycle = False
        if kind is EventType.SUBSCRIPTION_CREATED:
            if incoming is None:
                raise ReconciliationValidationError("subscription.created requires a subscription object")
            new_lifecycle = (
                subscription is not None
                and current == SubscriptionStatus.CANCELED
                and subscription.provider_subscription_id != incoming.id
            )
        elif subscription is None:
            raise ReconciliationValidationError(f"No subscription on record for user {user.id}")
        elif incoming is not None and incoming.id != subscription.provider_subscription_id:
            logger.warning(
                "transition_rejected",
                event_id=event_id,
                event_type=kind.value,
                reason="subscription_mismatch",
                provider_subscription_id=incoming.id,
                current_subscription_id=subscription.provider_subscription_id,
            )
            return ReconcileResult(IngestOutcome.REJECTED, current, "subscription_mismatch")

        if subscription is not None and occurred_at <= as_utc(subscription.updated_at):
            logger.info(
                "stale_event_ignored",
                event_id=event_id,
                event_type=kind.value,
                user_id=user.id,
                payload_timestamp=occurred_at.isoformat(),
                current_updated_at=as_utc(subscription.updated_at).isoformat(),
                current_status=current.value,
            )
            return ReconcileResult(IngestOutcome.STALE, current, "stale")

        source = current
        if not new_lifecycle and source not in VALID_SOURCES[kind]:
            logger.warning(
                "transition_rejected",
                event_id=event_id,
                event_type=kind.value,
                user_id=user.id,
                source=source.value if source else None,
            )
            return ReconcileResult(IngestOutcome.REJECTED, source, "invalid_transition")

        if kind is EventType.SUBSCRIPTION_UPDATED:
            target = parse_status(incoming.status if incoming else None)
        else:
            target = FIXED_TARGETS[kind]

        plan_id = self._resolve_plan(kind, incoming, subscription)
        if subscription is None:
            subscription = Subscription(
                user_id=user.id,
                provider_subscription_id=incoming.id,
                plan_id=plan_id,
                status=target,
                cancel_at_period_end=False,
                updated_at=occurred_at,
            )
            self.session.add(subscription)
        else:
            if kind is EventType.SUBSCRIPTION_CREATED:
                subscription.provider_subscription_id = incoming.id
                subscription.cancel_at_period_end = False
            subscription.plan_id = plan_id
            subscription.status = target
            subscription.updated_at = occurred_at
        if incoming is not None:
            self._copy_period(subscription, incoming)

        user.subscription_status = target
        user.plan_id = FREE_PLAN_ID if target is SubscriptionStatus.CANCELED else plan_id

        if kind in PAYMENT_EVENTS:
            await self._record_payment(event_id, kind, user.id, data, occurred_at)

        await self.session.flush()
        logger.info(
            "subscription_reconciled",
            event_id=event_id,
            event_type=kind.value,
            user_id=user.id,
            source=source.value if source else None,
            target=target.value,
            plan_id=user.plan_id,
            new_lifecycle=new_lifecycle,
        )
        return ReconcileResult(IngestOutcome.APPLIED, target)

    # Internal helpers -------------------------------------------------

    async def _resolve_user(self, data: EventPayload) -> User:
        user: User | None = None
        if data.user_id is not None:
            user = await self.session.get(User, data.user_id, with_for_update=True)
        elif data.customer_id:
            user = await find_user_by_customer(self.session, data.customer_id, lock=True)
        else:
            raise ReconciliationValidationError("Payload carries neither user_id nor customer_id")
        if user is None:
            raise ReconciliationValidationError(
                f"Unknown user (user_id={data.user_id}, customer_id={data.customer_id})"
            )
        if data.customer_id and user.external_customer_id is None:
            owner = await find_user_by_customer(self.session, data.customer_id)
            if owner is not None and owner.id != user.id:
                raise ReconciliationValidationError(
                    f"Customer {data.customer_id!r} already belongs to user {owner.id}"
                )
            user.external_customer_id = data.customer_id
        return user

    async def _load_subscription(self, user_id: int) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.user_id == user_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _resolve_plan(
        self,
        kind: EventType,
        incoming: SubscriptionPayload | None,
        subscription: Subscription | None,
    ) -> str:
        plan_id = incoming.plan_id if incoming is not None else None
        if plan_id is None and subscription is not None and kind is not EventType.SUBSCRIPTION_CREATED:
            plan_id = subscription.plan_id
        if plan_id is None:
            raise ReconciliationValidationError(f"{kind.value} requires subscription.plan_id")
        if not self.catalog.is_known(plan_id):
            raise ReconciliationValidationError(f"Unknown plan: {plan_id!r}")
        return plan_id

    @staticmethod
    def _copy_period(subscription: Subscription, incoming: SubscriptionPayload) -> None:
        if incoming.current_period_start is not None:
            subscription.current_period_start = as_utc(incoming.current_period_start)
        if incoming.current_period_end is not None:
            subscription.current_period_end = as_utc(incoming.current_period_end)
        if incoming.cancel_at_period_end is not None:
            subscription.cancel_at_period_end = incoming.cancel_at_period_end

    async def _record_payment(
        self,
        event_id: str,
        kind: EventType,
        user_id: int,
        data: EventPayload,
        occurred_at: datetime,
    ) -> None:
        payment = data.payment
        status = (
            TransactionStatus.SUCCEEDED
            if kind is EventType.PAYMENT_SUCCEEDED
            else TransactionStatus.FAILED
        )
        stmt = insert_if_absent(
            self.session,
            PaymentTransaction,
            {
                "user_id": user_id,
                "provider_event_id": event_id,
                "provider_payment_id": payment.id if payment else None,
                "amount": payment.amount if payment else 0,
                "currency": payment.currency.upper() if payment else "USD",
                "status": status,
                "created_at": occurred_at,
            },
        )
        await self.session.execute(stmt)


__all__ = [
    "EVENT_ALIASES",
    "ReconcileResult",
    "SubscriptionReconciler",
    "VALID_SOURCES",
    "normalize_event_type",
    "parse_status",
]
