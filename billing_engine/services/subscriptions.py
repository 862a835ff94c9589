"""Subscription read helpers and the lapsed-cancellation sweep."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.db.models.core import Subscription, User
from billing_engine.domain.models import AccessLevel, SubscriptionStatus
from billing_engine.logging import logger
from billing_engine.services.plans import FREE_PLAN_ID
from billing_engine.utils.datetime import as_utc, utc_now


def is_period_over(subscription: Subscription, now: datetime) -> bool:
    end = as_utc(subscription.current_period_end)
    return end is not None and as_utc(now) > end


def access_level(subscription: Subscription | None, now: datetime | None = None) -> AccessLevel:
    """Full while active and inside the period; read-only once a cancellation has lapsed."""

    if subscription is None:
        return AccessLevel.NONE
    now = now or utc_now()
    status = SubscriptionStatus(subscription.status)
    expired = is_period_over(subscription, now)
    if status == SubscriptionStatus.ACTIVE and not expired:
        return AccessLevel.FULL
    cancelled = status == SubscriptionStatus.CANCELED or subscription.cancel_at_period_end
    if cancelled and expired:
        return AccessLevel.READONLY
    return AccessLevel.NONE


class SubscriptionService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_subscription(self, user_id: int) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def expire_lapsed_subscriptions(self, now: datetime | None = None) -> int:
        """Cancel active subscriptions flagged to end whose period has passed."""

        now = now or utc_now()
        stmt = (
            select(Subscription)
            .where(
                and_(
                    Subscription.status == SubscriptionStatus.ACTIVE,
                    Subscription.cancel_at_period_end.is_(True),
                    Subscription.current_period_end.is_not(None),
                    Subscription.current_period_end < now,
                )
            )
            .order_by(Subscription.id)
            .with_for_update()
        )
        lapsed = list((await self.session.execute(stmt)).scalars())
        for subscription in lapsed:
            subscription.status = SubscriptionStatus.CANCELED
            subscription.updated_at = max(now, as_utc(subscription.updated_at))
            user = await self.session.get(User, subscription.user_id, with_for_update=True)
            if user is not None:
                user.plan_id = FREE_PLAN_ID
                user.subscription_status = SubscriptionStatus.CANCELED
            logger.info(
                "subscription_lapsed",
                user_id=subscription.user_id,
                provider_subscription_id=subscription.provider_subscription_id,
                current_period_end=as_utc(subscription.current_period_end).isoformat(),
            )
        await self.session.flush()
        return len(lapsed)


__all__ = ["SubscriptionService", "access_level", "is_period_over"]
