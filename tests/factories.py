"""Row builders shared by the service tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from billing_engine.db.models.core import Subscription, User
from billing_engine.domain.models import SubscriptionStatus

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class DummyDatabase:
    """Stands in for ``Database`` in engine and API tests."""

    def __init__(self, session) -> None:
        self._session = session

    @asynccontextmanager
    async def session(self):
        try:
            yield self._session
        except Exception:
            await self._session.rollback()
            raise

    async def create_all(self) -> None:
        return None

    async def dispose(self) -> None:
        return None


async def make_user(
    session,
    *,
    plan_id: str = "free",
    status: SubscriptionStatus = SubscriptionStatus.TRIALING,
    trial_ends_at: datetime | None = None,
    external_customer_id: str | None = None,
) -> User:
    user = User(
        plan_id=plan_id,
        subscription_status=status,
        trial_ends_at=trial_ends_at,
        external_customer_id=external_customer_id,
        created_at=NOW - timedelta(days=2),
    )
    session.add(user)
    await session.commit()
    return user


async def make_subscription(
    session,
    user: User,
    *,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    plan_id: str = "pro_monthly",
    provider_subscription_id: str = "sub_1",
    updated_at: datetime = NOW - timedelta(days=1),
    current_period_end: datetime | None = None,
    cancel_at_period_end: bool = False,
) -> Subscription:
    subscription = Subscription(
        user_id=user.id,
        provider_subscription_id=provider_subscription_id,
        plan_id=plan_id,
        status=status,
        current_period_end=current_period_end,
        cancel_at_period_end=cancel_at_period_end,
        updated_at=updated_at,
    )
    user.plan_id = plan_id
    user.subscription_status = status
    session.add(subscription)
    await session.commit()
    return subscription
