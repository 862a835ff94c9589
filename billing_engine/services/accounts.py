"""Account bootstrap used by onboarding flows and tests."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.db.models.core import User
from billing_engine.domain.models import SubscriptionStatus
from billing_engine.services.plans import FREE_PLAN_ID
from billing_engine.utils.datetime import utc_now


async def create_user(
    session: AsyncSession,
    *,
    trial_days: int,
    external_customer_id: str | None = None,
    now: datetime | None = None,
) -> User:
    """Create a free-tier user whose trial starts now."""

    now = now or utc_now()
    user = User(
        plan_id=FREE_PLAN_ID,
        subscription_status=SubscriptionStatus.TRIALING,
        trial_ends_at=now + timedelta(days=trial_days) if trial_days > 0 else None,
        external_customer_id=external_customer_id,
        created_at=now,
    )
    session.add(user)
    await session.flush()
    return user


async def find_user_by_customer(
    session: AsyncSession, external_customer_id: str, *, lock: bool = False
) -> User | None:
    stmt = select(User).where(User.external_customer_id == external_customer_id)
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


__all__ = ["create_user", "find_user_by_customer"]
