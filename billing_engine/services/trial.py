"""Trial window derivation."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.db.models.core import User
from billing_engine.domain.models import TrialStatus
from billing_engine.services.plans import DEFAULT_CATALOG, PlanCatalog
from billing_engine.utils.datetime import as_utc, utc_now

ONE_DAY = timedelta(days=1)


def trial_status(
    *,
    plan_id: str,
    trial_ends_at: datetime | None,
    created_at: datetime,
    now: datetime,
    catalog: PlanCatalog = DEFAULT_CATALOG,
) -> TrialStatus:
    """Derive trial state from stored fields; never persisted."""

    ends_at = as_utc(trial_ends_at)
    now = as_utc(now)
    is_active = catalog.is_trial_plan(plan_id) and ends_at is not None and ends_at > now
    days_remaining = math.ceil((ends_at - now) / ONE_DAY) if is_active else None
    return TrialStatus(
        plan_type=plan_id,
        trial_ends_at=ends_at,
        created_at=as_utc(created_at),
        is_trial_active=is_active,
        days_remaining=days_remaining,
    )


class TrialService:
    def __init__(self, session: AsyncSession, catalog: PlanCatalog | None = None) -> None:
        self.session = session
        self.catalog = catalog or DEFAULT_CATALOG

    async def get_trial_status(
        self, user_id: int, *, now: datetime | None = None
    ) -> TrialStatus | None:
        user = await self.session.get(User, user_id)
        if user is None:
            return None
        return trial_status(
            plan_id=user.plan_id,
            trial_ends_at=user.trial_ends_at,
            created_at=user.created_at,
            now=now or utc_now(),
            catalog=self.catalog,
        )


__all__ = ["TrialService", "trial_status"]
