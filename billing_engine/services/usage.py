"""Monthly usage ledger and quota enforcement."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.db.models.core import UsageCounter, User
from billing_engine.db.statements import insert_if_absent
from billing_engine.domain.models import QuotaDecision, ResourceKind, ResourceUsage, UsageSummary
from billing_engine.logging import logger
from billing_engine.services.exceptions import (
    QuotaExceededError,
    TransientStorageError,
    UserNotFoundError,
)
from billing_engine.services.plans import DEFAULT_CATALOG, UNLIMITED, PlanCatalog
from billing_engine.utils.datetime import period_key as period_key_for
from billing_engine.utils.datetime import utc_now

STORAGE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)

_counters = UsageCounter.__table__


class UsageLedger:
    """Per-user, per-period, per-resource counters.

    Every admission is a single conditional UPDATE, so concurrent callers
    can never push a counter past its limit.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def check_and_increment(
        self,
        user_id: int,
        resource_kind: ResourceKind | str,
        period_key: str,
        limit: int,
    ) -> QuotaDecision:
        kind = ResourceKind(resource_kind).value
        if limit != UNLIMITED and limit <= 0:
            return QuotaDecision(allowed=False, remaining=0, reason="limit_reached")

        try:
            await self._ensure_counter(user_id, period_key, kind)
            stmt = (
                update(_counters)
                .where(
                    _counters.c.user_id == user_id,
                    _counters.c.period_key == period_key,
                    _counters.c.resource_kind == kind,
                )
                .values(count=_counters.c.count + 1, updated_at=utc_now())
            )
            if limit != UNLIMITED:
                stmt = stmt.where(_counters.c.count < limit)
            result = await self.session.execute(stmt)
            if result.rowcount == 0:
                return QuotaDecision(allowed=False, remaining=0, reason="limit_reached")
            if limit == UNLIMITED:
                return QuotaDecision(allowed=True, remaining=None)
            count = await self.get_count(user_id, kind, period_key)
        except STORAGE_ERRORS as exc:
            raise TransientStorageError(f"Usage counter update failed: {exc}") from exc

        return QuotaDecision(allowed=True, remaining=max(0, limit - count))

    async def get_count(self, user_id: int, resource_kind: ResourceKind | str, period_key: str) -> int:
        stmt = select(_counters.c.count).where(
            _counters.c.user_id == user_id,
            _counters.c.period_key == period_key,
            _counters.c.resource_kind == ResourceKind(resource_kind).value,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def counts_for_period(self, user_id: int, period_key: str) -> dict[ResourceKind, int]:
        stmt = select(_counters.c.resource_kind, _counters.c.count).where(
            _counters.c.user_id == user_id,
            _counters.c.period_key == period_key,
        )
        result = await self.session.execute(stmt)
        counts = {kind: 0 for kind in ResourceKind}
        for kind, count in result.all():
            try:
                counts[ResourceKind(kind)] = count
            except ValueError:
                continue
        return counts

    async def _ensure_counter(self, user_id: int, period_key: str, kind: str) -> None:
        now = utc_now()
        stmt = insert_if_absent(
            self.session,
            UsageCounter,
            {
                "user_id": user_id,
                "period_key": period_key,
                "resource_kind": kind,
                "count": 0,
                "created_at": now,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)


class QuotaEnforcer:
    """Resolve the user's current plan and admit or deny one unit of usage."""

    def __init__(self, session: AsyncSession, catalog: PlanCatalog | None = None) -> None:
        self.session = session
        self.catalog = catalog or DEFAULT_CATALOG
        self.ledger = UsageLedger(session)

    async def enforce(
        self,
        user_id: int,
        resource_kind: ResourceKind | str,
        *,
        now: datetime | None = None,
    ) -> QuotaDecision:
        kind = ResourceKind(resource_kind)
        period = period_key_for(now or utc_now())
        plan_id = await self._current_plan(user_id)
        limit = self.catalog.limit_for(plan_id, kind)

        decision = await self.ledger.check_and_increment(user_id, kind, period, limit)
        if decision.allowed:
            logger.info(
                "quota_admitted",
                user_id=user_id,
                resource_kind=kind.value,
                period_key=period,
                plan_id=plan_id,
                remaining=decision.remaining,
            )
        else:
            logger.info(
                "quota_denied",
                user_id=user_id,
                resource_kind=kind.value,
                period_key=period,
                plan_id=plan_id,
                limit=limit,
            )
        return decision

    async def require(
        self,
        user_id: int,
        resource_kind: ResourceKind | str,
        *,
        now: datetime | None = None,
    ) -> QuotaDecision:
        """Like :meth:`enforce` but raises :class:`QuotaExceededError` on denial."""

        decision = await self.enforce(user_id, resource_kind, now=now)
        if not decision.allowed:
            kind = ResourceKind(resource_kind)
            plan_id = await self._current_plan(user_id)
            raise QuotaExceededError(kind.value, self.catalog.limit_for(plan_id, kind))
        return decision

    async def usage_summary(self, user_id: int, *, now: datetime | None = None) -> UsageSummary:
        period = period_key_for(now or utc_now())
        plan_id = await self._current_plan(user_id)
        counts = await self.ledger.counts_for_period(user_id, period)

        resources: dict[ResourceKind, ResourceUsage] = {}
        for kind in ResourceKind:
            limit = self.catalog.limit_for(plan_id, kind)
            used = counts[kind]
            remaining = None if limit == UNLIMITED else max(0, limit - used)
            resources[kind] = ResourceUsage(used=used, limit=limit, remaining=remaining)
        return UsageSummary(user_id=user_id, plan_id=plan_id, period_key=period, resources=resources)

    async def _current_plan(self, user_id: int) -> str:
        try:
            result = await self.session.execute(select(User.plan_id).where(User.id == user_id))
            plan_id = result.scalar_one_or_none()
        except STORAGE_ERRORS as exc:
            raise TransientStorageError(f"Plan lookup failed: {exc}") from exc
        if plan_id is None:
            raise UserNotFoundError(f"User {user_id} not found.")
        return plan_id


__all__ = ["QuotaEnforcer", "STORAGE_ERRORS", "UsageLedger"]
