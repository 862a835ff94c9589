"""Request/response facade over the ledger, reconciler and readers.

Each public coroutine runs in its own session and commits before
returning, so callers never share transactional state.
"""

from __future__ import annotations

from datetime import datetime

from billing_engine.config import EngineSettings, get_settings
from billing_engine.db.session import Database
from billing_engine.domain.models import (
    IngestResult,
    PaymentTransactionModel,
    QuotaDecision,
    ResourceKind,
    TrialStatus,
    UsageSummary,
    WebhookEnvelope,
)
from billing_engine.logging import logger
from billing_engine.services.accounts import create_user
from billing_engine.services.billing_history import BillingHistoryReader
from billing_engine.services.exceptions import TransientStorageError
from billing_engine.services.plans import DEFAULT_CATALOG, PlanCatalog
from billing_engine.services.subscriptions import SubscriptionService
from billing_engine.services.trial import TrialService
from billing_engine.services.usage import STORAGE_ERRORS, QuotaEnforcer
from billing_engine.services.webhooks import WebhookIngestor
from billing_engine.utils.retry import retry_async


class BillingEngine:
    def __init__(
        self,
        database: Database | None = None,
        settings: EngineSettings | None = None,
        catalog: PlanCatalog | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.database = database or Database(settings=self.settings)
        self.catalog = catalog or DEFAULT_CATALOG

    async def enforce(
        self,
        user_id: int,
        resource_kind: ResourceKind | str,
        *,
        now: datetime | None = None,
    ) -> QuotaDecision:
        """Admit or deny one unit of ``resource_kind``; retried on transient storage errors only."""

        async def attempt() -> QuotaDecision:
            async with self.database.session() as session:
                decision = await QuotaEnforcer(session, self.catalog).enforce(
                    user_id, resource_kind, now=now
                )
                await self._commit(session)
                return decision

        quota_cfg = self.settings.quota
        return await retry_async(
            attempt,
            retry_on=(TransientStorageError,),
            max_attempts=quota_cfg.retry_attempts,
            base_delay=quota_cfg.retry_base_delay_seconds,
            max_delay=quota_cfg.retry_max_delay_seconds,
            logger=logger,
            operation_name="quota_enforce",
        )

    async def usage_summary(self, user_id: int, *, now: datetime | None = None) -> UsageSummary:
        async with self.database.session() as session:
            return await QuotaEnforcer(session, self.catalog).usage_summary(user_id, now=now)

    async def ingest(self, envelope: WebhookEnvelope) -> IngestResult:
        async with self.database.session() as session:
            return await WebhookIngestor(session, self.catalog).ingest(envelope)

    async def replay_pending(self, limit: int | None = None) -> list[IngestResult]:
        batch = limit or self.settings.webhook.replay_batch_size
        async with self.database.session() as session:
            return await WebhookIngestor(session, self.catalog).replay_pending(batch)

    async def get_trial_status(
        self, user_id: int, *, now: datetime | None = None
    ) -> TrialStatus | None:
        async with self.database.session() as session:
            return await TrialService(session, self.catalog).get_trial_status(user_id, now=now)

    async def get_history(self, user_id: int, page: int = 1) -> list[PaymentTransactionModel]:
        async with self.database.session() as session:
            reader = BillingHistoryReader(session, page_size=self.settings.history.page_size)
            return await reader.get_history(user_id, page)

    async def expire_lapsed_subscriptions(self, now: datetime | None = None) -> int:
        async with self.database.session() as session:
            count = await SubscriptionService(session).expire_lapsed_subscriptions(now)
            await self._commit(session)
            return count

    async def register_user(
        self,
        *,
        external_customer_id: str | None = None,
        now: datetime | None = None,
    ) -> int:
        async with self.database.session() as session:
            user = await create_user(
                session,
                trial_days=self.settings.trial.trial_days,
                external_customer_id=external_customer_id,
                now=now,
            )
            user_id = user.id
            await self._commit(session)
            return user_id

    @staticmethod
    async def _commit(session) -> None:
        try:
            await session.commit()
        except STORAGE_ERRORS as exc:
            raise TransientStorageError(f"Commit failed: {exc}") from exc


__all__ = ["BillingEngine"]
