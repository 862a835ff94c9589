"""Webhook ingestion: signature checks, de-duplication and reconciliation."""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime
from typing import Any

from pydantic import SecretStr
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.db.models.core import WebhookEvent
from billing_engine.db.statements import insert_if_absent
from billing_engine.domain.models import IngestOutcome, IngestResult, WebhookEnvelope
from billing_engine.logging import logger
from billing_engine.services.exceptions import (
    DuplicateEventError,
    InvalidSignatureError,
    ReconciliationValidationError,
    StorageUnavailableFatal,
    TransientStorageError,
)
from billing_engine.services.plans import PlanCatalog
from billing_engine.services.reconciler import SubscriptionReconciler
from billing_engine.services.usage import STORAGE_ERRORS
from billing_engine.utils.datetime import utc_now

ERROR_MESSAGE_LIMIT = 2000

_events = WebhookEvent.__table__


def _failure_message(exc: Exception) -> str:
    if isinstance(exc, IntegrityError):
        return f"Conflicting write while reconciling: {exc.orig}"
    return str(exc)


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: SecretStr | str | None) -> None:
    """Raise :class:`InvalidSignatureError` unless ``signature`` is the HMAC-SHA256 of ``body``."""

    if secret is None:
        raise InvalidSignatureError("Webhook secret is not configured.")
    if not signature:
        raise InvalidSignatureError("Missing webhook signature.")
    raw_secret = secret.get_secret_value() if isinstance(secret, SecretStr) else secret
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(raw_secret, body)
    if not hmac.compare_digest(expected, provided.lower()):
        raise InvalidSignatureError("Invalid webhook signature.")


class EventDeduplicator:
    """Durable record of provider events keyed by ``event_id``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def claim(self, envelope: WebhookEnvelope) -> bool:
        """Persist the event and commit; return False if the id was already known."""

        stmt = insert_if_absent(
            self.session,
            WebhookEvent,
            {
                "event_id": envelope.event_id,
                "event_type": envelope.event_type,
                "payload_timestamp": envelope.payload_timestamp,
                "payload": envelope.payload,
                "processed": False,
                "attempts": 0,
                "received_at": utc_now(),
            },
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except STORAGE_ERRORS as exc:
            raise StorageUnavailableFatal(
                f"Could not persist webhook event {envelope.event_id}: {exc}"
            ) from exc
        return result.rowcount == 1

    async def lock_unprocessed(self, event_id: str) -> None:
        """Lock an existing row; raise :class:`DuplicateEventError` if already applied."""

        stmt = select(_events.c.processed).where(_events.c.event_id == event_id).with_for_update()
        result = await self.session.execute(stmt)
        processed = result.scalar_one_or_none()
        if processed is None:
            raise StorageUnavailableFatal(f"Webhook event {event_id} vanished after insert.")
        if processed:
            raise DuplicateEventError(event_id)

    async def mark_processed(self, event_id: str) -> None:
        stmt = (
            update(_events)
            .where(_events.c.event_id == event_id, _events.c.processed.is_(False))
            .values(
                processed=True,
                processed_at=utc_now(),
                error_message=None,
                attempts=_events.c.attempts + 1,
            )
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            # Another delivery of the same id committed first.
            raise DuplicateEventError(event_id)

    async def mark_failed(self, event_id: str, message: str) -> None:
        stmt = (
            update(_events)
            .where(_events.c.event_id == event_id, _events.c.processed.is_(False))
            .values(
                error_message=message[:ERROR_MESSAGE_LIMIT],
                attempts=_events.c.attempts + 1,
            )
        )
        await self.session.execute(stmt)

    async def pending(self, limit: int) -> list[WebhookEnvelope]:
        stmt = (
            select(
                _events.c.event_id,
                _events.c.event_type,
                _events.c.payload_timestamp,
                _events.c.payload,
            )
            .where(_events.c.processed.is_(False))
            .order_by(_events.c.received_at, _events.c.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            WebhookEnvelope(
                event_id=row.event_id,
                event_type=row.event_type,
                payload_timestamp=row.payload_timestamp,
                payload=row.payload or {},
            )
            for row in result.all()
        ]


class WebhookIngestor:
    """Insert-or-detect, reconcile, then record the outcome on the event row."""

    def __init__(self, session: AsyncSession, catalog: PlanCatalog | None = None) -> None:
        self.session = session
        self.deduplicator = EventDeduplicator(session)
        self.reconciler = SubscriptionReconciler(session, catalog)

    async def ingest(self, envelope: WebhookEnvelope) -> IngestResult:
        inserted = await self.deduplicator.claim(envelope)
        if inserted:
            logger.info(
                "webhook_event_received",
                event_id=envelope.event_id,
                event_type=envelope.event_type,
            )
        return await self._process(envelope, redelivery=not inserted)

    async def replay_pending(self, limit: int) -> list[IngestResult]:
        """Re-run reconciliation for events left unprocessed by earlier failures."""

        envelopes = await self.deduplicator.pending(limit)
        await self.session.commit()
        results = []
        for envelope in envelopes:
            results.append(await self._process(envelope, redelivery=True))
        logger.info(
            "webhook_replay_finished",
            attempted=len(results),
            applied=sum(1 for result in results if result.outcome is not IngestOutcome.FAILED),
        )
        return results

    async def _process(self, envelope: WebhookEnvelope, *, redelivery: bool) -> IngestResult:
        event_id = envelope.event_id
        try:
            # Held until commit so a concurrent delivery of the same id waits here.
            await self.deduplicator.lock_unprocessed(event_id)
            if redelivery:
                logger.info("webhook_event_retry", event_id=event_id, event_type=envelope.event_type)
            result = await self.reconciler.apply(
                event_id=event_id,
                event_type=envelope.event_type,
                payload_timestamp=envelope.payload_timestamp,
                payload=envelope.payload,
            )
            await self.deduplicator.mark_processed(event_id)
            await self.session.commit()
        except DuplicateEventError:
            await self.session.rollback()
            logger.info("webhook_event_duplicate", event_id=event_id)
            return IngestResult(event_id=event_id, outcome=IngestOutcome.DUPLICATE)
        except (ReconciliationValidationError, IntegrityError) as exc:
            await self.session.rollback()
            message = _failure_message(exc)
            await self._record_failure(event_id, message)
            logger.warning(
                "reconciliation_failed",
                event_id=event_id,
                event_type=envelope.event_type,
                error_kind=type(exc).__name__,
                error=message,
            )
            return IngestResult(event_id=event_id, outcome=IngestOutcome.FAILED, error=message)
        except STORAGE_ERRORS as exc:
            await self.session.rollback()
            raise TransientStorageError(f"Reconciliation of {event_id} interrupted: {exc}") from exc

        return IngestResult(event_id=event_id, outcome=result.outcome)

    async def _record_failure(self, event_id: str, message: str) -> None:
        try:
            await self.deduplicator.mark_failed(event_id, message)
            await self.session.commit()
        except STORAGE_ERRORS as exc:
            await self.session.rollback()
            raise TransientStorageError(f"Could not record failure for {event_id}: {exc}") from exc


async def ingest_event(
    session: AsyncSession,
    *,
    event_id: str,
    event_type: str,
    payload_timestamp: datetime,
    payload: dict[str, Any],
    catalog: PlanCatalog | None = None,
) -> IngestResult:
    envelope = WebhookEnvelope(
        event_id=event_id,
        event_type=event_type,
        payload_timestamp=payload_timestamp,
        payload=payload,
    )
    return await WebhookIngestor(session, catalog).ingest(envelope)


__all__ = [
    "EventDeduplicator",
    "WebhookIngestor",
    "compute_signature",
    "ingest_event",
    "verify_signature",
]
