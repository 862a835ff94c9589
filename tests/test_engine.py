"""BillingEngine unit-of-work behaviour over a shared test session."""

from __future__ import annotations

from datetime import timedelta

import pytest

from billing_engine.config import EngineSettings
from billing_engine.domain.models import (
    IngestOutcome,
    ResourceKind,
    SubscriptionStatus,
    WebhookEnvelope,
)
from billing_engine.services import engine as engine_module
from billing_engine.services.engine import BillingEngine
from billing_engine.services.exceptions import TransientStorageError, UserNotFoundError

from factories import NOW, make_subscription, make_user


def _settings(**overrides) -> EngineSettings:
    values = {
        "quota": {"retry_attempts": 3, "retry_base_delay_seconds": 0.001, "retry_max_delay_seconds": 0.001},
        "trial": {"trial_days": 14},
        "history": {"page_size": 2},
    }
    values.update(overrides)
    return EngineSettings(**values)


@pytest.fixture
def engine(database):
    return BillingEngine(database=database, settings=_settings())


@pytest.mark.asyncio
async def test_register_user_starts_trial(engine):
    user_id = await engine.register_user(external_customer_id="cus_1", now=NOW)

    status = await engine.get_trial_status(user_id, now=NOW)

    assert status.is_trial_active is True
    assert status.days_remaining == 14


@pytest.mark.asyncio
async def test_enforce_retries_transient_failures(engine, session, monkeypatch):
    user = await make_user(session)
    real_enforcer = engine_module.QuotaEnforcer
    failures = {"left": 2}

    class FlakyEnforcer(real_enforcer):
        async def enforce(self, *args, **kwargs):
            if failures["left"]:
                failures["left"] -= 1
                raise TransientStorageError("lock wait timeout exceeded")
            return await super().enforce(*args, **kwargs)

    monkeypatch.setattr(engine_module, "QuotaEnforcer", FlakyEnforcer)

    decision = await engine.enforce(user.id, ResourceKind.IDEAS, now=NOW)

    assert decision.allowed is True
    assert decision.remaining == 2
    assert failures["left"] == 0


@pytest.mark.asyncio
async def test_enforce_does_not_retry_missing_user(engine):
    with pytest.raises(UserNotFoundError):
        await engine.enforce(4242, ResourceKind.IDEAS, now=NOW)


@pytest.mark.asyncio
async def test_usage_summary_after_enforce(engine, session):
    user = await make_user(session)
    await engine.enforce(user.id, "content", now=NOW)

    summary = await engine.usage_summary(user.id, now=NOW)

    assert summary.resources[ResourceKind.CONTENT].used == 1


@pytest.mark.asyncio
async def test_ingest_history_and_expiry(engine, session):
    user = await make_user(session)
    await make_subscription(
        session,
        user,
        status=SubscriptionStatus.PAST_DUE,
        current_period_end=NOW - timedelta(minutes=1),
        cancel_at_period_end=True,
    )

    result = await engine.ingest(
        WebhookEnvelope(
            event_id="evt_paid",
            event_type="invoice.paid",
            payload_timestamp=NOW - timedelta(hours=1),
            payload={"user_id": user.id, "payment": {"id": "pay_9", "amount": 990}},
        )
    )
    history = await engine.get_history(user.id)
    expired = await engine.expire_lapsed_subscriptions(NOW)

    assert result.outcome is IngestOutcome.APPLIED
    assert [tx.provider_payment_id for tx in history] == ["pay_9"]
    assert expired == 1
    assert await engine.replay_pending() == []
