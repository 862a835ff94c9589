"""Operator actions: webhook replay and the lapsed-subscription sweep."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from billing_engine.services.engine import BillingEngine
from billing_engine.web.dependencies import get_engine, require_admin

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/webhooks/replay")
async def replay_webhooks(
    limit: int | None = Query(default=None, ge=1, le=1000),
    engine: BillingEngine = Depends(get_engine),
) -> dict:
    results = await engine.replay_pending(limit)
    return {"results": [result.model_dump(mode="json") for result in results]}


@router.post("/subscriptions/expire")
async def expire_subscriptions(engine: BillingEngine = Depends(get_engine)) -> dict:
    return {"expired": await engine.expire_lapsed_subscriptions()}
