"""Per-user quota, trial and billing history endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from billing_engine.domain.models import (
    PaymentTransactionModel,
    QuotaDecision,
    ResourceKind,
    TrialStatus,
    UsageSummary,
)
from billing_engine.services.engine import BillingEngine
from billing_engine.web.dependencies import get_engine

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/{user_id}/usage/{resource_kind}", response_model=QuotaDecision)
async def consume_quota(
    user_id: int,
    resource_kind: ResourceKind,
    engine: BillingEngine = Depends(get_engine),
) -> QuotaDecision:
    # A denial is a normal 200 response with allowed=false.
    return await engine.enforce(user_id, resource_kind)


@router.get("/{user_id}/usage", response_model=UsageSummary)
async def get_usage(user_id: int, engine: BillingEngine = Depends(get_engine)) -> UsageSummary:
    return await engine.usage_summary(user_id)


@router.get("/{user_id}/trial", response_model=TrialStatus)
async def get_trial(user_id: int, engine: BillingEngine = Depends(get_engine)) -> TrialStatus:
    status = await engine.get_trial_status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail="User not found")
    return status


@router.get("/{user_id}/billing-history", response_model=list[PaymentTransactionModel])
async def get_billing_history(
    user_id: int,
    page: int = Query(default=1, ge=1),
    engine: BillingEngine = Depends(get_engine),
) -> list[PaymentTransactionModel]:
    return await engine.get_history(user_id, page)
