"""Payment provider webhook endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from billing_engine.config import EngineSettings
from billing_engine.domain.models import WebhookEnvelope
from billing_engine.logging import logger
from billing_engine.services.engine import BillingEngine
from billing_engine.services.webhooks import verify_signature
from billing_engine.web.dependencies import get_app_settings, get_engine

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/billing")
async def receive_billing_event(
    request: Request,
    engine: BillingEngine = Depends(get_engine),
    settings: EngineSettings = Depends(get_app_settings),
) -> dict:
    """Acknowledge once the event is durably stored, whatever reconciliation decides."""

    body = await request.body()
    signature = request.headers.get(settings.webhook.signature_header)
    verify_signature(body, signature, settings.webhook.secret)

    try:
        envelope = WebhookEnvelope.model_validate_json(body)
    except ValidationError as exc:
        logger.warning("webhook_envelope_invalid", errors=exc.error_count())
        raise HTTPException(status_code=400, detail="Malformed webhook envelope") from exc

    result = await engine.ingest(envelope)
    return {
        "received": True,
        "event_id": result.event_id,
        "outcome": result.outcome.value,
    }
