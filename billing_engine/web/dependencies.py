"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, Request

from billing_engine.config import EngineSettings
from billing_engine.services.engine import BillingEngine


def get_engine(request: Request) -> BillingEngine:
    return request.app.state.engine


def get_app_settings(request: Request) -> EngineSettings:
    return request.app.state.settings


def require_admin(
    request: Request,
    x_admin_token: str | None = Header(default=None),
) -> None:
    token = get_app_settings(request).admin_token
    if token is None or x_admin_token is None:
        raise HTTPException(status_code=403, detail="Admin token required")
    if not hmac.compare_digest(token.get_secret_value(), x_admin_token):
        raise HTTPException(status_code=403, detail="Invalid admin token")


__all__ = ["get_app_settings", "get_engine", "require_admin"]
