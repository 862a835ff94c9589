"""Pydantic models and enumerations shared across service/web layers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from billing_engine.utils.datetime import as_utc


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED})


class ResourceKind(str, Enum):
    IDEAS = "ideas"
    VALIDATIONS = "validations"
    CONTENT = "content"


class EventType(str, Enum):
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_CANCELED = "subscription.canceled"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"


PAYMENT_EVENTS = frozenset({EventType.PAYMENT_SUCCEEDED, EventType.PAYMENT_FAILED})


class TransactionStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class IngestOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    REJECTED = "rejected"
    FAILED = "failed"


class AccessLevel(str, Enum):
    FULL = "full"
    READONLY = "readonly"
    NONE = "none"


class QuotaDecision(BaseModel):
    allowed: bool
    remaining: int | None = Field(
        default=None, description="Remaining admissions this period; null means unlimited."
    )
    reason: Literal["limit_reached"] | None = None

    @property
    def unlimited(self) -> bool:
        return self.allowed and self.remaining is None


class ResourceUsage(BaseModel):
    used: int
    limit: int
    remaining: int | None


class UsageSummary(BaseModel):
    user_id: int
    plan_id: str
    period_key: str
    resources: dict[ResourceKind, ResourceUsage]


class TrialStatus(BaseModel):
    plan_type: str
    trial_ends_at: datetime | None
    created_at: datetime
    is_trial_active: bool
    days_remaining: int | None


class PaymentTransactionModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    provider_event_id: str
    provider_payment_id: str | None = None
    amount: int
    currency: str
    status: TransactionStatus
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _created_to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class WebhookEnvelope(BaseModel):
    """Normalised provider notification as received on the wire."""

    event_id: str = Field(min_length=1, max_length=191)
    event_type: str = Field(min_length=1, max_length=64)
    payload_timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload_timestamp")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class SubscriptionPayload(BaseModel):
    id: str = Field(min_length=1)
    status: str | None = None
    plan_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool | None = None


class PaymentPayload(BaseModel):
    id: str | None = None
    amount: int = Field(default=0, ge=0, description="Amount in minor currency units.")
    currency: str = Field(default="USD", min_length=3, max_length=3)


class EventPayload(BaseModel):
    user_id: int | None = None
    customer_id: str | None = None
    subscription: SubscriptionPayload | None = None
    payment: PaymentPayload | None = None


class IngestResult(BaseModel):
    event_id: str
    outcome: IngestOutcome
    error: str | None = None


__all__ = [
    "AccessLevel",
    "EventPayload",
    "EventType",
    "IngestOutcome",
    "IngestResult",
    "PAYMENT_EVENTS",
    "PaymentPayload",
    "PaymentTransactionModel",
    "QuotaDecision",
    "ResourceKind",
    "ResourceUsage",
    "SubscriptionPayload",
    "SubscriptionStatus",
    "TERMINAL_STATUSES",
    "TrialStatus",
    "TransactionStatus",
    "UsageSummary",
    "WebhookEnvelope",
]
