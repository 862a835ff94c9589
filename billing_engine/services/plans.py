"""Static plan catalog: per-plan monthly resource limits."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from billing_engine.domain.models import ResourceKind

UNLIMITED = -1
FREE_PLAN_ID = "free"


def _freeze(plans: Mapping[str, Mapping[ResourceKind, int]]) -> Mapping[str, Mapping[ResourceKind, int]]:
    return MappingProxyType({plan: MappingProxyType(dict(limits)) for plan, limits in plans.items()})


DEFAULT_PLAN_LIMITS = _freeze(
    {
        FREE_PLAN_ID: {
            ResourceKind.IDEAS: 3,
            ResourceKind.VALIDATIONS: 1,
            ResourceKind.CONTENT: 2,
        },
        "pro_monthly": {
            ResourceKind.IDEAS: UNLIMITED,
            ResourceKind.VALIDATIONS: UNLIMITED,
            ResourceKind.CONTENT: UNLIMITED,
        },
        "pro_yearly": {
            ResourceKind.IDEAS: UNLIMITED,
            ResourceKind.VALIDATIONS: UNLIMITED,
            ResourceKind.CONTENT: UNLIMITED,
        },
    }
)


class PlanCatalog:
    """Read-only lookup from plan id to resource limits.

    Unknown plans and unknown resources resolve to zero entitlement.
    """

    def __init__(
        self,
        plans: Mapping[str, Mapping[ResourceKind, int]] | None = None,
        *,
        trial_plan_id: str = FREE_PLAN_ID,
    ) -> None:
        self._plans = DEFAULT_PLAN_LIMITS if plans is None else _freeze(plans)
        self.trial_plan_id = trial_plan_id

    def limit_for(self, plan_id: str | None, resource_kind: ResourceKind | str) -> int:
        limits = self._plans.get(plan_id or "")
        if limits is None:
            return 0
        try:
            kind = ResourceKind(resource_kind)
        except ValueError:
            return 0
        return limits.get(kind, 0)

    def limits(self, plan_id: str | None) -> dict[ResourceKind, int]:
        return {kind: self.limit_for(plan_id, kind) for kind in ResourceKind}

    def is_known(self, plan_id: str | None) -> bool:
        return plan_id in self._plans

    def is_trial_plan(self, plan_id: str | None) -> bool:
        return plan_id == self.trial_plan_id

    @property
    def plan_ids(self) -> tuple[str, ...]:
        return tuple(self._plans)


DEFAULT_CATALOG = PlanCatalog()


def limit_for(plan_id: str | None, resource_kind: ResourceKind | str) -> int:
    return DEFAULT_CATALOG.limit_for(plan_id, resource_kind)


__all__ = [
    "DEFAULT_CATALOG",
    "DEFAULT_PLAN_LIMITS",
    "FREE_PLAN_ID",
    "PlanCatalog",
    "UNLIMITED",
    "limit_for",
]
