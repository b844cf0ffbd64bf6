"""
Entitlement engine
Maps plans to resource limits and decides whether a usage fits a limit.

Everything here is pure: no database access, no side effects.
"""
from typing import Union

from imagevault.errors import ValidationError
from imagevault.models.usage_models import (
    Allowed,
    Decision,
    Denied,
    Plan,
    PlanLimits,
    Resource
)

GB = 1024 * 1024 * 1024

PLAN_LIMITS = {
    Plan.FREE: PlanLimits(
        storage_limit=2 * GB,
        api_requests_limit=5000,
        images_limit=100,
        folders_limit=5
    ),
    Plan.STARTER: PlanLimits(
        storage_limit=25 * GB,
        api_requests_limit=25000,
        images_limit=1000,
        folders_limit=20
    ),
    Plan.PRO: PlanLimits(
        storage_limit=100 * GB,
        api_requests_limit=100000,
        images_limit=10000,
        folders_limit=100
    ),
    Plan.ENTERPRISE: PlanLimits(
        storage_limit=500 * GB,
        api_requests_limit=1000000,
        images_limit=100000,
        folders_limit=1000
    ),
}

_missing = set(Plan) - set(PLAN_LIMITS)
if _missing:
    raise RuntimeError(f"Plans without limits: {sorted(p.value for p in _missing)}")


def parse_plan(plan: Union[Plan, str, None]) -> Plan:
    """Resolve a stored plan value; anything unrecognised is FREE"""
    if isinstance(plan, Plan):
        return plan
    try:
        return Plan(str(plan).strip().lower())
    except ValueError:
        return Plan.FREE


def limits_for(plan: Union[Plan, str, None]) -> PlanLimits:
    """
    Limits granted by a plan

    Unknown or corrupted plan names get the free tier, never more.
    """
    return PLAN_LIMITS[parse_plan(plan)]


def check(resource: Resource, limits: PlanLimits, current_usage: int, delta: int) -> Decision:
    """
    Would ``current_usage + delta`` stay within the limit for ``resource``?

    Returns:
        Allowed, or Denied carrying the resource, current usage and limit
    """
    if delta < 0:
        raise ValidationError("Usage delta must not be negative")

    limit = limits.limit_for(resource)
    if current_usage + delta > limit:
        return Denied(resource=resource, current_usage=current_usage, limit=limit)
    return Allowed()


def usage_percentage(used: int, limit: int) -> float:
    """Share of the limit in use, capped at 100"""
    if limit <= 0:
        return 100.0
    return round(min(100.0, used / limit * 100), 2)


def plan_catalogue() -> list:
    """Public description of every plan"""
    return [
        {"plan": plan.value, "limits": limits.model_dump()}
        for plan, limits in PLAN_LIMITS.items()
    ]
