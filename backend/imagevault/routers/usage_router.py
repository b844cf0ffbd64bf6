"""
Usage router
Plan catalogue, current usage and quota reservation
"""
from fastapi import APIRouter, Depends

from imagevault.dependencies import get_usage_meter
from imagevault.middleware.auth_middleware import get_metered_identity, require_permission
from imagevault.models.api_key_models import ApiKeyPermission
from imagevault.models.token_models import Identity
from imagevault.models.usage_models import UsageConsumeRequest
from imagevault.services import entitlements
from imagevault.services.usage_meter import UsageMeter

router = APIRouter()

@router.get("/plans", response_model=dict)
async def list_plans():
    """Limits of every plan"""
    return {
        "success": True,
        "plans": entitlements.plan_catalogue()
    }

@router.get("/usage", response_model=dict)
async def get_usage(
    identity: Identity = Depends(get_metered_identity),
    meter: UsageMeter = Depends(get_usage_meter)
):
    """Usage of the current period against the plan limits"""
    return {
        "success": True,
        **await meter.current_usage(identity.user_id)
    }

@router.post("/usage/consume", response_model=dict)
async def consume_usage(
    request: UsageConsumeRequest,
    identity: Identity = Depends(require_permission(ApiKeyPermission.WRITE)),
    meter: UsageMeter = Depends(get_usage_meter)
):
    """
    Reserve quota before a quota-bound mutation

    Called by the upload and folder services. A denied reservation
    returns 403 and leaves the counters untouched.
    """
    snapshot = await meter.try_consume(identity.user_id, request.resource, request.amount)

    return {
        "success": True,
        "resource": request.resource.value,
        "consumed": request.amount,
        **snapshot
    }
