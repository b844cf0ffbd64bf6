"""
Admin router
"""
import logging

from fastapi import APIRouter, Depends

from imagevault.dependencies import get_credential_store
from imagevault.middleware.auth_middleware import require_admin
from imagevault.models.token_models import Identity
from imagevault.models.user import PlanUpdateRequest
from imagevault.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)
router = APIRouter()

@router.put("/users/{user_id}/plan", response_model=dict)
async def update_user_plan(
    user_id: str,
    request: PlanUpdateRequest,
    admin: Identity = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store)
):
    """
    Change a user's plan

    New limits apply to the next quota check. Existing session tokens keep
    the plan claim they were issued with until they expire.
    """
    user = await store.set_plan(user_id, request.plan)
    logger.info(f"Admin {admin.user_id} changed plan of {user_id} to {request.plan.value}")

    return {"success": True, "user": user}
