"""
API Key router
Handles API key generation and management
"""
from fastapi import APIRouter, Depends, status

from imagevault.dependencies import get_api_key_service
from imagevault.middleware.auth_middleware import require_session
from imagevault.models.api_key_models import ApiKeyCreate
from imagevault.models.token_models import Identity
from imagevault.services.api_key_service import ApiKeyService

router = APIRouter()

@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    request: ApiKeyCreate,
    identity: Identity = Depends(require_session),
    service: ApiKeyService = Depends(get_api_key_service)
):
    """
    Generate a new API key

    The key is only returned here. Requires a logged-in session.
    """
    api_key = await service.create(
        identity.user_id,
        request.name,
        [permission.value for permission in request.permissions]
    )

    return {
        "success": True,
        "message": "API key generated successfully",
        "api_key": api_key,
        "warning": "Please save this API key. You won't be able to see it again!"
    }

@router.get("", response_model=dict)
async def list_api_keys(
    identity: Identity = Depends(require_session),
    service: ApiKeyService = Depends(get_api_key_service)
):
    """List all API keys for current user"""
    keys = await service.list_for_user(identity.user_id)

    return {
        "success": True,
        "keys": keys,
        "total": len(keys)
    }

@router.put("/{key_id}/activate", response_model=dict)
async def activate_api_key(
    key_id: str,
    identity: Identity = Depends(require_session),
    service: ApiKeyService = Depends(get_api_key_service)
):
    await service.set_active(identity.user_id, key_id, True)
    return {"success": True, "message": "API key activated"}

@router.put("/{key_id}/deactivate", response_model=dict)
async def deactivate_api_key(
    key_id: str,
    identity: Identity = Depends(require_session),
    service: ApiKeyService = Depends(get_api_key_service)
):
    await service.set_active(identity.user_id, key_id, False)
    return {"success": True, "message": "API key deactivated"}

@router.delete("/{key_id}", response_model=dict)
async def delete_api_key(
    key_id: str,
    identity: Identity = Depends(require_session),
    service: ApiKeyService = Depends(get_api_key_service)
):
    """Delete an API key"""
    await service.delete(identity.user_id, key_id)
    return {"success": True, "message": "API key deleted successfully"}
