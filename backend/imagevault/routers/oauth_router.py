"""
OAuth Router
Google and GitHub sign-in, plus management of linked provider accounts
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from typing import Optional
import logging

from imagevault.dependencies import get_oauth_broker
from imagevault.errors import OAuthExchangeFailedError, ValidationError
from imagevault.middleware.auth_middleware import require_session
from imagevault.models.oauth_models import OAuthConnectionsResponse, OAuthProvider
from imagevault.models.token_models import Identity
from imagevault.services.oauth_service import OAuthBroker

logger = logging.getLogger(__name__)
router = APIRouter()


async def _begin(broker: OAuthBroker, provider: OAuthProvider, format: Optional[str]):
    authorization = await broker.begin_authorization(provider)

    if format == "json":
        return {
            "success": True,
            "provider": provider.value,
            "authorization_url": authorization.authorization_url,
            "state": authorization.state
        }

    return RedirectResponse(url=authorization.authorization_url)


# ============================================================================
# LOGIN
# ============================================================================

@router.get("/google")
async def google_login(
    format: Optional[str] = Query(None, description="'json' to get the URL instead of a redirect"),
    broker: OAuthBroker = Depends(get_oauth_broker)
):
    """Initiate Google OAuth2 login"""
    return await _begin(broker, OAuthProvider.GOOGLE, format)


@router.get("/github")
async def github_login(
    format: Optional[str] = Query(None, description="'json' to get the URL instead of a redirect"),
    broker: OAuthBroker = Depends(get_oauth_broker)
):
    """Initiate GitHub OAuth2 login"""
    return await _begin(broker, OAuthProvider.GITHUB, format)


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: OAuthProvider,
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    state: Optional[str] = Query(None, description="CSRF protection state"),
    error: Optional[str] = Query(None, description="Error reported by the provider"),
    broker: OAuthBroker = Depends(get_oauth_broker)
):
    """
    OAuth2 callback

    Checks the state nonce, exchanges the code, resolves the local account
    and returns a session token.
    """
    if error:
        logger.info(f"{provider.value} sign-in returned error: {error}")
        raise OAuthExchangeFailedError("Sign-in was cancelled or denied by the provider", status_code=400)

    if not code:
        raise ValidationError("Missing authorization code")

    return await broker.handle_callback(provider, code, state)


# ============================================================================
# CONNECTIONS
# ============================================================================

@router.get("/connections", response_model=OAuthConnectionsResponse)
async def list_connections(
    identity: Identity = Depends(require_session),
    broker: OAuthBroker = Depends(get_oauth_broker)
):
    """Provider accounts linked to the current user"""
    connections = await broker.list_identities(identity.user_id)
    return OAuthConnectionsResponse(connections=connections, total=len(connections))


@router.delete("/connections/{provider}", response_model=dict)
async def unlink_connection(
    provider: OAuthProvider,
    identity: Identity = Depends(require_session),
    broker: OAuthBroker = Depends(get_oauth_broker)
):
    await broker.unlink(identity.user_id, provider)
    return {"success": True, "message": f"{provider.value} unlinked"}
