"""
Session validation
Turns the bearer credential of a request into a verified identity
"""
import asyncio
import logging
from typing import Optional, Set

from fastapi import Depends, Header

from imagevault.database import get_database
from imagevault.dependencies import get_token_issuer, get_usage_meter
from imagevault.errors import (
    ApiKeyInactiveError,
    ApiKeyNotFoundError,
    ForbiddenError,
    UnauthenticatedError
)
from imagevault.models.api_key_models import ApiKeyPermission
from imagevault.models.token_models import AuthType, Identity
from imagevault.models.usage_models import Resource
from imagevault.services.api_key_service import ApiKeyService
from imagevault.services.auth_service import is_api_key
from imagevault.services.token_service import TokenIssuer
from imagevault.services.usage_meter import UsageMeter
from imagevault.utils.ids import parse_object_id

logger = logging.getLogger(__name__)

# API key bookkeeping writes still in flight
_background_updates: Set[asyncio.Task] = set()


class SessionValidator:
    """
    Resolves ``Authorization: Bearer <credential>``

    Credentials starting with the API key prefix are looked up by hash;
    everything else must be a session token.
    """

    def __init__(self, db, token_issuer: TokenIssuer, api_keys: Optional[ApiKeyService] = None):
        self.db = db
        self.token_issuer = token_issuer
        self.api_keys = api_keys or ApiKeyService(db)

    async def authenticate(self, authorization: Optional[str]) -> Identity:
        """
        Raises:
            UnauthenticatedError: no bearer credential
            TokenInvalidError, TokenExpiredError, TokenRevokedError
            ApiKeyNotFoundError, ApiKeyInactiveError
        """
        if not authorization or not authorization.startswith("Bearer "):
            raise UnauthenticatedError("Authentication required")

        credential = authorization[len("Bearer "):].strip()
        if not credential:
            raise UnauthenticatedError("Authentication required")

        if is_api_key(credential):
            return await self._authenticate_api_key(credential)

        claims = await self.token_issuer.verify(credential)

        return Identity(
            user_id=claims.user_id,
            plan=claims.plan,
            is_admin=claims.is_admin,
            auth_type=AuthType.SESSION,
            token_id=claims.token_id,
            expires_at=claims.expires_at
        )

    async def _authenticate_api_key(self, credential: str) -> Identity:
        api_key_doc = await self.api_keys.find_by_key(credential)

        if not api_key_doc:
            raise ApiKeyNotFoundError("Invalid API key")

        if not api_key_doc.get("is_active", True):
            raise ApiKeyInactiveError("API key is inactive")

        user = await self.db.users.find_one({"_id": parse_object_id(api_key_doc["user_id"])})
        if not user or not user.get("is_active", True):
            raise ApiKeyNotFoundError("Invalid API key")

        self._schedule_usage_update(api_key_doc["_id"])

        return Identity(
            user_id=str(user["_id"]),
            plan=user.get("plan", "free"),
            is_admin=bool(user.get("is_admin", False)),
            auth_type=AuthType.API_KEY,
            api_key_id=str(api_key_doc["_id"]),
            permissions=api_key_doc.get("permissions", [])
        )

    def _schedule_usage_update(self, key_id) -> None:
        task = asyncio.create_task(self._record_use(key_id))
        _background_updates.add(task)
        task.add_done_callback(_background_updates.discard)

    async def _record_use(self, key_id) -> None:
        try:
            await self.api_keys.record_use(key_id)
        except Exception:
            # Bookkeeping only, the request already succeeded
            logger.exception(f"Failed to record use of API key {key_id}")


async def wait_for_background_updates() -> None:
    """Let pending API key bookkeeping finish (shutdown, tests)"""
    if _background_updates:
        await asyncio.gather(*list(_background_updates), return_exceptions=True)


# ============================================================================
# FastAPI dependencies
# ============================================================================

async def get_session_validator(
    db=Depends(get_database),
    token_issuer: TokenIssuer = Depends(get_token_issuer)
) -> SessionValidator:
    return SessionValidator(db, token_issuer)


async def get_current_identity(
    authorization: Optional[str] = Header(None),
    validator: SessionValidator = Depends(get_session_validator)
) -> Identity:
    """Session token or API key"""
    return await validator.authenticate(authorization)


async def require_session(identity: Identity = Depends(get_current_identity)) -> Identity:
    """Session token only; API keys cannot manage the account"""
    if identity.auth_type != AuthType.SESSION:
        raise ForbiddenError("This action requires a logged-in session")
    return identity


async def require_admin(identity: Identity = Depends(require_session)) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity


async def get_optional_identity(
    authorization: Optional[str] = Header(None),
    validator: SessionValidator = Depends(get_session_validator)
) -> Optional[Identity]:
    """Identity when credentials were sent, None for anonymous requests"""
    if not authorization:
        return None
    return await validator.authenticate(authorization)


async def _meter_api_call(identity: Identity, meter: UsageMeter) -> None:
    # Only API key calls are metered
    if identity.auth_type == AuthType.API_KEY:
        await meter.try_consume(identity.user_id, Resource.API_CALLS, 1)


async def get_metered_identity(
    identity: Identity = Depends(get_current_identity),
    meter: UsageMeter = Depends(get_usage_meter)
) -> Identity:
    """
    Session token or API key

    Each API key request uses one unit of the plan's API request quota.

    Raises:
        QuotaExceededError: API request quota used up for this period
    """
    await _meter_api_call(identity, meter)
    return identity


def require_permission(permission: ApiKeyPermission):
    """
    Dependency factory: API keys must carry ``permission`` (or ``admin``)

    Sessions act for the account owner and pass. The permission is checked
    before the call is metered.
    """

    async def check_permission(
        identity: Identity = Depends(get_current_identity),
        meter: UsageMeter = Depends(get_usage_meter)
    ) -> Identity:
        if identity.auth_type == AuthType.API_KEY:
            granted = set(identity.permissions)
            if permission.value not in granted and ApiKeyPermission.ADMIN.value not in granted:
                raise ForbiddenError(f"API key lacks the '{permission.value}' permission")

        await _meter_api_call(identity, meter)
        return identity

    return check_permission
