"""
OAuth Service
Federated login through Google and GitHub

Each login attempt moves through: authorization started (state stored),
redirect issued, callback received (state consumed), code exchanged,
profile fetched, local user resolved and session issued. Any failing step
ends the attempt.
"""

import httpx
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type
from urllib.parse import urlencode

from pymongo.errors import DuplicateKeyError

from imagevault.config import settings
from imagevault.errors import (
    AccountDisabledError,
    IdentityError,
    OAuthExchangeFailedError,
    OAuthProfileFetchError,
    ProviderNotConfiguredError,
    StateMismatchError,
    ValidationError
)
from imagevault.models.oauth_models import (
    OAuthAuthorization,
    OAuthProvider,
    OAuthProviderConfig,
    OAuthUserProfile
)
from imagevault.services.auth_service import generate_opaque_token
from imagevault.services.credential_store import CredentialStore, public_user
from imagevault.services.token_service import TokenIssuer
from imagevault.utils.ids import parse_object_id
from imagevault.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


# ============================================================================
# PROVIDERS
# ============================================================================

class OAuthProviderClient(ABC):
    """What the broker needs from an identity provider"""

    def __init__(self, config: OAuthProviderConfig):
        self.config = config

    @property
    def provider(self) -> OAuthProvider:
        return self.config.provider

    def extra_authorization_params(self) -> Dict[str, str]:
        return {}

    def authorization_url(self, state: str) -> str:
        """Provider login page URL carrying our state nonce"""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.config.scopes),
            "state": state
        }
        params.update(self.extra_authorization_params())
        return f"{self.config.authorization_url}?{urlencode(params)}"

    async def exchange_code(self, client: httpx.AsyncClient, code: str) -> Dict[str, Any]:
        """Exchange authorization code for access token"""
        response = await client.post(
            self.config.token_url,
            data={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "code": code,
                "redirect_uri": self.config.redirect_uri,
                "grant_type": "authorization_code"
            },
            headers={"Accept": "application/json"}
        )
        response.raise_for_status()
        token_data = response.json()

        # GitHub reports bad codes with a 200 and an "error" field
        if not token_data.get("access_token"):
            logger.warning(f"{self.provider.value} token response without access_token: {token_data.get('error')}")
            raise OAuthExchangeFailedError("Could not complete sign-in with the provider")

        return token_data

    @abstractmethod
    async def fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> OAuthUserProfile:
        """Profile of the signed-in provider account"""


class GoogleProvider(OAuthProviderClient):

    def extra_authorization_params(self) -> Dict[str, str]:
        return {"access_type": "online", "prompt": "select_account"}

    async def fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> OAuthUserProfile:
        response = await client.get(
            self.config.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"}
        )
        response.raise_for_status()
        user_data = response.json()

        if not user_data.get("email") or not user_data.get("verified_email", False):
            raise OAuthProfileFetchError("Your Google account has no verified email address")

        return OAuthUserProfile(
            provider=self.provider,
            external_id=str(user_data["id"]),
            email=user_data["email"],
            name=user_data.get("name"),
            picture=user_data.get("picture"),
            verified_email=True
        )


class GitHubProvider(OAuthProviderClient):
    emails_url = "https://api.github.com/user/emails"

    def extra_authorization_params(self) -> Dict[str, str]:
        return {"allow_signup": "true"}

    async def fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> OAuthUserProfile:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json"
        }

        response = await client.get(self.config.userinfo_url, headers=headers)
        response.raise_for_status()
        user_data = response.json()

        # The public profile email is not necessarily verified, ask for the list
        emails_response = await client.get(self.emails_url, headers=headers)
        emails_response.raise_for_status()

        email = None
        for email_data in emails_response.json():
            if email_data.get("primary") and email_data.get("verified"):
                email = email_data["email"]
                break

        if not email:
            raise OAuthProfileFetchError("Your GitHub account has no verified primary email address")

        return OAuthUserProfile(
            provider=self.provider,
            external_id=str(user_data["id"]),
            email=email,
            name=user_data.get("name") or user_data.get("login"),
            picture=user_data.get("avatar_url"),
            verified_email=True
        )


PROVIDER_CLASSES: Dict[OAuthProvider, Type[OAuthProviderClient]] = {
    OAuthProvider.GOOGLE: GoogleProvider,
    OAuthProvider.GITHUB: GitHubProvider,
}


def load_providers(config: Dict[str, Any]) -> Dict[OAuthProvider, OAuthProviderClient]:
    """Build provider clients for every provider that has credentials"""

    configs = {}

    if config.get("GOOGLE_CLIENT_ID"):
        configs[OAuthProvider.GOOGLE] = OAuthProviderConfig(
            provider=OAuthProvider.GOOGLE,
            client_id=config["GOOGLE_CLIENT_ID"],
            client_secret=config.get("GOOGLE_CLIENT_SECRET") or "",
            authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            userinfo_url="https://www.googleapis.com/oauth2/v2/userinfo",
            scopes=["openid", "email", "profile"],
            redirect_uri=config.get("GOOGLE_REDIRECT_URI") or settings.GOOGLE_REDIRECT_URI
        )

    if config.get("GITHUB_CLIENT_ID"):
        configs[OAuthProvider.GITHUB] = OAuthProviderConfig(
            provider=OAuthProvider.GITHUB,
            client_id=config["GITHUB_CLIENT_ID"],
            client_secret=config.get("GITHUB_CLIENT_SECRET") or "",
            authorization_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            userinfo_url="https://api.github.com/user",
            scopes=["read:user", "user:email"],
            redirect_uri=config.get("GITHUB_REDIRECT_URI") or settings.GITHUB_REDIRECT_URI
        )

    return {
        provider: PROVIDER_CLASSES[provider](provider_config)
        for provider, provider_config in configs.items()
    }


# ============================================================================
# BROKER
# ============================================================================

class OAuthBroker:
    """
    Mediates federated login

    The state nonce is checked and consumed before any call to the provider
    and before any local user data is touched.
    """

    def __init__(
        self,
        db,
        credential_store: CredentialStore,
        token_issuer: TokenIssuer,
        config: Optional[Dict[str, Any]] = None,
        providers: Optional[Dict[OAuthProvider, OAuthProviderClient]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None
    ):
        self.db = db
        self.states = db.oauth_states
        self.identities = db.oauth_identities
        self.credential_store = credential_store
        self.token_issuer = token_issuer
        self.providers = providers if providers is not None else load_providers(config or {})
        self.transport = transport
        self.timeout = timeout or settings.OAUTH_HTTP_TIMEOUT_SECONDS

    def _provider(self, provider: OAuthProvider) -> OAuthProviderClient:
        try:
            provider = OAuthProvider(provider)
        except ValueError:
            raise ProviderNotConfiguredError(f"Unknown provider: {provider}")

        if provider not in self.providers:
            raise ProviderNotConfiguredError(f"{provider.value} sign-in is not configured")

        return self.providers[provider]

    async def begin_authorization(self, provider: OAuthProvider) -> OAuthAuthorization:
        """
        Start a login attempt

        Returns:
            the provider URL to redirect the browser to, with its state
        """
        client = self._provider(provider)
        state = generate_opaque_token()
        now = utcnow()

        await self.states.insert_one({
            "state": state,
            "provider": client.provider.value,
            "created_at": now,
            "expires_at": now + timedelta(seconds=settings.OAUTH_STATE_TTL_SECONDS),
            "consumed_at": None
        })

        logger.info(f"Started {client.provider.value} authorization")

        return OAuthAuthorization(
            provider=client.provider,
            authorization_url=client.authorization_url(state),
            state=state
        )

    async def handle_callback(self, provider: OAuthProvider, code: str, state: Optional[str]) -> Dict:
        """
        Finish a login attempt

        Raises:
            StateMismatchError: state unknown, expired, already used or
                issued for another provider; nothing else happened
            OAuthExchangeFailedError: code exchange failed after one retry
            OAuthProfileFetchError: profile unavailable or without a
                verified email

        Returns:
            session token response with the resolved user
        """
        client = self._provider(provider)
        await self._consume_state(client.provider, state)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http:
            token_data = await self._call_with_retry(
                lambda: client.exchange_code(http, code),
                OAuthExchangeFailedError,
                f"{client.provider.value} code exchange"
            )
            profile = await self._call_with_retry(
                lambda: client.fetch_profile(http, token_data["access_token"]),
                OAuthProfileFetchError,
                f"{client.provider.value} profile fetch"
            )

        user, created = await self._resolve_user(profile)
        access_token, claims = self.token_issuer.issue(user)

        logger.info(f"User {user['_id']} signed in with {client.provider.value}")

        return {
            "success": True,
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": self.token_issuer.expires_in,
            "created": created,
            "provider": client.provider.value,
            "user": public_user(user)
        }

    async def _consume_state(self, provider: OAuthProvider, state: Optional[str]) -> None:
        now = utcnow()
        claimed = None

        if state:
            claimed = await self.states.find_one_and_update(
                {
                    "state": state,
                    "provider": provider.value,
                    "consumed_at": None,
                    "expires_at": {"$gt": now}
                },
                {"$set": {"consumed_at": now}}
            )

        if claimed is None:
            logger.warning(f"Rejected {provider.value} callback with unknown or stale state")
            raise StateMismatchError("Sign-in session expired or invalid, please try again")

    async def _call_with_retry(
        self,
        call: Callable[[], Awaitable[Any]],
        error_class: Type[IdentityError],
        action: str
    ) -> Any:
        """Run a provider call, retrying once on timeouts, network errors and 5xx"""
        last_error = None

        for attempt in range(2):
            try:
                return await call()
            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    break
            except httpx.TransportError as e:
                last_error = e
            except (KeyError, ValueError) as e:
                # Malformed provider response
                last_error = e
                break

            logger.warning(f"{action} attempt {attempt + 1} failed: {last_error!r}")

        logger.error(f"{action} failed: {last_error!r}")
        raise error_class("Could not complete sign-in with the provider")

    async def _resolve_user(self, profile: OAuthUserProfile) -> Tuple[Dict, bool]:
        now = utcnow()
        key = {"provider": profile.provider.value, "external_id": profile.external_id}

        identity = await self.identities.find_one(key)
        if identity:
            user = await self.db.users.find_one({"_id": parse_object_id(identity["user_id"])})
            if user:
                await self.identities.update_one(
                    {"_id": identity["_id"]},
                    {"$set": {"last_login_at": now, "email": profile.email}}
                )
                self._ensure_active(user)
                return user, False

            # Owner was deleted, relink below
            await self.identities.delete_one({"_id": identity["_id"]})

        user, created = await self.credential_store.find_or_create_federated(profile.email, profile.name)
        self._ensure_active(user)

        try:
            await self.identities.insert_one({
                **key,
                "user_id": str(user["_id"]),
                "email": profile.email,
                "created_at": now,
                "last_login_at": now
            })
        except DuplicateKeyError:
            # A concurrent callback linked the same provider account first
            identity = await self.identities.find_one(key)
            user = await self.db.users.find_one({"_id": parse_object_id(identity["user_id"])})

        return user, created

    def _ensure_active(self, user: Dict) -> None:
        if not user.get("is_active", True):
            raise AccountDisabledError("User account is inactive")

    # ========================================================================
    # CONNECTIONS
    # ========================================================================

    async def list_identities(self, user_id: str) -> List[Dict]:
        """Provider accounts linked to the user"""
        identities = await self.identities.find({"user_id": str(user_id)}).to_list(None)

        return [
            {
                "provider": identity["provider"],
                "email": identity.get("email"),
                "created_at": identity["created_at"].isoformat(),
                "last_login_at": identity["last_login_at"].isoformat() if identity.get("last_login_at") else None
            }
            for identity in identities
        ]

    async def unlink(self, user_id: str, provider: OAuthProvider) -> None:
        """
        Unlink a provider account

        Refused when it is the only way left to sign in.
        """
        provider = OAuthProvider(provider)
        key = {"user_id": str(user_id), "provider": provider.value}

        if not await self.identities.find_one(key):
            raise ValidationError(f"{provider.value} is not linked", status_code=404)

        user = await self.db.users.find_one({"_id": parse_object_id(user_id)})
        linked = await self.identities.count_documents({"user_id": str(user_id)})

        if user and not user.get("password_hash") and linked <= 1:
            raise ValidationError("Set a password before unlinking your last sign-in method")

        await self.identities.delete_one(key)

        logger.info(f"Unlinked {provider.value} from user {user_id}")
