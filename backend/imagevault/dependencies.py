"""
FastAPI dependency providers for the services
"""
from fastapi import Depends

from imagevault.config import settings
from imagevault.database import get_database
from imagevault.services.api_key_service import ApiKeyService
from imagevault.services.credential_store import CredentialStore
from imagevault.services.email_service import EmailService, get_email_service
from imagevault.services.oauth_service import OAuthBroker
from imagevault.services.token_service import TokenIssuer
from imagevault.services.usage_meter import UsageMeter
from imagevault.services.verification_tokens import VerificationTokenIssuer


async def get_token_issuer(db=Depends(get_database)) -> TokenIssuer:
    return TokenIssuer(db)


async def get_credential_store(
    db=Depends(get_database),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
    email_service: EmailService = Depends(get_email_service)
) -> CredentialStore:
    return CredentialStore(
        db,
        token_issuer,
        verification=VerificationTokenIssuer(db),
        email_service=email_service
    )


async def get_oauth_broker(
    db=Depends(get_database),
    credential_store: CredentialStore = Depends(get_credential_store),
    token_issuer: TokenIssuer = Depends(get_token_issuer)
) -> OAuthBroker:
    return OAuthBroker(db, credential_store, token_issuer, config=settings.oauth_config)


async def get_usage_meter(db=Depends(get_database)) -> UsageMeter:
    return UsageMeter(db)


async def get_api_key_service(db=Depends(get_database)) -> ApiKeyService:
    return ApiKeyService(db)
