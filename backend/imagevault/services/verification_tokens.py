"""
Verification token service
Single-use, time-limited tokens for email verification and password reset
"""

import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from pymongo import ReturnDocument

from imagevault.config import settings
from imagevault.errors import (
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError
)
from imagevault.models.token_models import VerificationPurpose
from imagevault.services.auth_service import generate_opaque_token, hash_secret
from imagevault.services.rate_limiter import IssuanceRateLimiter
from imagevault.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

# Consumed and expired tokens are kept this long for diagnostics
PURGE_AFTER = timedelta(days=7)


def token_ttl(purpose: VerificationPurpose) -> timedelta:
    if purpose == VerificationPurpose.VERIFY_EMAIL:
        return timedelta(hours=settings.VERIFY_EMAIL_TOKEN_TTL_HOURS)
    return timedelta(hours=settings.RESET_PASSWORD_TOKEN_TTL_HOURS)


class VerificationTokenIssuer:
    """
    Issues and consumes verification tokens

    Only the SHA-256 of a token is stored. At most one live token exists per
    (user, purpose): issuing a new one retires the previous ones.
    """

    def __init__(self, db, rate_limiter: Optional[IssuanceRateLimiter] = None):
        self.db = db
        self.tokens = db.verification_tokens
        self.rate_limiter = rate_limiter or IssuanceRateLimiter(db)

    async def issue(
        self,
        user_id: str,
        purpose: VerificationPurpose,
        ttl: Optional[timedelta] = None
    ) -> str:
        """
        Issue a new token, invalidating earlier unconsumed ones

        Raises:
            RateLimitError: a token for this (user, purpose) was issued less
                than the resend window ago

        Returns:
            The plaintext token, to be delivered out of band
        """
        purpose = VerificationPurpose(purpose)
        user_id = str(user_id)

        await self.rate_limiter.hit(
            f"{purpose.value}:{user_id}",
            settings.VERIFICATION_RESEND_WINDOW_SECONDS
        )

        now = utcnow()
        expires_at = now + (ttl or token_ttl(purpose))

        retired = await self.tokens.update_many(
            {"user_id": user_id, "purpose": purpose.value, "consumed_at": None},
            {"$set": {"consumed_at": now, "superseded": True}}
        )

        token = generate_opaque_token()
        await self.tokens.insert_one({
            "token_hash": hash_secret(token),
            "user_id": user_id,
            "purpose": purpose.value,
            "created_at": now,
            "expires_at": expires_at,
            "consumed_at": None,
            "purge_at": expires_at + PURGE_AFTER
        })

        logger.info(
            f"Issued {purpose.value} token for user {user_id} "
            f"(retired {retired.modified_count})"
        )

        return token

    async def consume(
        self,
        token: str,
        purpose: VerificationPurpose,
        on_consumed: Optional[Callable[[str], Awaitable[None]]] = None
    ) -> str:
        """
        Consume a token exactly once

        The token is claimed with a compare-and-set on ``consumed_at``, so
        of several concurrent calls with the same token only one succeeds.
        ``on_consumed`` runs with the owning user id after the claim; if it
        fails the claim is released and the error propagates, leaving the
        token usable.

        Raises:
            TokenNotFoundError, TokenAlreadyUsedError, TokenExpiredError

        Returns:
            The owning user id
        """
        purpose = VerificationPurpose(purpose)
        token_hash = hash_secret(token)
        now = utcnow()

        claimed = await self.tokens.find_one_and_update(
            {
                "token_hash": token_hash,
                "purpose": purpose.value,
                "consumed_at": None,
                "expires_at": {"$gt": now}
            },
            {"$set": {"consumed_at": now}},
            return_document=ReturnDocument.AFTER
        )

        if claimed is None:
            await self._raise_rejection(token_hash, purpose)

        user_id = claimed["user_id"]

        if on_consumed is not None:
            try:
                await on_consumed(user_id)
            except Exception:
                await self.tokens.update_one(
                    {"_id": claimed["_id"], "consumed_at": now},
                    {"$set": {"consumed_at": None}}
                )
                raise

        logger.info(f"Consumed {purpose.value} token for user {user_id}")

        return user_id

    async def _raise_rejection(self, token_hash: str, purpose: VerificationPurpose) -> None:
        existing = await self.tokens.find_one({"token_hash": token_hash})

        if not existing or existing.get("purpose") != purpose.value:
            raise TokenNotFoundError("Invalid verification token")

        if existing.get("consumed_at") is not None:
            raise TokenAlreadyUsedError("This link has already been used")

        raise TokenExpiredError("This link has expired, please request a new one", status_code=400)
