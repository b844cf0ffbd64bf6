"""
Session token service
Issues and verifies stateless JWT session tokens, backed by a revocation list
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from jose import ExpiredSignatureError, JWTError, jwt

from imagevault.config import settings
from imagevault.errors import (
    ConfigurationError,
    TokenExpiredError,
    TokenInvalidError,
    TokenRevokedError
)
from imagevault.models.token_models import SessionClaims
from imagevault.utils.cache import SimpleCache
from imagevault.utils.timeutils import from_epoch_ms, to_epoch_ms, utcnow

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")
TOKEN_TYPE = "session"
REQUIRED_CLAIMS = ("sub", "jti", "iat_ms", "exp", "typ")

# Shared by every issuer in the process
revocation_cache = SimpleCache()


class TokenIssuer:
    """
    Signs and verifies session tokens

    Verification needs no database round-trip for the signature; only the
    revocation list is consulted. Per-token revocations (logout) may be
    served from a short-lived cache. User-wide revocations (password change)
    are always read from the database so they take effect on the very next
    request.
    """

    def __init__(
        self,
        db,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        expire_minutes: Optional[int] = None,
        cache_seconds: Optional[float] = None,
        cache: Optional[SimpleCache] = None
    ):
        self.db = db
        self.revocations = db.revocations
        self.secret_key = secret_key if secret_key is not None else settings.SECRET_KEY
        self.algorithm = algorithm or settings.ALGORITHM
        self.expire_minutes = expire_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
        self.cache_seconds = (
            cache_seconds if cache_seconds is not None else settings.REVOCATION_CACHE_SECONDS
        )
        self.cache = cache or revocation_cache

        if not self.secret_key:
            raise ConfigurationError("SECRET_KEY is not configured")
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(f"Unsupported signing algorithm: {self.algorithm}")

    @property
    def expires_in(self) -> int:
        """Session lifetime in seconds"""
        return self.expire_minutes * 60

    def issue(self, user: Dict) -> Tuple[str, SessionClaims]:
        """
        Create a signed session token for a user

        Args:
            user: mapping with ``id`` (or ``_id``), ``plan`` and ``is_admin``

        Returns:
            (token, claims)
        """
        user_id = str(user.get("id") or user.get("_id"))
        issued_at = utcnow()
        iat_ms = to_epoch_ms(issued_at)
        exp = iat_ms // 1000 + self.expires_in

        claims = {
            "sub": user_id,
            "plan": user.get("plan", "free"),
            "adm": bool(user.get("is_admin", False)),
            "jti": secrets.token_hex(16),
            "typ": TOKEN_TYPE,
            "iat": iat_ms // 1000,
            "iat_ms": iat_ms,
            "exp": exp,
        }

        token = jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

        return token, self._to_claims(claims)

    async def verify(self, token: str) -> SessionClaims:
        """
        Verify signature, expiry and revocation status

        Raises:
            TokenInvalidError: bad signature, malformed or not a session token
            TokenExpiredError: past ``exp``
            TokenRevokedError: covered by the revocation list
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpiredError("Session expired, please log in again")
        except JWTError:
            raise TokenInvalidError("Invalid session token")

        if any(name not in payload for name in REQUIRED_CLAIMS) or payload["typ"] != TOKEN_TYPE:
            raise TokenInvalidError("Invalid session token")

        try:
            claims = self._to_claims(payload)
        except (TypeError, ValueError):
            raise TokenInvalidError("Invalid session token")

        if await self.is_revoked(claims):
            raise TokenRevokedError("Session has been revoked, please log in again")

        return claims

    async def is_revoked(self, claims: SessionClaims) -> bool:
        cache_key = f"jti:{claims.token_id}"
        token_revoked = await self.cache.get(cache_key)

        if token_revoked is None:
            entry = await self.revocations.find_one({"token_id": claims.token_id})
            token_revoked = entry is not None
            await self.cache.set(cache_key, token_revoked, self.cache_seconds)

        if token_revoked:
            return True

        user_entry = await self.revocations.find_one({
            "user_id": claims.user_id,
            "revoked_before_ms": {"$gte": claims.issued_at_ms}
        })
        return user_entry is not None

    async def revoke_token(self, token_id: str, expires_at: datetime, reason: str = "logout") -> None:
        """Revoke one session token until it would have expired anyway"""
        await self.revocations.insert_one({
            "token_id": token_id,
            "expires_at": expires_at,
            "reason": reason,
            "created_at": utcnow()
        })
        await self.cache.set(f"jti:{token_id}", True, self.cache_seconds)

        logger.info(f"Revoked session {token_id[:8]}... ({reason})")

    async def revoke_user(self, user_id: str, reason: str) -> datetime:
        """
        Revoke every session issued to the user up to now

        Returns only once the entry is acknowledged by the database, so the
        next verification anywhere observes it.
        """
        now = utcnow()
        await self.revocations.insert_one({
            "user_id": str(user_id),
            "revoked_before": now,
            "revoked_before_ms": to_epoch_ms(now),
            # Older tokens are expired by then, the entry can be dropped
            "expires_at": now + timedelta(seconds=self.expires_in),
            "reason": reason,
            "created_at": now
        })

        logger.info(f"Revoked all sessions of user {user_id} ({reason})")

        return now

    def _to_claims(self, payload: Dict) -> SessionClaims:
        return SessionClaims(
            user_id=str(payload["sub"]),
            plan=str(payload.get("plan", "free")),
            is_admin=bool(payload.get("adm", False)),
            token_id=str(payload["jti"]),
            issued_at_ms=int(payload["iat_ms"]),
            expires_at=from_epoch_ms(int(payload["exp"]) * 1000)
        )
