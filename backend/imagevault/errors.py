"""
Custom exceptions for ImageVault identity & entitlements

Every error carries a stable ``code`` that clients can switch on, an HTTP
status and optional structured ``data`` that is safe to return.
"""
from typing import Any, Dict, Optional


class IdentityError(Exception):
    """Base exception for all identity and entitlement errors"""
    status_code = 400
    code = "error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.data = data or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.code, "message": self.message}
        body.update(self.data)
        return body


class ValidationError(IdentityError):
    """Raised when input validation fails"""
    code = "validation_error"


class WeakPasswordError(ValidationError):
    """Raised when a password does not meet the password policy"""
    code = "weak_password"


class DuplicateEmailError(IdentityError):
    """Raised when registering an email that already has an account"""
    status_code = 409
    code = "duplicate_email"


class InvalidCredentialsError(IdentityError):
    """Raised when email/password do not match"""
    status_code = 401
    code = "invalid_credentials"


class EmailNotVerifiedError(IdentityError):
    """Raised when a correct login is attempted before email verification"""
    status_code = 403
    code = "email_not_verified"


class AccountDisabledError(IdentityError):
    """Raised when the account was deactivated"""
    status_code = 403
    code = "account_disabled"


class UserNotFoundError(IdentityError):
    status_code = 404
    code = "user_not_found"


class TokenNotFoundError(IdentityError):
    """Raised when a verification token does not exist for the purpose"""
    code = "token_not_found"


class TokenAlreadyUsedError(IdentityError):
    """Raised when a verification token was already consumed"""
    code = "token_already_used"


class TokenExpiredError(IdentityError):
    """Raised when a verification or session token is past its expiry"""
    status_code = 401
    code = "token_expired"


class TokenInvalidError(IdentityError):
    """Raised when a session token has a bad signature or shape"""
    status_code = 401
    code = "token_invalid"


class TokenRevokedError(IdentityError):
    """Raised when a well-signed session token was revoked early"""
    status_code = 401
    code = "token_revoked"


class UnauthenticatedError(IdentityError):
    """Raised when a request carries no usable credentials"""
    status_code = 401
    code = "unauthenticated"


class ForbiddenError(IdentityError):
    status_code = 403
    code = "forbidden"


class ApiKeyNotFoundError(IdentityError):
    status_code = 401
    code = "api_key_not_found"


class ApiKeyInactiveError(IdentityError):
    status_code = 401
    code = "api_key_inactive"


class StateMismatchError(IdentityError):
    """Raised when an OAuth callback state does not match a live nonce"""
    status_code = 401
    code = "state_mismatch"


class ProviderNotConfiguredError(IdentityError):
    code = "provider_not_configured"


class OAuthExchangeFailedError(IdentityError):
    """Raised when the provider refused or failed the code exchange"""
    status_code = 502
    code = "oauth_exchange_failed"


class OAuthProfileFetchError(IdentityError):
    """Raised when the provider profile could not be retrieved"""
    status_code = 502
    code = "oauth_profile_fetch_failed"


class QuotaExceededError(IdentityError):
    """Raised when a plan limit would be exceeded"""
    status_code = 403
    code = "quota_exceeded"

    def __init__(self, resource: str, current_usage: int, limit: int):
        self.resource = resource
        self.current_usage = current_usage
        self.limit = limit
        super().__init__(
            f"{resource} limit reached. Please upgrade your plan.",
            data={
                "resource": resource,
                "current_usage": current_usage,
                "limit": limit
            }
        )


class RateLimitError(IdentityError):
    """Raised when an action is repeated faster than allowed"""
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, retry_after: int):
        self.retry_after = retry_after
        super().__init__(message, data={"retry_after": retry_after})


class ConfigurationError(Exception):
    """Server-side misconfiguration; never shown to clients as-is"""
    pass
