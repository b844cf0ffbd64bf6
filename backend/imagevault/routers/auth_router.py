"""
Authentication router
Registration, login, logout, email verification and password management
"""
from fastapi import APIRouter, Depends, status
from typing import Optional

from imagevault.dependencies import get_credential_store, get_token_issuer
from imagevault.middleware.auth_middleware import (
    get_metered_identity,
    get_optional_identity,
    require_session
)
from imagevault.models.token_models import Identity
from imagevault.models.user import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ResendVerificationRequest,
    ResetPasswordRequest,
    UserCreate,
    UserLogin,
    VerifyEmailRequest
)
from imagevault.services.credential_store import CredentialStore
from imagevault.services.token_service import TokenIssuer

router = APIRouter()

@router.post("/register", response_model=dict, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserCreate,
    store: CredentialStore = Depends(get_credential_store)
):
    """
    Register a new user

    Creates an unverified account on the FREE plan and emails a
    verification link. Login is blocked until the email is verified.
    """
    user = await store.register(user_data.email, user_data.password, user_data.name)

    return {
        "success": True,
        "message": "Registration successful. Please check your email to verify your account.",
        "requires_verification": True,
        "user": user
    }

@router.post("/login", response_model=dict)
async def login(
    credentials: UserLogin,
    store: CredentialStore = Depends(get_credential_store),
    token_issuer: TokenIssuer = Depends(get_token_issuer)
):
    """
    Login and get a session token
    """
    identity = await store.authenticate(credentials.email, credentials.password)
    access_token, _ = token_issuer.issue(identity)

    return {
        "success": True,
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": token_issuer.expires_in,
        "user": await store.get_user(identity["id"])
    }

@router.post("/logout", response_model=dict)
async def logout(
    identity: Identity = Depends(require_session),
    token_issuer: TokenIssuer = Depends(get_token_issuer)
):
    """Revoke the session token used for this request"""
    await token_issuer.revoke_token(identity.token_id, identity.expires_at, reason="logout")

    return {"success": True, "message": "Logged out"}

@router.get("/user", response_model=dict)
@router.get("/profile", response_model=dict)
async def get_current_user(
    identity: Identity = Depends(get_metered_identity),
    store: CredentialStore = Depends(get_credential_store)
):
    """
    Get current user information

    Works with a session token or an API key
    """
    return {
        "success": True,
        "auth_type": identity.auth_type.value,
        "user": await store.get_user(identity.user_id)
    }

@router.put("/change-password", response_model=dict)
async def change_password(
    request: ChangePasswordRequest,
    identity: Identity = Depends(require_session),
    store: CredentialStore = Depends(get_credential_store)
):
    """
    Change password

    Every session issued before the change, this one included, is revoked.
    """
    await store.change_password(identity.user_id, request.current_password, request.new_password)

    return {
        "success": True,
        "message": "Password changed. Please log in again."
    }

@router.post("/forgot-password", response_model=dict)
async def forgot_password(
    request: ForgotPasswordRequest,
    store: CredentialStore = Depends(get_credential_store)
):
    """Email a password reset link; the response never reveals whether the account exists"""
    await store.request_password_reset(request.email)

    return {
        "success": True,
        "message": "If the email exists, a reset link has been sent."
    }

@router.post("/reset-password", response_model=dict)
async def reset_password(
    request: ResetPasswordRequest,
    store: CredentialStore = Depends(get_credential_store)
):
    await store.reset_password(request.token, request.password)

    return {"success": True, "message": "Password updated successfully"}

@router.post("/verify-email", response_model=dict)
async def verify_email(
    request: VerifyEmailRequest,
    store: CredentialStore = Depends(get_credential_store)
):
    await store.verify_email(request.token)

    return {"success": True, "message": "Email verified successfully"}

@router.post("/resend-verification", response_model=dict)
async def resend_verification(
    request: Optional[ResendVerificationRequest] = None,
    identity: Optional[Identity] = Depends(get_optional_identity),
    store: CredentialStore = Depends(get_credential_store)
):
    """
    Send a new verification email

    Logged-in callers resend for themselves; anonymous callers pass their
    email. Limited to one email per minute.
    """
    if identity:
        await store.resend_verification(user_id=identity.user_id)
    else:
        await store.resend_verification(email=request.email if request else None)

    return {"success": True, "message": "Verification email sent"}
