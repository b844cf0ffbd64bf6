"""
Credential store
Owns user records: registration, login, email verification and passwords
"""

import logging
from typing import Dict, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from imagevault.errors import (
    AccountDisabledError,
    DuplicateEmailError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    UserNotFoundError,
    ValidationError
)
from imagevault.models.token_models import VerificationPurpose
from imagevault.models.usage_models import Plan
from imagevault.services.auth_service import (
    burn_password_check,
    get_password_hash,
    validate_password_strength,
    verify_password
)
from imagevault.services.email_service import EmailService, get_email_service
from imagevault.services.token_service import TokenIssuer
from imagevault.services.verification_tokens import VerificationTokenIssuer
from imagevault.utils.ids import parse_object_id
from imagevault.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return str(email).strip().lower()


def public_user(user: Dict) -> Dict:
    """User fields that are safe to return to the client"""
    created_at = user.get("created_at")
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "name": user.get("name"),
        "plan": user.get("plan", Plan.FREE.value),
        "is_admin": bool(user.get("is_admin", False)),
        "email_verified": bool(user.get("email_verified", False)),
        "has_password": bool(user.get("password_hash")),
        "created_at": created_at.isoformat() if created_at else None
    }


class CredentialStore:
    """
    User accounts and their credentials

    Password hashes never leave this class.
    """

    def __init__(
        self,
        db,
        token_issuer: TokenIssuer,
        verification: Optional[VerificationTokenIssuer] = None,
        email_service: Optional[EmailService] = None
    ):
        self.db = db
        self.users = db.users
        self.token_issuer = token_issuer
        self.verification = verification or VerificationTokenIssuer(db)
        self.email_service = email_service or get_email_service()

    # ========================================================================
    # REGISTRATION & LOGIN
    # ========================================================================

    async def register(self, email: str, password: str, name: Optional[str] = None) -> Dict:
        """
        Create an unverified user and send the verification email

        Raises:
            WeakPasswordError: password policy not met
            DuplicateEmailError: email already registered
        """
        email = normalize_email(email)
        validate_password_strength(password)

        now = utcnow()
        user_doc = {
            "email": email,
            "name": name or email.split("@")[0],
            "password_hash": get_password_hash(password),
            "email_verified": False,
            "plan": Plan.FREE.value,
            "is_admin": False,
            "is_active": True,
            "created_at": now,
            "updated_at": now
        }

        try:
            result = await self.users.insert_one(user_doc)
        except DuplicateKeyError:
            raise DuplicateEmailError("Email already registered")

        user_doc["_id"] = result.inserted_id
        logger.info(f"Registered user {result.inserted_id}")

        token = await self.verification.issue(str(result.inserted_id), VerificationPurpose.VERIFY_EMAIL)
        await self._deliver(self.email_service.send_verification_email, email, token)

        return public_user(user_doc)

    async def authenticate(self, email: str, password: str) -> Dict:
        """
        Check email and password

        Raises:
            InvalidCredentialsError: unknown email, no local password or
                wrong password (indistinguishable to the caller)
            AccountDisabledError: account deactivated
            EmailNotVerifiedError: password correct but email unverified

        Returns:
            {id, email, plan, is_admin}
        """
        user = await self.users.find_one({"email": normalize_email(email)})

        if not user or not user.get("password_hash"):
            burn_password_check(password)
            raise InvalidCredentialsError("Incorrect email or password")

        if not verify_password(password, user["password_hash"]):
            logger.info(f"Failed login for user {user['_id']}")
            raise InvalidCredentialsError("Incorrect email or password")

        if not user.get("is_active", True):
            raise AccountDisabledError("User account is inactive")

        if not user.get("email_verified", False):
            raise EmailNotVerifiedError(
                "Please verify your email address before logging in"
            )

        return {
            "id": str(user["_id"]),
            "email": user["email"],
            "plan": user.get("plan", Plan.FREE.value),
            "is_admin": bool(user.get("is_admin", False))
        }

    # ========================================================================
    # PASSWORDS
    # ========================================================================

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """
        Replace the password and revoke every session issued before now

        The revocation is recorded before the new hash is written, so a
        failed revocation leaves the old password in place.
        """
        user = await self._get_user_doc(user_id)

        if not user.get("password_hash") or not verify_password(current_password, user["password_hash"]):
            raise InvalidCredentialsError("Current password is incorrect")

        validate_password_strength(new_password)
        password_hash = get_password_hash(new_password)

        await self.token_issuer.revoke_user(str(user["_id"]), "password_change")
        await self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"password_hash": password_hash, "updated_at": utcnow()}}
        )

        logger.info(f"Password changed for user {user['_id']}")

    async def request_password_reset(self, email: str) -> bool:
        """
        Email a reset link if the account exists

        Returns:
            whether a link was sent; callers must not reveal it
        """
        user = await self.users.find_one({"email": normalize_email(email)})
        if not user:
            logger.info("Password reset requested for unknown email")
            return False

        token = await self.verification.issue(str(user["_id"]), VerificationPurpose.RESET_PASSWORD)
        await self._deliver(self.email_service.send_password_reset_email, user["email"], token)
        return True

    async def reset_password(self, token: str, new_password: str) -> str:
        """
        Set a new password using a reset token

        Token consumption and the password update happen together; all
        existing sessions are revoked.
        """
        validate_password_strength(new_password)
        password_hash = get_password_hash(new_password)

        async def apply(user_id: str):
            # Revocation is recorded before the new hash exists
            await self.token_issuer.revoke_user(user_id, "password_reset")
            result = await self.users.update_one(
                {"_id": parse_object_id(user_id)},
                {"$set": {"password_hash": password_hash, "updated_at": utcnow()}}
            )
            if result.matched_count == 0:
                raise UserNotFoundError("User not found")

        user_id = await self.verification.consume(
            token, VerificationPurpose.RESET_PASSWORD, on_consumed=apply
        )
        logger.info(f"Password reset for user {user_id}")
        return user_id

    # ========================================================================
    # EMAIL VERIFICATION
    # ========================================================================

    async def verify_email(self, token: str) -> str:
        """Mark the token owner's email as verified"""

        async def apply(user_id: str):
            result = await self.users.update_one(
                {"_id": parse_object_id(user_id)},
                {"$set": {"email_verified": True, "updated_at": utcnow()}}
            )
            if result.matched_count == 0:
                raise UserNotFoundError("User not found")

        return await self.verification.consume(
            token, VerificationPurpose.VERIFY_EMAIL, on_consumed=apply
        )

    async def resend_verification(self, user_id: Optional[str] = None, email: Optional[str] = None) -> None:
        """
        Issue a fresh verification token (rate-limited)

        Raises:
            UserNotFoundError, ValidationError (already verified), RateLimitError
        """
        if user_id:
            user = await self._get_user_doc(user_id)
        elif email:
            user = await self.users.find_one({"email": normalize_email(email)})
            if not user:
                raise UserNotFoundError("User not found")
        else:
            raise ValidationError("Email is required")

        if user.get("email_verified"):
            raise ValidationError("Email already verified")

        token = await self.verification.issue(str(user["_id"]), VerificationPurpose.VERIFY_EMAIL)
        await self._deliver(self.email_service.send_verification_email, user["email"], token)

    # ========================================================================
    # LOOKUPS & ADMIN
    # ========================================================================

    async def get_user(self, user_id: str) -> Dict:
        return public_user(await self._get_user_doc(user_id))

    async def get_by_email(self, email: str) -> Optional[Dict]:
        user = await self.users.find_one({"email": normalize_email(email)})
        return public_user(user) if user else None

    async def set_plan(self, user_id: str, plan: Plan) -> Dict:
        plan = Plan(plan)
        user = await self._get_user_doc(user_id)
        await self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"plan": plan.value, "updated_at": utcnow()}}
        )
        user["plan"] = plan.value

        logger.info(f"Plan of user {user_id} set to {plan.value}")

        return public_user(user)

    async def find_or_create_federated(self, email: str, name: Optional[str] = None) -> Tuple[Dict, bool]:
        """
        User for a provider-verified email, created if necessary

        Provider-verified emails count as verified. When an unverified local
        account holds the same email, its unproven password is dropped before
        the account is treated as verified, so whoever registered it without
        owning the mailbox cannot log in to the linked account.

        Returns:
            (user document, created)
        """
        email = normalize_email(email)
        user = await self.users.find_one({"email": email})

        if user:
            if not user.get("email_verified", False):
                await self.users.update_one(
                    {"_id": user["_id"]},
                    {"$set": {"email_verified": True, "password_hash": None, "updated_at": utcnow()}}
                )
                user["email_verified"] = True
                user["password_hash"] = None
                logger.warning(f"Dropped unverified password of user {user['_id']} on federated login")
            return user, False

        now = utcnow()
        user_doc = {
            "email": email,
            "name": name or email.split("@")[0],
            "password_hash": None,
            "email_verified": True,
            "plan": Plan.FREE.value,
            "is_admin": False,
            "is_active": True,
            "created_at": now,
            "updated_at": now
        }

        try:
            result = await self.users.insert_one(user_doc)
        except DuplicateKeyError:
            # Lost a race with a concurrent login for the same email
            return await self.users.find_one({"email": email}), False

        user_doc["_id"] = result.inserted_id
        logger.info(f"Created federated user {result.inserted_id}")
        return user_doc, True

    async def _get_user_doc(self, user_id: str) -> Dict:
        oid = parse_object_id(user_id)
        user = await self.users.find_one({"_id": oid}) if oid else None
        if not user:
            raise UserNotFoundError("User not found")
        return user

    async def _deliver(self, send, email: str, token: str) -> None:
        try:
            await send(email, token)
        except Exception:
            logger.exception(f"Email delivery to {email} failed")
