"""
Authentication primitives
Argon2 password hashing, password policy and opaque secret generation
"""

import hashlib
import secrets
from passlib.context import CryptContext

from imagevault.config import settings
from imagevault.errors import WeakPasswordError

API_KEY_PREFIX = "iv_"
PASSWORD_MAX_LENGTH = 128

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto"
)

# Verified against when the account does not exist, so unknown emails cost
# the same as wrong passwords.
_DUMMY_HASH = pwd_context.hash(secrets.token_urlsafe(16))

def get_password_hash(password: str) -> str:
    """Hash a password using Argon2"""
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash (constant-time inside Argon2)"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False

def burn_password_check(plain_password: str) -> None:
    """Spend the same work as a real verification and discard the result"""
    verify_password(plain_password, _DUMMY_HASH)

def validate_password_strength(password: str) -> None:
    """
    Enforce the password policy

    Raises:
        WeakPasswordError: when the password is too short, too long, uses a
            single character class or is one repeated character
    """
    min_length = settings.PASSWORD_MIN_LENGTH

    if len(password) < min_length:
        raise WeakPasswordError(f"Password must be at least {min_length} characters long")

    if len(password) > PASSWORD_MAX_LENGTH:
        raise WeakPasswordError(f"Password must be at most {PASSWORD_MAX_LENGTH} characters long")

    if len(set(password)) == 1:
        raise WeakPasswordError("Password must not be a single repeated character")

    classes = [
        any(c.islower() for c in password),
        any(c.isupper() for c in password),
        any(c.isdigit() for c in password),
        any(not c.isalnum() for c in password),
    ]
    if sum(classes) < 2:
        raise WeakPasswordError(
            "Password must mix at least two of: lowercase, uppercase, digits, symbols"
        )

def hash_secret(value: str) -> str:
    """SHA-256 hex digest used to store opaque tokens and API keys"""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()

def generate_opaque_token() -> str:
    """Unguessable single-use token for emails and OAuth state"""
    return secrets.token_urlsafe(32)

def generate_api_key() -> str:
    """
    Generate a secure API key

    Returns:
        API key with 'iv_' prefix
    """
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"

def is_api_key(value: str) -> bool:
    return value.startswith(API_KEY_PREFIX)
