"""
Token models
Verification token purposes and the resolved request identity
"""

from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from enum import Enum


class VerificationPurpose(str, Enum):
    """What a single-use verification token proves"""
    VERIFY_EMAIL = "verify-email"
    RESET_PASSWORD = "reset-password"


class AuthType(str, Enum):
    SESSION = "session"
    API_KEY = "api_key"


class SessionClaims(BaseModel):
    """Verified payload of a session token"""
    user_id: str
    plan: str
    is_admin: bool = False
    token_id: str
    issued_at_ms: int
    expires_at: datetime


class Identity(BaseModel):
    """Who is making the request, as resolved by the session validator"""
    user_id: str
    plan: str
    is_admin: bool = False
    auth_type: AuthType
    token_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    api_key_id: Optional[str] = None
    permissions: List[str] = []
