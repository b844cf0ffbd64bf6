"""
OAuth Models
Pydantic models for OAuth2 federation
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from enum import Enum

class OAuthProvider(str, Enum):
    """Supported OAuth providers"""
    GOOGLE = "google"
    GITHUB = "github"

class OAuthUserProfile(BaseModel):
    """User profile from OAuth provider"""
    provider: OAuthProvider
    external_id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    verified_email: bool = False

class OAuthProviderConfig(BaseModel):
    """OAuth provider configuration"""
    provider: OAuthProvider
    client_id: str
    client_secret: str
    authorization_url: str
    token_url: str
    userinfo_url: str
    scopes: List[str]
    redirect_uri: str

class OAuthAuthorization(BaseModel):
    """Where to send the browser to start a provider login"""
    provider: OAuthProvider
    authorization_url: str
    state: str

class OAuthConnectionsResponse(BaseModel):
    """List of user's OAuth connections"""
    success: bool = True
    connections: List[dict] = Field(default_factory=list)
    total: int
