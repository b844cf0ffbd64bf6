"""
User models
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional

from imagevault.models.usage_models import Plan

class UserCreate(BaseModel):
    """Registration payload"""
    email: EmailStr
    password: str = Field(..., max_length=128)
    name: Optional[str] = Field(None, max_length=100)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "jane@example.com",
                "password": "c0rrect-horse",
                "name": "Jane Doe"
            }
        }

class UserLogin(BaseModel):
    """User login model"""
    email: EmailStr
    password: str

class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., max_length=128)

class ForgotPasswordRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., max_length=128)

class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)

class ResendVerificationRequest(BaseModel):
    """Email is only needed when the caller is not logged in"""
    email: Optional[EmailStr] = None

class PlanUpdateRequest(BaseModel):
    plan: Plan
