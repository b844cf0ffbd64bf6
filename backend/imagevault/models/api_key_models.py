"""
API key models
"""
from pydantic import BaseModel, Field
from typing import List
from enum import Enum


class ApiKeyPermission(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    ADMIN = "admin"


class ApiKeyCreate(BaseModel):
    """Request to create an API key"""
    name: str = Field(..., min_length=1, max_length=100)
    permissions: List[ApiKeyPermission] = Field(
        default_factory=lambda: [ApiKeyPermission.READ, ApiKeyPermission.WRITE]
    )

    class Config:
        json_schema_extra = {
            "example": {
                "name": "CI uploads",
                "permissions": ["read", "write"]
            }
        }
