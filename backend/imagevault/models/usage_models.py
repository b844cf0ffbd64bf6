"""
Plan and usage models
"""

from pydantic import BaseModel, Field
from typing import Union
from enum import Enum


class Plan(str, Enum):
    """Subscription tiers"""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class Resource(str, Enum):
    """Metered resources"""
    API_CALLS = "api_calls"
    STORAGE = "storage"
    IMAGES = "images"
    FOLDERS = "folders"


class PlanLimits(BaseModel):
    """Resource ceilings granted by a plan, per usage period"""
    storage_limit: int
    api_requests_limit: int
    images_limit: int
    folders_limit: int

    def limit_for(self, resource: Resource) -> int:
        return {
            Resource.API_CALLS: self.api_requests_limit,
            Resource.STORAGE: self.storage_limit,
            Resource.IMAGES: self.images_limit,
            Resource.FOLDERS: self.folders_limit,
        }[resource]

    class Config:
        frozen = True


class Allowed(BaseModel):
    """Entitlement check passed"""
    allowed: bool = True


class Denied(BaseModel):
    """Entitlement check failed"""
    allowed: bool = False
    resource: Resource
    current_usage: int
    limit: int


Decision = Union[Allowed, Denied]


class UsageConsumeRequest(BaseModel):
    """Reserve quota before performing a quota-bound mutation"""
    resource: Resource
    amount: int = Field(1, ge=0)

    class Config:
        json_schema_extra = {
            "example": {
                "resource": "storage",
                "amount": 1048576
            }
        }
