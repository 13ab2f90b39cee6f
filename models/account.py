from enum import Enum
from pydantic import BaseModel, Field


class UserRole(str, Enum):
    FREE = "free"
    PAID = "paid"
    ADMIN = "admin"


class SubscriptionRequest(BaseModel):
    subscriptionId: str = Field(..., min_length=1)


class DeleteUserRequest(BaseModel):
    userId: str = Field(..., min_length=1)
