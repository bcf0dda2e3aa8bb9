from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from equipment_portal.core.permissions import Role
from equipment_portal.schemas import ResponseBase


# Request models
class LoginRequest(BaseModel):
    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=1, description="Account password")
    role: Optional[Role] = Field(None, description="Role the user signs in as (student, staff, admin)")


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Display name")
    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=6, max_length=128, description="Account password")
    role: Role = Field(Role.STUDENT, description="Requested role")

    @field_validator("name")
    def name_must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError("Name must not be blank")
        return v.strip()


# Response models
class UserProfile(BaseModel):
    id: str = Field(..., description="User ID")
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Email")
    role: Role = Field(..., description="Role")
    createdAt: Optional[datetime] = Field(None, description="Registration time")


class TokenData(BaseModel):
    token: str = Field(..., description="JWT access token")
    user: UserProfile


class LoginResponse(ResponseBase):
    data: TokenData


class CurrentUser(UserProfile):
    capabilities: List[str] = Field(..., description="Operations the role may perform")


class UserInfoResponse(ResponseBase):
    data: CurrentUser


class SimpleResponse(ResponseBase):
    """Plain success response"""
