"""Auth, account and linking schemas."""

from typing import Literal

from pydantic import BaseModel, EmailStr, Field

from app.schemas.geo import UTCDateTime


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=4)
    full_name: str = Field(..., min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    role: Literal["user", "parent"] = "user"


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    role: str


class UserMe(BaseModel):
    id: int
    email: str
    full_name: str
    phone: str | None
    role: str
    is_active: bool
    device_tokens: list[str] = []
    created_at: UTCDateTime

    model_config = {"from_attributes": True}


class CounterpartOut(BaseModel):
    id: int
    full_name: str
    email: str
    phone: str | None
    role: str

    model_config = {"from_attributes": True}


class LinkingCodeOut(BaseModel):
    code: str
    expires_at: UTCDateTime


class RedeemCodeRequest(BaseModel):
    code: str = Field(..., min_length=4, max_length=12)


class DeviceTokenRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=4096)


class LastLocationOut(BaseModel):
    user_id: int
    location: dict | None
    updated_at: UTCDateTime | None
