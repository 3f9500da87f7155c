"""
Pydantic schemas for sign-in, token and session endpoints.
"""

from pydantic import BaseModel, EmailStr, Field, UUID4
from typing import Optional
from datetime import datetime


class CodeSignInRequest(BaseModel):
    """Request a one-time code for an email address or phone number."""
    provider: str = Field(..., description="Configured email, phone or credentials provider id")
    identifier: str = Field(..., min_length=1, max_length=320)
    verifier: Optional[UUID4] = None


class SendCodeResponse(BaseModel):
    provider: str
    expires_at: datetime
    expires_in_seconds: int


class VerifyCodeRequest(BaseModel):
    """Redeem a one-time code."""
    provider: str
    code: str = Field(..., min_length=1, max_length=256)
    identifier: Optional[str] = None
    verifier: Optional[UUID4] = None


class CredentialsSignUpRequest(BaseModel):
    """Request schema for credentials sign-up."""
    provider: str = "password"
    email: EmailStr
    secret: str = Field(
        ...,
        min_length=8,
        max_length=72,  # bcrypt limit
        description="Secret must be 8-72 characters"
    )
    name: Optional[str] = None


class CredentialsSignInRequest(BaseModel):
    provider: str = "password"
    email: EmailStr
    secret: str


class TokenRefreshRequest(BaseModel):
    """Request schema for rotating a refresh token."""
    refresh_token: str


class UserResponse(BaseModel):
    """User profile response (no account secrets)."""
    id: UUID4
    name: Optional[str]
    image: Optional[str]
    email: Optional[str]
    email_verified: bool
    phone: Optional[str]
    phone_verified: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """Session token response."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    session_id: UUID4
    user_id: UUID4
    expires_at: datetime
    is_new_user: Optional[bool] = None


class SessionResponse(BaseModel):
    """Current session and its user."""
    session_id: UUID4
    expires_at: datetime
    user: UserResponse
