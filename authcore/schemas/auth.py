"""Authentication schemas. JSON bodies use camelCase keys."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema: snake_case attributes, camelCase on the wire"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class RegisterRequest(CamelModel):
    """Account registration schema"""
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def strip_email(cls, v):
        return v.strip()


class RegisterResponse(CamelModel):
    id: int
    email: str


class EmailRequest(CamelModel):
    """Body carrying only an email (reset request, verification resend)"""
    email: str = Field(..., max_length=254)


class TokenRequest(CamelModel):
    token: str = Field(..., min_length=1)


class LoginRequest(CamelModel):
    """Login schema"""
    email: str = Field(..., max_length=254)
    password: str = Field(..., max_length=128)


class LoginResponse(CamelModel):
    """
    Login outcome. Either the token fields or mfaToken are set, never both.
    """
    requires_mfa: bool = Field(..., alias="requiresMFA")
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    mfa_token: Optional[str] = None


class MFACompleteRequest(CamelModel):
    mfa_token: str = Field(..., min_length=1)
    code: str = Field(..., min_length=6, max_length=16)


class RefreshRequest(CamelModel):
    """Refresh token in the body; falls back to the cookie when absent"""
    refresh_token: Optional[str] = None


class TokenResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class SessionResponse(CamelModel):
    """One device session (a refresh-token family)"""
    id: str
    created_at: datetime
    last_used: datetime
    expires_at: datetime
    current: bool = False


class PasswordChangeRequest(CamelModel):
    current_password: str = Field(..., alias="current", max_length=128)
    new_password: str = Field(..., alias="new", max_length=128)


class PasswordResetRequest(CamelModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., alias="new", max_length=128)


class AccountResponse(CamelModel):
    """Account profile returned to its owner"""
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    status: str
    mfa_enabled: bool
    email_verified_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class MFASetupResponse(CamelModel):
    """Returned once at enrolment; the secret is never shown again"""
    secret: str
    provisioning_uri: str
    backup_codes: List[str]


class MFACodeRequest(CamelModel):
    code: str = Field(..., min_length=6, max_length=16)


class MFADisableRequest(CamelModel):
    password: str = Field(..., max_length=128)


class MFAStatusResponse(CamelModel):
    enabled: bool
    backup_codes_remaining: int
